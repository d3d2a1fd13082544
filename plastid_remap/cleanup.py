"""Removal of SRA download caches left behind by accession inputs."""

import logging
from pathlib import Path
from typing import List, Optional, Sequence

from plastid_remap.samples import Sample, SampleKind

CACHE_SUFFIXES = (".sra", ".cache")


def cleanup_cache(samples: Sequence[Sample], cache_dir: Optional[Path]) -> List[Path]:
    """Delete `<accession>.sra` (or else `<accession>.cache`) for each accession sample."""
    removed: List[Path] = []
    if cache_dir is None:
        return removed
    for sample in samples:
        if sample.kind is not SampleKind.SRA_ACCESSION:
            continue
        for suffix in CACHE_SUFFIXES:
            candidate = cache_dir / f"{sample.accession}{suffix}"
            if candidate.is_file():
                candidate.unlink()
                logging.info("Removed cached download %s", candidate)
                removed.append(candidate)
                break
        else:
            logging.info("No cached download found for %s in %s", sample.accession, cache_dir)
    return removed
