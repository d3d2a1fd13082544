"""Second mapping round against the consensus and Pilon polishing."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Sequence, Tuple

from plastid_remap.errors import PipelineError
from plastid_remap.fasta import Composition, composition, format_composition
from plastid_remap.mapping import (
    AlignmentDataset,
    build_index,
    index_alignment,
    link_into_stage,
    map_samples,
    merge_alignments,
)
from plastid_remap.samples import Sample
from plastid_remap.tools import ToolRunner

CONSENSUS_SUFFIX = "_consensus"


@dataclass(frozen=True)
class RemapResult:
    """Second-generation alignments; `target` is the consensus link they were mapped to."""

    target: Path
    datasets: Tuple[AlignmentDataset, ...]
    cohort: AlignmentDataset
    cohort_index: Path


def remap_to_consensus(
    samples: Sequence[Sample],
    consensus_fasta: Path,
    consensus_length: int,
    remap_dir: Path,
    abbreviation: str,
    runner: ToolRunner,
    threads: int,
) -> RemapResult:
    """Index a link to the consensus, map every sample again, merge and index the cohort BAM.

    All index files land in `remap_dir`; the consensus directory is left as written.
    """
    target = link_into_stage(consensus_fasta, remap_dir)
    build_index(target, runner)
    datasets = map_samples(
        samples,
        target,
        consensus_length,
        remap_dir,
        runner,
        threads,
        suffix=CONSENSUS_SUFFIX,
    )
    cohort = merge_alignments(
        datasets,
        remap_dir / f"{abbreviation}{CONSENSUS_SUFFIX}_merged.bam",
        runner,
        threads,
    )
    cohort_index = index_alignment(cohort, runner)
    return RemapResult(
        target=target, datasets=tuple(datasets), cohort=cohort, cohort_index=cohort_index
    )


def pilon_arguments(
    polisher_archive: Path,
    memory_options: List[str],
    consensus_fasta: Path,
    cohort_bam: Path,
    polish_dir: Path,
    output_basename: str,
    threads: int,
) -> List[str]:
    """Command line for `java ... -jar pilon.jar` writing `<outdir>/<output>.fasta`."""
    return [
        *memory_options,
        "-jar",
        str(polisher_archive),
        "--genome",
        str(consensus_fasta),
        "--frags",
        str(cohort_bam),
        "--output",
        output_basename,
        "--outdir",
        str(polish_dir),
        "--threads",
        str(threads),
    ]


def polish_consensus(
    consensus_fasta: Path,
    cohort_bam: Path,
    polish_dir: Path,
    abbreviation: str,
    polisher_archive: Path,
    memory_options: List[str],
    runner: ToolRunner,
    threads: int,
) -> Tuple[Path, Composition]:
    """Run Pilon and return the polished FASTA with its composition."""
    polish_dir.mkdir(parents=True, exist_ok=True)
    output_basename = f"{abbreviation}_polished"
    runner.invoke(
        "java",
        pilon_arguments(
            polisher_archive,
            memory_options,
            consensus_fasta,
            cohort_bam,
            polish_dir,
            output_basename,
            threads,
        ),
    )
    final_fasta = polish_dir / f"{output_basename}.fasta"
    if not final_fasta.exists():
        raise PipelineError(f"Pilon finished but {final_fasta} was not written.")
    comp = composition(final_fasta)
    logging.info("Polished %s: %d bp (%s)", final_fasta.name, comp.length, format_composition(comp))
    return final_fasta, comp
