"""Run statistics gathered stage by stage and the end-of-run report."""

import dataclasses
import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pandas as pd

from plastid_remap.errors import PipelineError
from plastid_remap.fasta import Composition, format_composition

READS_MAPPED_KEY = "reads mapped"
BASES_MAPPED_KEY = "bases mapped (cigar)"


@dataclass(frozen=True)
class MappingStats:
    sample: str
    reads_mapped: int
    bases_mapped: int
    coverage: float


@dataclass(frozen=True)
class CoverageSummary:
    min_depth: float
    max_depth: float
    mean_depth: float
    gap_count: int
    gap_length: int


@dataclass(frozen=True)
class RunStats:
    """Everything reported at the end of a run.

    Stages never mutate this; they return contributions which the orchestrator
    folds in with `update`.
    """

    reference_length: int = 0
    reference_records: int = 0
    mapping: Tuple[MappingStats, ...] = ()
    coverage: Optional[CoverageSummary] = None
    variant_types: Tuple[Tuple[str, int], ...] = ()
    untyped_variants: int = 0
    filtered_variant_types: Tuple[Tuple[str, int], ...] = ()
    consensus: Optional[Composition] = None
    remapping: Tuple[MappingStats, ...] = ()
    final: Optional[Composition] = None

    def update(self, **changes) -> "RunStats":
        return dataclasses.replace(self, **changes)

    def to_dict(self) -> Dict[str, object]:
        return dataclasses.asdict(self)


def parse_samtools_stats(text: str) -> Dict[str, int]:
    """Pull the integer summary numbers ('SN' lines) out of a samtools stats report."""
    values: Dict[str, int] = {}
    for line in text.splitlines():
        if not line.startswith("SN\t"):
            continue
        parts = line.split("\t")
        if len(parts) < 3:
            continue
        key = parts[1].rstrip(":").strip()
        try:
            values[key] = int(float(parts[2]))
        except ValueError:
            continue
    return values


def mapping_stats_from_report(sample: str, text: str, reference_length: int) -> MappingStats:
    values = parse_samtools_stats(text)
    missing = [key for key in (READS_MAPPED_KEY, BASES_MAPPED_KEY) if key not in values]
    if missing:
        raise PipelineError(
            f"samtools stats report for {sample} lacks: {', '.join(missing)}."
        )
    bases = values[BASES_MAPPED_KEY]
    coverage = round(bases / reference_length, 2) if reference_length else 0.0
    return MappingStats(
        sample=sample,
        reads_mapped=values[READS_MAPPED_KEY],
        bases_mapped=bases,
        coverage=coverage,
    )


def format_histogram(histogram: Tuple[Tuple[str, int], ...]) -> str:
    """Render a type histogram as 'snp=3, del=1'."""
    if not histogram:
        return "none"
    return ", ".join(f"{name}={count}" for name, count in histogram)


MAPPING_COLUMNS = ["sample", "target", "reads_mapped", "bases_mapped", "coverage"]


def write_mapping_table(stats: RunStats, output_path: Path) -> pd.DataFrame:
    """One TSV row per sample and mapping target (reference, then consensus)."""
    frames = [
        pd.DataFrame([dataclasses.asdict(entry) for entry in entries]).assign(target=target)
        for target, entries in (("reference", stats.mapping), ("consensus", stats.remapping))
        if entries
    ]
    if frames:
        table = pd.concat(frames, ignore_index=True)[MAPPING_COLUMNS]
    else:
        table = pd.DataFrame(columns=MAPPING_COLUMNS)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    table.to_csv(output_path, sep="\t", index=False)
    return table


def write_run_metadata(
    stats: RunStats,
    params: Dict[str, object],
    outputs: Dict[str, List[Path]],
    started: float,
    metadata_path: Path,
) -> None:
    """Write run_stats.json capturing parameters, outputs and statistics."""
    metadata = {
        "date": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        "runtime_seconds": round(time.time() - started, 1),
        "parameters": params,
        "outputs": {key: [str(path) for path in paths] for key, paths in outputs.items()},
        "stats": stats.to_dict(),
    }
    metadata_path.write_text(json.dumps(metadata, indent=2, default=str))


def _log_mapping(title: str, entries: Tuple[MappingStats, ...]) -> None:
    logging.info("%s:", title)
    for entry in entries:
        logging.info(
            "  %s: %d reads, %d bases mapped, %.2fx coverage",
            entry.sample,
            entry.reads_mapped,
            entry.bases_mapped,
            entry.coverage,
        )


def log_report(stats: RunStats) -> None:
    """Print the end-of-run summary to the diagnostic stream."""
    logging.info("== Run summary ==")
    logging.info(
        "Reference: %d bp in %d record(s)", stats.reference_length, stats.reference_records
    )
    _log_mapping("Mapping to reference", stats.mapping)
    if stats.coverage is not None:
        cov = stats.coverage
        logging.info(
            "Coverage: min %.2f, max %.2f, mean %.2f; %d gap(s) covering %d bp",
            cov.min_depth,
            cov.max_depth,
            cov.mean_depth,
            cov.gap_count,
            cov.gap_length,
        )
    logging.info("Variant types (raw): %s", format_histogram(stats.variant_types))
    if stats.untyped_variants:
        logging.info("Variants without TYPE: %d", stats.untyped_variants)
    logging.info("Variant types (homozygous): %s", format_histogram(stats.filtered_variant_types))
    if stats.consensus is not None:
        logging.info(
            "Consensus: %d bp (%s)", stats.consensus.length, format_composition(stats.consensus)
        )
    _log_mapping("Mapping to consensus", stats.remapping)
    if stats.final is not None:
        logging.info("Final: %d bp (%s)", stats.final.length, format_composition(stats.final))
