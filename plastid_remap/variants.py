"""Variant calling, homozygous filtering and consensus construction."""

import logging
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from plastid_remap.errors import PipelineError
from plastid_remap.fasta import Composition, composition, format_composition, rename_records
from plastid_remap.stats import format_histogram
from plastid_remap.tools import ToolRunner

HOMOZYGOUS_CONFIDENCE = 1.0
TYPE_KEY = "TYPE"
CONFIDENCE_KEY = "AF"

InfoValue = Union[str, bool]


def parse_info(info: str) -> Dict[str, InfoValue]:
    """Parse a VCF INFO column; `KEY=VALUE` pairs map to strings, flags to True."""
    values: Dict[str, InfoValue] = {}
    if not info or info == ".":
        return values
    for item in info.split(";"):
        if not item:
            continue
        key, sep, value = item.partition("=")
        values[key] = value if sep else True
    return values


def parse_confidence(value: Optional[InfoValue]) -> float:
    """Allele frequency as a float; multi-allelic lists keep their lowest value."""
    if not isinstance(value, str):
        return 0.0
    numbers = []
    for part in value.split(","):
        try:
            numbers.append(float(part))
        except ValueError:
            return 0.0
    return min(numbers) if numbers else 0.0


@dataclass(frozen=True)
class VariantRecord:
    chrom: str
    pos: int
    ref: str
    alt: str
    info: Dict[str, InfoValue]
    line: str

    @property
    def variant_type(self) -> Optional[str]:
        value = self.info.get(TYPE_KEY)
        return value if isinstance(value, str) and value else None

    @property
    def confidence(self) -> float:
        return parse_confidence(self.info.get(CONFIDENCE_KEY))


@dataclass
class VariantSet:
    header: List[str] = field(default_factory=list)
    records: List[VariantRecord] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.records)


def parse_record(line: str) -> VariantRecord:
    fields = line.rstrip("\n").split("\t")
    if len(fields) < 8:
        raise PipelineError(f"Malformed VCF record with {len(fields)} columns: {line.strip()!r}")
    return VariantRecord(
        chrom=fields[0],
        pos=int(fields[1]),
        ref=fields[3],
        alt=fields[4],
        info=parse_info(fields[7]),
        line=line.rstrip("\n"),
    )


def read_vcf(path: Path) -> VariantSet:
    variant_set = VariantSet()
    with path.open() as handle:
        for line in handle:
            if line.startswith("#"):
                variant_set.header.append(line.rstrip("\n"))
            elif line.strip():
                variant_set.records.append(parse_record(line))
    return variant_set


def write_vcf(variant_set: VariantSet, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w") as handle:
        for line in variant_set.header:
            handle.write(line + "\n")
        for record in variant_set.records:
            handle.write(record.line + "\n")


def type_histogram(records: List[VariantRecord]) -> Tuple[Tuple[Tuple[str, int], ...], int]:
    """Count records per TYPE, most frequent first.

    Records without a TYPE are left out of the histogram; their number is
    returned alongside it.
    """
    counts = Counter(record.variant_type for record in records if record.variant_type)
    untyped = sum(1 for record in records if record.variant_type is None)
    histogram = tuple(sorted(counts.items(), key=lambda item: (-item[1], item[0])))
    return histogram, untyped


def filter_homozygous(variant_set: VariantSet) -> VariantSet:
    """Keep the variants with full allelic support (AF >= 1)."""
    kept = [r for r in variant_set.records if r.confidence >= HOMOZYGOUS_CONFIDENCE]
    return VariantSet(header=list(variant_set.header), records=kept)


@dataclass(frozen=True)
class VariantResult:
    raw_vcf: Path
    filtered_vcf: Path
    compressed_vcf: Path
    types: Tuple[Tuple[str, int], ...]
    untyped: int
    filtered_types: Tuple[Tuple[str, int], ...]
    filtered_count: int


def call_variants(
    reference_fasta: Path,
    cohort_bam: Path,
    variant_dir: Path,
    runner: ToolRunner,
) -> VariantResult:
    """Call, summarise, filter, compress and index variants of the cohort."""
    variant_dir.mkdir(parents=True, exist_ok=True)
    raw_vcf = variant_dir / "variants.raw.vcf"
    filtered_vcf = variant_dir / "variants.filtered.vcf"
    compressed_vcf = variant_dir / "variants.filtered.vcf.gz"

    runner.invoke("freebayes", ["-f", reference_fasta, cohort_bam], capture_stdout_to=raw_vcf)
    raw = read_vcf(raw_vcf)
    types, untyped = type_histogram(raw.records)
    logging.info("Called %d variant(s): %s", len(raw), format_histogram(types))
    if untyped:
        logging.warning("%d variant(s) carry no TYPE and are left out of the summary.", untyped)

    filtered = filter_homozygous(raw)
    write_vcf(filtered, filtered_vcf)
    filtered_types, _ = type_histogram(filtered.records)
    logging.info("Kept %d homozygous variant(s): %s", len(filtered), format_histogram(filtered_types))

    runner.invoke("bgzip", ["-c", filtered_vcf], capture_stdout_to=compressed_vcf)
    runner.invoke("tabix", ["-f", "-p", "vcf", compressed_vcf])
    return VariantResult(
        raw_vcf=raw_vcf,
        filtered_vcf=filtered_vcf,
        compressed_vcf=compressed_vcf,
        types=types,
        untyped=untyped,
        filtered_types=filtered_types,
        filtered_count=len(filtered),
    )


def build_consensus(
    reference_fasta: Path,
    compressed_vcf: Path,
    gaps_bed: Path,
    gap_count: int,
    consensus_dir: Path,
    abbreviation: str,
    runner: ToolRunner,
) -> Tuple[Path, Composition]:
    """Apply the filtered variants to the reference and mask gaps with N.

    The record is renamed to the species abbreviation. With no variants the
    result is the masked reference.
    """
    consensus_dir.mkdir(parents=True, exist_ok=True)
    raw_consensus = consensus_dir / "consensus.raw.fasta"
    consensus_fasta = consensus_dir / f"{abbreviation}_consensus.fasta"

    args = ["consensus", "-f", reference_fasta]
    if gap_count:
        args += ["-m", gaps_bed]
    args.append(compressed_vcf)
    runner.invoke("bcftools", args, capture_stdout_to=raw_consensus)

    rename_records(raw_consensus, consensus_fasta, abbreviation)
    comp = composition(consensus_fasta)
    logging.info(
        "Consensus %s: %d bp (%s)", consensus_fasta.name, comp.length, format_composition(comp)
    )
    return consensus_fasta, comp
