"""Resolution of read input descriptors into samples."""

import enum
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from plastid_remap.errors import InputConflictError, MissingInputError

FASTQ_SUFFIXES = (".fastq.gz", ".fq.gz", ".fastq.bz2", ".fq.bz2", ".fastq", ".fq")
PAIR_MARKERS = ("_R1", "_1", "_F")

_PAIRED_TOKEN_RE = re.compile(r"^\{([^{}]+)\}\{([^{}]+)\}$")


class SampleKind(enum.Enum):
    PAIRED_FASTQ = "paired"
    SINGLE_FASTQ = "single"
    SRA_ACCESSION = "sra"


def strip_fastq_suffix(name: str) -> str:
    """Drop a known FASTQ extension from a file name."""
    lowered = name.lower()
    for suffix in FASTQ_SUFFIXES:
        if lowered.endswith(suffix):
            return name[: -len(suffix)]
    return name


def strip_pair_marker(stem: str) -> str:
    """Drop a trailing read-1 marker (_R1, _1, _F) from a file stem."""
    for marker in PAIR_MARKERS:
        if stem.endswith(marker) and len(stem) > len(marker):
            return stem[: -len(marker)]
    return stem


@dataclass(frozen=True)
class Sample:
    """One logical read source, immutable once resolved."""

    kind: SampleKind
    path_r1: Optional[Path] = None
    path_r2: Optional[Path] = None
    path: Optional[Path] = None
    accession: Optional[str] = None

    @property
    def output_basename(self) -> str:
        if self.kind is SampleKind.PAIRED_FASTQ:
            return strip_pair_marker(strip_fastq_suffix(self.path_r1.name))
        if self.kind is SampleKind.SINGLE_FASTQ:
            return strip_fastq_suffix(self.path.name)
        return self.accession

    @property
    def read_files(self) -> List[Path]:
        if self.kind is SampleKind.PAIRED_FASTQ:
            return [self.path_r1, self.path_r2]
        if self.kind is SampleKind.SINGLE_FASTQ:
            return [self.path]
        return []

    def describe(self) -> str:
        if self.kind is SampleKind.PAIRED_FASTQ:
            return f"{self.path_r1.name} + {self.path_r2.name}"
        if self.kind is SampleKind.SINGLE_FASTQ:
            return self.path.name
        return f"SRA {self.accession}"


def parse_read_token(token: str) -> Sample:
    """Classify one `--reads` token: `{r1}{r2}` is paired, anything else single."""
    token = token.strip()
    match = _PAIRED_TOKEN_RE.match(token)
    if match:
        return Sample(
            kind=SampleKind.PAIRED_FASTQ,
            path_r1=Path(match.group(1)),
            path_r2=Path(match.group(2)),
        )
    if "{" in token or "}" in token:
        raise MissingInputError(
            f"Malformed paired read token {token!r}; expected {{R1.fastq}}{{R2.fastq}}."
        )
    return Sample(kind=SampleKind.SINGLE_FASTQ, path=Path(token))


def resolve_samples(
    reads: Optional[Sequence[str]],
    accessions: Optional[Sequence[str]],
) -> List[Sample]:
    """Turn the mutually exclusive read/accession inputs into ordered samples."""
    reads = [token for token in (reads or []) if token.strip()]
    accessions = [acc.strip() for acc in (accessions or []) if acc.strip()]
    if reads and accessions:
        raise InputConflictError("FASTQ reads and SRA accessions cannot be combined in one run.")
    if not reads and not accessions:
        raise MissingInputError("No input supplied; give FASTQ reads or SRA accessions.")

    if accessions:
        samples = [Sample(kind=SampleKind.SRA_ACCESSION, accession=acc) for acc in accessions]
    else:
        samples = [parse_read_token(token) for token in reads]

    basenames = [sample.output_basename for sample in samples]
    duplicated = sorted({name for name in basenames if basenames.count(name) > 1})
    if duplicated:
        raise InputConflictError(
            "Several samples resolve to the same output name: " + ", ".join(duplicated)
        )
    logging.info("Resolved %d sample(s): %s", len(samples), ", ".join(basenames))
    return samples


def validate_sample_files(samples: Sequence[Sample]) -> None:
    """Fail before any tool runs if a FASTQ file is missing."""
    missing = [str(path) for sample in samples for path in sample.read_files if not path.is_file()]
    if missing:
        raise MissingInputError("Read files not found: " + ", ".join(missing))


def is_accession_run(samples: Sequence[Sample]) -> bool:
    return any(sample.kind is SampleKind.SRA_ACCESSION for sample in samples)
