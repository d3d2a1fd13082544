"""FASTA reading, renaming and base composition."""

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from Bio import SeqIO
from Bio.SeqRecord import SeqRecord

from plastid_remap.errors import MissingInputError, PipelineError

DEFAULT_ABBREVIATION = "Sps"


@dataclass(frozen=True)
class Reference:
    """The organelle FASTA used as the first mapping target."""

    path: Path
    length: int
    record_count: int
    contig_lengths: Dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class Composition:
    """Length and symbol histogram of a FASTA file."""

    length: int
    counts: Dict[str, int]

    def sorted_counts(self) -> List[Tuple[str, int]]:
        """Symbol counts in symbol order."""
        return sorted(self.counts.items())


def read_fasta(path: Path) -> List[SeqRecord]:
    """Parse every record of a FASTA file."""
    return list(SeqIO.parse(str(path), "fasta"))


def write_fasta(records: Iterable[SeqRecord], path: Path) -> int:
    """Write records as FASTA, creating the parent directory; returns the record count."""
    path.parent.mkdir(parents=True, exist_ok=True)
    return SeqIO.write(records, str(path), "fasta")


def load_reference(path: Path) -> Reference:
    """Measure the reference; more than one record is accepted with a warning."""
    records = read_fasta(path)
    if not records:
        raise MissingInputError(f"No FASTA records found in {path}.")
    reference = Reference(
        path=path,
        length=sum(len(record) for record in records),
        record_count=len(records),
        contig_lengths={record.id: len(record) for record in records},
    )
    if reference.record_count > 1:
        logging.warning(
            "Reference %s holds %d records; gap masking and consensus assume a single contig.",
            path.name,
            reference.record_count,
        )
    return reference


def species_abbreviation(species: Optional[str]) -> str:
    """First two letters of the genus plus first three of the epithet, as typed.

    'Nicotiana_benthamiana' -> 'Nibe'; no species name -> 'Sps'.
    """
    if not species or not species.strip():
        return DEFAULT_ABBREVIATION
    words = [word for word in re.split(r"[_\s]+", species.strip()) if word]
    abbreviation = words[0][:2]
    if len(words) > 1:
        abbreviation += words[1][:3]
    return abbreviation


def rename_records(source: Path, target: Path, new_id: str) -> List[SeqRecord]:
    """Copy `source` to `target` with record ids replaced by `new_id`.

    A single record is named `new_id`; several are numbered `new_id_1`, ...
    The original descriptions are dropped.
    """
    records = read_fasta(source)
    if not records:
        raise PipelineError(f"No FASTA records found in {source}.")
    if len(records) == 1:
        ids = [new_id]
    else:
        ids = [f"{new_id}_{index}" for index in range(1, len(records) + 1)]
    renamed = [
        SeqRecord(record.seq, id=record_id, name=record_id, description="")
        for record_id, record in zip(ids, records)
    ]
    write_fasta(renamed, target)
    return renamed


def composition(path: Path) -> Composition:
    """Case-sensitive symbol counts over every record of a FASTA file."""
    counts: Counter = Counter()
    for record in SeqIO.parse(str(path), "fasta"):
        counts.update(str(record.seq))
    return Composition(length=sum(counts.values()), counts=dict(sorted(counts.items())))


def format_composition(comp: Composition) -> str:
    """Render a composition as 'A=..., C=...'."""
    return ", ".join(f"{symbol}={count}" for symbol, count in comp.sorted_counts())
