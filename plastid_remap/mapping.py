"""Read mapping: reference indexing, per-sample alignment, merging."""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from plastid_remap.errors import PipelineError
from plastid_remap.samples import Sample, SampleKind
from plastid_remap.stats import MappingStats, mapping_stats_from_report
from plastid_remap.tools import ProcessStage, ToolRunner

BWA_INDEX_SUFFIXES = [".amb", ".ann", ".bwt", ".pac", ".sa"]


@dataclass(frozen=True)
class AlignmentDataset:
    """A sorted, mapped-only BAM for one sample or the merged cohort."""

    path: Path
    samples: Tuple[str, ...]
    stats: Optional[MappingStats] = None


def link_into_stage(source: Path, stage_dir: Path) -> Path:
    """Expose `source` inside `stage_dir` through a relative symlink and return the link.

    Index files are written beside the link, so the directory holding `source`
    is never touched. A link from an earlier run pointing at `source` is reused.
    """
    stage_dir.mkdir(parents=True, exist_ok=True)
    link = stage_dir / source.name
    if link.is_symlink() and link.resolve() == source.resolve():
        return link
    if link.exists() or link.is_symlink():
        raise PipelineError(f"{link} already exists and is not a link to {source}.")
    link.symlink_to(os.path.relpath(source.resolve(), start=stage_dir.resolve()))
    logging.info("Linked %s into %s", source.name, stage_dir)
    return link


def build_index(fasta: Path, runner: ToolRunner) -> List[Path]:
    """Build the BWA index and the samtools .fai next to `fasta`."""
    logging.info("Building BWA index for %s", fasta.name)
    runner.invoke("bwa", ["index", fasta])
    logging.info("Creating FASTA index with samtools faidx.")
    runner.invoke("samtools", ["faidx", fasta])
    return [fasta.with_name(fasta.name + ext) for ext in BWA_INDEX_SUFFIXES + [".fai"]]


def alignment_stages(
    sample: Sample,
    reference_fasta: Path,
    unsorted_bam: Path,
    threads: int,
) -> List[ProcessStage]:
    """Reads -> bwa mem -> samtools view, keeping mapped records only."""
    stages: List[ProcessStage] = []
    if sample.kind is SampleKind.SRA_ACCESSION:
        stages.append(
            ProcessStage("fastq-dump", ["--split-spot", "--stdout", sample.accession])
        )
        stages.append(
            ProcessStage("bwa", ["mem", "-t", str(threads), "-p", reference_fasta, "-"])
        )
    else:
        stages.append(
            ProcessStage("bwa", ["mem", "-t", str(threads), reference_fasta, *sample.read_files])
        )
    stages.append(ProcessStage("samtools", ["view", "-b", "-F", "4", "-o", unsorted_bam, "-"]))
    return stages


def map_sample(
    sample: Sample,
    reference_fasta: Path,
    reference_length: int,
    align_dir: Path,
    runner: ToolRunner,
    threads: int,
    suffix: str = "",
) -> AlignmentDataset:
    """Align one sample, sort it and collect samtools stats."""
    align_dir.mkdir(parents=True, exist_ok=True)
    basename = sample.output_basename + suffix
    unsorted_bam = align_dir / f"{basename}.unsorted.bam"
    bam_path = align_dir / f"{basename}.bam"
    stats_path = align_dir / f"{basename}.stats"

    logging.info("Mapping %s against %s", sample.describe(), reference_fasta.name)
    runner.run_pipeline(alignment_stages(sample, reference_fasta, unsorted_bam, threads))
    runner.invoke("samtools", ["sort", "-@", str(threads), "-o", bam_path, unsorted_bam])
    unsorted_bam.unlink(missing_ok=True)

    runner.invoke("samtools", ["stats", bam_path], capture_stdout_to=stats_path)
    stats = mapping_stats_from_report(basename, stats_path.read_text(), reference_length)
    logging.info(
        "%s: %d reads mapped, %d bases mapped, %.2fx coverage",
        basename,
        stats.reads_mapped,
        stats.bases_mapped,
        stats.coverage,
    )
    return AlignmentDataset(path=bam_path, samples=(sample.output_basename,), stats=stats)


def map_samples(
    samples: Sequence[Sample],
    reference_fasta: Path,
    reference_length: int,
    align_dir: Path,
    runner: ToolRunner,
    threads: int,
    suffix: str = "",
) -> List[AlignmentDataset]:
    """Map every sample in resolver order."""
    return [
        map_sample(sample, reference_fasta, reference_length, align_dir, runner, threads, suffix)
        for sample in samples
    ]


def merge_alignments(
    datasets: Sequence[AlignmentDataset],
    merged_path: Path,
    runner: ToolRunner,
    threads: int,
) -> AlignmentDataset:
    """Combine per-sample BAMs into one cohort BAM; a single dataset passes through."""
    if not datasets:
        raise ValueError("No alignments to merge.")
    if len(datasets) == 1:
        logging.info("Single sample; using %s as the cohort alignment.", datasets[0].path.name)
        return datasets[0]

    merged_path.parent.mkdir(parents=True, exist_ok=True)
    logging.info("Merging %d alignments into %s", len(datasets), merged_path.name)
    runner.invoke(
        "samtools",
        ["merge", "-f", "-@", str(threads), merged_path, *[ds.path for ds in datasets]],
    )
    samples = tuple(name for ds in datasets for name in ds.samples)
    return AlignmentDataset(path=merged_path, samples=samples)


def index_alignment(dataset: AlignmentDataset, runner: ToolRunner) -> Path:
    """Index a coordinate-sorted BAM; returns the .bai path."""
    runner.invoke("samtools", ["index", dataset.path])
    return dataset.path.with_name(dataset.path.name + ".bai")
