#!/usr/bin/env python3
"""
Iterative reference-guided reconstruction of a chloroplast genome.

Reads (paired or single FASTQ, or SRA accessions) are mapped against the
plastome of a related species, the cohort alignment is scanned for coverage
gaps and homozygous variants, and a corrected consensus is built from the
reference with the gaps masked as N. The reads are then mapped again to that
consensus and Pilon polishes the result. All outputs are written to numbered
stage directories below the output directory.

Steps
-----
1. Reference linking and indexing (`bwa index`, `samtools faidx`).
2. Per-sample mapping (`bwa mem` -> `samtools view -F 4` -> `samtools sort`)
   with `samtools stats` sidecars.
3. Merging of the per-sample BAMs (`samtools merge`) when there are several.
4. Coverage profile and zero-coverage gaps (`bedtools genomecov -bga`).
5. Variant calling (`freebayes`), homozygous filtering, `bgzip` + `tabix`.
6. Consensus (`bcftools consensus` with the gaps as mask).
7. Remapping to the consensus, merge, `samtools index`.
8. Polishing (`java -jar pilon.jar`).
9. Removal of cached SRA downloads when SRA_CACHE_DIR is set.

Usage
-----
    plastid-remap \
        --reference NC_006581.fasta \
        --reads '{sample_R1.fastq.gz}{sample_R2.fastq.gz}' \
        --species Nicotiana_benthamiana \
        --threads 8 \
        --pilon-options "-Xmx16g" \
        --output-dir results/
"""

import argparse
import logging
import multiprocessing
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from plastid_remap.cleanup import cleanup_cache
from plastid_remap.config import (
    ACCESSION_TOOLS,
    CORE_TOOLS,
    ToolConfig,
    check_bedtools_version,
    check_polisher_archive,
    validate_polisher_options,
)
from plastid_remap.coverage import analyse_coverage
from plastid_remap.errors import MissingInputError, PipelineError
from plastid_remap.fasta import load_reference, species_abbreviation
from plastid_remap.mapping import build_index, link_into_stage, map_samples, merge_alignments
from plastid_remap.polish import polish_consensus, remap_to_consensus
from plastid_remap.samples import (
    Sample,
    is_accession_run,
    resolve_samples,
    validate_sample_files,
)
from plastid_remap.stats import RunStats, log_report, write_mapping_table, write_run_metadata
from plastid_remap.tools import ToolRunner
from plastid_remap.variants import build_consensus, call_variants


@dataclass(frozen=True)
class OutputLayout:
    """Numbered stage directories below the output directory."""

    root: Path

    @property
    def reference(self) -> Path:
        return self.root / "01_reference"

    @property
    def mapping(self) -> Path:
        return self.root / "02_mapping"

    @property
    def merging(self) -> Path:
        return self.root / "03_merging"

    @property
    def coverage(self) -> Path:
        return self.root / "04_coverage"

    @property
    def variants(self) -> Path:
        return self.root / "05_variants"

    @property
    def consensus(self) -> Path:
        return self.root / "06_consensus"

    @property
    def remapping(self) -> Path:
        return self.root / "07_remapping"

    @property
    def polishing(self) -> Path:
        return self.root / "08_polishing"

    @property
    def logs(self) -> Path:
        return self.root / "logs"


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(
        description=(
            "Reconstruct a chloroplast genome by mapping reads to a related "
            "reference, building a gap-masked consensus and polishing it."
        )
    )
    parser.add_argument(
        "-i",
        "--reads",
        nargs="+",
        metavar="FASTQ",
        help="FASTQ inputs; write a pair as '{R1.fastq}{R2.fastq}'.",
    )
    parser.add_argument(
        "-a",
        "--accessions",
        nargs="+",
        metavar="ACC",
        help="SRA run accessions streamed with fastq-dump (exclusive with --reads).",
    )
    parser.add_argument(
        "-r",
        "--reference",
        type=Path,
        required=True,
        help="Chloroplast reference FASTA of a related species.",
    )
    parser.add_argument(
        "-o",
        "--output-dir",
        type=Path,
        required=True,
        help="Destination directory for all stage outputs.",
    )
    parser.add_argument(
        "-s",
        "--species",
        help="Species name such as Nicotiana_benthamiana; used to name outputs.",
    )
    parser.add_argument(
        "-t",
        "--threads",
        type=int,
        default=min(8, multiprocessing.cpu_count()),
        help="Threads for bwa, samtools sort/merge and Pilon.",
    )
    parser.add_argument(
        "--pilon-options",
        help="JVM memory options for Pilon, e.g. '-Xmx16g'. Nothing else is accepted.",
    )
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true", help="Log debug output.")
    verbosity.add_argument("-q", "--quiet", action="store_true", help="Log warnings and errors only.")
    return parser.parse_args(argv)


def configure_logging(log_path: Path, verbose: bool = False, quiet: bool = False) -> None:
    """Configure logging to file and stderr."""
    log_path.parent.mkdir(parents=True, exist_ok=True)
    level = logging.DEBUG if verbose else logging.WARNING if quiet else logging.INFO
    log_format = "%(asctime)s [%(levelname)s] %(message)s"
    handlers = [logging.FileHandler(log_path, mode="w"), logging.StreamHandler(sys.stderr)]
    logging.basicConfig(level=level, format=log_format, handlers=handlers, force=True)


def log_stage(title: str) -> None:
    """Header line separating stages in the log."""
    logging.info("== %s ==", title)


def run_stages(
    samples: Sequence[Sample],
    genome_fasta: Path,
    layout: OutputLayout,
    runner: ToolRunner,
    polisher_archive: Path,
    memory_options: List[str],
    species: Optional[str] = None,
    threads: int = 1,
    cache_dir: Optional[Path] = None,
) -> Tuple[RunStats, Dict[str, List[Path]]]:
    """Run every stage in order and return the statistics and produced files."""
    abbreviation = species_abbreviation(species)
    reference = load_reference(genome_fasta)
    stats = RunStats(reference_length=reference.length, reference_records=reference.record_count)

    log_stage("Reference indexing")
    logging.info("Reference %s: %d bp", genome_fasta.name, reference.length)
    reference_fasta = link_into_stage(genome_fasta, layout.reference)
    build_index(reference_fasta, runner)
    reference_fai = reference_fasta.with_name(reference_fasta.name + ".fai")

    log_stage("Mapping to reference")
    datasets = map_samples(samples, reference_fasta, reference.length, layout.mapping, runner, threads)
    stats = stats.update(mapping=tuple(ds.stats for ds in datasets))

    log_stage("Merging alignments")
    cohort = merge_alignments(
        datasets, layout.merging / f"{abbreviation}_merged.bam", runner, threads
    )

    log_stage("Coverage analysis")
    _, _, coverage, gaps_bed = analyse_coverage(
        cohort.path, reference_fai, reference.contig_lengths, layout.coverage, runner
    )
    stats = stats.update(coverage=coverage)

    log_stage("Variant calling")
    variants = call_variants(reference_fasta, cohort.path, layout.variants, runner)
    stats = stats.update(
        variant_types=variants.types,
        untyped_variants=variants.untyped,
        filtered_variant_types=variants.filtered_types,
    )

    log_stage("Consensus")
    consensus_fasta, consensus_comp = build_consensus(
        reference_fasta,
        variants.compressed_vcf,
        gaps_bed,
        coverage.gap_count,
        layout.consensus,
        abbreviation,
        runner,
    )
    stats = stats.update(consensus=consensus_comp)

    log_stage("Mapping to consensus")
    remap = remap_to_consensus(
        samples,
        consensus_fasta,
        consensus_comp.length,
        layout.remapping,
        abbreviation,
        runner,
        threads,
    )
    stats = stats.update(remapping=tuple(ds.stats for ds in remap.datasets))

    log_stage("Polishing")
    final_fasta, final_comp = polish_consensus(
        remap.target,
        remap.cohort.path,
        layout.polishing,
        abbreviation,
        polisher_archive,
        memory_options,
        runner,
        threads,
    )
    stats = stats.update(final=final_comp)

    removed: List[Path] = []
    if cache_dir is not None and is_accession_run(samples):
        log_stage("Cleanup")
        removed = cleanup_cache(samples, cache_dir)

    outputs = {
        "alignments": [ds.path for ds in datasets] + [cohort.path],
        "coverage": [layout.coverage / "coverage.bedgraph", gaps_bed],
        "variants": [variants.raw_vcf, variants.filtered_vcf, variants.compressed_vcf],
        "consensus": [consensus_fasta],
        "remapping": [ds.path for ds in remap.datasets] + [remap.cohort.path],
        "final": [final_fasta],
        "removed_cache": removed,
    }
    return stats, outputs


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Entry point; returns the process exit status."""
    args = parse_args(argv)
    layout = OutputLayout(args.output_dir.resolve())
    layout.root.mkdir(parents=True, exist_ok=True)
    configure_logging(layout.logs / "pipeline.log", verbose=args.verbose, quiet=args.quiet)
    started = time.time()

    try:
        samples = resolve_samples(args.reads, args.accessions)
        validate_sample_files(samples)
        if not args.reference.is_file():
            raise MissingInputError(f"Reference FASTA not found: {args.reference}")
        if args.threads < 1:
            raise PipelineError("--threads must be at least 1.")
        memory_options = validate_polisher_options(args.pilon_options)

        tools = CORE_TOOLS + (ACCESSION_TOOLS if is_accession_run(samples) else [])
        config = ToolConfig.from_environment(tools)
        polisher_archive = check_polisher_archive(config)
        runner = ToolRunner(config)
        check_bedtools_version(runner)

        stats, outputs = run_stages(
            samples,
            args.reference.resolve(),
            layout,
            runner,
            polisher_archive,
            memory_options,
            species=args.species,
            threads=args.threads,
            cache_dir=config.cache_dir,
        )

        log_report(stats)
        write_mapping_table(stats, layout.root / "mapping_stats.tsv")
        write_run_metadata(
            stats,
            params={
                "reads": args.reads,
                "accessions": args.accessions,
                "reference": str(args.reference),
                "species": args.species,
                "threads": args.threads,
                "pilon_options": memory_options,
            },
            outputs=outputs,
            started=started,
            metadata_path=layout.root / "run_stats.json",
        )
        logging.info("Pipeline complete. Outputs written to %s", layout.root)

    except PipelineError as exc:
        logging.error("%s", exc)
        return 1
    except Exception as exc:  # pylint: disable=broad-except
        logging.exception("Pipeline failed: %s", exc)
        raise
    return 0


if __name__ == "__main__":
    sys.exit(main())
