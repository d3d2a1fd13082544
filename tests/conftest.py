"""Shared fixtures: a recording stand-in for ToolRunner and small inputs."""
from __future__ import annotations

from pathlib import Path

import pytest
from Bio.Seq import Seq
from Bio.SeqRecord import SeqRecord

from plastid_remap.fasta import read_fasta, write_fasta

STATS_REPORT = (
    "# This file was produced by samtools stats\n"
    "SN\traw total sequences:\t120\n"
    "SN\treads mapped:\t100\n"
    "SN\tbases mapped (cigar):\t15000\t# more accurate\n"
)

VCF_HEADER = (
    "##fileformat=VCFv4.2\n"
    "##source=freeBayes\n"
    "#CHROM\tPOS\tID\tREF\tALT\tQUAL\tFILTER\tINFO\tFORMAT\tunknown\n"
)


def vcf_line(pos: int, ref: str, alt: str, info: str, chrom: str = "chr") -> str:
    return f"{chrom}\t{pos}\t.\t{ref}\t{alt}\t50\t.\t{info}\tGT\t1/1"


def _option(args: list[str], flag: str) -> str:
    return args[args.index(flag) + 1]


class FakeRunner:
    """Records every call and writes plausible outputs instead of running tools.

    `gaps` maps contig -> list of (start, end) zero-depth intervals reported by
    genomecov; everything else gets `depth`.
    """

    def __init__(self, depth: int = 10, gaps=None, vcf_records=(), bedtools_version="v2.30.0"):
        self.depth = depth
        self.gaps = gaps or {}
        self.vcf_records = list(vcf_records)
        self.bedtools_version = bedtools_version
        self.calls: list[list[tuple[str, list[str]]]] = []

    def invoke(self, tool, argv, capture_stdout_to=None):
        from plastid_remap.tools import ProcessStage

        return self.run_pipeline([ProcessStage(tool, argv)], capture_stdout_to=capture_stdout_to)

    def run_pipeline(self, stages, capture_stdout_to=None):
        self.calls.append([(stage.tool, [str(arg) for arg in stage.args]) for stage in stages])
        last = stages[-1]
        output = self._handle(last.tool, [str(arg) for arg in last.args])
        if capture_stdout_to is not None:
            Path(capture_stdout_to).write_text(output)
            return True, ""
        return True, output

    def commands(self, tool: str, subcommand: str | None = None) -> list[list[str]]:
        """Argument lists of every stage run for `tool` (optionally one subcommand)."""
        found = []
        for pipeline in self.calls:
            for name, args in pipeline:
                if name == tool and (subcommand is None or (args and args[0] == subcommand)):
                    found.append(args)
        return found

    def _handle(self, tool: str, args: list[str]) -> str:
        if tool == "bwa" and args[0] == "index":
            for ext in (".amb", ".ann", ".bwt", ".pac", ".sa"):
                Path(args[1] + ext).write_text("")
            return ""
        if tool == "samtools":
            return self._samtools(args)
        if tool == "bedtools":
            if args[0] == "--version":
                return f"bedtools {self.bedtools_version}\n"
            return self._genomecov(args)
        if tool == "freebayes":
            return VCF_HEADER + "".join(line + "\n" for line in self.vcf_records)
        if tool == "bgzip":
            return Path(args[-1]).read_text()
        if tool == "tabix":
            Path(args[-1] + ".tbi").write_text("")
            return ""
        if tool == "bcftools":
            return self._consensus(args)
        if tool == "java":
            genome = Path(_option(args, "--genome"))
            outdir = Path(_option(args, "--outdir"))
            write_fasta(read_fasta(genome), outdir / (_option(args, "--output") + ".fasta"))
            return ""
        raise AssertionError(f"unexpected tool {tool} {args}")

    def _samtools(self, args: list[str]) -> str:
        command = args[0]
        if command == "faidx":
            fasta = Path(args[1])
            lines = [f"{record.id}\t{len(record)}\n" for record in read_fasta(fasta)]
            Path(args[1] + ".fai").write_text("".join(lines))
        elif command in ("view", "sort"):
            Path(_option(args, "-o")).write_text("BAM\n")
        elif command == "stats":
            return STATS_REPORT
        elif command == "merge":
            # merge -f -@ T out in1 in2 ...
            Path(args[4]).write_text("MERGED " + " ".join(args[5:]) + "\n")
        elif command == "index":
            Path(args[1] + ".bai").write_text("")
        return ""

    def _genomecov(self, args: list[str]) -> str:
        fai = Path(_option(args, "-g"))
        rows = []
        for line in fai.read_text().splitlines():
            contig, length = line.split("\t")[:2]
            position = 0
            for start, end in sorted(self.gaps.get(contig, [])):
                if start > position:
                    rows.append(f"{contig}\t{position}\t{start}\t{self.depth}")
                rows.append(f"{contig}\t{start}\t{end}\t0")
                position = end
            if position < int(length):
                rows.append(f"{contig}\t{position}\t{length}\t{self.depth}")
        return "".join(row + "\n" for row in rows)

    def _consensus(self, args: list[str]) -> str:
        records = read_fasta(Path(_option(args, "-f")))
        masks = []
        if "-m" in args:
            for line in Path(_option(args, "-m")).read_text().splitlines():
                contig, start, end = line.split("\t")[:3]
                masks.append((contig, int(start), int(end)))
        text = []
        for record in records:
            name = record.id
            bases = list(str(record.seq))
            for contig, start, end in masks:
                if contig == name:
                    bases[start:end] = "N" * (end - start)
            text.append(f">{name}\n{''.join(bases)}\n")
        return "".join(text)


@pytest.fixture
def fake_runner():
    return FakeRunner()


@pytest.fixture
def reference_fasta(tmp_path):
    """A 1000 bp single-record reference."""
    path = tmp_path / "inputs" / "reference.fasta"
    sequence = ("ACGT" * 250)
    write_fasta([SeqRecord(Seq(sequence), id="chr", description="reference plastome")], path)
    return path


@pytest.fixture
def fastq_pair(tmp_path):
    r1 = tmp_path / "inputs" / "leaf_R1.fastq"
    r2 = tmp_path / "inputs" / "leaf_R2.fastq"
    r1.parent.mkdir(parents=True, exist_ok=True)
    r1.write_text("@r1\nACGT\n+\nIIII\n")
    r2.write_text("@r1\nACGT\n+\nIIII\n")
    return r1, r2
