"""Tests for sample resolution."""
from __future__ import annotations

from pathlib import Path

import pytest

from plastid_remap.errors import InputConflictError, MissingInputError
from plastid_remap.samples import (
    SampleKind,
    is_accession_run,
    parse_read_token,
    resolve_samples,
    strip_fastq_suffix,
    validate_sample_files,
)


class TestParseReadToken:

    def test_paired_token(self):
        sample = parse_read_token("{r1.fq}{r2.fq}")
        assert sample.kind is SampleKind.PAIRED_FASTQ
        assert sample.path_r1 == Path("r1.fq")
        assert sample.path_r2 == Path("r2.fq")

    def test_single_token(self):
        sample = parse_read_token("sample.fastq")
        assert sample.kind is SampleKind.SINGLE_FASTQ
        assert sample.output_basename == "sample"

    def test_malformed_braces(self):
        with pytest.raises(MissingInputError):
            parse_read_token("{r1.fq}r2.fq")


class TestOutputBasename:

    @pytest.mark.parametrize(
        "r1, expected",
        [
            ("leaf_1.fq", "leaf"),
            ("leaf_R1.fastq.gz", "leaf"),
            ("leaf_F.fastq", "leaf"),
            ("data/leaf.fq.gz", "leaf"),
        ],
    )
    def test_paired_marker_trimmed(self, r1, expected):
        sample = parse_read_token(f"{{{r1}}}{{mate.fq}}")
        assert sample.output_basename == expected

    def test_single_keeps_marker(self):
        assert parse_read_token("run_1.fastq").output_basename == "run_1"

    def test_accession_used_directly(self):
        samples = resolve_samples(None, ["SRR1234567"])
        assert samples[0].kind is SampleKind.SRA_ACCESSION
        assert samples[0].output_basename == "SRR1234567"

    def test_strip_fastq_suffix_is_case_insensitive(self):
        assert strip_fastq_suffix("Reads.FASTQ.GZ") == "Reads"
        assert strip_fastq_suffix("reads.bam") == "reads.bam"


class TestResolveSamples:

    def test_both_inputs_conflict(self):
        with pytest.raises(InputConflictError):
            resolve_samples(["a.fq"], ["SRR1"])

    def test_no_input(self):
        with pytest.raises(MissingInputError):
            resolve_samples(None, None)
        with pytest.raises(MissingInputError):
            resolve_samples([], ["  "])

    def test_order_preserved(self):
        samples = resolve_samples(["b.fq", "{a_1.fq}{a_2.fq}", "c.fastq"], None)
        assert [s.output_basename for s in samples] == ["b", "a", "c"]
        assert not is_accession_run(samples)

    def test_duplicate_names_rejected(self):
        with pytest.raises(InputConflictError):
            resolve_samples(["x/s.fq", "y/s.fastq"], None)


class TestValidateSampleFiles:

    def test_missing_file(self, tmp_path):
        samples = resolve_samples([str(tmp_path / "absent.fq")], None)
        with pytest.raises(MissingInputError, match="absent.fq"):
            validate_sample_files(samples)

    def test_existing_pair(self, fastq_pair):
        r1, r2 = fastq_pair
        validate_sample_files(resolve_samples([f"{{{r1}}}{{{r2}}}"], None))

    def test_accessions_need_no_files(self):
        validate_sample_files(resolve_samples(None, ["SRR1"]))
