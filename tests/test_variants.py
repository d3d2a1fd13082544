"""Tests for INFO parsing, variant filtering and consensus building."""
from __future__ import annotations

from conftest import VCF_HEADER, vcf_line
from plastid_remap.fasta import read_fasta
from plastid_remap.variants import (
    build_consensus,
    call_variants,
    filter_homozygous,
    parse_confidence,
    parse_info,
    parse_record,
    read_vcf,
    type_histogram,
)


class TestParseInfo:

    def test_key_values_and_flags(self):
        info = parse_info("AB=0;AF=1;DP=34;TYPE=snp;INDEL")
        assert info == {"AB": "0", "AF": "1", "DP": "34", "TYPE": "snp", "INDEL": True}

    def test_missing_info(self):
        assert parse_info(".") == {}
        assert parse_info("") == {}

    def test_value_may_contain_equals(self):
        assert parse_info("CIGAR=1X;NOTE=a=b") == {"CIGAR": "1X", "NOTE": "a=b"}

    def test_confidence(self):
        assert parse_confidence("1") == 1.0
        assert parse_confidence("0.5,1") == 0.5
        assert parse_confidence(None) == 0.0
        assert parse_confidence(True) == 0.0
        assert parse_confidence("nan-ish") == 0.0


class TestTypeHistogram:

    def test_sorted_by_descending_count(self):
        records = [
            parse_record(vcf_line(1, "A", "G", "AF=1;TYPE=snp")),
            parse_record(vcf_line(2, "AT", "A", "AF=1;TYPE=del")),
            parse_record(vcf_line(3, "C", "T", "AF=0.5;TYPE=snp")),
            parse_record(vcf_line(4, "G", "GA", "AF=1;TYPE=ins")),
        ]
        histogram, untyped = type_histogram(records)
        assert histogram == (("snp", 2), ("del", 1), ("ins", 1))
        assert untyped == 0

    def test_untyped_records_excluded(self):
        records = [
            parse_record(vcf_line(1, "A", "G", "AF=1;TYPE=snp")),
            parse_record(vcf_line(2, "A", "C", "AF=1;DP=3")),
        ]
        histogram, untyped = type_histogram(records)
        assert histogram == (("snp", 1),)
        assert untyped == 1


class TestFilterHomozygous:

    def test_subset_with_full_support(self, tmp_path):
        path = tmp_path / "raw.vcf"
        lines = [
            vcf_line(10, "A", "G", "AF=1;TYPE=snp"),
            vcf_line(20, "C", "T", "AF=0.5;TYPE=snp"),
            vcf_line(30, "G", "C,T", "AF=1,0.5;TYPE=snp,snp"),
            vcf_line(40, "T", "A", "DP=2;TYPE=snp"),
            vcf_line(50, "TA", "T", "AF=1;TYPE=del"),
        ]
        path.write_text(VCF_HEADER + "\n".join(lines) + "\n")
        raw = read_vcf(path)
        filtered = filter_homozygous(raw)
        assert [r.pos for r in filtered.records] == [10, 50]
        assert all(r in raw.records for r in filtered.records)
        assert all(r.confidence >= 1 for r in filtered.records)
        assert filtered.header == raw.header


class TestCallVariants:

    def test_writes_filtered_and_compressed(self, tmp_path, fake_runner):
        fake_runner.vcf_records = [
            vcf_line(10, "A", "G", "AF=1;TYPE=snp"),
            vcf_line(20, "C", "T", "AF=0.5;TYPE=snp"),
            vcf_line(30, "C", "T", "AF=1"),
        ]
        result = call_variants(tmp_path / "ref.fa", tmp_path / "cohort.bam", tmp_path / "05", fake_runner)
        assert result.types == (("snp", 2),)
        assert result.untyped == 1
        assert result.filtered_types == (("snp", 1),)
        assert result.filtered_count == 2
        assert result.compressed_vcf.read_text() == result.filtered_vcf.read_text()
        assert (tmp_path / "05" / "variants.filtered.vcf.gz.tbi").exists()
        assert fake_runner.commands("freebayes")[0][-1] == str(tmp_path / "cohort.bam")

    def test_no_variants(self, tmp_path, fake_runner):
        result = call_variants(tmp_path / "ref.fa", tmp_path / "cohort.bam", tmp_path / "05", fake_runner)
        assert result.types == ()
        assert result.filtered_count == 0
        assert result.filtered_vcf.read_text() == VCF_HEADER


class TestBuildConsensus:

    def test_gaps_masked_and_renamed(self, tmp_path, fake_runner, reference_fasta):
        gaps = tmp_path / "gaps.bed"
        gaps.write_text("chr\t0\t5\nchr\t990\t1000\n")
        vcf = tmp_path / "variants.filtered.vcf.gz"
        vcf.write_text(VCF_HEADER)
        consensus, comp = build_consensus(
            reference_fasta, vcf, gaps, 2, tmp_path / "06", "Nibe", fake_runner
        )
        [record] = read_fasta(consensus)
        sequence = str(record.seq)
        assert record.id == "Nibe"
        assert consensus.name == "Nibe_consensus.fasta"
        assert len(sequence) == 1000
        assert sequence[:5] == "NNNNN"
        assert sequence[990:] == "N" * 10
        assert comp.counts["N"] == 15
        assert sum(comp.counts.values()) == comp.length == 1000

    def test_mask_omitted_without_gaps(self, tmp_path, fake_runner, reference_fasta):
        gaps = tmp_path / "gaps.bed"
        gaps.write_text("")
        vcf = tmp_path / "variants.filtered.vcf.gz"
        vcf.write_text(VCF_HEADER)
        consensus, comp = build_consensus(
            reference_fasta, vcf, gaps, 0, tmp_path / "06", "Sps", fake_runner
        )
        assert "-m" not in fake_runner.commands("bcftools", "consensus")[0]
        assert "N" not in comp.counts
        assert read_fasta(consensus)[0].id == "Sps"
