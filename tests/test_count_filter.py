"""Tests for non-coding separation and the low-count filter."""

import pytest
import pandas as pd

from count_filter import CountFilter, to_count_matrix
from errors import DesignMismatch, SchemaValidationError


def _long(records):
    return pd.DataFrame(records, columns=["sequence_id", "gene", "counts"])


class TestCountFilter:
    def test_noncoding_rows_set_aside(self, sample_long_counts):
        result = CountFilter().apply(sample_long_counts)
        assert set(result.noncoding["gene"]) == {"__no_feature", "rRNA-16S"}
        assert "__no_feature" not in result.counts.columns

    def test_low_count_genes_dropped(self, sample_long_counts):
        result = CountFilter(threshold=24).apply(sample_long_counts)
        assert "gene-SGL_RS90000" in result.dropped_genes
        # at the threshold in every sample is still "at or below"
        assert "gene-SGL_RS90001" in result.dropped_genes

    def test_retained_genes_exceed_threshold_somewhere(self, sample_long_counts):
        threshold = 24
        result = CountFilter(threshold=threshold).apply(sample_long_counts)
        assert ((result.counts > threshold).any(axis=0)).all()

    def test_single_sample_above_threshold_keeps_gene(self):
        records = [("S1", "g1", 0), ("S2", "g1", 0), ("S3", "g1", 25)]
        records += [("S1", "g2", 24), ("S2", "g2", 24), ("S3", "g2", 24)]
        result = CountFilter(threshold=24).apply(_long(records))
        assert result.counts.columns.tolist() == ["g1"]
        assert result.dropped_genes == ["g2"]

    def test_output_is_rectangular(self, sample_long_counts):
        result = CountFilter().apply(sample_long_counts)
        assert not result.counts.isna().any().any()
        assert result.counts.shape[0] == 6

    def test_gene_totals_cover_all_coding_genes(self, sample_long_counts):
        result = CountFilter().apply(sample_long_counts)
        assert result.gene_totals["gene-SGL_RS90000"] == 18
        assert len(result.gene_totals) == 32

    def test_coverage_report(self, sample_long_counts):
        result = CountFilter().apply(sample_long_counts)
        report = result.coverage_report()
        assert (report["noncoding_reads"] == 2000).all()
        assert report["noncoding_fraction"].between(0, 1).all()

    def test_custom_noncoding_pattern(self, sample_long_counts):
        result = CountFilter(noncoding_pattern=r"^__").apply(sample_long_counts)
        assert set(result.noncoding["gene"]) == {"__no_feature"}
        assert "rRNA-16S" in result.counts.columns


class TestToCountMatrix:
    def test_missing_cell_is_design_mismatch(self):
        records = [("S1", "g1", 1), ("S2", "g1", 2), ("S1", "g2", 3)]
        with pytest.raises(DesignMismatch) as exc_info:
            to_count_matrix(_long(records))
        assert exc_info.value.items == ["g2"]

    def test_duplicate_records_rejected(self):
        records = [("S1", "g1", 1), ("S1", "g1", 2)]
        with pytest.raises(SchemaValidationError, match="Duplicate"):
            to_count_matrix(_long(records))
