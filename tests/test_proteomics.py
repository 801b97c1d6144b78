"""Tests for proteomics parsing and integration with DE results."""

import numpy as np
import pandas as pd
import pytest

from errors import ExclusionReport
from identifiers import IdentifierMap
from proteomics import ProteomicsIntegrator, classify_quadrant, parse_proteomics


class TestParse:
    def test_records_extracted_by_name(self, sample_proteomics_df):
        report = ExclusionReport()
        records = parse_proteomics(sample_proteomics_df, report=report)
        assert records["gene_id"].tolist()[:4] == [
            "SGL_RS00000", "SGL_RS00005", "SGL_RS00012", "SGL_RS99999",
        ]
        assert pd.isna(records.loc[4, "gene_id"])
        assert records.loc[0, "log2_ratio"] == pytest.approx(2.0)
        assert report.count(stage="proteomics_description") == 1

    def test_log2_ratio_passthrough(self, sample_proteomics_df):
        df = sample_proteomics_df.assign(avg_ratio=[2.0, -2.0, 0.1, 1.0, 0.0])
        records = parse_proteomics(df, ratio_is_log2=True)
        assert records["log2_ratio"].tolist() == [2.0, -2.0, 0.1, 1.0, 0.0]

    def test_nonpositive_linear_ratio_is_nan(self, sample_proteomics_df):
        df = sample_proteomics_df.assign(avg_ratio=[0.0, 1.0, 1.0, 1.0, 1.0])
        assert np.isnan(parse_proteomics(df).loc[0, "log2_ratio"])

    def test_translation_from_other_namespace(self, sample_gene_id_map):
        df = pd.DataFrame(
            {
                "description": ["PsbA ORF=slr0001;", "ORF=sll9999;"],
                "protein": ["PsbA", "X"],
                "avg_ratio": [2.0, 2.0],
                "ratio_count": [1, 1],
            }
        )
        report = ExclusionReport()
        records = parse_proteomics(
            df,
            pattern=r"ORF=([^;]+);",
            id_map=IdentifierMap(sample_gene_id_map),
            namespace="kegg_id",
            report=report,
        )
        assert records["gene_id"].tolist()[0] == "SGL_RS00001"
        assert records["gene_id"].isna().tolist() == [False, True]
        assert report.count(kind="unmapped_identifier") == 1

    def test_translation_needs_map(self, sample_proteomics_df):
        with pytest.raises(ValueError):
            parse_proteomics(sample_proteomics_df, namespace="kegg_id")


class TestIntegrate:
    def test_unmatched_row_only_in_standalone(self, sample_proteomics_df, sample_de_results_df):
        records = parse_proteomics(sample_proteomics_df)
        result = ProteomicsIntegrator().integrate(records, sample_de_results_df)

        assert "SGL_RS99999" in result.standalone["gene_id"].tolist()
        assert "SGL_RS99999" not in result.integrated["gene_id"].tolist()
        assert len(result.standalone) == 5
        assert len(result.integrated) == 3
        assert result.n_unmatched == 2

    def test_regulation_and_quadrant_attached(self, sample_proteomics_df, sample_de_results_df):
        records = parse_proteomics(sample_proteomics_df)
        integrated = ProteomicsIntegrator().integrate(records, sample_de_results_df).integrated
        by_gene = integrated.set_index("gene_id")
        assert by_gene.loc["SGL_RS00000", "regulation"] == "up"
        assert by_gene.loc["SGL_RS00005", "regulation"] == "down"
        assert by_gene.loc["SGL_RS00000", "quadrant"] == "concordant"
        assert by_gene.loc["SGL_RS00012", "quadrant"] == "discordant"

    def test_correlation_needs_three_points(self, sample_proteomics_df, sample_de_results_df):
        records = parse_proteomics(sample_proteomics_df)
        correlation = ProteomicsIntegrator().integrate(records, sample_de_results_df).correlation
        assert correlation["n"] == 3
        assert -1 <= correlation["pearson_r"] <= 1

    def test_correlation_undefined_for_small_overlap(self, sample_de_results_df):
        records = pd.DataFrame(
            {
                "gene_id": ["SGL_RS00000"],
                "protein_name": ["PsbA"],
                "avg_ratio": [4.0],
                "ratio_count": [1],
                "log2_ratio": [2.0],
            }
        )
        correlation = ProteomicsIntegrator().integrate(records, sample_de_results_df).correlation
        assert np.isnan(correlation["pearson_r"])


@pytest.mark.parametrize(
    "protein, transcript, expected",
    [
        (2.0, 3.0, "concordant"),
        (-2.0, -1.5, "concordant"),
        (2.0, -3.0, "discordant"),
        (0.5, 3.0, "discordant"),
        (2.0, 1.0, "discordant"),
        (np.nan, 2.0, "discordant"),
    ],
)
def test_classify_quadrant(protein, transcript, expected):
    result = classify_quadrant(pd.Series([protein]), pd.Series([transcript]))
    assert result.tolist() == [expected]
