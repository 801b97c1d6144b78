"""Tests for the two size-factor normalization strategies."""

import numpy as np
import pandas as pd
import pytest

from errors import ExclusionReport
from normalization import (
    LibraryNormalizer,
    MedianRatioNormalizer,
    normalize_all,
    size_factor_table,
)


@pytest.mark.parametrize("normalizer_cls", [LibraryNormalizer, MedianRatioNormalizer])
def test_round_trip_reconstructs_counts(normalizer_cls, sample_counts_matrix):
    result = normalizer_cls().normalize(sample_counts_matrix)
    np.testing.assert_allclose(
        result.denormalize().to_numpy(), sample_counts_matrix.to_numpy(dtype=float), rtol=1e-10
    )


@pytest.mark.parametrize("normalizer_cls", [LibraryNormalizer, MedianRatioNormalizer])
def test_size_factors_positive(normalizer_cls, sample_counts_matrix):
    result = normalizer_cls().normalize(sample_counts_matrix)
    assert (result.size_factors > 0).all()
    assert list(result.size_factors.index) == list(sample_counts_matrix.index)


def test_median_ratio_matches_known_depths():
    base = np.array([10, 20, 40, 80, 160, 320], dtype=float)
    counts = pd.DataFrame(
        [base, base * 2, base * 4], index=["S1", "S2", "S3"], columns=[f"g{i}" for i in range(6)]
    )
    factors = MedianRatioNormalizer().size_factors(counts)
    np.testing.assert_allclose(factors.to_numpy(), [0.5, 1.0, 2.0])


def test_median_ratio_ignores_undefined_ratios():
    counts = pd.DataFrame(
        {"g1": [10, 20, 40], "g2": [5, 10, 20], "g3": [0, 1000, 7]},
        index=["S1", "S2", "S3"],
    )
    report = ExclusionReport()
    factors = MedianRatioNormalizer(report).size_factors(counts)
    # g3 has a zero, so only g1 and g2 define the ratios
    np.testing.assert_allclose(factors.to_numpy(), [0.5, 1.0, 2.0])
    assert report.count(kind="undefined_ratio") == 1
    assert report.entries[0].items == ["g3"]


def test_median_ratio_positive_when_every_gene_has_a_zero():
    counts = pd.DataFrame(
        {"g1": [0, 5, 9], "g2": [4, 0, 8], "g3": [6, 7, 0]}, index=["S1", "S2", "S3"]
    )
    factors = MedianRatioNormalizer().size_factors(counts)
    assert np.isfinite(factors).all()
    assert (factors > 0).all()


def test_all_zero_sample_rejected(sample_counts_matrix):
    counts = sample_counts_matrix.copy()
    counts.iloc[0] = 0
    with pytest.raises(ValueError, match="zero total"):
        MedianRatioNormalizer().normalize(counts)


def test_strategies_agree_in_ranking(sample_counts_matrix):
    results = normalize_all(sample_counts_matrix)
    library = results["library"].size_factors
    median_ratio = results["median_ratio"].size_factors
    assert library.rank().tolist() == median_ratio.rank().tolist()


def test_to_long_layout(sample_counts_matrix):
    result = MedianRatioNormalizer().normalize(sample_counts_matrix)
    long = result.to_long()
    assert list(long.columns) == ["gene_id", "sequence_id", "normalized_value"]
    assert len(long) == sample_counts_matrix.size
    assert (long["normalized_value"] > 0).all()


def test_size_factor_table(sample_counts_matrix):
    table = size_factor_table(normalize_all(sample_counts_matrix))
    assert list(table.columns) == ["library", "median_ratio"]
    assert table.shape == (6, 2)
