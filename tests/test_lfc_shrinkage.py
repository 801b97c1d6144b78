"""Tests for log2 fold-change shrinkage."""

from unittest.mock import MagicMock
import numpy as np
import pandas as pd
import pytest

from lfc_shrinkage import (
    SHRINKAGE_COLUMNS,
    estimate_prior_variance,
    find_coefficient,
    normal_shrinkage,
)


def test_normal_shrinkage_pulls_toward_zero(sample_de_results_df):
    shrunk = normal_shrinkage(sample_de_results_df)
    assert list(shrunk.columns) == SHRINKAGE_COLUMNS
    mle = sample_de_results_df["log2FoldChange"].to_numpy()
    post = shrunk["log2FoldChange"].to_numpy()
    assert (np.abs(post) <= np.abs(mle) + 1e-12).all()
    assert (np.sign(post[mle != 0]) == np.sign(mle[mle != 0])).all()


def test_noisier_estimates_shrink_more():
    df = pd.DataFrame(
        {"gene": ["precise", "noisy"], "log2FoldChange": [2.0, 2.0], "lfcSE": [0.1, 2.0]}
    )
    shrunk = normal_shrinkage(df, prior_var=1.0).set_index("gene")["log2FoldChange"]
    assert shrunk["noisy"] < shrunk["precise"] < 2.0


def test_svalues_bounded(sample_de_results_df):
    shrunk = normal_shrinkage(sample_de_results_df)
    assert shrunk["svalue"].between(0, 0.5).all()
    assert shrunk["lfsr"].between(0, 0.5).all()


def test_prior_variance_floor():
    assert estimate_prior_variance(np.zeros(10)) == pytest.approx(1e-6)
    with pytest.raises(ValueError):
        estimate_prior_variance(np.array([np.nan, np.inf]))


@pytest.mark.parametrize(
    "columns, expected",
    [
        (["Intercept", "purpose[T.treatment]"], "purpose[T.treatment]"),
        (["Intercept", "purpose_treatment_vs_control"], "purpose_treatment_vs_control"),
    ],
)
def test_find_coefficient(columns, expected):
    dds = MagicMock()
    dds.varm = {"LFC": pd.DataFrame(columns=columns)}
    assert find_coefficient(dds, "purpose", "treatment") == expected


def test_find_coefficient_missing():
    dds = MagicMock()
    dds.varm = {"LFC": pd.DataFrame(columns=["Intercept", "batch[T.b]"])}
    with pytest.raises(ValueError):
        find_coefficient(dds, "purpose", "treatment")
