"""
False-discovery and false-sign-rate estimates.

q-values follow Storey's method: Benjamini-Hochberg adjusted p-values scaled
by an estimate of the proportion of true nulls (pi0). s-values are the
running mean of sorted local false sign rates.
"""

from typing import Optional, Sequence
import numpy as np
import pandas as pd
from scipy import stats
from statsmodels.stats.multitest import multipletests

DEFAULT_LAMBDAS = np.arange(0.05, 0.96, 0.05)


def estimate_pi0(pvalues: Sequence[float], lambdas: Optional[np.ndarray] = None) -> float:
    """
    Estimate the proportion of null hypotheses.

    pi0(lambda) = #{p > lambda} / (m (1 - lambda)) is computed over a grid of
    lambda values and smoothed with a cubic fit; the smoothed value at the
    largest lambda is used. Falls back to 1 when there are too few usable
    lambda values.
    """
    p = np.asarray(pvalues, dtype=float)
    if p.size == 0:
        raise ValueError("Cannot estimate pi0 from an empty p-value vector")
    grid = DEFAULT_LAMBDAS if lambdas is None else np.asarray(lambdas, dtype=float)
    grid = grid[grid < p.max()]
    if grid.size < 4:
        return 1.0

    raw = np.array([np.mean(p > lam) / (1.0 - lam) for lam in grid])
    smooth = np.polyval(np.polyfit(grid, raw, 3), grid)
    estimate = smooth[-1]
    if not np.isfinite(estimate) or estimate <= 0:
        estimate = raw.min()
    if estimate <= 0:
        return 1.0
    return float(min(estimate, 1.0))


def qvalues(pvalues: Sequence[float], pi0: Optional[float] = None) -> np.ndarray:
    """
    Storey q-values for a vector of p-values.

    NaN p-values are passed through as NaN; every other entry takes part
    in a single global estimate. Call again whenever the p-value vector
    changes (q-values depend on the whole vector).

    Raises:
        ValueError: any finite p-value outside [0, 1] or an infinite value
    """
    p = np.asarray(pvalues, dtype=float)
    q = np.full(p.shape, np.nan)
    present = ~np.isnan(p)
    if not present.any():
        return q
    observed = p[present]
    if np.isinf(observed).any() or (observed < 0).any() or (observed > 1).any():
        raise ValueError("p-values must be finite and within [0, 1]")

    if pi0 is None:
        pi0 = estimate_pi0(observed)
    _, bh, _, _ = multipletests(observed, method="fdr_bh")
    q[present] = np.minimum(pi0 * bh, 1.0)
    return q


def local_false_sign_rate(posterior_mean: Sequence[float], posterior_sd: Sequence[float]) -> np.ndarray:
    """Probability the sign of an effect is wrong under a normal posterior."""
    mean = np.asarray(posterior_mean, dtype=float)
    sd = np.asarray(posterior_sd, dtype=float)
    with np.errstate(divide="ignore", invalid="ignore"):
        z = np.abs(mean) / sd
    return stats.norm.sf(z)


def svalues(lfsr: Sequence[float]) -> np.ndarray:
    """
    s-values from local false sign rates.

    The s-value of a gene is the mean lfsr of all genes at least as
    confidently signed, i.e. the expected false sign rate if that gene and
    everything ranked above it were declared. NaNs are passed through.
    """
    values = np.asarray(lfsr, dtype=float)
    out = np.full(values.shape, np.nan)
    present = np.flatnonzero(~np.isnan(values))
    if present.size == 0:
        return out
    order = present[np.argsort(values[present], kind="mergesort")]
    running = np.cumsum(values[order]) / np.arange(1, order.size + 1)
    out[order] = running
    return out


def add_qvalues(results_df: pd.DataFrame, pvalue_column: str = "pvalue") -> pd.DataFrame:
    """Copy of results_df with a freshly computed qvalue column."""
    df = results_df.copy()
    df["qvalue"] = qvalues(df[pvalue_column].to_numpy())
    return df
