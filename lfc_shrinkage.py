"""
Log2 fold-change shrinkage.

Two methods are available and are reported side by side, never merged:

- "normal": zero-centred normal prior whose variance is matched to the upper
  tail of the MLE fold changes; each gene gets the conjugate normal
  posterior given its Wald standard error.
- "apeglm": heavy-tailed adaptive (Cauchy) prior, delegated to pydeseq2's
  DeseqStats.lfc_shrink.

Each returns gene, log2FoldChange, lfcSE (posterior), lfsr and svalue.
"""

from typing import Optional, Tuple
import logging
import numpy as np
import pandas as pd
from scipy import stats
from pydeseq2.dds import DeseqDataSet
from pydeseq2.ds import DeseqStats

from multiple_testing import local_false_sign_rate, svalues

logger = logging.getLogger(__name__)

SHRINKAGE_COLUMNS = ["gene", "log2FoldChange", "lfcSE", "lfsr", "svalue"]
SHRINKAGE_METHODS = ("normal", "apeglm")


def estimate_prior_variance(lfc: np.ndarray, upper_quantile: float = 0.05) -> float:
    """
    Variance of a zero-centred normal matched to the |LFC| upper quantile.

    The (1 - upper_quantile) quantile of |LFC| is equated with the matching
    two-sided normal quantile.
    """
    values = np.asarray(lfc, dtype=float)
    finite = values[np.isfinite(values)]
    if finite.size == 0:
        raise ValueError("No finite log2 fold changes to estimate a prior from")
    tail = np.quantile(np.abs(finite), 1 - upper_quantile)
    prior_var = (tail / stats.norm.ppf(1 - upper_quantile / 2)) ** 2
    return float(max(prior_var, 1e-6))


def _with_sign_rates(gene, mean, sd) -> pd.DataFrame:
    lfsr = local_false_sign_rate(mean, sd)
    return pd.DataFrame(
        {
            "gene": np.asarray(gene),
            "log2FoldChange": np.asarray(mean, dtype=float),
            "lfcSE": np.asarray(sd, dtype=float),
            "lfsr": lfsr,
            "svalue": svalues(lfsr),
        }
    )


def normal_shrinkage(results_df: pd.DataFrame, prior_var: Optional[float] = None) -> pd.DataFrame:
    """
    Normal-prior shrinkage of contrast results.

    Args:
        results_df: Contrast results with gene, log2FoldChange, lfcSE
        prior_var: Prior variance; estimated from the data when None

    Returns:
        DataFrame with SHRINKAGE_COLUMNS
    """
    lfc = results_df["log2FoldChange"].to_numpy(dtype=float)
    se = results_df["lfcSE"].to_numpy(dtype=float)
    if prior_var is None:
        prior_var = estimate_prior_variance(lfc)

    se2 = se ** 2
    weight = prior_var / (prior_var + se2)
    post_mean = lfc * weight
    post_sd = np.sqrt(prior_var * se2 / (prior_var + se2))
    logger.info(f"Normal shrinkage prior variance: {prior_var:.4f}")
    return _with_sign_rates(results_df["gene"], post_mean, post_sd)


def find_coefficient(dds: DeseqDataSet, design_factor: str, test_level: str) -> str:
    """
    Name of the fitted LFC coefficient for test_level.

    pydeseq2 names it "<factor>[T.<level>]" (or "<factor>_<level>_vs_<ref>"
    in older releases); both contain the factor and level.
    """
    columns = [c for c in dds.varm["LFC"].columns if c != "Intercept"]
    matches = [c for c in columns if design_factor in c and test_level in c]
    if len(matches) != 1:
        raise ValueError(
            f"Cannot identify coefficient for {design_factor}={test_level} among {columns}"
        )
    return matches[0]


def apeglm_shrinkage(
    dds: DeseqDataSet,
    design_factor: str,
    comparison: Tuple[str, str],
) -> pd.DataFrame:
    """
    Heavy-tailed adaptive shrinkage through pydeseq2.

    A fresh DeseqStats is built so the unshrunk contrast results held
    elsewhere are left untouched.
    """
    test_level, reference_level = comparison
    stat_res = DeseqStats(
        dds, contrast=[design_factor, test_level, reference_level], quiet=True
    )
    stat_res.summary()
    coeff = find_coefficient(dds, design_factor, test_level)
    stat_res.lfc_shrink(coeff=coeff)

    shrunk = stat_res.results_df
    return _with_sign_rates(
        shrunk.index.astype(str), shrunk["log2FoldChange"], shrunk["lfcSE"]
    )
