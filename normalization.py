"""
Size-factor normalization strategies.

Two interchangeable strategies produce one size factor per sample and
normalized = raw / size_factor:

- LibraryNormalizer: pydeseq2's median-of-ratios implementation
- MedianRatioNormalizer: the same method written out by hand, used to
  cross-check the library call in QC comparison plots

Count matrices are samples × genes.
"""

from dataclasses import dataclass
from typing import Dict, Optional
import logging
import numpy as np
import pandas as pd
from pydeseq2.preprocessing import deseq2_norm

from errors import ExclusionReport, UndefinedRatio

logger = logging.getLogger(__name__)


@dataclass
class NormalizationResult:
    """Size factors plus the normalized samples × genes matrix."""

    strategy: str
    size_factors: pd.Series
    normalized: pd.DataFrame

    def denormalize(self) -> pd.DataFrame:
        """Multiply back by the size factors to recover raw counts."""
        return self.normalized.mul(self.size_factors, axis=0)

    def log2(self) -> pd.DataFrame:
        return np.log2(self.normalized + 1)

    def to_long(self) -> pd.DataFrame:
        """(gene_id, sequence_id, normalized_value) records."""
        long = self.normalized.rename_axis(index="sequence_id", columns="gene_id").stack()
        return long.rename("normalized_value").reset_index()[
            ["gene_id", "sequence_id", "normalized_value"]
        ]


class SizeFactorNormalizer:
    """Base class; subclasses implement size_factors()."""

    name = "base"

    def size_factors(self, counts: pd.DataFrame) -> pd.Series:
        raise NotImplementedError

    def normalize(self, counts: pd.DataFrame) -> NormalizationResult:
        _check_samples(counts)
        factors = self.size_factors(counts)
        if not (np.isfinite(factors).all() and (factors > 0).all()):
            raise ValueError(f"{self.name}: size factors must be finite and positive, got {factors.to_dict()}")
        normalized = counts.div(factors, axis=0)
        return NormalizationResult(strategy=self.name, size_factors=factors, normalized=normalized)


def _check_samples(counts: pd.DataFrame) -> None:
    if counts.empty:
        raise ValueError("Cannot normalize an empty count matrix")
    empty = counts.index[counts.sum(axis=1) == 0].tolist()
    if empty:
        raise ValueError(f"Samples with zero total counts cannot be normalized: {empty}")


class LibraryNormalizer(SizeFactorNormalizer):
    """Median-of-ratios size factors from pydeseq2."""

    name = "library"

    def size_factors(self, counts: pd.DataFrame) -> pd.Series:
        _, factors = deseq2_norm(counts.astype(float))
        return pd.Series(np.asarray(factors, dtype=float), index=counts.index, name="size_factor")


class MedianRatioNormalizer(SizeFactorNormalizer):
    """
    Hand-written median-of-ratios.

    The pseudo-reference of a gene is the geometric mean of its counts over
    samples. Genes whose pseudo-reference is zero give undefined ratios;
    they are excluded from the per-sample median (and recorded on the
    exclusion report) rather than counted as zero. When no gene has a
    defined ratio, the positive-count geometric mean is used instead.
    """

    name = "median_ratio"

    def __init__(self, report: Optional[ExclusionReport] = None):
        self.report = report

    def size_factors(self, counts: pd.DataFrame) -> pd.Series:
        values = counts.to_numpy(dtype=float)
        with np.errstate(divide="ignore"):
            log_counts = np.log(values)
        log_ref = log_counts.mean(axis=0)  # -inf where any sample is zero
        defined = np.isfinite(log_ref)

        if self.report is not None:
            self.report.record(
                UndefinedRatio("median_ratio", counts.columns[~defined].tolist())
            )

        if defined.any():
            log_ratios = log_counts[:, defined] - log_ref[defined]
            factors = np.exp(np.median(log_ratios, axis=1))
        else:
            logger.warning(
                "Every gene has a zero count in some sample; "
                "using positive-count geometric means for size factors"
            )
            factors = self._poscounts_factors(values, log_counts)

        return pd.Series(factors, index=counts.index, name="size_factor")

    @staticmethod
    def _poscounts_factors(values: np.ndarray, log_counts: np.ndarray) -> np.ndarray:
        positive = values > 0
        n_samples = values.shape[0]
        log_pos = np.where(positive, log_counts, 0.0)
        log_ref = log_pos.sum(axis=0) / n_samples
        usable = positive.any(axis=0)
        factors = np.empty(n_samples)
        for i in range(n_samples):
            mask = positive[i] & usable
            factors[i] = np.exp(np.median(log_counts[i, mask] - log_ref[mask]))
        # rescale to geometric mean 1
        return factors / np.exp(np.mean(np.log(factors)))


NORMALIZERS = {
    LibraryNormalizer.name: LibraryNormalizer,
    MedianRatioNormalizer.name: MedianRatioNormalizer,
}


def normalize_all(
    counts: pd.DataFrame, report: Optional[ExclusionReport] = None
) -> Dict[str, NormalizationResult]:
    """Run both strategies for side-by-side QC."""
    results = {
        LibraryNormalizer.name: LibraryNormalizer().normalize(counts),
        MedianRatioNormalizer.name: MedianRatioNormalizer(report).normalize(counts),
    }
    for name, result in results.items():
        logger.info(
            f"{name} size factors: "
            + ", ".join(f"{s}={v:.3f}" for s, v in result.size_factors.items())
        )
    return results


def size_factor_table(results: Dict[str, NormalizationResult]) -> pd.DataFrame:
    """Samples × strategy size-factor table."""
    return pd.DataFrame({name: r.size_factors for name, r in results.items()})
