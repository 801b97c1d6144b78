"""
Quality-control projection of samples with PCA.

Normalized counts (samples × genes) are log2(x+1) transformed and projected
with a centered, unscaled PCA so that samples should separate by purpose.
Gene loadings are kept for the contribution diagnostic.
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple
import logging
import numpy as np
import pandas as pd
from sklearn.decomposition import PCA

logger = logging.getLogger(__name__)


@dataclass
class ProjectionResult:
    """PCA scores, explained variance and per-gene loadings."""

    scores: pd.DataFrame  # samples × PCs
    explained_variance_ratio: pd.Series  # indexed by PC name
    loadings: pd.DataFrame  # genes × PCs (unit-length columns)

    @property
    def components(self) -> List[str]:
        return self.scores.columns.tolist()

    @property
    def contributions(self) -> pd.DataFrame:
        """Percent contribution of each gene to each component (loading² × 100)."""
        return self.loadings.pow(2) * 100

    def top_contributors(self, component: str = "PC1", n: int = 10) -> pd.DataFrame:
        """
        Top-n genes with the largest positive and bottom-n with the most
        negative loading on a component.

        Returns:
            DataFrame with columns gene, loading, contribution, direction
            ("top" rows first, ordered by loading descending, then "bottom"
            rows ordered by loading ascending)
        """
        if component not in self.loadings.columns:
            raise KeyError(f"Unknown component {component}; have {self.components}")
        column = self.loadings[component]
        top = column.nlargest(n)
        bottom = column.nsmallest(n)
        frames = []
        for direction, series in (("top", top), ("bottom", bottom)):
            frames.append(
                pd.DataFrame(
                    {
                        "gene": series.index,
                        "loading": series.values,
                        "contribution": (series.values ** 2) * 100,
                        "direction": direction,
                    }
                )
            )
        return pd.concat(frames, ignore_index=True)

    def detect_outliers(self, threshold_sd: float = 3.0) -> Tuple[List[str], pd.Series]:
        """
        Flag samples far from the PC1/PC2 centroid.

        Samples beyond median + threshold_sd × sd of centroid distances are
        returned along with all distances.
        """
        pcs = self.scores[self.components[:2]]
        distances = np.sqrt(((pcs - pcs.mean()) ** 2).sum(axis=1))
        threshold = distances.median() + threshold_sd * distances.std()
        return distances[distances > threshold].index.tolist(), distances


class QCProjector:
    """Centered PCA over log2(x+1) normalized counts."""

    def __init__(self, n_components: Optional[int] = None):
        self.n_components = n_components

    def project(self, normalized: pd.DataFrame) -> ProjectionResult:
        """
        Args:
            normalized: samples × genes normalized counts (not yet logged)

        Returns:
            ProjectionResult
        """
        if normalized.shape[0] < 2:
            raise ValueError(
                f"PCA needs at least 2 samples, got {normalized.shape[0]}"
            )
        log_counts = np.log2(normalized.astype(float) + 1)

        max_components = min(log_counts.shape)
        n_components = min(self.n_components or max_components, max_components)
        pca = PCA(n_components=n_components, svd_solver="full")
        scores = pca.fit_transform(log_counts.to_numpy())

        pc_names = [f"PC{i + 1}" for i in range(n_components)]
        result = ProjectionResult(
            scores=pd.DataFrame(scores, index=log_counts.index, columns=pc_names),
            explained_variance_ratio=pd.Series(
                pca.explained_variance_ratio_, index=pc_names, name="explained_variance_ratio"
            ),
            loadings=pd.DataFrame(pca.components_.T, index=log_counts.columns, columns=pc_names),
        )
        logger.info(
            "PCA explained variance: "
            + ", ".join(f"{pc}={v:.1%}" for pc, v in result.explained_variance_ratio.head(3).items())
        )
        return result
