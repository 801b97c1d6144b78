"""
Error taxonomy and exclusion bookkeeping for the multi-omics pipeline.

Fatal errors (schema problems, an unfittable design) are raised. Recoverable
conditions are recorded on an ExclusionReport so the pipeline can continue
with the affected rows or gene sets excluded and the exclusion counted.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence
import logging
import pandas as pd

logger = logging.getLogger(__name__)


class AnalysisError(Exception):
    """Base class for pipeline errors."""

    kind = "error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message: str = message
        self.details: Dict[str, Any] = details or {}
        super().__init__(self.message)


class SchemaValidationError(AnalysisError):
    """Raised when an input table is missing or lacks a required column."""

    kind = "schema"


class ExcludedItemsError(AnalysisError):
    """
    Error carrying the identifiers it excluded.

    Args:
        stage: Pipeline step that produced the exclusion (e.g. "go_annotation")
        items: Identifiers that were excluded
        message: Optional human-readable message
    """

    def __init__(self, stage: str, items: Sequence[str], message: Optional[str] = None):
        self.stage = stage
        self.items: List[str] = [str(i) for i in items]
        super().__init__(
            message or f"{self.kind}: {len(self.items)} item(s) excluded at {stage}",
            {"stage": stage, "n_items": len(self.items)},
        )


class DesignMismatch(ExcludedItemsError):
    """Count matrix and sample design disagree on samples."""

    kind = "design_mismatch"


class UnmappedIdentifier(ExcludedItemsError):
    """A gene identifier had no entry in a cross-reference table."""

    kind = "unmapped_identifier"


class EmptyGeneSet(ExcludedItemsError):
    """A gene set resolved to zero genes after identifier translation."""

    kind = "empty_gene_set"


class UndefinedRatio(ExcludedItemsError):
    """A normalization ratio was non-finite (e.g. zero pseudo-reference)."""

    kind = "undefined_ratio"


@dataclass
class ExclusionReport:
    """Accumulates recoverable exclusions over a single pipeline run."""

    entries: List[ExcludedItemsError] = field(default_factory=list)

    def record(self, error: ExcludedItemsError) -> None:
        if not error.items:
            return
        self.entries.append(error)
        logger.warning(
            f"Excluded {len(error.items)} item(s) [{error.kind}] at {error.stage}"
        )

    def count(self, kind: Optional[str] = None, stage: Optional[str] = None) -> int:
        return sum(
            len(entry.items)
            for entry in self.entries
            if (kind is None or entry.kind == kind)
            and (stage is None or entry.stage == stage)
        )

    def to_frame(self) -> pd.DataFrame:
        """One row per recorded exclusion: kind, stage, count, examples."""
        rows = [
            {
                "kind": entry.kind,
                "stage": entry.stage,
                "count": len(entry.items),
                "examples": ";".join(entry.items[:5]),
            }
            for entry in self.entries
        ]
        return pd.DataFrame(rows, columns=["kind", "stage", "count", "examples"])
