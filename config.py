"""
Analysis configuration.

Settings are read from a YAML file (see config/analysis.yaml). Relative input
paths are resolved against the directory holding the config file.
"""

from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Optional
import yaml

from errors import SchemaValidationError

PATH_FIELDS = (
    "counts_path",
    "design_path",
    "gene_id_map_path",
    "proteomics_path",
    "go_terms_path",
    "kegg_gene_sets_path",
    "output_dir",
)


@dataclass
class AnalysisConfig:
    """All tunable settings for one pipeline run."""

    # Inputs (proteomics, GO and cached KEGG sets are optional)
    counts_path: Optional[Path] = None
    design_path: Optional[Path] = None
    gene_id_map_path: Optional[Path] = None
    proteomics_path: Optional[Path] = None
    go_terms_path: Optional[Path] = None
    kegg_gene_sets_path: Optional[Path] = None
    output_dir: Path = Path("results")

    # Count filtering
    accession_prefix: Optional[str] = "gene-"
    noncoding_pattern: str = r"__|rRNA|tRNA"
    low_count_threshold: int = 24

    # Differential expression
    design_factor: str = "purpose"
    treatment_level: str = "treatment"
    reference_level: str = "control"
    p_threshold: float = 0.1
    fold_change: float = 2.0
    shrinkage_methods: List[str] = field(default_factory=lambda: ["normal", "apeglm"])

    # QC projection
    qc_normalization: str = "median_ratio"
    qc_component: str = "PC1"
    top_n_loadings: int = 10

    # Enrichment
    kegg_organism: Optional[str] = "syn"
    go_organism: Optional[str] = None
    go_id_namespace: str = "kegg_id"  # namespace of gene_id in the GO table
    min_set_size: int = 10
    max_set_size: int = 500
    permutation_num: int = 1000
    seed: int = 42

    # Proteomics
    proteomics_id_pattern: str = r"\[locus_tag=([^\]]+)\]"
    proteomics_id_namespace: str = "ncbi_id"
    proteomics_ratio_is_log2: bool = False

    def with_overrides(self, **overrides: Any) -> "AnalysisConfig":
        return replace(self, **_coerce_paths(overrides))


def _coerce_paths(values: Dict[str, Any], base_dir: Optional[Path] = None) -> Dict[str, Any]:
    coerced = dict(values)
    for key in PATH_FIELDS:
        value = coerced.get(key)
        if value is None:
            continue
        path = Path(value)
        if base_dir is not None and not path.is_absolute():
            path = base_dir / path
        coerced[key] = path
    return coerced


def load_config(
    config_path: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None
) -> AnalysisConfig:
    """
    Build an AnalysisConfig from a YAML file plus keyword overrides.

    Args:
        config_path: YAML file; None uses the dataclass defaults
        overrides: Values applied after the file (e.g. from the CLI)

    Returns:
        AnalysisConfig

    Raises:
        SchemaValidationError: file missing, not a mapping, or unknown keys
    """
    values: Dict[str, Any] = {}
    base_dir = None
    if config_path is not None:
        config_file = Path(config_path)
        if not config_file.exists():
            raise SchemaValidationError(f"Config file not found: {config_path}")
        with open(config_file, "r") as f:
            loaded = yaml.safe_load(f) or {}
        if not isinstance(loaded, dict):
            raise SchemaValidationError(
                f"Config file must contain a mapping, got {type(loaded).__name__}"
            )
        values.update(loaded)
        base_dir = config_file.parent

    known = {f.name for f in fields(AnalysisConfig)}
    unknown = sorted(set(values) - known)
    if unknown:
        raise SchemaValidationError(
            f"Unknown config keys: {', '.join(unknown)}", {"unknown": unknown}
        )

    config = AnalysisConfig(**_coerce_paths(values, base_dir))
    if overrides:
        config = config.with_overrides(
            **{k: v for k, v in overrides.items() if v is not None}
        )
    return config
