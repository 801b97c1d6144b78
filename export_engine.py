"""
Export module for multi-omics analysis results.

Writes the per-stage tables as TSV files, a multi-sheet Excel workbook with
an analysis Settings sheet, and Plotly figures as standalone HTML.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
from datetime import datetime
import importlib
import logging
import re
import sys
import pandas as pd
import plotly.graph_objects as go

from de_analysis import DEResult
from pathway_enrichment import EnrichmentRun
from proteomics import IntegrationResult

logger = logging.getLogger(__name__)


@dataclass
class ExportData:
    """Complete export data bundle, constructed by the pipeline before export."""

    de_result: DEResult  # after dropping undefined p-values
    p_threshold: float
    fold_change: float
    size_factors: pd.DataFrame  # samples × strategy
    noncoding_coverage: pd.DataFrame  # per-sample coding / non-coding reads
    enrichment_runs: List[EnrichmentRun] = field(default_factory=list)
    integration: Optional[IntegrationResult] = None
    exclusions: pd.DataFrame = field(default_factory=pd.DataFrame)
    loadings: Optional[pd.DataFrame] = None  # top/bottom contributors on the QC component
    settings: Dict[str, Any] = field(default_factory=dict)
    sample_conditions: Dict[str, str] = field(default_factory=dict)  # sequence_id → purpose


class ExportEngine:
    """TSV, Excel and figure export for analysis results."""

    def sanitize_sheet_name(self, name: str, max_length: int = 31) -> str:
        """
        Sanitize sheet name for Excel compatibility.

        Excel sheet name rules:
        - Max 31 characters
        - Cannot contain: [ ] : * ? / \\
        - Cannot start or end with '
        """
        name = re.sub(r"[\[\]:*?/\\]", "_", name)
        name = name.strip("'")
        return name[:max_length]

    def _tables(self, export_data: ExportData) -> Dict[str, pd.DataFrame]:
        """File stem → table, in output order."""
        de = export_data.de_result
        p, fc = export_data.p_threshold, export_data.fold_change
        regulation = de.regulation(p, fc)

        tables = {
            "de_results": de.with_normalized_counts().assign(regulation=regulation.to_numpy()),
            "upregulated": de.upregulated(p, fc),
            "downregulated": de.downregulated(p, fc),
        }
        for method, shrunk in de.shrunk.items():
            tables[f"shrunk_{method}"] = shrunk
        tables["size_factors"] = export_data.size_factors.rename_axis("sequence_id").reset_index()
        tables["noncoding_coverage"] = export_data.noncoding_coverage.reset_index()
        if export_data.loadings is not None:
            tables["qc_loadings"] = export_data.loadings
        for run in export_data.enrichment_runs:
            if run.error is None:
                tables[f"enrichment_{run.label}"] = run.results
        if export_data.integration is not None:
            tables["proteomics_standalone"] = export_data.integration.standalone
            tables["proteomics_integrated"] = export_data.integration.integrated
        tables["exclusions"] = export_data.exclusions
        return tables

    def write_tables(self, output_dir: Union[str, Path], export_data: ExportData) -> Dict[str, Path]:
        """
        Write every result table as tab-separated text.

        Returns:
            Dict of file stem → written path
        """
        target = Path(output_dir)
        target.mkdir(parents=True, exist_ok=True)
        written = {}
        for stem, table in self._tables(export_data).items():
            path = target / f"{stem}.tsv"
            table.to_csv(path, sep="\t", index=False)
            written[stem] = path
        logger.info(f"Wrote {len(written)} tables to {target}")
        return written

    def export_excel(self, filepath: Union[str, Path], export_data: ExportData) -> None:
        """
        Export analysis results to a multi-sheet Excel workbook.

        One sheet per result table plus a Settings sheet.

        Args:
            filepath: Output Excel file path (.xlsx)
            export_data: Complete export data bundle
        """
        with pd.ExcelWriter(filepath, engine="openpyxl") as writer:
            used = set()
            for stem, table in self._tables(export_data).items():
                sheet_name = self.sanitize_sheet_name(stem)
                # truncation can collide (e.g. long enrichment labels)
                suffix = 1
                while sheet_name in used:
                    sheet_name = self.sanitize_sheet_name(f"{stem[:27]}_{suffix}")
                    suffix += 1
                used.add(sheet_name)
                table.to_excel(writer, sheet_name=sheet_name, index=False)

            self._write_settings_sheet(writer, export_data)

    def _write_settings_sheet(
        self, writer: pd.ExcelWriter, export_data: ExportData
    ) -> None:
        """
        Write Settings sheet with analysis metadata.

        Sections: run info and versions, thresholds, comparison summary,
        enrichment status per run, exclusion counts, sample design.
        """
        settings_data = [
            ["Parameter", "Value"],
            ["Analysis Date", datetime.now().strftime("%Y-%m-%d %H:%M:%S")],
            [
                "Python Version",
                f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}",
            ],
        ]
        for package in ("pydeseq2", "gseapy"):
            try:
                module = importlib.import_module(package)
                settings_data.append([f"{package} Version", module.__version__])
            except (ImportError, AttributeError):
                settings_data.append([f"{package} Version", "N/A"])

        settings_data.append(["---", "---"])
        settings_data.append(["Thresholds", ""])
        settings_data.append(["p-value Threshold (raw p)", str(export_data.p_threshold)])
        settings_data.append(["Fold Change Threshold", str(export_data.fold_change)])
        for key, value in export_data.settings.items():
            settings_data.append([key, str(value)])

        de = export_data.de_result
        test, ref = de.comparison
        settings_data.append(["---", "---"])
        settings_data.append(["Comparison", f"{test}_vs_{ref}"])
        settings_data.append(["Genes tested", str(len(de.results_df))])
        settings_data.append(
            ["Upregulated", str(len(de.upregulated(export_data.p_threshold, export_data.fold_change)))]
        )
        settings_data.append(
            ["Downregulated", str(len(de.downregulated(export_data.p_threshold, export_data.fold_change)))]
        )
        for warning in de.warnings:
            settings_data.append(["Warning", warning])

        if export_data.enrichment_runs:
            settings_data.append(["---", "---"])
            settings_data.append(["Enrichment Status", ""])
            for run in export_data.enrichment_runs:
                if run.error:
                    status = f"FAILED ({run.error})"
                else:
                    status = (
                        f"SUCCESS ({len(run.results)} sets tested, "
                        f"{len(run.excluded_by_size)} outside size bounds)"
                    )
                settings_data.append([run.label, status])

        if not export_data.exclusions.empty:
            settings_data.append(["---", "---"])
            settings_data.append(["Exclusions", ""])
            for _, row in export_data.exclusions.iterrows():
                settings_data.append([f"{row['kind']} @ {row['stage']}", str(row["count"])])

        if export_data.sample_conditions:
            settings_data.append(["---", "---"])
            settings_data.append(["Sample Design", ""])
            for sample, purpose in sorted(export_data.sample_conditions.items()):
                settings_data.append([sample, purpose])

        settings_df = pd.DataFrame(settings_data)
        settings_df.to_excel(writer, sheet_name="Settings", index=False, header=False)

    def export_figure(
        self, fig: go.Figure, filepath: Union[str, Path], format: str = "html", scale: int = 3
    ) -> None:
        """
        Export Plotly figure.

        HTML is written directly; static formats ('png', 'svg', 'pdf') go
        through fig.write_image and need the kaleido engine installed.
        """
        if format == "html":
            fig.write_html(str(filepath), include_plotlyjs="cdn")
        else:
            fig.write_image(str(filepath), format=format, scale=scale)

    def export_figures(
        self, figures: Dict[str, go.Figure], directory: Union[str, Path], format: str = "html"
    ) -> List[Path]:
        """Write each figure as <name>.<format> under directory."""
        target = Path(directory)
        target.mkdir(parents=True, exist_ok=True)
        paths = []
        for name, fig in figures.items():
            path = target / f"{name}.{format}"
            self.export_figure(fig, path, format=format)
            paths.append(path)
        logger.info(f"Wrote {len(paths)} figures to {target}")
        return paths
