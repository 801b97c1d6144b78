"""
Multi-omics Report Viewer
A Streamlit application that runs the pipeline on a config file and
browses QC, differential expression, enrichment, proteomics and exclusions.

    streamlit run report_app.py
"""

from pathlib import Path
from typing import Dict, List, Optional, Tuple
import os
import tempfile
import pandas as pd
import streamlit as st

from config import load_config
from demo_data import get_demo_description, write_demo_dataset
from errors import AnalysisError
from export_engine import ExportEngine
from pathway_enrichment import EnrichmentRun
from pipeline import DEFAULT_CONFIG, AnalysisRun, CyanoOmicsPipeline

REGULATION_CHOICES = ["all", "up", "down", "significant"]


# --- Helper Functions ---


def validate_config_path(path: str) -> Tuple[bool, str]:
    """Check a user-supplied config path before running."""
    if not path or not path.strip():
        return False, "Enter the path of a YAML config file."
    config_file = Path(path.strip())
    if not config_file.exists():
        return False, f"Config file not found: {config_file}"
    if config_file.suffix.lower() not in (".yaml", ".yml"):
        return False, f"Config file must be .yaml or .yml, got '{config_file.suffix}'"
    return True, ""


def summarize_run(run: AnalysisRun) -> Dict[str, int]:
    """Headline counts shown as metrics."""
    cfg = run.config
    regulation = run.de_filtered.regulation(cfg.p_threshold, cfg.fold_change)
    summary = {
        "Samples": len(run.design),
        "Genes retained": run.filtered.counts.shape[1],
        "Low-count genes dropped": len(run.filtered.dropped_genes),
        "Upregulated": int((regulation == "up").sum()),
        "Downregulated": int((regulation == "down").sum()),
        "Items excluded": run.report.count(),
    }
    if run.integration is not None:
        summary["Proteins matched"] = len(run.integration.integrated)
        summary["Proteins unmatched"] = run.integration.n_unmatched
    return summary


def filter_de_table(results_df: pd.DataFrame, regulation: pd.Series, choice: str) -> pd.DataFrame:
    """Rows of the DE table for one regulation choice, most significant first."""
    if choice not in REGULATION_CHOICES:
        raise ValueError(f"choice must be one of {REGULATION_CHOICES}, got '{choice}'")
    table = results_df.assign(regulation=regulation.to_numpy())
    if choice == "significant":
        table = table[table["regulation"] != "ns"]
    elif choice != "all":
        table = table[table["regulation"] == choice]
    return table.sort_values("pvalue", kind="mergesort")


def enrichment_overview(runs: List[EnrichmentRun], alpha: float = 0.05) -> pd.DataFrame:
    """One row per enrichment run: status, sets tested, sets with p < alpha."""
    rows = []
    for run in runs:
        rows.append(
            {
                "run": run.label,
                "status": "failed" if run.error else "ok",
                "ranked genes": run.n_ranked,
                "sets tested": len(run.results),
                f"p < {alpha}": int((run.results["pvalue"] < alpha).sum()) if not run.results.empty else 0,
                "outside size bounds": len(run.excluded_by_size),
                "error": run.error or "",
            }
        )
    return pd.DataFrame(rows)


def run_analysis(config_path: Optional[str], demo: bool) -> Tuple[CyanoOmicsPipeline, AnalysisRun]:
    if demo:
        demo_dir = Path(tempfile.mkdtemp(prefix="cyano_demo_"))
        config_path = str(write_demo_dataset(demo_dir))
    pipeline = CyanoOmicsPipeline(load_config(config_path))
    return pipeline, pipeline.run()


# --- Page ---


def main() -> None:
    st.set_page_config(
        page_title="Cyanobacterial Multi-omics Report",
        page_icon="🧫",
        layout="wide",
        initial_sidebar_state="expanded",
    )
    if "analysis" not in st.session_state:
        st.session_state["analysis"] = None
    if "figures" not in st.session_state:
        st.session_state["figures"] = {}

    st.title("Cyanobacterial RNA-seq & Proteomics Report")

    with st.sidebar:
        st.header("1. Configuration")
        use_demo = st.checkbox("Use demo dataset", value=False)
        if use_demo:
            st.markdown(get_demo_description())
            config_path = None
        else:
            config_path = st.text_input("Config file", value=str(DEFAULT_CONFIG))

        if st.button("Run Analysis"):
            valid, message = (True, "") if use_demo else validate_config_path(config_path)
            if not valid:
                st.error(message)
            else:
                with st.spinner("Running pipeline..."):
                    try:
                        pipeline, run = run_analysis(config_path, use_demo)
                        st.session_state["analysis"] = (pipeline, run)
                        st.session_state["figures"] = pipeline.build_figures(run)
                        st.success("Analysis complete")
                    except AnalysisError as e:
                        st.session_state["analysis"] = None
                        st.error(f"Analysis aborted: {e.message}")
                        if e.details:
                            st.json(e.details)

    if st.session_state["analysis"] is None:
        st.info("👋 Choose a config file (or the demo dataset) in the sidebar and click 'Run Analysis'.")
        return

    pipeline, run = st.session_state["analysis"]
    figures = st.session_state["figures"]
    cfg = run.config

    summary = summarize_run(run)
    cols = st.columns(len(summary))
    for col, (label, value) in zip(cols, summary.items()):
        col.metric(label, value)

    tab_qc, tab_de, tab_enrich, tab_prot, tab_excl = st.tabs(
        ["QC", "Differential Expression", "Enrichment", "Proteomics", "Exclusions"]
    )

    with tab_qc:
        st.subheader("Count QC")
        col1, col2 = st.columns(2)
        with col1:
            st.plotly_chart(figures["library_size"], use_container_width=True)
            st.plotly_chart(figures["noncoding_coverage"], use_container_width=True)
        with col2:
            st.plotly_chart(figures["count_distribution"], use_container_width=True)
            st.plotly_chart(figures["gene_totals"], use_container_width=True)
        st.subheader("Normalization")
        st.plotly_chart(figures["normalization_comparison"], use_container_width=True)
        st.plotly_chart(figures["size_factors"], use_container_width=True)
        st.subheader("Sample projection")
        if run.outliers:
            st.warning(f"Possible outlier samples: {', '.join(run.outliers)}")
        col1, col2 = st.columns(2)
        with col1:
            st.plotly_chart(figures["pca"], use_container_width=True)
        with col2:
            st.plotly_chart(figures["scree"], use_container_width=True)
        st.plotly_chart(figures[f"loadings_{cfg.qc_component}"], use_container_width=True)
        st.plotly_chart(figures["sample_similarity"], use_container_width=True)

    with tab_de:
        st.subheader(f"{cfg.treatment_level} vs {cfg.reference_level}")
        st.caption(
            f"Up/down use raw p < {cfg.p_threshold} and |log2FC| ≥ log2({cfg.fold_change}); "
            "q- and s-values are reported alongside."
        )
        for warning in run.de_result.warnings:
            st.warning(warning)
        col1, col2 = st.columns(2)
        with col1:
            st.plotly_chart(figures["volcano"], use_container_width=True)
        with col2:
            st.plotly_chart(figures["ma"], use_container_width=True)
        st.plotly_chart(figures["shrinkage"], use_container_width=True)

        choice = st.selectbox("Show genes", REGULATION_CHOICES, index=0)
        de = run.de_filtered
        table = filter_de_table(
            de.results_df, de.regulation(cfg.p_threshold, cfg.fold_change), choice or "all"
        )
        st.dataframe(table)
        st.download_button(
            "Download DE Results (TSV)",
            table.to_csv(sep="\t", index=False).encode("utf-8"),
            f"de_results_{choice}.tsv",
            "text/tab-separated-values",
        )

    with tab_enrich:
        st.subheader("Gene-set enrichment")
        if not run.enrichment_runs:
            st.info("No gene-set universes configured.")
        else:
            st.dataframe(enrichment_overview(run.enrichment_runs))
            labels = [r.label for r in run.enrichment_runs]
            selected = st.selectbox("Run", labels, index=0)
            chosen = next((r for r in run.enrichment_runs if r.label == selected), None)
            if chosen is not None:
                if chosen.error:
                    st.warning(chosen.error)
                else:
                    st.plotly_chart(figures[f"enrichment_{chosen.label}"], use_container_width=True)
                    st.dataframe(chosen.results)

    with tab_prot:
        st.subheader("Proteomics")
        if run.integration is None:
            st.info("No proteomics table configured.")
        else:
            st.plotly_chart(figures["proteomics_distribution"], use_container_width=True)
            st.plotly_chart(figures["proteomics_correlation"], use_container_width=True)
            st.dataframe(run.integration.integrated)

    with tab_excl:
        st.subheader("Exclusions")
        exclusions = run.report.to_frame()
        if exclusions.empty:
            st.success("Nothing was excluded.")
        else:
            st.dataframe(exclusions)

    st.markdown("---")
    st.header("Export Results")
    if st.button("Generate Excel Report"):
        with st.spinner("Generating Excel..."):
            engine = ExportEngine()
            with tempfile.NamedTemporaryFile(delete=False, suffix=".xlsx") as tmp:
                tmp_path = tmp.name
            engine.export_excel(tmp_path, pipeline.export_data(run))
            with open(tmp_path, "rb") as f:
                st.download_button(
                    "Download Excel Report",
                    f.read(),
                    "multiomics_results.xlsx",
                    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
                )
            os.unlink(tmp_path)


if __name__ == "__main__":
    main()
