"""
Interactive visualizations for the multi-omics analysis using Plotly.

Provides volcano and MA plots, PCA sample plots with loading diagnostics,
normalization and shrinkage comparisons, enrichment dot plots and the
proteomics distribution and correlation views.
"""

from typing import Dict, Optional
import pandas as pd
import numpy as np
import plotly.graph_objects as go
import plotly.express as px
from plotly.subplots import make_subplots

from de_analysis import classify_regulation
from qc_projection import ProjectionResult

REGULATION_COLORS = {"up": "red", "down": "blue", "ns": "lightgray"}
QUADRANT_COLORS = {"concordant": "darkgreen", "discordant": "lightgray"}


def _empty_figure(title: str, message: str) -> go.Figure:
    fig = go.Figure()
    fig.update_layout(
        title=title,
        annotations=[dict(
            text=message,
            xref="paper", yref="paper",
            x=0.5, y=0.5, showarrow=False, font=dict(size=16)
        )]
    )
    return fig


def create_volcano_plot(
    results_df: pd.DataFrame,
    p_threshold: float = 0.1,
    fold_change: float = 2.0,
    lfc_column: str = "log2FoldChange",
    top_n_labels: int = 10,
    title: str = "Volcano Plot",
) -> go.Figure:
    """
    Create interactive volcano plot from DE results.

    Genes are colored by the same raw p-value / fold-change rule used to
    build the up- and downregulated tables.

    Args:
        results_df: DataFrame with columns: gene, pvalue and lfc_column
        p_threshold: Raw p-value threshold (default: 0.1)
        fold_change: Linear fold-change threshold (default: 2.0)
        lfc_column: Column holding log2 fold changes (e.g. a shrunk estimate)
        top_n_labels: Number of most significant genes to label

    Returns:
        Plotly Figure object
    """
    if results_df is None or results_df.empty:
        raise ValueError(
            "Cannot create volcano plot: results_df is empty or None. "
            "Ensure the differential expression analysis produced results."
        )

    required_cols = ["gene", lfc_column, "pvalue"]
    missing = [col for col in required_cols if col not in results_df.columns]
    if missing:
        raise ValueError(
            f"Cannot create volcano plot: missing required columns {missing}. "
            f"Found columns: {', '.join(results_df.columns.tolist())}"
        )

    # NaN p-values are normal for genes pydeseq2 flags as outliers
    df = results_df.dropna(subset=["pvalue", lfc_column]).copy()
    if df.empty:
        raise ValueError("Cannot create volcano plot: all p-values are NaN.")

    df["-log10_p"] = -np.log10(df["pvalue"].clip(lower=1e-300))  # Clip to avoid inf
    df["regulation"] = classify_regulation(df, p_threshold, fold_change, lfc_column)

    fig = px.scatter(
        df,
        x=lfc_column,
        y="-log10_p",
        color="regulation",
        hover_name="gene",
        hover_data={
            lfc_column: ":.2f",
            "pvalue": ":.2e",
            "-log10_p": False,
            "regulation": False,
        },
        color_discrete_map=REGULATION_COLORS,
        labels={lfc_column: "log₂(Fold Change)", "-log10_p": "-log₁₀(p)"},
    )

    cutoff = np.log2(fold_change)
    fig.add_hline(y=-np.log10(p_threshold), line_dash="dash", line_color="gray")
    fig.add_vline(x=cutoff, line_dash="dash", line_color="gray")
    fig.add_vline(x=-cutoff, line_dash="dash", line_color="gray")

    if top_n_labels > 0:
        top_genes = df[df["regulation"] != "ns"].nsmallest(top_n_labels, "pvalue")
        if not top_genes.empty:
            fig.add_trace(
                go.Scatter(
                    x=top_genes[lfc_column],
                    y=top_genes["-log10_p"],
                    mode="text",
                    text=top_genes["gene"],
                    textposition="top center",
                    textfont=dict(size=9),
                    showlegend=False,
                    hoverinfo="skip",
                )
            )

    fig.update_layout(title=title, showlegend=True)
    return fig


def create_ma_plot(
    results_df: pd.DataFrame, p_threshold: float = 0.1, fold_change: float = 2.0
) -> go.Figure:
    """
    Create MA plot (log mean expression vs log2 fold change).

    Args:
        results_df: DataFrame with columns: gene, log2FoldChange, pvalue, baseMean

    Returns:
        Plotly Figure object
    """
    if results_df is None or results_df.empty:
        raise ValueError("Cannot create MA plot: results_df is empty or None.")

    required_cols = ["gene", "log2FoldChange", "pvalue", "baseMean"]
    missing = [c for c in required_cols if c not in results_df.columns]
    if missing:
        raise ValueError(f"Cannot create MA plot: missing columns {missing}.")

    df = results_df.dropna(subset=["log2FoldChange", "baseMean"]).copy()
    if df.empty:
        raise ValueError("Cannot create MA plot: no valid data after removing NaN values.")

    df["log10_baseMean"] = np.log10(df["baseMean"] + 1)
    df["regulation"] = classify_regulation(df, p_threshold, fold_change)

    fig = px.scatter(
        df,
        x="log10_baseMean",
        y="log2FoldChange",
        color="regulation",
        hover_name="gene",
        hover_data={
            "log2FoldChange": ":.2f",
            "pvalue": ":.2e",
            "log10_baseMean": False,
            "regulation": False,
        },
        color_discrete_map=REGULATION_COLORS,
        labels={
            "log10_baseMean": "log₁₀(baseMean + 1)",
            "log2FoldChange": "log₂(Fold Change)",
        },
    )

    cutoff = np.log2(fold_change)
    fig.add_hline(y=cutoff, line_dash="dash", line_color="gray")
    fig.add_hline(y=-cutoff, line_dash="dash", line_color="gray")
    fig.add_hline(y=0, line_color="black", line_width=0.5)

    fig.update_layout(title="MA Plot", showlegend=True)
    return fig


def create_pca_plot(
    projection: ProjectionResult,
    design_df: pd.DataFrame,
    x: str = "PC1",
    y: str = "PC2",
    show_ellipses: bool = True,
) -> go.Figure:
    """
    Sample scores on two components, colored by purpose.

    Args:
        projection: QCProjector output
        design_df: design table with sequence_id and purpose
        x, y: components to plot
        show_ellipses: draw 95% confidence ellipses for groups of 3+ samples

    Returns:
        Plotly Figure object
    """
    if len(projection.components) < 2:
        raise ValueError(
            f"PCA plot needs two components, projection has {projection.components}"
        )

    pca_df = projection.scores[[x, y]].copy()
    purpose = design_df.set_index(design_df["sequence_id"].astype(str))["purpose"]
    pca_df["purpose"] = [purpose.get(str(s), "unknown") for s in pca_df.index]
    pca_df["sample"] = pca_df.index.astype(str)
    evr = projection.explained_variance_ratio

    fig = px.scatter(
        pca_df,
        x=x,
        y=y,
        color="purpose",
        hover_name="sample",
        labels={
            x: f"{x} ({evr[x] * 100:.1f}%)",
            y: f"{y} ({evr[y] * 100:.1f}%)",
        },
    )

    if show_ellipses:
        colors = px.colors.qualitative.Plotly
        for i, level in enumerate(sorted(pca_df["purpose"].unique())):
            group = pca_df[pca_df["purpose"] == level]
            if len(group) < 3:
                continue
            center = np.array([group[x].mean(), group[y].mean()])
            cov = np.cov(group[x].values, group[y].values)
            eigenvalues, eigenvectors = np.linalg.eigh(cov)
            # 95% confidence: chi2(df=2) = 5.991
            scale = np.sqrt(5.991)
            theta = np.linspace(0, 2 * np.pi, 100)
            circle = np.array([np.cos(theta), np.sin(theta)])
            transform = eigenvectors @ np.diag(np.sqrt(np.maximum(eigenvalues, 0)) * scale)
            points = (transform @ circle).T + center
            fig.add_trace(
                go.Scatter(
                    x=points[:, 0],
                    y=points[:, 1],
                    mode="lines",
                    line=dict(color=colors[i % len(colors)], dash="dash", width=1.5),
                    showlegend=False,
                    hoverinfo="skip",
                )
            )

    fig.update_layout(title="PCA Plot", showlegend=True)
    return fig


def create_scree_plot(projection: ProjectionResult) -> go.Figure:
    """Explained variance per component with the cumulative curve."""
    evr = projection.explained_variance_ratio * 100
    fig = go.Figure()
    fig.add_trace(go.Bar(x=evr.index.tolist(), y=evr.values, name="Explained", marker_color="steelblue"))
    fig.add_trace(
        go.Scatter(
            x=evr.index.tolist(), y=evr.cumsum().values, name="Cumulative",
            mode="lines+markers", line=dict(color="darkorange"),
        )
    )
    fig.update_layout(
        title="Explained Variance", xaxis_title="Component", yaxis_title="Variance explained (%)"
    )
    return fig


def create_loading_contribution_plot(
    projection: ProjectionResult, component: str = "PC1", n: int = 10
) -> go.Figure:
    """
    Horizontal bars of the top-n and bottom-n gene loadings on a component.

    Bar length is the signed loading; hover shows percent contribution.
    """
    top = projection.top_contributors(component, n)
    top = top.iloc[::-1]  # largest loading drawn at the top
    colors = np.where(top["direction"] == "top", "firebrick", "royalblue")

    fig = go.Figure(
        go.Bar(
            x=top["loading"],
            y=top["gene"],
            orientation="h",
            marker_color=colors,
            customdata=top["contribution"],
            hovertemplate="<b>%{y}</b><br>Loading: %{x:.3f}<br>Contribution: %{customdata:.2f}%<extra></extra>",
        )
    )
    fig.update_layout(
        title=f"Top and bottom {n} gene loadings on {component}",
        xaxis_title="Loading",
        height=max(400, len(top) * 20 + 100),
    )
    return fig


def create_normalization_comparison_plot(
    raw_counts: pd.DataFrame,
    normalized: Dict[str, pd.DataFrame],
    design_df: pd.DataFrame,
) -> go.Figure:
    """
    Side-by-side box plots of raw and normalized log2 count distributions.

    Args:
        raw_counts: samples × genes DataFrame of raw counts
        normalized: strategy name → samples × genes normalized counts
        design_df: design table with sequence_id and purpose

    Returns:
        Plotly Figure object
    """
    panels = {"raw": raw_counts, **normalized}
    fig = make_subplots(
        rows=1, cols=len(panels),
        subplot_titles=[f"{name} (log2)" for name in panels],
        shared_yaxes=True,
    )

    purpose = design_df.set_index(design_df["sequence_id"].astype(str))["purpose"].to_dict()
    colors = px.colors.qualitative.Set2
    levels = sorted(set(purpose.values()))
    level_color = {c: colors[i % len(colors)] for i, c in enumerate(levels)}

    for col, (name, matrix) in enumerate(panels.items(), start=1):
        log2_counts = np.log2(matrix.astype(float) + 1)
        for sample in log2_counts.index:
            level = purpose.get(str(sample), "unknown")
            fig.add_trace(
                go.Box(
                    y=log2_counts.loc[sample].values,
                    name=str(sample),
                    marker_color=level_color.get(level, "gray"),
                    legendgroup=level,
                    legendgrouptitle_text=level,
                    showlegend=col == 1,
                    hovertemplate="Sample: " + str(sample) + "<br>Value: %{y:.2f}<extra></extra>",
                ),
                row=1, col=col,
            )

    fig.update_layout(title="Normalization Comparison", height=500, showlegend=True)
    return fig


def create_size_factor_comparison_plot(size_factors: pd.DataFrame) -> go.Figure:
    """Grouped bars of each strategy's size factor per sample."""
    fig = go.Figure()
    for strategy in size_factors.columns:
        fig.add_trace(
            go.Bar(x=size_factors.index.astype(str).tolist(), y=size_factors[strategy].values, name=strategy)
        )
    fig.add_hline(y=1.0, line_dash="dash", line_color="gray")
    fig.update_layout(
        title="Size Factors by Normalization Strategy",
        xaxis_title="Sample",
        yaxis_title="Size factor",
        barmode="group",
    )
    return fig


def create_shrinkage_comparison_plot(
    results_df: pd.DataFrame, shrunk: Dict[str, pd.DataFrame]
) -> go.Figure:
    """
    Unshrunk vs shrunk log2 fold change, one panel per shrinkage method.

    Methods are shown next to each other, never averaged.
    """
    if not shrunk:
        return _empty_figure("LFC Shrinkage", "No shrinkage results to display")

    fig = make_subplots(rows=1, cols=len(shrunk), subplot_titles=list(shrunk), shared_yaxes=True)
    for col, (method, table) in enumerate(shrunk.items(), start=1):
        merged = results_df[["gene", "log2FoldChange"]].merge(
            table[["gene", "log2FoldChange", "svalue"]], on="gene", suffixes=("_mle", "_shrunk")
        ).dropna(subset=["log2FoldChange_mle", "log2FoldChange_shrunk"])
        fig.add_trace(
            go.Scattergl(
                x=merged["log2FoldChange_mle"],
                y=merged["log2FoldChange_shrunk"],
                mode="markers",
                marker=dict(size=4, color=merged["svalue"], colorscale="Viridis_r", cmin=0, cmax=1,
                            showscale=col == 1, colorbar=dict(title="s-value")),
                text=merged["gene"],
                name=method,
                hovertemplate="<b>%{text}</b><br>MLE: %{x:.2f}<br>Shrunk: %{y:.2f}<extra></extra>",
            ),
            row=1, col=col,
        )
        if not merged.empty:
            lo = float(merged["log2FoldChange_mle"].min())
            hi = float(merged["log2FoldChange_mle"].max())
            fig.add_trace(
                go.Scatter(x=[lo, hi], y=[lo, hi], mode="lines",
                           line=dict(color="gray", dash="dash"), showlegend=False, hoverinfo="skip"),
                row=1, col=col,
            )
        fig.update_xaxes(title_text="MLE log₂FC", row=1, col=col)
    fig.update_yaxes(title_text="Shrunk log₂FC", row=1, col=1)
    fig.update_layout(title="LFC Shrinkage Comparison", showlegend=False)
    return fig


def create_enrichment_dotplot(
    enrichment_df: pd.DataFrame,
    top_n: int = 20,
    title: str = "Enrichment Results",
) -> go.Figure:
    """
    Create enrichment dot plot.

    Args:
        enrichment_df: DataFrame with columns pathName, NES, pvalue, setSize, coreEnrich
        top_n: Number of lowest p-value sets to display
        title: Plot title

    Returns:
        Plotly Figure object
    """
    if enrichment_df is None or enrichment_df.empty:
        return _empty_figure(title, "No enrichment results to display")

    df = enrichment_df.dropna(subset=["pvalue"]).nsmallest(top_n, "pvalue").copy()
    df["-log10_p"] = -np.log10(df["pvalue"].astype(float).clip(lower=1e-300))
    label = df["pathName"].where(df["pathName"].astype(str) != "", df["pathID"]).astype(str)
    df["term_display"] = label.apply(lambda x: x[:60] + "..." if len(x) > 60 else x)
    df["core_count"] = df["coreEnrich"].fillna("").astype(str).apply(
        lambda x: len([g for g in x.split("/") if g])
    )
    df = df.sort_values("NES", ascending=True)

    fig = go.Figure()
    fig.add_trace(go.Scatter(
        x=df["NES"],
        y=df["term_display"],
        mode="markers",
        marker=dict(
            size=df["setSize"].clip(lower=5, upper=40),
            color=df["-log10_p"],
            colorscale="Viridis",
            showscale=True,
            colorbar=dict(title="-log₁₀(p)"),
            line=dict(width=1, color="DarkSlateGrey")
        ),
        customdata=np.stack([df["setSize"], df["core_count"], df["pvalue"]], axis=-1),
        hovertemplate=(
            "<b>%{y}</b><br>"
            "NES: %{x:.2f}<br>"
            "p: %{customdata[2]:.2e}<br>"
            "Set size: %{customdata[0]}<br>"
            "Core genes: %{customdata[1]}<extra></extra>"
        )
    ))
    fig.add_vline(x=0, line_color="black", line_width=0.5)

    fig.update_layout(
        title=title,
        xaxis_title="Normalized enrichment score",
        yaxis_title="",
        height=max(400, len(df) * 25 + 100),
        margin=dict(l=300),
        showlegend=False,
    )
    return fig


def create_proteomics_distribution_plot(records: pd.DataFrame, nbins: int = 50) -> go.Figure:
    """Histogram of log2 protein ratios over every parsed proteomics row."""
    values = records["log2_ratio"].replace([np.inf, -np.inf], np.nan).dropna()
    if values.empty:
        return _empty_figure("Proteomics log2 ratios", "No finite protein ratios to display")
    fig = go.Figure(go.Histogram(x=values, nbinsx=nbins, marker_color="slategray"))
    fig.add_vline(x=0, line_color="black", line_width=0.5)
    fig.update_layout(
        title=f"Proteomics log2 ratios (n={len(values)})",
        xaxis_title="log₂(avg_ratio)",
        yaxis_title="Proteins",
    )
    return fig


def create_proteomics_correlation_plot(
    integrated: pd.DataFrame, correlation: Optional[Dict[str, float]] = None
) -> go.Figure:
    """
    Protein log2 ratio vs transcript log2 fold change, colored by quadrant.

    The quadrant is an annotation; every integrated row is plotted.
    """
    if integrated is None or integrated.empty:
        return _empty_figure("Proteomics vs Transcriptomics", "No proteins matched DE results")

    fig = px.scatter(
        integrated,
        x="log2FoldChange",
        y="log2_ratio",
        color="quadrant",
        symbol="regulation",
        hover_name="gene_id",
        hover_data={"protein_name": True, "pvalue": ":.2e", "quadrant": False},
        color_discrete_map=QUADRANT_COLORS,
        labels={"log2FoldChange": "Transcript log₂FC", "log2_ratio": "Protein log₂ ratio"},
    )
    for v in (-1, 1):
        fig.add_vline(x=v, line_dash="dash", line_color="gray")
        fig.add_hline(y=v, line_dash="dash", line_color="gray")

    title = "Proteomics vs Transcriptomics"
    if correlation and np.isfinite(correlation.get("pearson_r", np.nan)):
        title += (
            f" (Pearson r={correlation['pearson_r']:.2f}, "
            f"Spearman ρ={correlation['spearman_rho']:.2f}, n={int(correlation['n'])})"
        )
    fig.update_layout(title=title)
    return fig
