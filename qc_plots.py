"""Pre-analysis QC visualizations for the count data."""

from typing import Dict, Optional
import pandas as pd
import numpy as np
import plotly.express as px
import plotly.graph_objects as go


def _purpose_colors(samples, design_df: Optional[pd.DataFrame]) -> Dict[str, str]:
    """sample → color, one color per purpose level; gray without a design."""
    if design_df is None:
        return {str(s): "steelblue" for s in samples}
    purpose = design_df.set_index(design_df["sequence_id"].astype(str))["purpose"]
    palette = px.colors.qualitative.Set2
    levels = sorted(purpose.unique())
    level_color = {level: palette[i % len(palette)] for i, level in enumerate(levels)}
    return {str(s): level_color.get(purpose.get(str(s)), "gray") for s in samples}


def create_library_size_barplot(
    counts_df: pd.DataFrame, design_df: Optional[pd.DataFrame] = None
) -> go.Figure:
    """
    Coding-gene library size per sample, grouped by purpose when a design is given.

    Args:
        counts_df: samples × genes DataFrame of raw counts
        design_df: design table with sequence_id and purpose

    Returns:
        Plotly Figure object
    """
    lib_sizes = counts_df.sum(axis=1)
    if design_df is not None:
        order = design_df.sort_values(["purpose", "sequence_id"])["sequence_id"].astype(str)
        lib_sizes.index = lib_sizes.index.astype(str)
        lib_sizes = lib_sizes.reindex([s for s in order if s in lib_sizes.index])
    colors = _purpose_colors(lib_sizes.index, design_df)
    mean_size = lib_sizes.mean()

    fig = go.Figure(
        go.Bar(
            x=lib_sizes.index.astype(str).tolist(),
            y=lib_sizes.values,
            marker_color=[colors[str(s)] for s in lib_sizes.index],
            hovertemplate="%{x}<br>Reads: %{y:,}<extra></extra>",
        )
    )
    fig.add_hline(
        y=mean_size,
        line_dash="dash",
        line_color="red",
        annotation_text=f"Mean: {mean_size:,.0f}",
        annotation_position="top right",
    )
    fig.update_layout(
        title="Coding Reads per Sample",
        xaxis_title="Sample",
        yaxis_title="Reads",
        showlegend=False,
    )
    return fig


def create_count_distribution_boxplot(
    counts_df: pd.DataFrame,
    design_df: Optional[pd.DataFrame] = None,
    log_transform: bool = True,
) -> go.Figure:
    """
    Per-sample count distribution.

    Args:
        counts_df: samples × genes DataFrame
        design_df: colors boxes by purpose when given
        log_transform: plot log2(x+1) (default: True)
    """
    values = counts_df.astype(float)
    if log_transform:
        values = np.log2(values + 1)
    colors = _purpose_colors(values.index, design_df)

    fig = go.Figure()
    for sample, row in values.iterrows():
        fig.add_trace(
            go.Box(y=row.to_numpy(), name=str(sample), marker_color=colors[str(sample)], showlegend=False)
        )
    fig.update_layout(
        title="Count Distribution per Sample",
        xaxis_title="Sample",
        yaxis_title="log₂(count + 1)" if log_transform else "Count",
    )
    return fig


def create_gene_total_histogram(gene_totals: pd.Series, threshold: int = 24) -> go.Figure:
    """
    Histogram of per-gene total counts before the low-count filter.

    The dashed line marks the per-sample threshold for reference.
    """
    fig = go.Figure(
        go.Histogram(x=np.log10(gene_totals.astype(float) + 1), nbinsx=60, marker_color="darkorange")
    )
    fig.add_vline(
        x=np.log10(threshold + 1),
        line_dash="dash",
        line_color="gray",
        annotation_text=f"threshold {threshold}",
    )
    fig.update_layout(
        title="Per-gene Total Counts",
        xaxis_title="log₁₀(total count + 1)",
        yaxis_title="Genes",
        showlegend=False,
    )
    return fig


def create_noncoding_coverage_plot(coverage: pd.DataFrame) -> go.Figure:
    """
    Stacked bars of coding vs non-coding reads per sample.

    Args:
        coverage: CountFilterResult.coverage_report() output
    """
    samples = coverage.index.astype(str).tolist()
    fig = go.Figure()
    fig.add_trace(go.Bar(x=samples, y=coverage["coding_reads"], name="coding", marker_color="steelblue"))
    fig.add_trace(
        go.Bar(
            x=samples,
            y=coverage["noncoding_reads"],
            name="non-coding",
            marker_color="lightgray",
            customdata=coverage["noncoding_fraction"] * 100,
            hovertemplate="%{x}<br>Non-coding: %{y:,} (%{customdata:.1f}%)<extra></extra>",
        )
    )
    fig.update_layout(
        title="Coding vs Non-coding Reads",
        xaxis_title="Sample",
        yaxis_title="Reads",
        barmode="stack",
    )
    return fig


def create_sample_similarity_heatmap(
    log_counts: pd.DataFrame,
    design_df: Optional[pd.DataFrame] = None,
    method: str = "spearman",
) -> go.Figure:
    """
    Pairwise sample correlation of log normalized counts.

    Samples are ordered by purpose when a design is given, so replicate
    blocks sit on the diagonal.
    """
    corr = log_counts.T.corr(method=method)
    corr.index = corr.index.astype(str)
    corr.columns = corr.columns.astype(str)
    if design_df is not None:
        order = [
            s for s in design_df.sort_values(["purpose", "sequence_id"])["sequence_id"].astype(str)
            if s in corr.index
        ]
        corr = corr.loc[order, order]

    fig = px.imshow(
        corr,
        color_continuous_scale="RdBu_r",
        zmin=-1,
        zmax=1,
        text_auto=".2f",
        labels={"color": method},
    )
    fig.update_layout(
        title=f"Sample Similarity ({method.capitalize()} Correlation)",
        width=600,
        height=600,
    )
    return fig
