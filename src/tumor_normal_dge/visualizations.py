"""Diagnostic figures for the expression workflows."""

import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

import numpy as np
import pandas as pd
import plotly.graph_objects as go
import plotly.express as px
from scipy.cluster.hierarchy import linkage, dendrogram


logger = logging.getLogger(__name__)

DIRECTION_COLORS = {
    'up': '#E74C3C',      # Red
    'down': '#3498DB',    # Blue
    'not_sig': '#95A5A6'  # Gray
}


def _direction(
    data: pd.DataFrame,
    fdr_col: str,
    lfc_col: str,
    fdr_threshold: float,
    lfc_threshold: float
) -> pd.Series:
    significant = (data[fdr_col] < fdr_threshold) & (data[lfc_col].abs() > lfc_threshold)
    direction = pd.Series('not_sig', index=data.index)
    direction[significant & (data[lfc_col] > 0)] = 'up'
    direction[significant & (data[lfc_col] < 0)] = 'down'
    return direction


def create_expression_boxplot(
    expression: pd.DataFrame,
    groups: Sequence[str],
    title: str = "Expression Distribution"
) -> go.Figure:
    """
    Per-sample boxplot of expression values, colored by group.

    Args:
        expression: Expression matrix (features x samples)
        groups: Group label per sample
        title: Plot title

    Returns:
        Plotly Figure object
    """
    fig = go.Figure()
    palette = px.colors.qualitative.Set2
    levels = list(dict.fromkeys(groups))

    for sample, group in zip(expression.columns, groups):
        fig.add_trace(go.Box(
            y=expression[sample].dropna(),
            name=str(sample),
            legendgroup=group,
            marker_color=palette[levels.index(group) % len(palette)],
            boxpoints=False,
            hovertext=group
        ))

    fig.update_layout(
        title=title,
        xaxis_title="Samples",
        yaxis_title="Expression",
        template='plotly_white',
        width=max(600, 25 * expression.shape[1]),
        height=500,
        xaxis=dict(tickangle=-45),
        showlegend=False
    )
    return fig


def create_volcano_plot(
    results: pd.DataFrame,
    fdr_threshold: float = 0.05,
    lfc_threshold: float = 1.0,
    fdr_col: str = 'FDR',
    lfc_col: str = 'logFC',
    label_col: str = 'Symbol',
    top_n_labels: int = 10,
    title: str = "Volcano Plot"
) -> go.Figure:
    """
    Create volcano plot.

    Args:
        results: Result table with fold change and adjusted p-value columns
        fdr_threshold: FDR cutoff for significance
        lfc_threshold: Log2 fold change threshold
        fdr_col: Adjusted p-value column
        lfc_col: Log2 fold change column
        label_col: Column used for point labels (index when missing)
        top_n_labels: Number of top genes to label per direction
        title: Plot title

    Returns:
        Plotly Figure object
    """
    plot_data = results.dropna(subset=[fdr_col, lfc_col]).copy()
    plot_data['label'] = (
        plot_data[label_col].astype(str) if label_col in plot_data.columns
        else plot_data.index.astype(str)
    )

    plot_data['-log10padj'] = -np.log10(plot_data[fdr_col])

    # Replace infinite values
    max_log10p = plot_data['-log10padj'].replace([np.inf, -np.inf], np.nan).max()
    plot_data['-log10padj'] = plot_data['-log10padj'].replace([np.inf], max_log10p * 1.1)

    plot_data['color'] = _direction(plot_data, fdr_col, lfc_col, fdr_threshold, lfc_threshold)

    fig = go.Figure()

    for category, color in DIRECTION_COLORS.items():
        data_subset = plot_data[plot_data['color'] == category]

        fig.add_trace(go.Scatter(
            x=data_subset[lfc_col],
            y=data_subset['-log10padj'],
            mode='markers',
            name=category.replace('_', ' ').title(),
            marker=dict(
                color=color,
                size=5,
                opacity=0.6 if category == 'not_sig' else 0.8,
                line=dict(width=0)
            ),
            text=data_subset['label'],
            hovertemplate=(
                '<b>%{text}</b><br>' +
                'log2FC: %{x:.2f}<br>' +
                '-log10(padj): %{y:.2f}<br>' +
                '<extra></extra>'
            )
        ))

    fig.add_hline(
        y=-np.log10(fdr_threshold),
        line_dash="dash",
        line_color="gray",
        annotation_text=f"FDR = {fdr_threshold}",
        annotation_position="right"
    )
    if lfc_threshold > 0:
        fig.add_vline(x=lfc_threshold, line_dash="dash", line_color="gray")
        fig.add_vline(x=-lfc_threshold, line_dash="dash", line_color="gray")

    if top_n_labels > 0:
        sig_genes = plot_data[plot_data['color'] != 'not_sig']
        sig_genes = sig_genes.sort_values('-log10padj', ascending=False)

        up_genes = sig_genes[sig_genes['color'] == 'up'].head(top_n_labels)
        down_genes = sig_genes[sig_genes['color'] == 'down'].head(top_n_labels)

        for _, gene in pd.concat([up_genes, down_genes]).iterrows():
            fig.add_annotation(
                x=gene[lfc_col],
                y=gene['-log10padj'],
                text=gene['label'],
                showarrow=True,
                arrowhead=2,
                arrowwidth=1,
                ax=20 if gene[lfc_col] > 0 else -20,
                ay=-20,
                font=dict(size=9),
                bgcolor='rgba(255, 255, 255, 0.8)'
            )

    fig.update_layout(
        title=title,
        xaxis_title="log<sub>2</sub> Fold Change",
        yaxis_title="-log<sub>10</sub> (adjusted p-value)",
        hovermode='closest',
        template='plotly_white',
        width=900,
        height=600
    )

    return fig


def create_md_plot(
    results: pd.DataFrame,
    fdr_threshold: float = 0.05,
    lfc_threshold: float = 1.0,
    mean_col: str = 'logCPM',
    fdr_col: str = 'FDR',
    lfc_col: str = 'logFC',
    title: str = "MD Plot"
) -> go.Figure:
    """
    Create mean-difference plot (average log expression vs log2 fold change).

    Args:
        results: Result table
        fdr_threshold: FDR cutoff for significance
        lfc_threshold: Log2 fold change threshold (guide lines at +/- value)
        mean_col: Average log-expression column
        title: Plot title

    Returns:
        Plotly Figure object
    """
    plot_data = results.dropna(subset=[fdr_col, lfc_col, mean_col]).copy()
    plot_data['color'] = _direction(plot_data, fdr_col, lfc_col, fdr_threshold, 0.0)

    fig = go.Figure()

    for category, color in DIRECTION_COLORS.items():
        data_subset = plot_data[plot_data['color'] == category]

        fig.add_trace(go.Scatter(
            x=data_subset[mean_col],
            y=data_subset[lfc_col],
            mode='markers',
            name=category.replace('_', ' ').title(),
            marker=dict(
                color=color,
                size=4,
                opacity=0.5 if category == 'not_sig' else 0.7,
                line=dict(width=0)
            ),
            text=data_subset.index.astype(str)
        ))

    if lfc_threshold > 0:
        fig.add_hline(y=lfc_threshold, line_dash="dash", line_color="blue")
        fig.add_hline(y=-lfc_threshold, line_dash="dash", line_color="blue")
    fig.add_hline(y=0, line_color="black", line_width=1)

    fig.update_layout(
        title=title,
        xaxis_title="Average log CPM",
        yaxis_title="log<sub>2</sub> Fold Change",
        hovermode='closest',
        template='plotly_white',
        width=900,
        height=600
    )

    return fig


def create_bcv_plot(
    dispersion: Dict,
    title: str = "Biological Coefficient of Variation"
) -> go.Figure:
    """
    Plot tagwise, trended and common BCV against average log CPM.

    Args:
        dispersion: Output of EdgeRWrapper.dispersion_summary
        title: Plot title

    Returns:
        Plotly Figure object
    """
    genes = dispersion['genes'].sort_values('AveLogCPM')
    common_bcv = float(np.sqrt(dispersion['common']))

    fig = go.Figure()
    fig.add_trace(go.Scatter(
        x=genes['AveLogCPM'],
        y=np.sqrt(genes['tagwise']),
        mode='markers',
        name='Tagwise',
        marker=dict(color='black', size=3, opacity=0.5)
    ))
    fig.add_trace(go.Scatter(
        x=genes['AveLogCPM'],
        y=np.sqrt(genes['trended']),
        mode='lines',
        name='Trend',
        line=dict(color='blue', width=2)
    ))
    fig.add_hline(
        y=common_bcv,
        line_color="red",
        annotation_text=f"Common = {common_bcv:.3f}",
        annotation_position="right"
    )

    fig.update_layout(
        title=title,
        xaxis_title="Average log CPM",
        yaxis_title="Biological coefficient of variation",
        template='plotly_white',
        width=800,
        height=600
    )
    return fig


def create_pca_plot(
    log_expression: pd.DataFrame,
    labels: pd.DataFrame,
    color_col: str,
    symbol_col: Optional[str] = None,
    title: str = "PCA Plot"
) -> go.Figure:
    """
    Create PCA plot of samples.

    Args:
        log_expression: Log-scale expression (genes x samples)
        labels: Per-sample labels indexed by sample
        color_col: Column for coloring samples
        symbol_col: Optional column for marker symbols
        title: Plot title

    Returns:
        Plotly Figure object
    """
    from sklearn.decomposition import PCA

    # Transpose (samples as rows)
    data = log_expression.T

    # Remove genes with zero variance
    data = data.loc[:, data.var() > 0]

    pca = PCA(n_components=min(10, data.shape[0], data.shape[1]))
    pca_coords = pca.fit_transform(data)

    pca_df = pd.DataFrame(
        pca_coords[:, :2],
        index=data.index,
        columns=['PC1', 'PC2']
    )
    pca_df = pca_df.join(labels)

    var_exp = pca.explained_variance_ratio_ * 100

    fig = px.scatter(
        pca_df,
        x='PC1',
        y='PC2',
        color=color_col,
        symbol=symbol_col,
        text=pca_df.index,
        title=title,
        labels={
            'PC1': f'PC1 ({var_exp[0]:.1f}%)',
            'PC2': f'PC2 ({var_exp[1]:.1f}%)'
        }
    )

    fig.update_traces(
        marker=dict(size=12, line=dict(width=1, color='white')),
        textposition='top center'
    )

    fig.update_layout(
        template='plotly_white',
        width=800,
        height=600
    )

    return fig


def create_heatmap(
    log_expression: pd.DataFrame,
    genes: List[str],
    row_labels: Optional[Sequence[str]] = None,
    cluster_genes: bool = True,
    cluster_samples: bool = True,
    title: str = "Expression Heatmap"
) -> go.Figure:
    """
    Create z-scored expression heatmap of selected genes.

    Args:
        log_expression: Log-scale expression (genes x samples)
        genes: Genes to display
        row_labels: Display labels aligned with ``genes``; missing labels
            fall back to the gene id
        cluster_genes: Whether to cluster genes
        cluster_samples: Whether to cluster samples
        title: Plot title

    Returns:
        Plotly Figure object
    """
    heatmap_data = log_expression.loc[genes].copy()
    if row_labels is not None:
        heatmap_data.index = [
            str(gene) if pd.isna(label) else str(label)
            for gene, label in zip(genes, row_labels)
        ]

    # Z-score normalize
    heatmap_data = (heatmap_data.T - heatmap_data.mean(axis=1)) / heatmap_data.std(axis=1)
    heatmap_data = heatmap_data.T.fillna(0.0)

    gene_order = list(range(len(heatmap_data.index)))
    sample_order = list(range(len(heatmap_data.columns)))

    if cluster_genes and len(gene_order) > 2:
        gene_linkage = linkage(heatmap_data.values, method='average', metric='euclidean')
        gene_order = dendrogram(gene_linkage, no_plot=True)['leaves']

    if cluster_samples and len(sample_order) > 2:
        sample_linkage = linkage(heatmap_data.T.values, method='average', metric='euclidean')
        sample_order = dendrogram(sample_linkage, no_plot=True)['leaves']

    heatmap_data = heatmap_data.iloc[gene_order, sample_order]

    fig = go.Figure(data=go.Heatmap(
        z=heatmap_data.values,
        x=heatmap_data.columns,
        y=heatmap_data.index,
        colorscale='RdBu_r',
        zmid=0,
        colorbar=dict(title="Z-score"),
        hovertemplate='Gene: %{y}<br>Sample: %{x}<br>Z-score: %{z:.2f}<extra></extra>'
    ))

    fig.update_layout(
        title=title,
        xaxis_title="Samples",
        yaxis_title="Genes",
        template='plotly_white',
        width=800,
        height=max(400, len(genes) * 12),
        xaxis=dict(tickangle=-45),
        yaxis=dict(tickfont=dict(size=8))
    )

    return fig


def save_figure(fig: go.Figure, path: Union[str, Path]) -> Path:
    """Write a figure as a standalone HTML file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fig.write_html(str(path), include_plotlyjs='cdn')
    logger.info(f"Saved figure to {path}")
    return path
