"""Tumor vs normal comparison of a GEO microarray series with limma."""

import logging
from typing import Dict, Optional

from .config import Config, get_config
from .export import write_table
from .geo import GEOClient
from .limma import LimmaWrapper, run_limma
from .samples import apply_selection, group_design, parse_indicator
from .transform import auto_log2, drop_incomplete
from .validation import validate_expression_matrix
from .visualizations import create_expression_boxplot, create_volcano_plot, save_figure


logger = logging.getLogger(__name__)


def run_microarray_analysis(
    config: Optional[Config] = None,
    geo_client: Optional[GEOClient] = None,
    limma: Optional[LimmaWrapper] = None
) -> Dict:
    """
    Download the series, select samples, fit tumor vs normal and write the table.

    Args:
        config: Configuration (global configuration when None)
        geo_client: GEO downloader (created on demand)
        limma: limma wrapper (created on demand)

    Returns:
        Dictionary containing:
            - results: Ranked, annotated top table
            - summary: Down/NotSig/Up counts
            - expression: Analysed expression matrix
            - design: Design matrix
            - groups: Group label per analysed sample
            - log_transformed: Whether log2 was applied
            - series: GEOSeries that was analysed
            - figures: Figure name to plotly Figure
            - output_file: Path of the written table
    """
    config = config or get_config()
    settings = config.microarray

    if not settings.sample_indicator:
        raise ValueError(
            f"microarray.sample_indicator is not set; write one code per sample of {settings.gse}"
        )

    geo_client = geo_client or GEOClient()
    series = geo_client.fetch_series(
        settings.gse, platform=settings.platform, destdir=config.paths.cache_dir
    )

    selection = parse_indicator(
        settings.sample_indicator, settings.group_codes, settings.exclude_code
    )
    expression = apply_selection(series.expression, selection)
    validate_expression_matrix(expression).raise_for_errors("expression matrix")

    expression, log_transformed = auto_log2(expression)
    if settings.drop_incomplete_rows:
        expression = drop_incomplete(expression)

    limma = limma or LimmaWrapper()
    if settings.normalize:
        expression = limma.normalize_between_arrays(expression)

    levels = [settings.group_codes[code] for code in sorted(settings.group_codes)]
    design = group_design(selection.groups, levels=levels, samples=expression.columns)

    analysis = run_limma(
        expression,
        design,
        settings.contrast,
        features=series.features,
        proportion=settings.ebayes_proportion,
        number=settings.top_n,
        adjust_method=settings.adjust_method,
        sort_by=settings.sort_by,
        fdr_threshold=config.defaults.fdr_threshold,
        lfc_threshold=config.defaults.log2fc_threshold,
        wrapper=limma
    )
    results = analysis['results']

    output_file = write_table(results, config.output_path(settings.output_file))

    figures = {
        'boxplot': create_expression_boxplot(
            expression, selection.groups, title=f"{series.name} ({settings.gse})"
        ),
        'volcano': create_volcano_plot(
            results,
            fdr_threshold=config.defaults.fdr_threshold,
            lfc_threshold=config.defaults.log2fc_threshold,
            fdr_col='adj.P.Val',
            label_col='Gene.symbol',
            title=f"{settings.gse}: {settings.contrast}"
        )
    }
    if config.save_figures:
        stem = output_file.with_suffix('')
        for name, fig in figures.items():
            save_figure(fig, f"{stem}_{name}.html")

    return {
        'results': results,
        'summary': analysis['summary'],
        'expression': expression,
        'design': design,
        'groups': selection.groups,
        'log_transformed': log_transformed,
        'series': series,
        'figures': figures,
        'output_file': output_file
    }


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)

    result = run_microarray_analysis()
    print("\nTop 10 genes:")
    print(result['results'].head(10).to_string(index=False))
