"""Paired tumor vs normal RNA-seq comparison with edgeR and GO enrichment."""

import logging
from typing import Dict, Optional

import numpy as np
import pandas as pd

from .annotation import OrgDbAnnotator, annotate_refseq, deduplicate_by_symbol
from .config import Config, get_config
from .edger import EdgeRWrapper, run_edger
from .export import write_table
from .samples import apply_selection, paired_design, parse_indicator
from .validation import read_count_table, validate_count_matrix, validate_pairing
from .visualizations import (
    create_bcv_plot,
    create_heatmap,
    create_md_plot,
    create_pca_plot,
    create_volcano_plot,
    save_figure
)


logger = logging.getLogger(__name__)

HEATMAP_GENES = 30
MD_GUIDE_LFC = 1.0


def run_rnaseq_analysis(
    config: Optional[Config] = None,
    edger: Optional[EdgeRWrapper] = None,
    annotator: Optional[OrgDbAnnotator] = None
) -> Dict:
    """
    Annotate, filter and normalize the count table, then test tumor vs normal.

    Args:
        config: Configuration (global configuration when None)
        edger: edgeR wrapper (created on demand)
        annotator: Organism database lookups (created on demand)

    Returns:
        Dictionary containing:
            - results: topTags table with annotation and direction
            - summary: Down/NotSig/Up counts
            - go: topGO table
            - cpm: Normalized CPM of the most significant genes
            - design: Paired design matrix
            - dispersion: Dispersion estimates
            - samples: DGEList sample table
            - figures: Figure name to plotly Figure
            - output_file, go_output_file: Paths of the written tables
    """
    config = config or get_config()
    settings = config.rnaseq

    logger.info(f"Reading counts from {settings.counts_path}")
    table = read_count_table(settings.counts_path)
    missing = [c for c in settings.sample_columns if c not in table.columns]
    if missing:
        raise KeyError(f"Sample columns not found in {settings.counts_path}: {', '.join(missing)}")

    annotator = annotator or OrgDbAnnotator(settings.species)
    table = annotate_refseq(
        table,
        annotator.refseq_table(),
        annotator.symbol_table(),
        refseq_column=settings.refseq_column,
        symbol_column=settings.symbol_column
    )
    table = deduplicate_by_symbol(
        table, settings.sample_columns, symbol_column=settings.symbol_column
    )

    selection = parse_indicator(
        settings.tissue_indicator, settings.tissue_codes, settings.exclude_code
    )
    counts = apply_selection(table[settings.sample_columns], selection)
    patients = [settings.patients[i] for i in selection.positions]
    tissues = selection.groups

    validate_pairing(patients, tissues).raise_for_errors("sample pairing")
    check, _ = validate_count_matrix(counts)
    for warning in check.warnings:
        logger.warning(warning.message)
    check.raise_for_errors("count matrix")

    design = paired_design(
        patients, tissues, settings.reference_tissue, samples=counts.columns
    )
    genes = table.drop(columns=settings.sample_columns)

    analysis = run_edger(
        counts,
        design,
        genes=genes,
        robust=settings.robust_dispersion,
        fdr_threshold=config.defaults.fdr_threshold,
        lfc_threshold=config.defaults.log2fc_threshold,
        species=settings.species,
        go_ontology=settings.go_ontology,
        go_sort=settings.go_sort,
        go_top_n=settings.go_top_n,
        wrapper=edger
    )
    results = analysis['results']
    top_ids = results.index[:settings.top_cpm_genes]
    top_cpm = analysis['cpm'].loc[top_ids]

    output_file = write_table(
        results.rename_axis('EntrezGene').reset_index(),
        config.output_path(settings.output_file)
    )
    go_output_file = None
    if analysis['go'] is not None:
        go_output_file = write_table(
            analysis['go'].reset_index(),
            config.output_path(settings.go_output_file)
        )

    log_cpm = np.log2(analysis['cpm'] + 1.0)
    labels = pd.DataFrame({'tissue': tissues, 'patient': patients}, index=counts.columns)
    heatmap_ids = list(results.index[:HEATMAP_GENES])
    symbols = results.loc[heatmap_ids, settings.symbol_column] if (
        settings.symbol_column in results.columns
    ) else None

    figures = {
        'pca': create_pca_plot(
            log_cpm, labels, color_col='tissue', symbol_col='patient',
            title="Samples (log2 CPM)"
        ),
        'bcv': create_bcv_plot(analysis['dispersion']),
        'md': create_md_plot(
            results,
            fdr_threshold=config.defaults.fdr_threshold,
            lfc_threshold=MD_GUIDE_LFC
        ),
        'volcano': create_volcano_plot(
            results,
            fdr_threshold=config.defaults.fdr_threshold,
            lfc_threshold=config.defaults.log2fc_threshold,
            label_col=settings.symbol_column
        ),
        'heatmap': create_heatmap(log_cpm, heatmap_ids, row_labels=symbols)
    }
    if config.save_figures:
        stem = output_file.with_suffix('')
        for name, fig in figures.items():
            save_figure(fig, f"{stem}_{name}.html")

    return {
        'results': results,
        'summary': analysis['summary'],
        'go': analysis['go'],
        'cpm': top_cpm,
        'design': design,
        'dispersion': analysis['dispersion'],
        'samples': analysis['samples'],
        'figures': figures,
        'output_file': output_file,
        'go_output_file': go_output_file
    }


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)

    result = run_rnaseq_analysis()
    print(f"\nDecideTests summary: {result['summary']}")
    print("\nTop GO terms:")
    print(result['go'].head(10).to_string())
