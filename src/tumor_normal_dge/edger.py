"""edgeR wrapper using rpy2 for paired RNA-seq differential expression."""

import logging
from typing import Dict, Optional

import numpy as np
import pandas as pd

from .limma import summarize_tests
from .rbridge import RBridgeError, RPackageBridge


logger = logging.getLogger(__name__)


class EdgeRError(RBridgeError):
    """Exception for edgeR-related errors."""
    pass


class EdgeRWrapper(RPackageBridge):
    """Wrapper for the edgeR negative-binomial GLM workflow."""

    required_packages = ('edgeR', 'limma')
    error_class = EdgeRError

    @property
    def edger(self):
        return self.packages['edgeR']

    @property
    def limma(self):
        return self.packages['limma']

    def filter_by_expr(self, counts: pd.DataFrame, design: pd.DataFrame) -> pd.Series:
        """
        Flag genes with enough counts to be worth testing.

        Args:
            counts: Count matrix (genes x samples)
            design: Design matrix used for the fit

        Returns:
            Boolean Series indexed like ``counts``
        """
        try:
            keep = self.edger.filterByExpr(
                self.to_r_matrix(counts), design=self.to_r_matrix(design)
            )
        except Exception as e:
            raise EdgeRError(f"filterByExpr failed: {str(e)}")
        return pd.Series([bool(k) for k in keep], index=counts.index, name="keep")

    def create_dgelist(self, counts: pd.DataFrame, genes: Optional[pd.DataFrame] = None):
        """
        Create DGEList object.

        Library sizes are the column sums of ``counts`` as given, so filter
        genes before calling this.
        """
        logger.info(f"Creating DGEList with {counts.shape[0]} genes and {counts.shape[1]} samples")
        kwargs = {"counts": self.to_r_matrix(counts)}
        if genes is not None:
            genes = genes.loc[counts.index].copy()
            genes.index = genes.index.astype(str)
            kwargs["genes"] = self.to_r_dataframe(genes)
        try:
            return self.edger.DGEList(**kwargs)
        except Exception as e:
            raise EdgeRError(f"Failed to create DGEList: {str(e)}")

    def calc_norm_factors(self, dge, method: str = "TMM"):
        """TMM (or other) normalization factors."""
        try:
            return self.edger.calcNormFactors(dge, method=method)
        except Exception as e:
            raise EdgeRError(f"calcNormFactors failed: {str(e)}")

    def samples(self, dge) -> pd.DataFrame:
        """The DGEList sample table (group, lib.size, norm.factors)."""
        return self.from_r_dataframe(dge.rx2('samples'))

    def estimate_disp(self, dge, design: pd.DataFrame, robust: bool = True):
        """Estimate common, trended and tagwise dispersions."""
        logger.info(f"Estimating dispersions (robust={robust})")
        try:
            return self.edger.estimateDisp(dge, design=self.to_r_matrix(design), robust=robust)
        except Exception as e:
            error_msg = str(e)
            if "no residual" in error_msg.lower():
                raise EdgeRError(
                    "Design leaves no residual degrees of freedom. This usually means:\n"
                    "  - Too few patients for the paired design\n"
                    "  - A patient has only one of the two tissues"
                )
            raise EdgeRError(f"estimateDisp failed: {error_msg}")

    def dispersion_summary(self, dge) -> Dict:
        """
        Dispersion estimates from an estimateDisp result.

        Returns:
            Dictionary with ``common`` (float) and ``genes`` (DataFrame with
            AveLogCPM, trended and tagwise dispersion per gene)
        """
        common = float(dge.rx2('common.dispersion')[0])
        genes = pd.DataFrame({
            'AveLogCPM': np.asarray(list(dge.rx2('AveLogCPM')), dtype=float),
            'trended': np.asarray(list(dge.rx2('trended.dispersion')), dtype=float),
            'tagwise': np.asarray(list(dge.rx2('tagwise.dispersion')), dtype=float)
        }, index=self._names(self.base.rownames(dge)))
        logger.info(f"Common dispersion {common:.4f} (BCV {np.sqrt(common):.3f})")
        return {'common': common, 'genes': genes}

    def glm_lrt(self, dge, design: pd.DataFrame, coef: Optional[int] = None):
        """
        Fit the NB GLM and run a likelihood-ratio test.

        Args:
            dge: DGEList with dispersions
            design: Design matrix
            coef: 1-based design column to test (last column when None)

        Returns:
            DGELRT R object
        """
        coef = design.shape[1] if coef is None else coef
        logger.info(f"Testing coefficient '{design.columns[coef - 1]}'")
        try:
            fit = self.edger.glmFit(dge, design=self.to_r_matrix(design))
            return self.edger.glmLRT(fit, coef=coef)
        except Exception as e:
            raise EdgeRError(f"GLM fit failed: {str(e)}")

    def top_tags(self, lrt, n: Optional[int] = None) -> pd.DataFrame:
        """topTags table sorted by p-value with BH-adjusted FDR."""
        try:
            tags = self.edger.topTags(lrt, n=float('inf') if n is None else int(n))
        except Exception as e:
            raise EdgeRError(f"topTags failed: {str(e)}")
        table = self.from_r_dataframe(tags.rx2('table'))
        table.index = table.index.astype(str)
        return table

    def decide_tests(self, lrt, p_value: float = 0.05, lfc: float = 0.0) -> pd.Series:
        """Per-gene -1/0/1 calls indexed by gene id."""
        try:
            tests = self.edger.decideTests(
                lrt, **{"p.value": p_value, "lfc": lfc, "adjust.method": "BH"}
            )
        except Exception as e:
            raise EdgeRError(f"decideTests failed: {str(e)}")
        calls = self.from_r_matrix(tests).iloc[:, 0]
        return calls.astype(int)

    def cpm(self, dge, log: bool = False) -> pd.DataFrame:
        """Counts per million using the normalized library sizes."""
        try:
            return self.from_r_matrix(self.edger.cpm(dge, log=log))
        except Exception as e:
            raise EdgeRError(f"cpm failed: {str(e)}")

    def goana(self, lrt, species: str = "Hs"):
        """GO over-representation of up and down genes; needs Entrez row names."""
        logger.info(f"Running goana (species={species})")
        try:
            return self.limma.goana(lrt, species=species)
        except Exception as e:
            raise EdgeRError(f"goana failed: {str(e)}")

    def top_go(self, go, ontology: str = "BP", sort: str = "up", number: int = 30) -> pd.DataFrame:
        """Most significant GO terms of one ontology."""
        try:
            table = self.limma.topGO(go, ontology=ontology, sort=sort, number=number)
        except Exception as e:
            raise EdgeRError(f"topGO failed: {str(e)}")
        table = self.from_r_dataframe(table)
        table.index.name = "GOID"
        return table


def label_direction(
    results: pd.DataFrame,
    fdr_threshold: float = 0.05,
    lfc_threshold: float = 0.0,
    fdr_col: str = 'FDR',
    lfc_col: str = 'logFC'
) -> pd.DataFrame:
    """Add ``significant`` and ``direction`` (up/down/not_sig) columns."""
    results = results.copy()
    significant = results[fdr_col] < fdr_threshold

    results['significant'] = significant & (results[lfc_col].abs() > lfc_threshold)
    results['direction'] = 'not_sig'
    results.loc[significant & (results[lfc_col] > lfc_threshold), 'direction'] = 'up'
    results.loc[significant & (results[lfc_col] < -lfc_threshold), 'direction'] = 'down'
    return results


def run_edger(
    counts: pd.DataFrame,
    design: pd.DataFrame,
    genes: Optional[pd.DataFrame] = None,
    coef: Optional[int] = None,
    robust: bool = True,
    fdr_threshold: float = 0.05,
    lfc_threshold: float = 0.0,
    species: Optional[str] = "Hs",
    go_ontology: str = "BP",
    go_sort: str = "up",
    go_top_n: int = 30,
    wrapper: Optional[EdgeRWrapper] = None
) -> Dict:
    """
    Run the filtered, TMM-normalized NB GLM likelihood-ratio workflow.

    Args:
        counts: Count matrix (genes x samples), genes indexed by Entrez id
            when GO enrichment is wanted
        design: Design matrix, rows aligned with ``counts`` columns
        genes: Optional per-gene annotation indexed like ``counts``
        coef: 1-based design column to test (last column when None)
        robust: Robust empirical Bayes dispersion estimation
        fdr_threshold: FDR threshold
        lfc_threshold: Log2 fold change threshold
        species: goana species code; GO enrichment is skipped when None
        go_ontology: Ontology reported by topGO
        go_sort: topGO sort ("up" or "down")
        go_top_n: Number of GO terms reported

    Returns:
        Dictionary containing:
            - results: topTags table with direction labels
            - summary: Down/NotSig/Up counts
            - go: topGO table (None when skipped)
            - cpm: normalized CPM of the retained genes
            - dispersion: dispersion_summary output
            - samples: DGEList sample table
            - kept: boolean filter per input gene
            - lrt: DGELRT R object
    """
    wrapper = wrapper or EdgeRWrapper()

    keep = wrapper.filter_by_expr(counts, design)
    logger.info(f"Keeping {int(keep.sum())} of {len(keep)} genes after filterByExpr")
    filtered = counts.loc[keep.to_numpy()]

    dge = wrapper.create_dgelist(filtered, genes)
    dge = wrapper.calc_norm_factors(dge)
    dge = wrapper.estimate_disp(dge, design, robust=robust)
    dispersion = wrapper.dispersion_summary(dge)

    lrt = wrapper.glm_lrt(dge, design, coef=coef)
    results = label_direction(
        wrapper.top_tags(lrt), fdr_threshold=fdr_threshold, lfc_threshold=lfc_threshold
    )

    calls = wrapper.decide_tests(lrt, p_value=fdr_threshold, lfc=lfc_threshold)
    summary = summarize_tests(calls.to_numpy())
    logger.info(f"Found {summary['Up']} up-regulated and {summary['Down']} down-regulated genes")

    go = None
    if species:
        go = wrapper.top_go(
            wrapper.goana(lrt, species=species),
            ontology=go_ontology, sort=go_sort, number=go_top_n
        )

    return {
        'results': results,
        'summary': summary,
        'go': go,
        'cpm': wrapper.cpm(dge),
        'dispersion': dispersion,
        'samples': wrapper.samples(dge),
        'kept': keep,
        'lrt': lrt
    }
