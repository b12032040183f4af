"""limma wrapper using rpy2 for microarray differential expression."""

import logging
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from .rbridge import RBridgeError, RPackageBridge


logger = logging.getLogger(__name__)

TOP_TABLE_COLUMNS = ["ID", "adj.P.Val", "P.Value", "t", "B", "logFC"]
ANNOTATION_COLUMNS = ["Gene.symbol", "Gene.title"]


class LimmaError(RBridgeError):
    """Exception for limma-related errors."""
    pass


class LimmaWrapper(RPackageBridge):
    """Wrapper for limma linear-model fitting on an expression matrix."""

    required_packages = ('limma',)
    error_class = LimmaError

    @property
    def limma(self):
        return self.packages['limma']

    def normalize_between_arrays(
        self,
        expression: pd.DataFrame,
        method: str = "quantile"
    ) -> pd.DataFrame:
        """
        Normalize log-expression values between arrays.

        Args:
            expression: Log-expression matrix (probes x samples)
            method: normalizeBetweenArrays method

        Returns:
            Normalized matrix with the same labels
        """
        logger.info(f"Normalizing between arrays (method={method})")
        try:
            normalized = self.limma.normalizeBetweenArrays(
                self.to_r_matrix(expression), method=method
            )
        except Exception as e:
            raise LimmaError(f"normalizeBetweenArrays failed: {str(e)}")
        result = self.from_r_matrix(normalized)
        result.index = expression.index
        result.columns = expression.columns
        return result

    def fit_contrast(
        self,
        expression: pd.DataFrame,
        design: pd.DataFrame,
        contrast: str,
        proportion: float = 0.01
    ):
        """
        Fit the linear model and moderate the contrast statistics.

        Args:
            expression: Log-expression matrix (probes x samples)
            design: Design matrix, one row per sample in column order
            contrast: Contrast expression over design columns (e.g. "tumor-normal")
            proportion: Assumed proportion of differentially expressed genes

        Returns:
            MArrayLM R object after contrasts.fit and eBayes
        """
        if design.shape[0] != expression.shape[1]:
            raise LimmaError(
                f"Design has {design.shape[0]} rows for {expression.shape[1]} samples"
            )

        logger.info(f"Fitting linear model for contrast {contrast}")
        r_design = self.to_r_matrix(design)
        try:
            fit = self.limma.lmFit(self.to_r_matrix(expression), r_design)
            contrast_matrix = self.limma.makeContrasts(
                contrasts=contrast, levels=r_design
            )
            fit2 = self.limma.contrasts_fit(fit, contrast_matrix)
            fit2 = self.limma.eBayes(fit2, proportion=proportion)
        except Exception as e:
            error_msg = str(e)
            if "no residual degrees of freedom" in error_msg.lower():
                raise LimmaError(
                    "No residual degrees of freedom: each group needs more than one sample"
                )
            raise LimmaError(f"limma fit failed: {error_msg}")
        return fit2

    def top_table(
        self,
        fit,
        number: Optional[int] = None,
        adjust_method: str = "fdr",
        sort_by: str = "B"
    ) -> pd.DataFrame:
        """
        Ranked table of the fitted contrast.

        Args:
            fit: Fit returned by fit_contrast
            number: Number of rows to return (all when None)
            adjust_method: Multiple-testing adjustment
            sort_by: topTable sort key

        Returns:
            DataFrame with an ID column followed by topTable statistics
        """
        try:
            table = self.limma.topTable(
                fit,
                number=float('inf') if number is None else int(number),
                **{"adjust.method": adjust_method, "sort.by": sort_by}
            )
        except Exception as e:
            raise LimmaError(f"topTable failed: {str(e)}")

        table = self.from_r_dataframe(table)
        table.insert(0, "ID", [str(i) for i in table.index])
        return table.reset_index(drop=True)

    def decide_tests(self, fit, p_value: float = 0.05, lfc: float = 0.0) -> Dict[str, int]:
        """Count down, unchanged and up features for the contrast."""
        try:
            tests = self.limma.decideTests(
                fit, **{"p.value": p_value, "lfc": lfc, "adjust.method": "BH"}
            )
        except Exception as e:
            raise LimmaError(f"decideTests failed: {str(e)}")
        return summarize_tests(self.from_r_matrix(tests).iloc[:, 0].to_numpy())


def summarize_tests(calls: np.ndarray) -> Dict[str, int]:
    """Counts of -1/0/1 test calls as Down/NotSig/Up."""
    calls = np.asarray(calls)
    return {
        "Down": int((calls < 0).sum()),
        "NotSig": int((calls == 0).sum()),
        "Up": int((calls > 0).sum())
    }


def annotate_top_table(
    table: pd.DataFrame,
    features: Optional[pd.DataFrame],
    columns: List[str] = ANNOTATION_COLUMNS
) -> pd.DataFrame:
    """
    Attach feature annotation columns to a top table and order its columns.

    Annotation columns absent from ``features`` are skipped; row order of the
    ranked table is preserved.
    """
    table = table.copy()
    if features is not None:
        present = [c for c in columns if c in features.columns]
        if present:
            lookup = features[present].copy()
            lookup.index = lookup.index.astype(str)
            lookup = lookup[~lookup.index.duplicated()]
            for column in present:
                table[column] = table["ID"].map(lookup[column])
        missing = [c for c in columns if c not in features.columns]
        if missing:
            logger.warning(f"Annotation columns not available: {', '.join(missing)}")

    ordered = [c for c in TOP_TABLE_COLUMNS + list(columns) if c in table.columns]
    return table[ordered]


def run_limma(
    expression: pd.DataFrame,
    design: pd.DataFrame,
    contrast: str,
    features: Optional[pd.DataFrame] = None,
    proportion: float = 0.01,
    number: Optional[int] = 250,
    adjust_method: str = "fdr",
    sort_by: str = "B",
    fdr_threshold: float = 0.05,
    lfc_threshold: float = 0.0,
    wrapper: Optional[LimmaWrapper] = None
) -> Dict:
    """
    Fit the contrast and assemble the annotated ranked table.

    Returns:
        Dictionary containing:
            - results: Ranked, annotated top table
            - summary: Down/NotSig/Up counts at the thresholds
            - fit: MArrayLM R object
    """
    wrapper = wrapper or LimmaWrapper()

    fit = wrapper.fit_contrast(expression, design, contrast, proportion=proportion)
    table = wrapper.top_table(fit, number=number, adjust_method=adjust_method, sort_by=sort_by)
    table = annotate_top_table(table, features)
    summary = wrapper.decide_tests(fit, p_value=fdr_threshold, lfc=lfc_threshold)

    logger.info(
        f"{summary['Up']} up and {summary['Down']} down at FDR < {fdr_threshold}"
    )

    return {
        'results': table,
        'summary': summary,
        'fit': fit
    }
