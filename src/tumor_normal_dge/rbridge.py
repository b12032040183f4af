"""Shared rpy2 plumbing for the Bioconductor wrappers."""

import logging
from typing import Dict, Sequence, Type

import numpy as np
import pandas as pd

try:
    import rpy2.robjects as ro
    from rpy2.robjects import pandas2ri
    from rpy2.robjects.packages import importr
    from rpy2.robjects.conversion import localconverter
    RPY2_AVAILABLE = True
except Exception as e:  # missing rpy2, or rpy2 without a usable R installation
    RPY2_AVAILABLE = False
    logging.warning(f"rpy2 not available ({e}). R-backed analysis steps will not work.")


logger = logging.getLogger(__name__)


class RBridgeError(Exception):
    """Exception for errors raised while driving R."""
    pass


class RPackageBridge:
    """Base class for wrappers around R packages.

    Subclasses list the R packages they need in ``required_packages`` and the
    exception they raise in ``error_class``. Loaded packages are available in
    ``self.packages`` keyed by package name.
    """

    required_packages: Sequence[str] = ()
    error_class: Type[RBridgeError] = RBridgeError

    def __init__(self):
        """Check the R environment and load the required packages."""
        if not RPY2_AVAILABLE:
            raise self.error_class("rpy2 is not installed. Please install it with: pip install rpy2")

        self.base = importr('base')
        self._check_r_packages()
        self._load_r_packages()

    def _check_r_packages(self):
        """Check if required R packages are installed."""
        utils = importr('utils')
        installed = set(self.base.rownames(utils.installed_packages()))

        missing = [pkg for pkg in self.required_packages if pkg not in installed]

        if missing:
            error_msg = (
                f"Required R packages not found: {', '.join(missing)}\n"
                "Please install them in R using:\n"
                "  if (!require('BiocManager', quietly = TRUE))\n"
                "      install.packages('BiocManager')\n"
                f"  BiocManager::install(c({', '.join(repr(p) for p in missing)}))"
            )
            raise self.error_class(error_msg)

    def _load_r_packages(self):
        """Load required R packages."""
        self.packages: Dict[str, object] = {}
        try:
            for pkg in self.required_packages:
                self.packages[pkg] = importr(pkg)
            logger.info(f"Loaded R packages: {', '.join(self.required_packages)}")
        except Exception as e:
            raise self.error_class(f"Failed to load R packages: {str(e)}")

    def to_r_matrix(self, df: pd.DataFrame):
        """Convert a numeric DataFrame to an R matrix with dimnames."""
        values = df.to_numpy(dtype=float)
        r_matrix = ro.r['matrix'](
            ro.FloatVector(values.ravel(order='F')),
            nrow=df.shape[0],
            ncol=df.shape[1]
        )
        r_matrix.rownames = ro.StrVector([str(i) for i in df.index])
        r_matrix.colnames = ro.StrVector([str(c) for c in df.columns])
        return r_matrix

    def from_r_matrix(self, r_matrix) -> pd.DataFrame:
        """Convert an R matrix with dimnames to a DataFrame."""
        dims = tuple(int(d) for d in self.base.dim(r_matrix))
        values = np.array(list(r_matrix), dtype=float).reshape(dims, order='F')
        return pd.DataFrame(
            values,
            index=self._names(self.base.rownames(r_matrix)),
            columns=self._names(self.base.colnames(r_matrix))
        )

    def _names(self, r_names):
        if self.base.is_null(r_names)[0]:
            return None
        return [str(n) for n in r_names]

    def to_r_dataframe(self, df: pd.DataFrame):
        """Convert pandas DataFrame to R DataFrame."""
        with localconverter(ro.default_converter + pandas2ri.converter):
            r_df = ro.conversion.get_conversion().py2rpy(df)
        return r_df

    def from_r_dataframe(self, r_df) -> pd.DataFrame:
        """Convert R DataFrame to pandas DataFrame."""
        with localconverter(ro.default_converter + pandas2ri.converter):
            pd_df = ro.conversion.get_conversion().rpy2py(r_df)
        return pd_df

    def to_r_vector(self, values: Sequence):
        """Convert a flat sequence of strings, floats or bools to an R vector."""
        values = list(values)
        if all(isinstance(v, (bool, np.bool_)) for v in values):
            return ro.BoolVector(values)
        if all(isinstance(v, (int, float, np.integer, np.floating)) for v in values):
            return ro.FloatVector([float(v) for v in values])
        return ro.StrVector([str(v) for v in values])

    def from_r_vector(self, r_vector) -> np.ndarray:
        """Convert an atomic R vector to a numpy array."""
        return np.asarray(list(r_vector))
