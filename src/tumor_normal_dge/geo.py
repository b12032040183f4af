"""GEO series download through GEOquery."""

import logging
import re
from pathlib import Path
from typing import List, Optional, Sequence, Union

import pandas as pd
from pydantic import BaseModel, ConfigDict

from .rbridge import RBridgeError, RPackageBridge


logger = logging.getLogger(__name__)


class GEOError(RBridgeError):
    """Exception for GEO download and parsing errors."""
    pass


class GEOSeries(BaseModel):
    """One expression set of a GEO series, converted to pandas."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    accession: str
    name: str
    platform: Optional[str] = None
    expression: pd.DataFrame
    features: pd.DataFrame
    phenotypes: pd.DataFrame

    @property
    def n_samples(self) -> int:
        return self.expression.shape[1]


_INVALID_NAME_CHARS = re.compile(r"[^A-Za-z0-9._]")
_VALID_START = re.compile(r"^(?:[A-Za-z]|\.(?![0-9]))")


def make_r_names(labels: Sequence[str]) -> List[str]:
    """
    Syntactically valid names, following R's ``make.names``.

    Invalid characters become dots and names not starting with a letter (or a
    dot not followed by a digit) get an ``X`` prefix.
    """
    names = []
    for label in labels:
        name = _INVALID_NAME_CHARS.sub(".", str(label))
        if not _VALID_START.match(name):
            name = "X" + name
        names.append(name)
    return names


def select_series_index(names: Sequence[str], platform: Optional[str]) -> int:
    """
    Pick the expression set to analyse among those returned for a series.

    A single set is always used. With several, the first whose name mentions
    the platform accession is chosen.
    """
    names = list(names)
    if not names:
        raise GEOError("GEO returned no expression sets")
    if len(names) == 1:
        return 0
    if not platform:
        raise GEOError(
            f"Series has {len(names)} platforms ({', '.join(names)}); set a platform to choose one"
        )
    for idx, name in enumerate(names):
        if platform in name:
            logger.info(f"Series has {len(names)} expression sets; using '{name}'")
            return idx
    raise GEOError(f"Platform {platform} not found among expression sets: {', '.join(names)}")


class GEOClient(RPackageBridge):
    """Download GEO series matrices and convert them to pandas."""

    required_packages = ('GEOquery', 'Biobase')
    error_class = GEOError

    def fetch_series(
        self,
        accession: str,
        platform: Optional[str] = None,
        destdir: Optional[Union[str, Path]] = None,
        annotate: bool = True
    ) -> GEOSeries:
        """
        Download a series matrix and return the chosen expression set.

        Args:
            accession: GEO series accession (GSE...)
            platform: Platform accession (GPL...) used when several sets come back
            destdir: Download cache directory (R's tempdir when None)
            annotate: Request the GPL annotation (gene symbol, title columns)

        Returns:
            GEOSeries with expression, feature and phenotype tables
        """
        geoquery = self.packages['GEOquery']
        biobase = self.packages['Biobase']

        kwargs = {"GSEMatrix": True, "AnnotGPL": annotate}
        if destdir is not None:
            Path(destdir).mkdir(parents=True, exist_ok=True)
            kwargs["destdir"] = str(destdir)

        logger.info(f"Fetching {accession} from GEO")
        try:
            gset_list = geoquery.getGEO(accession, **kwargs)
        except Exception as e:
            raise GEOError(f"Failed to download {accession}: {str(e)}")

        names = self._names(self.base.names(gset_list)) or [accession]
        idx = select_series_index(names, platform)
        eset = gset_list[idx]

        try:
            expression = self.from_r_matrix(biobase.exprs(eset))
            features = self.from_r_dataframe(biobase.fData(eset))
            phenotypes = self.from_r_dataframe(biobase.pData(eset))
        except Exception as e:
            raise GEOError(f"Failed to convert {accession} expression set: {str(e)}")

        features.columns = make_r_names(features.columns)
        series = GEOSeries(
            accession=accession,
            name=names[idx],
            platform=platform,
            expression=expression,
            features=features,
            phenotypes=phenotypes
        )
        logger.info(
            f"Loaded {series.name}: {expression.shape[0]} features x {series.n_samples} samples"
        )
        return series
