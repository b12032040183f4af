"""Sample selection from indicator strings and design matrix construction."""

import logging
from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd
from pydantic import BaseModel


logger = logging.getLogger(__name__)


class SampleSelectionError(ValueError):
    """Raised when an indicator string or design does not fit the samples."""
    pass


class SampleSelection(BaseModel):
    """Samples kept by an indicator string.

    ``positions`` are column positions in the original sample order and
    ``groups`` the group label of each kept sample, aligned with ``positions``.
    """

    indicator: str
    positions: List[int]
    groups: List[str]

    @property
    def n_total(self) -> int:
        return len(self.indicator)

    @property
    def n_excluded(self) -> int:
        return self.n_total - len(self.positions)

    def group_counts(self) -> Dict[str, int]:
        return pd.Series(self.groups, dtype=object).value_counts().to_dict()


def parse_indicator(
    indicator: str,
    codes: Dict[str, str],
    exclude_code: str = "X"
) -> SampleSelection:
    """
    Decode a per-sample indicator string.

    Args:
        indicator: One character per sample, in dataset column order
        codes: Mapping of indicator character to group label
        exclude_code: Character marking a sample to drop

    Returns:
        SampleSelection with the kept positions and their group labels
    """
    positions = []
    groups = []
    for position, code in enumerate(indicator):
        if code == exclude_code:
            continue
        if code not in codes:
            raise SampleSelectionError(
                f"Unknown code '{code}' at position {position + 1} of indicator "
                f"(expected one of {sorted(codes)} or '{exclude_code}')"
            )
        positions.append(position)
        groups.append(codes[code])

    if not positions:
        raise SampleSelectionError("Indicator excludes every sample")

    selection = SampleSelection(indicator=indicator, positions=positions, groups=groups)
    logger.info(
        f"Indicator keeps {len(positions)} of {selection.n_total} samples: "
        f"{selection.group_counts()}"
    )
    return selection


def apply_selection(frame: pd.DataFrame, selection: SampleSelection) -> pd.DataFrame:
    """Keep the selected sample columns of a genes x samples frame."""
    if frame.shape[1] != selection.n_total:
        raise SampleSelectionError(
            f"Indicator has {selection.n_total} characters but the data has "
            f"{frame.shape[1]} samples"
        )
    return frame.iloc[:, selection.positions].copy()


def group_design(groups: Sequence[str], levels: Optional[Sequence[str]] = None,
                 samples: Optional[Sequence[str]] = None) -> pd.DataFrame:
    """
    Cell-means design matrix (one indicator column per group, no intercept).

    Args:
        groups: Group label per sample
        levels: Column order; defaults to sorted unique labels
        samples: Row names; defaults to positional integers

    Returns:
        Design matrix DataFrame of floats
    """
    groups = list(groups)
    if levels is None:
        levels = sorted(set(groups))
    levels = list(levels)

    missing = [g for g in set(groups) if g not in levels]
    if missing:
        raise SampleSelectionError(f"Groups {sorted(missing)} are not design levels")

    design = pd.DataFrame(
        {level: [1.0 if g == level else 0.0 for g in groups] for level in levels},
        index=list(samples) if samples is not None else None
    )

    empty = [level for level in levels if design[level].sum() == 0]
    if empty:
        raise SampleSelectionError(f"No samples in group(s): {', '.join(empty)}")
    return design


def paired_design(
    patients: Sequence[str],
    tissues: Sequence[str],
    reference_tissue: str,
    samples: Optional[Sequence[str]] = None
) -> pd.DataFrame:
    """
    Treatment-contrast design for ``~ patient + tissue``.

    The first patient (in order of appearance) and ``reference_tissue`` are the
    baseline levels, so the last column is the tissue effect adjusted for
    patient.
    """
    patients = [str(p) for p in patients]
    tissues = list(tissues)
    if len(patients) != len(tissues):
        raise SampleSelectionError(
            f"{len(patients)} patient labels for {len(tissues)} tissue labels"
        )

    tissue_levels = [reference_tissue] + sorted(set(tissues) - {reference_tissue})
    if len(tissue_levels) != 2 or reference_tissue not in tissues:
        raise SampleSelectionError(
            f"Paired design needs exactly two tissues including '{reference_tissue}', "
            f"got {sorted(set(tissues))}"
        )

    table = pd.DataFrame({"patient": patients, "tissue": tissues})
    per_patient = table.groupby("patient", sort=False)["tissue"].nunique()
    unpaired = per_patient[per_patient < 2].index.tolist()
    if unpaired:
        raise SampleSelectionError(
            f"Patient(s) {', '.join(unpaired)} lack a matched {'/'.join(tissue_levels)} pair"
        )

    patient_levels = list(dict.fromkeys(patients))
    columns = {"(Intercept)": np.ones(len(patients))}
    for level in patient_levels[1:]:
        columns[f"patient{level}"] = (table["patient"] == level).astype(float).to_numpy()
    columns[f"tissue{tissue_levels[1]}"] = (
        table["tissue"] == tissue_levels[1]
    ).astype(float).to_numpy()

    return pd.DataFrame(columns, index=list(samples) if samples is not None else None)
