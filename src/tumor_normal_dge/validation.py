"""Data validation for count tables, expression matrices and sample pairing."""

from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from pydantic import BaseModel, Field


class ValidationError(ValueError):
    """Custom exception for validation errors."""
    pass


class ValidationWarning(BaseModel):
    """Warning message from validation."""
    message: str
    severity: str = Field(default="warning")  # warning, info


class ValidationResult(BaseModel):
    """Result of data validation."""
    valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[ValidationWarning] = Field(default_factory=list)
    summary: Dict[str, Any] = Field(default_factory=dict)

    def raise_for_errors(self, what: str):
        """Raise ValidationError listing every error, if any."""
        if not self.valid:
            raise ValidationError(f"Invalid {what}: " + "; ".join(self.errors))


class CountMatrixSchema(BaseModel):
    """Schema for count matrix validation."""
    n_genes: int
    n_samples: int
    sample_ids: List[str]
    has_negative: bool
    has_non_integer: bool
    has_missing: bool
    library_sizes: Dict[str, float]


def _detect_delimiter(filepath: Path) -> Optional[str]:
    with open(filepath, 'r') as f:
        first_line = f.readline()
    if '\t' in first_line:
        return '\t'
    elif ',' in first_line:
        return ','
    return None  # pandas will try to detect


def read_count_table(
    filepath: Union[str, Path],
    delimiter: Optional[str] = None,
    header: int = 0
) -> pd.DataFrame:
    """
    Read a count table with annotation and sample columns side by side.

    Args:
        filepath: Path to the table (tab-delimited, CSV or Excel)
        delimiter: Column delimiter (auto-detected if None)
        header: Row index for column names

    Returns:
        DataFrame with one row per feature and a default integer index
    """
    filepath = Path(filepath)

    if filepath.suffix.lower() in ['.xlsx', '.xls']:
        df = pd.read_excel(filepath, header=header)
    else:
        if delimiter is None:
            delimiter = _detect_delimiter(filepath)
        df = pd.read_csv(
            filepath, sep=delimiter, header=header,
            engine='python' if delimiter is None else 'c'
        )

    # Clean up column names (remove whitespace)
    df.columns = df.columns.astype(str).str.strip()

    return df


def validate_count_matrix(counts: pd.DataFrame) -> Tuple[ValidationResult, Optional[CountMatrixSchema]]:
    """
    Validate count matrix.

    Args:
        counts: Count matrix DataFrame (genes x samples)

    Returns:
        Tuple of (ValidationResult, CountMatrixSchema)
    """
    errors = []
    warnings = []

    # Basic structure checks
    if counts.empty:
        errors.append("Count matrix is empty")
        return ValidationResult(valid=False, errors=errors), None

    n_genes, n_samples = counts.shape

    non_numeric = [c for c in counts.columns if not pd.api.types.is_numeric_dtype(counts[c])]
    if non_numeric:
        errors.append(f"Count columns are not numeric: {', '.join(map(str, non_numeric))}")
        return ValidationResult(valid=False, errors=errors), None

    # Check for negative values
    has_negative = bool((counts < 0).any().any())
    if has_negative:
        errors.append("Count matrix contains negative values")

    # Check for missing values
    has_missing = bool(counts.isna().any().any())
    if has_missing:
        n_missing = counts.isna().sum().sum()
        errors.append(f"Count matrix contains {n_missing} missing values")

    # Check for non-integer values
    values = counts.to_numpy(dtype=float)
    finite = values[~np.isnan(values)]
    has_non_integer = not np.allclose(finite, np.round(finite))
    if has_non_integer:
        warnings.append(ValidationWarning(
            message="Count matrix contains non-integer values.",
            severity="warning"
        ))

    # Calculate library sizes
    library_sizes = {str(k): float(v) for k, v in counts.sum(axis=0).items()}

    for sample, size in library_sizes.items():
        if size < 1e6:
            warnings.append(ValidationWarning(
                message=f"Sample '{sample}' has low library size: {size:,.0f} reads",
                severity="warning"
            ))

    # Check for duplicate gene IDs
    if counts.index.duplicated().any():
        n_duplicates = counts.index.duplicated().sum()
        errors.append(f"Count matrix contains {n_duplicates} duplicate gene IDs")

    # Check for duplicate sample IDs
    if counts.columns.duplicated().any():
        n_duplicates = counts.columns.duplicated().sum()
        errors.append(f"Count matrix contains {n_duplicates} duplicate sample IDs")

    schema = CountMatrixSchema(
        n_genes=n_genes,
        n_samples=n_samples,
        sample_ids=[str(c) for c in counts.columns],
        has_negative=has_negative,
        has_non_integer=has_non_integer,
        has_missing=has_missing,
        library_sizes=library_sizes
    )

    summary = {
        "n_genes": n_genes,
        "n_samples": n_samples,
        "total_counts": float(np.nansum(values)),
        "median_library_size": float(np.median(list(library_sizes.values())))
    }

    result = ValidationResult(
        valid=len(errors) == 0,
        errors=errors,
        warnings=warnings,
        summary=summary
    )

    return result, schema


def validate_expression_matrix(expression: pd.DataFrame) -> ValidationResult:
    """
    Validate a microarray expression matrix (probes x samples).

    Missing values are allowed but reported; an all-missing sample is an error.
    """
    errors = []
    warnings = []

    if expression.empty:
        errors.append("Expression matrix is empty")
        return ValidationResult(valid=False, errors=errors)

    non_numeric = [
        c for c in expression.columns
        if not pd.api.types.is_numeric_dtype(expression[c])
    ]
    if non_numeric:
        errors.append(f"Expression columns are not numeric: {', '.join(map(str, non_numeric))}")
        return ValidationResult(valid=False, errors=errors)

    missing_per_sample = expression.isna().all(axis=0)
    for sample in expression.columns[missing_per_sample]:
        errors.append(f"Sample '{sample}' has no expression values")

    n_missing = int(expression.isna().sum().sum())
    if n_missing:
        warnings.append(ValidationWarning(
            message=f"Expression matrix contains {n_missing} missing values",
            severity="info"
        ))

    if expression.index.duplicated().any():
        errors.append(
            f"Expression matrix contains {expression.index.duplicated().sum()} duplicate probe IDs"
        )

    summary = {
        "n_features": expression.shape[0],
        "n_samples": expression.shape[1],
        "n_missing": n_missing
    }

    return ValidationResult(
        valid=len(errors) == 0,
        errors=errors,
        warnings=warnings,
        summary=summary
    )


def validate_pairing(
    patients: Sequence[str],
    tissues: Sequence[str],
    min_patients: int = 2
) -> ValidationResult:
    """
    Validate patient-matched tumor/normal samples.

    Args:
        patients: Patient label per sample
        tissues: Tissue label per sample
        min_patients: Minimum number of complete pairs required

    Returns:
        ValidationResult with per-patient tissue counts in the summary
    """
    errors = []
    warnings = []

    if len(patients) != len(tissues):
        errors.append(f"{len(patients)} patient labels for {len(tissues)} tissue labels")
        return ValidationResult(valid=False, errors=errors)

    table = pd.DataFrame({"patient": [str(p) for p in patients], "tissue": list(tissues)})
    tissue_levels = sorted(table["tissue"].unique())
    if len(tissue_levels) != 2:
        errors.append(f"Expected two tissue types, found {tissue_levels}")

    counts = table.groupby(["patient", "tissue"]).size().unstack(fill_value=0)
    for patient, row in counts.iterrows():
        if (row == 0).any():
            errors.append(f"Patient '{patient}' is missing a matched sample")
        elif (row > 1).any():
            warnings.append(ValidationWarning(
                message=f"Patient '{patient}' has replicate samples for one tissue",
                severity="info"
            ))

    n_complete = int((counts > 0).all(axis=1).sum())
    if n_complete < min_patients:
        errors.append(
            f"Only {n_complete} complete patient pair(s); at least {min_patients} required"
        )

    return ValidationResult(
        valid=len(errors) == 0,
        errors=errors,
        warnings=warnings,
        summary={"n_patients": int(counts.shape[0]), "complete_pairs": n_complete,
                 "tissues": tissue_levels}
    )
