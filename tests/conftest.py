"""Shared fixtures: synthetic microarray and paired RNA-seq datasets."""

import numpy as np
import pandas as pd
import pytest

from tumor_normal_dge.config import Config, PathConfig, set_config


N_GENES = 400
N_DE = 40
PATIENTS = ["8", "33", "51"]


def simulate_paired_counts(
    n_genes: int = N_GENES,
    n_de: int = N_DE,
    patients=PATIENTS,
    fold_change: float = 4.0,
    seed: int = 42
) -> pd.DataFrame:
    """
    Simulate a RefSeq-keyed count table with matched normal/tumor columns.

    The first ``n_de`` genes are up in tumor by ``fold_change``.
    """
    rng = np.random.default_rng(seed)
    base = rng.lognormal(mean=5, sigma=1.2, size=n_genes)
    dispersion = 0.05

    columns = {}
    for patient in patients:
        patient_effect = rng.uniform(0.8, 1.25)
        for tissue in ("N", "T"):
            mean = base * patient_effect
            if tissue == "T":
                mean = mean.copy()
                mean[:n_de] *= fold_change
            columns[f"{patient}{tissue}"] = rng.negative_binomial(
                n=1 / dispersion, p=1 / (1 + mean * dispersion)
            )

    table = pd.DataFrame({
        "RefSeqID": [f"NM_{i:06d}" for i in range(n_genes)],
        "Symbol": [f"GENE{i}" for i in range(n_genes)],
        "NbrOfExons": rng.integers(1, 30, n_genes)
    })
    for name, values in columns.items():
        table[name] = values
    return table


def simulate_expression(
    n_probes: int = 300,
    n_normal: int = 4,
    n_tumor: int = 4,
    n_excluded: int = 1,
    n_de: int = 30,
    raw: bool = True,
    seed: int = 7
) -> pd.DataFrame:
    """
    Simulate a probe x sample intensity matrix ordered normal, excluded, tumor.

    The first ``n_de`` probes are 8-fold up in tumor. With ``raw`` the values
    are linear intensities, otherwise log2 values.
    """
    rng = np.random.default_rng(seed)
    baseline = rng.normal(7, 1.5, n_probes)
    n_samples = n_normal + n_excluded + n_tumor
    log_values = baseline[:, None] + rng.normal(0, 0.3, (n_probes, n_samples))
    log_values[:n_de, n_normal + n_excluded:] += 3.0
    values = 2 ** log_values if raw else log_values
    return pd.DataFrame(
        values,
        index=[f"{200000 + i}_at" for i in range(n_probes)],
        columns=[f"GSM{1000 + j}" for j in range(n_samples)]
    )


@pytest.fixture
def paired_table():
    """Paired count table for patients 8, 33 and 51."""
    return simulate_paired_counts()


@pytest.fixture
def sample_columns():
    """Count columns of the paired table."""
    return [f"{p}{t}" for p in PATIENTS for t in ("N", "T")]


@pytest.fixture
def raw_expression():
    """Raw-scale microarray intensities."""
    return simulate_expression()


@pytest.fixture
def refseq_tables(paired_table):
    """Organism tables mapping every accession but the last five."""
    mapped = paired_table.iloc[:-5]
    refseq = pd.DataFrame({
        "gene_id": [str(1000 + i) for i in range(len(mapped))],
        "accession": mapped["RefSeqID"].tolist()
    })
    symbols = pd.DataFrame({
        "gene_id": refseq["gene_id"],
        "symbol": [f"SYM{i}" for i in range(len(mapped))]
    })
    return refseq, symbols


@pytest.fixture
def config(tmp_path):
    """Configuration writing into a temporary directory."""
    cfg = Config(paths=PathConfig(work_dir=tmp_path))
    set_config(cfg)
    yield cfg
    set_config(None)
