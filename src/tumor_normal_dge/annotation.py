"""Gene annotation from Bioconductor organism databases."""

import logging
from typing import Sequence

import pandas as pd

from .rbridge import RBridgeError, RPackageBridge


logger = logging.getLogger(__name__)


class AnnotationError(RBridgeError):
    """Exception for annotation lookup errors."""
    pass


class OrgDbAnnotator(RPackageBridge):
    """Lookup tables from an ``org.<species>.eg.db`` package."""

    error_class = AnnotationError

    def __init__(self, species: str = "Hs"):
        self.species = species
        self.required_packages = ('AnnotationDbi', self.org_package)
        super().__init__()

    @property
    def org_package(self) -> str:
        return f"org.{self.species}.eg.db"

    def _map_table(self, map_name: str) -> pd.DataFrame:
        annotation_dbi = self.packages['AnnotationDbi']
        try:
            bimap = self.base.get(f"org.{self.species}.eg{map_name}",
                                  envir=self.base.asNamespace(self.org_package))
            return self.from_r_dataframe(annotation_dbi.toTable(bimap)).reset_index(drop=True)
        except Exception as e:
            raise AnnotationError(f"Failed to read {self.org_package} {map_name} map: {str(e)}")

    def refseq_table(self) -> pd.DataFrame:
        """Entrez gene id to RefSeq accession pairs (gene_id, accession)."""
        return self._map_table("REFSEQ")

    def symbol_table(self) -> pd.DataFrame:
        """Entrez gene id to official symbol pairs (gene_id, symbol)."""
        return self._map_table("SYMBOL")


def annotate_refseq(
    table: pd.DataFrame,
    refseq_table: pd.DataFrame,
    symbol_table: pd.DataFrame,
    refseq_column: str = "RefSeqID",
    symbol_column: str = "Symbol"
) -> pd.DataFrame:
    """
    Attach Entrez gene ids and current symbols to a RefSeq-keyed table.

    Rows whose accession is not in the organism database are dropped. The
    original symbol column is replaced by the database symbol.

    Args:
        table: Count table with a RefSeq accession column
        refseq_table: ``gene_id``/``accession`` pairs
        symbol_table: ``gene_id``/``symbol`` pairs
        refseq_column: Accession column of ``table``
        symbol_column: Name of the output symbol column

    Returns:
        Annotated table with an ``EntrezGene`` column
    """
    if refseq_column not in table.columns:
        raise KeyError(f"Column '{refseq_column}' not found in count table")

    accession_to_gene = (
        refseq_table.drop_duplicates("accession").set_index("accession")["gene_id"]
    )
    gene_to_symbol = symbol_table.drop_duplicates("gene_id").set_index("gene_id")["symbol"]

    found = table[refseq_column].isin(accession_to_gene.index)
    n_missing = int((~found).sum())
    if n_missing:
        logger.info(f"Dropping {n_missing} of {len(table)} accessions without an Entrez gene")

    annotated = table.loc[found].copy()
    annotated["EntrezGene"] = annotated[refseq_column].map(accession_to_gene).astype(str)
    annotated[symbol_column] = annotated["EntrezGene"].map(gene_to_symbol)
    return annotated


def deduplicate_by_symbol(
    table: pd.DataFrame,
    sample_columns: Sequence[str],
    symbol_column: str = "Symbol",
    id_column: str = "EntrezGene"
) -> pd.DataFrame:
    """
    Keep one row per gene, the one with the largest total count.

    Rows are returned in decreasing order of total count and indexed by
    ``id_column``, which is removed from the columns.
    """
    totals = table[list(sample_columns)].sum(axis=1)
    ordered = table.loc[totals.sort_values(ascending=False, kind="mergesort").index]

    key = ordered[symbol_column].where(ordered[symbol_column].notna(), ordered[id_column])
    ordered = ordered.loc[~key.duplicated().to_numpy()]
    ordered = ordered.loc[~ordered[id_column].duplicated().to_numpy()]

    n_dropped = len(table) - len(ordered)
    if n_dropped:
        logger.info(f"Dropped {n_dropped} duplicated gene rows")

    result = ordered.set_index(id_column)
    result.index.name = id_column
    return result
