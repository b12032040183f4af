"""End-to-end workflow tests with in-memory stand-ins for the R wrappers."""

import numpy as np
import pandas as pd
import pytest

from tumor_normal_dge.geo import GEOSeries
from tumor_normal_dge.microarray import run_microarray_analysis
from tumor_normal_dge.rnaseq import MD_GUIDE_LFC, run_rnaseq_analysis
from tumor_normal_dge.validation import ValidationError


class FakeGEOClient:
    """Serves a fixed expression matrix as a GEO series."""

    def __init__(self, expression):
        self.expression = expression
        self.requests = []

    def fetch_series(self, accession, platform=None, destdir=None, annotate=True):
        self.requests.append((accession, platform, destdir))
        features = pd.DataFrame({
            "ID": self.expression.index,
            "Gene.symbol": [f"SYM{i}" for i in range(len(self.expression))],
            "Gene.title": [f"gene {i}" for i in range(len(self.expression))],
        }, index=self.expression.index)
        return GEOSeries(
            accession=accession,
            name=f"{accession}_series_matrix.txt.gz",
            platform=platform,
            expression=self.expression,
            features=features,
            phenotypes=pd.DataFrame(index=self.expression.columns)
        )


class FakeLimma:
    """Mean-difference statistics in place of lmFit/eBayes."""

    def __init__(self):
        self.calls = []

    def normalize_between_arrays(self, expression, method="quantile"):
        self.calls.append("normalize")
        return expression

    def fit_contrast(self, expression, design, contrast, proportion=0.01):
        self.calls.append(("fit", contrast, list(design.columns)))
        first, second = contrast.split("-")
        in_first = (design[first] == 1).to_numpy()
        in_second = (design[second] == 1).to_numpy()
        logfc = expression.loc[:, in_first].mean(axis=1) - expression.loc[:, in_second].mean(axis=1)
        return {"logFC": logfc, "AveExpr": expression.mean(axis=1)}

    def top_table(self, fit, number=None, adjust_method="fdr", sort_by="B"):
        logfc = fit["logFC"]
        order = logfc.abs().sort_values(ascending=False).index
        pvalue = np.exp(-4 * logfc.abs()[order])
        table = pd.DataFrame({
            "ID": list(order),
            "logFC": logfc[order].to_numpy(),
            "AveExpr": fit["AveExpr"][order].to_numpy(),
            "t": (logfc[order] * 5).to_numpy(),
            "P.Value": pvalue.to_numpy(),
            "adj.P.Val": np.minimum(1.0, pvalue.to_numpy() * len(order)),
            "B": (logfc[order].abs() * 3).to_numpy(),
        })
        return table if number is None else table.head(number)

    def decide_tests(self, fit, p_value=0.05, lfc=0.0):
        calls = np.sign(fit["logFC"].where(fit["logFC"].abs() > 1, 0))
        return {"Down": int((calls < 0).sum()), "NotSig": int((calls == 0).sum()),
                "Up": int((calls > 0).sum())}


class FakeAnnotator:
    """Serves fixed organism tables."""

    def __init__(self, refseq, symbols):
        self.refseq = refseq
        self.symbols = symbols

    def refseq_table(self):
        return self.refseq

    def symbol_table(self):
        return self.symbols


class FakeEdgeR:
    """Paired log-CPM differences in place of the NB GLM."""

    def __init__(self):
        self.calls = []

    def filter_by_expr(self, counts, design):
        return pd.Series((counts >= 10).sum(axis=1) >= 3, index=counts.index)

    def create_dgelist(self, counts, genes=None):
        return {"counts": counts, "genes": genes.loc[counts.index]}

    def calc_norm_factors(self, dge, method="TMM"):
        self.calls.append("calcNormFactors")
        return dge

    def samples(self, dge):
        return pd.DataFrame({"lib.size": dge["counts"].sum(axis=0), "norm.factors": 1.0})

    def estimate_disp(self, dge, design, robust=True):
        self.calls.append(("estimateDisp", robust))
        return dge

    def cpm(self, dge, log=False):
        counts = dge["counts"]
        return counts / counts.sum(axis=0) * 1e6

    def dispersion_summary(self, dge):
        ave = np.log2(self.cpm(dge).mean(axis=1) + 0.5)
        return {"common": 0.05, "genes": pd.DataFrame(
            {"AveLogCPM": ave, "trended": 0.05, "tagwise": 0.05}, index=ave.index
        )}

    def glm_lrt(self, dge, design, coef=None):
        self.calls.append(("glmLRT", list(design.columns)))
        log_cpm = np.log2(self.cpm(dge) + 0.5)
        tumor = design.iloc[:, -1].to_numpy() == 1
        logfc = log_cpm.loc[:, tumor].mean(axis=1) - log_cpm.loc[:, ~tumor].mean(axis=1)
        logfc = logfc - logfc.median()
        return {"dge": dge, "logFC": logfc, "logCPM": log_cpm.mean(axis=1)}

    def top_tags(self, lrt, n=None):
        logfc = lrt["logFC"]
        pvalue = np.exp(-10 * logfc.abs())
        table = lrt["dge"]["genes"].copy()
        table["logFC"] = logfc
        table["logCPM"] = lrt["logCPM"]
        table["LR"] = logfc.abs() * 10
        table["PValue"] = pvalue
        table["FDR"] = np.minimum(1.0, pvalue * len(pvalue))
        return table.sort_values("PValue", kind="mergesort")

    def decide_tests(self, lrt, p_value=0.05, lfc=0.0):
        return np.sign(lrt["logFC"].where(lrt["logFC"].abs() > 1, 0)).astype(int)

    def goana(self, lrt, species="Hs"):
        self.calls.append(("goana", species))
        return "go"

    def top_go(self, go, ontology="BP", sort="up", number=30):
        return pd.DataFrame({
            "Term": ["cell cycle", "DNA replication"],
            "Ont": [ontology, ontology],
            "N": [500, 120],
            "Up": [40, 12],
            "Down": [2, 0],
            "P.Up": [1e-12, 1e-6],
            "P.Down": [0.9, 1.0],
        }, index=pd.Index(["GO:0007049", "GO:0006260"], name="GOID")).head(number)


class TestMicroarrayWorkflow:
    """Tests for the GEO microarray workflow."""

    @pytest.fixture
    def geo(self, raw_expression):
        """Create GEO client serving raw intensities."""
        return FakeGEOClient(raw_expression)

    def test_full_run(self, config, geo, raw_expression):
        """Test selection, log transform, top table and figures."""
        config.microarray.sample_indicator = "0000X1111"
        limma = FakeLimma()

        result = run_microarray_analysis(config, geo_client=geo, limma=limma)

        assert result['log_transformed']
        assert "GSM1004" not in result['expression'].columns
        assert list(result['design'].columns) == ["normal", "tumor"]
        assert limma.calls == [("fit", "tumor-normal", ["normal", "tumor"])]
        assert geo.requests[0][:2] == ("GSE15852", "GPL96")

        table = pd.read_csv(result['output_file'])
        assert result['output_file'] == config.output_path("microarray_top_table.csv")
        assert len(table) == 250
        assert list(table.columns) == [
            "ID", "adj.P.Val", "P.Value", "t", "B", "logFC", "Gene.symbol", "Gene.title"
        ]
        assert set(table["ID"].head(30)) == set(raw_expression.index[:30])

        for name in ("boxplot", "volcano"):
            assert (config.paths.output_dir / f"microarray_top_table_{name}.html").exists()

    def test_all_rows_and_normalization(self, config, geo, raw_expression):
        """Test full table with quantile normalisation and no figures."""
        config.microarray.sample_indicator = "0000X1111"
        config.microarray.top_n = None
        config.microarray.normalize = True
        config.save_figures = False
        limma = FakeLimma()

        result = run_microarray_analysis(config, geo_client=geo, limma=limma)

        assert limma.calls[0] == "normalize"
        assert len(result['results']) == raw_expression.shape[0]
        assert not list(config.paths.output_dir.glob("*.html"))

    def test_log_values_left_untouched(self, config, raw_expression):
        """Test that log-scale series are not transformed again."""
        config.microarray.sample_indicator = "0000X1111"
        geo = FakeGEOClient(np.log2(raw_expression))

        result = run_microarray_analysis(config, geo_client=geo, limma=FakeLimma())

        assert not result['log_transformed']

    def test_missing_indicator(self, config, geo):
        """Test error when no sample indicator is configured."""
        with pytest.raises(ValueError, match="sample_indicator"):
            run_microarray_analysis(config, geo_client=geo, limma=FakeLimma())

    def test_indicator_length_mismatch(self, config, geo):
        """Test error when the indicator does not match the series."""
        config.microarray.sample_indicator = "0011"

        with pytest.raises(ValueError, match="4 characters"):
            run_microarray_analysis(config, geo_client=geo, limma=FakeLimma())


class TestRnaSeqWorkflow:
    """Tests for the paired RNA-seq workflow."""

    @pytest.fixture
    def counts_file(self, tmp_path, paired_table):
        """Write the paired count table as TSV."""
        path = tmp_path / "TableS1.txt"
        paired_table.to_csv(path, sep="\t", index=False)
        return path

    @pytest.fixture
    def annotator(self, refseq_tables):
        """Create annotator over the synthetic organism tables."""
        return FakeAnnotator(*refseq_tables)

    def test_full_run(self, config, counts_file, annotator):
        """Test paired design, ranked genes, GO summary and figures."""
        config.rnaseq.counts_path = counts_file
        edger = FakeEdgeR()

        result = run_rnaseq_analysis(config, edger=edger, annotator=annotator)

        assert list(result['design'].columns) == [
            "(Intercept)", "patient33", "patient51", "tissuetumor"
        ]
        assert ("estimateDisp", True) in edger.calls
        assert ("goana", "Hs") in edger.calls

        table = pd.read_csv(result['output_file'], dtype={"EntrezGene": str})
        assert table.columns[0] == "EntrezGene"
        assert {"Symbol", "logFC", "FDR", "direction"} <= set(table.columns)
        truly_de = {str(1000 + i) for i in range(40)}
        assert set(table["EntrezGene"].head(30)) <= truly_de
        assert (table["direction"].head(30) == "up").all()

        go = pd.read_csv(result['go_output_file'])
        assert list(go.columns[:2]) == ["GOID", "Term"]

        assert len(result['cpm']) == config.rnaseq.top_cpm_genes
        assert result['summary']['Up'] >= 30
        for name in ("pca", "bcv", "md", "volcano", "heatmap"):
            assert (config.paths.output_dir / f"rnaseq_de_genes_{name}.html").exists()

    def test_excluded_patient(self, config, counts_file, annotator):
        """Test that excluding both samples of a patient drops its column."""
        config.rnaseq.counts_path = counts_file
        config.rnaseq.tissue_indicator = "NTNTXX"
        config.save_figures = False

        result = run_rnaseq_analysis(config, edger=FakeEdgeR(), annotator=annotator)

        assert list(result['design'].index) == ["8N", "8T", "33N", "33T"]
        assert list(result['design'].columns) == ["(Intercept)", "patient33", "tissuetumor"]

    def test_unmatched_sample(self, config, counts_file, annotator):
        """Test error naming a patient left with one tissue."""
        config.rnaseq.counts_path = counts_file
        config.rnaseq.tissue_indicator = "NTNTNX"

        with pytest.raises(ValidationError, match="51"):
            run_rnaseq_analysis(config, edger=FakeEdgeR(), annotator=annotator)

    def test_missing_sample_column(self, config, counts_file, annotator):
        """Test error naming an absent sample column."""
        config.rnaseq.counts_path = counts_file
        config.rnaseq.sample_columns = ["8N", "8T", "33N", "33T", "51N", "99T"]

        with pytest.raises(KeyError, match="99T"):
            run_rnaseq_analysis(config, edger=FakeEdgeR(), annotator=annotator)

    def test_md_guide_lines(self, config, counts_file, annotator):
        """Test fold-change guide lines on the MD plot."""
        config.rnaseq.counts_path = counts_file
        config.save_figures = False

        result = run_rnaseq_analysis(config, edger=FakeEdgeR(), annotator=annotator)

        guides = sorted(shape.y0 for shape in result['figures']['md'].layout.shapes)
        assert guides == [-MD_GUIDE_LFC, 0, MD_GUIDE_LFC]

    def test_heatmap_genes_without_symbol(self, config, counts_file, refseq_tables):
        """Test that top genes lacking a symbol get one heatmap row each."""
        config.rnaseq.counts_path = counts_file
        config.save_figures = False
        refseq, symbols = refseq_tables
        unnamed = {str(1000 + i) for i in range(40)}
        annotator = FakeAnnotator(refseq, symbols[~symbols["gene_id"].isin(unnamed)])

        result = run_rnaseq_analysis(config, edger=FakeEdgeR(), annotator=annotator)

        rows = list(result['figures']['heatmap'].data[0].y)
        assert len(set(rows)) == len(rows) == 30
        assert set(rows) <= unnamed
