"""Configuration management for the tumor/normal expression workflows."""

import re
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings
import yaml


_R_NAME = re.compile(r"^(?:[A-Za-z]|\.(?![0-9]))[A-Za-z0-9._]*$")


def _check_indicator(indicator: str, codes: Dict[str, str], exclude_code: str) -> None:
    allowed = set(codes) | {exclude_code}
    unknown = sorted(set(indicator) - allowed)
    if unknown:
        raise ValueError(
            f"Indicator '{indicator}' contains unknown codes {unknown}; "
            f"allowed codes are {sorted(allowed)}"
        )


def _check_labels(codes: Dict[str, str]) -> Dict[str, str]:
    for code, label in codes.items():
        if len(code) != 1:
            raise ValueError(f"Group code '{code}' must be a single character")
        if not _R_NAME.match(label):
            raise ValueError(f"Group label '{label}' is not a valid R name")
    if len(set(codes.values())) != len(codes):
        raise ValueError("Group labels must be unique")
    return codes


class AnalysisDefaults(BaseModel):
    """Default significance thresholds."""

    fdr_threshold: float = Field(default=0.05, ge=0.0, le=1.0)
    log2fc_threshold: float = Field(default=0.0, ge=0.0)


class PathConfig(BaseModel):
    """Path configurations."""

    work_dir: Path = Field(default_factory=Path.cwd)
    output_dir: Optional[Path] = None
    cache_dir: Optional[Path] = None

    def __init__(self, **data):
        super().__init__(**data)
        # Set derived paths if not provided
        if self.output_dir is None:
            self.output_dir = self.work_dir / "results"
        if self.cache_dir is None:
            self.cache_dir = self.work_dir / "cache"

    def create_directories(self):
        """Create all necessary directories."""
        for path in [self.work_dir, self.output_dir, self.cache_dir]:
            path.mkdir(parents=True, exist_ok=True)


class MicroarrayConfig(BaseModel):
    """Settings for the GEO microarray tumor vs normal comparison."""

    gse: str = "GSE15852"
    platform: str = "GPL96"
    # One character per sample, in series order: 0 normal, 1 tumor, X excluded
    sample_indicator: Optional[str] = None
    group_codes: Dict[str, str] = Field(default_factory=lambda: {"0": "normal", "1": "tumor"})
    exclude_code: str = "X"
    contrast: str = "tumor-normal"
    normalize: bool = False
    ebayes_proportion: float = Field(default=0.01, gt=0.0, lt=1.0)
    adjust_method: str = "fdr"
    sort_by: str = "B"
    top_n: Optional[int] = Field(default=250, ge=1)
    drop_incomplete_rows: bool = True
    output_file: str = "microarray_top_table.csv"

    @field_validator("group_codes")
    @classmethod
    def _check_group_codes(cls, v: Dict[str, str]) -> Dict[str, str]:
        return _check_labels(v)

    @model_validator(mode="after")
    def _check_sample_indicator(self):
        if self.exclude_code in self.group_codes:
            raise ValueError(f"Exclusion code '{self.exclude_code}' clashes with a group code")
        unknown = [
            name.strip() for name in self.contrast.split("-")
            if name.strip() not in self.group_codes.values()
        ]
        if unknown:
            raise ValueError(
                f"Contrast '{self.contrast}' names {unknown}, "
                f"which are not group labels {sorted(self.group_codes.values())}"
            )
        if self.sample_indicator is not None:
            _check_indicator(self.sample_indicator, self.group_codes, self.exclude_code)
        return self


class RnaSeqConfig(BaseModel):
    """Settings for the paired RNA-seq tumor vs normal comparison."""

    counts_path: Path = Path("TableS1.txt")
    refseq_column: str = "RefSeqID"
    symbol_column: str = "Symbol"
    sample_columns: List[str] = Field(
        default_factory=lambda: ["8N", "8T", "33N", "33T", "51N", "51T"]
    )
    patients: List[str] = Field(default_factory=lambda: ["8", "8", "33", "33", "51", "51"])
    tissue_indicator: str = "NTNTNT"
    tissue_codes: Dict[str, str] = Field(default_factory=lambda: {"N": "normal", "T": "tumor"})
    exclude_code: str = "X"
    reference_tissue: str = "normal"
    species: str = "Hs"
    robust_dispersion: bool = True
    go_ontology: str = "BP"
    go_sort: str = "up"
    go_top_n: int = Field(default=30, ge=1)
    top_cpm_genes: int = Field(default=10, ge=1)
    output_file: str = "rnaseq_de_genes.csv"
    go_output_file: str = "rnaseq_go_summary.csv"

    @field_validator("tissue_codes")
    @classmethod
    def _check_tissue_codes(cls, v: Dict[str, str]) -> Dict[str, str]:
        return _check_labels(v)

    @field_validator("go_ontology")
    @classmethod
    def _check_ontology(cls, v: str) -> str:
        if v not in ("BP", "CC", "MF"):
            raise ValueError(f"Unknown GO ontology '{v}'")
        return v

    @model_validator(mode="after")
    def _check_layout(self):
        _check_indicator(self.tissue_indicator, self.tissue_codes, self.exclude_code)
        n = len(self.tissue_indicator)
        if len(self.sample_columns) != n or len(self.patients) != n:
            raise ValueError(
                f"sample_columns ({len(self.sample_columns)}), patients ({len(self.patients)}) "
                f"and tissue_indicator ({n}) must have the same length"
            )
        if self.reference_tissue not in self.tissue_codes.values():
            raise ValueError(f"Reference tissue '{self.reference_tissue}' is not a tissue label")
        return self


class Config(BaseSettings):
    """Main configuration class."""

    defaults: AnalysisDefaults = Field(default_factory=AnalysisDefaults)
    paths: PathConfig = Field(default_factory=PathConfig)
    microarray: MicroarrayConfig = Field(default_factory=MicroarrayConfig)
    rnaseq: RnaSeqConfig = Field(default_factory=RnaSeqConfig)

    save_figures: bool = True

    class Config:
        env_prefix = "TNDGE_"
        env_nested_delimiter = "__"

    @classmethod
    def from_yaml(cls, path: Path) -> "Config":
        """Load configuration from YAML file."""
        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}
        return cls(**data)

    def to_yaml(self, path: Path):
        """Save configuration to YAML file."""
        data = self.model_dump()
        # Convert Path objects to strings
        def convert_paths(obj):
            if isinstance(obj, dict):
                return {k: convert_paths(v) for k, v in obj.items()}
            elif isinstance(obj, list):
                return [convert_paths(item) for item in obj]
            elif isinstance(obj, Path):
                return str(obj)
            return obj

        data = convert_paths(data)

        with open(path, 'w') as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    def output_path(self, filename: str) -> Path:
        """Resolve a result file name against the output directory."""
        return self.paths.output_dir / filename


DEFAULT_CONFIG_FILE = "tndge.yaml"

# Global configuration instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        config_path = Path.cwd() / DEFAULT_CONFIG_FILE
        if config_path.exists():
            _config = Config.from_yaml(config_path)
        else:
            _config = Config()
    return _config


def set_config(config: Optional[Config]):
    """Set the global configuration instance."""
    global _config
    _config = config


# Example tndge.yaml template
CONFIG_TEMPLATE = """
# Tumor/normal differential expression configuration

defaults:
  fdr_threshold: 0.05        # False discovery rate threshold
  log2fc_threshold: 0.0      # Log2 fold change threshold for decideTests

paths:
  work_dir: .
  # output_dir: ./results
  # cache_dir: ./cache        # GEO downloads

microarray:
  gse: GSE15852
  platform: GPL96
  # sample_indicator: "00001111X"   # one code per sample in series order, X excludes
  group_codes: {"0": normal, "1": tumor}
  contrast: tumor-normal
  normalize: false              # quantile normalisation between arrays
  top_n: 250

rnaseq:
  counts_path: TableS1.txt
  sample_columns: [8N, 8T, 33N, 33T, 51N, 51T]
  patients: ["8", "8", "33", "33", "51", "51"]
  tissue_indicator: NTNTNT
  species: Hs
  go_ontology: BP
  go_top_n: 30
"""
