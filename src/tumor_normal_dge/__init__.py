"""Tumor vs normal differential expression for GEO microarrays and paired RNA-seq."""

__version__ = "0.1.0"

from .config import get_config, Config
from .samples import parse_indicator, group_design, paired_design
from .transform import auto_log2, needs_log_transform
from .microarray import run_microarray_analysis
from .rnaseq import run_rnaseq_analysis

__all__ = [
    'get_config',
    'Config',
    'parse_indicator',
    'group_design',
    'paired_design',
    'auto_log2',
    'needs_log_transform',
    'run_microarray_analysis',
    'run_rnaseq_analysis'
]
