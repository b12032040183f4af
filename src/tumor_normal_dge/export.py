"""Result table export."""

import logging
from pathlib import Path
from typing import Union

import pandas as pd


logger = logging.getLogger(__name__)


def write_table(frame: pd.DataFrame, path: Union[str, Path], index: bool = False) -> Path:
    """Write a result table as CSV, creating the parent directory."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    frame.to_csv(path, index=index)
    logger.info(f"Wrote {len(frame)} rows to {path}")
    return path
