"""
JSON normalization for values headed to the local queue or the backend.

Rows built from pandas frames or numpy arrays carry numpy scalars, NaN and
Timestamps; json.dumps rejects or mangles those.
"""

import math
from datetime import date, datetime
from decimal import Decimal
from typing import Any

import numpy as np
import pandas as pd


def to_json_safe(value: Any) -> Any:
    """
    Recursively convert a value to plain JSON-compatible Python types.

    - dict/list/tuple are walked
    - NaN, NaT and pandas NA become None
    - datetimes and dates become ISO strings
    - Decimal and numpy floats become float, numpy ints become int

    Raises:
        TypeError: for values with no JSON representation
    """
    if isinstance(value, dict):
        return {str(k): to_json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_json_safe(v) for v in value]
    if isinstance(value, np.ndarray):
        return [to_json_safe(v) for v in value.tolist()]

    if value is None or isinstance(value, (str, bool)):
        return value
    if pd.api.types.is_scalar(value) and pd.isna(value):
        return None

    if isinstance(value, np.bool_):
        return bool(value)
    if isinstance(value, np.integer):
        return int(value)
    if isinstance(value, (np.floating, Decimal)):
        return float(value)
    if isinstance(value, float):
        return None if math.isinf(value) else value
    if isinstance(value, int):
        return value
    if isinstance(value, (datetime, date)):
        return value.isoformat()

    raise TypeError(f"Value of type {type(value).__name__} is not JSON serializable")
