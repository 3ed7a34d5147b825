"""Storage precision for voxel buffers.

Integration math always runs in float32. Buffers may be stored at a lower
precision; conversion happens only where values are read from or written to
a buffer.
"""

from __future__ import annotations

from typing import Literal

import numpy as np

from .errors import ConfigError

StoragePrecision = Literal["float32", "float16"]

WORKING_DTYPE = np.float32

_STORAGE_DTYPES: dict[str, type[np.floating]] = {
    "float32": np.float32,
    "float16": np.float16,
}


def storage_dtype(precision: str) -> np.dtype:
    """Resolve a storage precision name to a numpy dtype."""
    try:
        return np.dtype(_STORAGE_DTYPES[precision])
    except KeyError:
        raise ConfigError(
            f"Unknown storage precision '{precision}' "
            f"(expected one of {sorted(_STORAGE_DTYPES)})"
        ) from None


def precision_of(buf: np.ndarray) -> str:
    """Inverse of storage_dtype for an existing buffer."""
    for name, dtype in _STORAGE_DTYPES.items():
        if buf.dtype == dtype:
            return name
    raise ConfigError(f"Unsupported buffer dtype {buf.dtype}")


def to_working(values: np.ndarray) -> np.ndarray:
    """Read-side conversion: storage values -> working precision."""
    return np.asarray(values, dtype=WORKING_DTYPE)


def to_storage(values: np.ndarray, dtype: np.dtype) -> np.ndarray:
    """Write-side conversion: working precision -> storage dtype."""
    return np.asarray(values).astype(dtype, copy=False)
