"""
Enumerations and numeric tolerances shared across earthtess.
"""

from __future__ import annotations

import math
from enum import Enum

import numpy as np

# Query points closer than this to a grid vertex are treated as exact hits.
VERTEX_HIT_COS = math.cos(1e-7)

# Maximum mismatch (km) between adjacent layer boundaries that is silently repaired.
LAYER_BOUNDARY_TOLERANCE = 0.01

# Relative tolerance when comparing a query radius with an interpolated layer bottom.
LAYER_SELECTION_RTOL = 1e-9


class ProfileType(Enum):
    """Discriminant of the radial profile variants.

    The integer values are persisted in model files and must not change.
    """

    EMPTY = 0
    THIN = 1
    CONSTANT = 2
    NPOINT = 3
    SURFACE = 4
    SURFACE_EMPTY = 5

    @property
    def has_radii(self) -> bool:
        return self not in (ProfileType.SURFACE, ProfileType.SURFACE_EMPTY)

    @property
    def has_data(self) -> bool:
        return self not in (ProfileType.EMPTY, ProfileType.SURFACE_EMPTY)


class DataType(Enum):
    """Scalar type shared by every attribute value stored in a model."""

    DOUBLE = "double"
    FLOAT = "float"
    LONG = "long"
    INT = "int"
    SHORT = "short"
    BYTE = "byte"

    @property
    def numpy_dtype(self) -> np.dtype:
        return np.dtype(_NUMPY_DTYPES[self])

    @property
    def supports_nan(self) -> bool:
        return self in (DataType.DOUBLE, DataType.FLOAT)


_NUMPY_DTYPES = {
    DataType.DOUBLE: "float64",
    DataType.FLOAT: "float32",
    DataType.LONG: "int64",
    DataType.INT: "int32",
    DataType.SHORT: "int16",
    DataType.BYTE: "int8",
}
