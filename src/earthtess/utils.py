"""
Error classes and small geometry helpers for earthtess.

This file is part of earthtess.

Copyright (c) 2025 earthtess Developers.

Licensed under the Apache License, Version 2.0 (the "License");
you may not use this file except in compliance with the License.
You may obtain a copy of the License at

    http://www.apache.org/licenses/LICENSE-2.0

Unless required by applicable law or agreed to in writing, software
distributed under the License is distributed on an "AS IS" BASIS,
WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
See the License for the specific language governing permissions and
limitations under the License.
"""

from __future__ import annotations

import hashlib

import numpy as np


class GridInconsistencyError(RuntimeError):
    """A geometric invariant of the grid was violated.

    Raised when a triangle walk does not converge or the natural neighbor
    boundary does not close. Indicates a corrupt grid or a bug and is never
    the result of bad user input.
    """


class InvalidQueryError(ValueError):
    """A query referenced a layer, attribute, vertex or option that does not exist."""


class ProfileTypeError(ValueError):
    """An operation is not supported by the kind of profile (or model) it was applied to."""


class ModelValidationError(ValueError): ...


def normalize(vector: np.ndarray) -> np.ndarray:
    """Return `vector` scaled to unit length."""
    vector = np.asarray(vector, dtype=np.float64)
    norm = np.linalg.norm(vector, axis=-1, keepdims=True)
    if np.any(norm == 0.0):
        msg = "Cannot normalize a zero-length vector"
        raise ValueError(msg)
    return vector / norm


def check_index(index: int, size: int, name: str) -> int:
    """Validate an index supplied by the caller.

    Args:
        index: The index to check
        size: Number of valid entries
        name: Name used in the error message ("layer", "attribute", ...)

    Returns:
        The index as a plain int.
    """
    if not 0 <= index < size:
        msg = f"{name} index {index} is out of range [0, {size})"
        raise InvalidQueryError(msg)
    return int(index)


def content_hash(*arrays: np.ndarray) -> str:
    """
    Create a stable identifier from the contents of numpy arrays.

    The key covers shape, dtype and raw bytes of every array, so two grids
    loaded from different files with identical topology share the same id.
    """
    digest = hashlib.md5()
    for array in arrays:
        array = np.ascontiguousarray(array)
        digest.update(str(array.shape).encode())
        digest.update(array.dtype.str.encode())
        digest.update(array.tobytes())
    return digest.hexdigest().upper()
