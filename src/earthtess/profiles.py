"""
Radial profiles: the column of attribute samples stored at one (vertex, layer).

A single Profile class carries a ProfileType discriminant instead of one
subclass per variant. The kind fixes how many radii and data rows are stored:

    EMPTY          2 radii, 0 rows
    THIN           1 radius, 1 row
    CONSTANT       2 radii, 1 row
    NPOINT         N radii, N rows (N >= 2)
    SURFACE        0 radii, 1 row
    SURFACE_EMPTY  0 radii, 0 rows
"""

from __future__ import annotations

from typing import Literal

import numpy as np

from earthtess.constants import ProfileType
from earthtess.methods._numba_kernels import natural_spline_second_derivatives
from earthtess.utils import InvalidQueryError, ModelValidationError, ProfileTypeError, check_index

RadialMethod = Literal["linear", "cubic_spline"]

_EXPECTED_SHAPES = {
    ProfileType.EMPTY: (2, 0),
    ProfileType.THIN: (1, 1),
    ProfileType.CONSTANT: (2, 1),
    ProfileType.SURFACE: (0, 1),
    ProfileType.SURFACE_EMPTY: (0, 0),
}


class Profile:
    """Radial samples of every attribute at one vertex within one layer."""

    def __init__(self, kind: ProfileType, radii: np.ndarray | list[float], data: np.ndarray | None):
        """Initialize the profile.

        Prefer the factory methods (`Profile.new`, `Profile.npoint`, ...) which
        build the arrays in the right shape.

        Args:
            kind: The profile variant
            radii: Radii in km, non-decreasing
            data: (n_rows, n_attributes) attribute values
        """
        self.kind = kind
        self.radii = np.array(radii, dtype=np.float64).ravel()
        self.data = np.empty((0, 0)) if data is None else np.array(data)
        if self.data.ndim == 1:
            self.data = self.data.reshape(1, -1) if self.data.size else self.data.reshape(0, 0)

        self._validate()

        # Spline second derivatives, built on demand
        self._y2: np.ndarray | None = None
        self._y2_identity: np.ndarray | None = None

    def _validate(self) -> None:
        n_radii = len(self.radii)
        n_rows = self.data.shape[0]
        if self.kind is ProfileType.NPOINT:
            if n_radii < 2 or n_rows != n_radii:
                msg = f"NPOINT profiles need N >= 2 radii and N data rows, got {n_radii} radii and {n_rows} rows"
                raise ModelValidationError(msg)
        elif (n_radii, n_rows) != _EXPECTED_SHAPES[self.kind]:
            msg = (
                f"{self.kind.name} profiles need {_EXPECTED_SHAPES[self.kind]} (radii, rows), "
                f"got ({n_radii}, {n_rows})"
            )
            raise ModelValidationError(msg)

        if n_radii > 1 and np.any(np.diff(self.radii) < 0.0):
            msg = f"Profile radii must be non-decreasing: {self.radii}"
            raise ModelValidationError(msg)

    # Factories

    @classmethod
    def new(cls, radii: np.ndarray | list[float], data: np.ndarray | None = None) -> Profile:
        """Create the profile variant implied by the number of radii and data rows.

        Args:
            radii: Radii in km (empty for surface profiles)
            data: (n_rows, n_attributes) values; a 1-D array is a single row

        Returns:
            A new Profile of the matching kind.
        """
        radii = np.asarray(radii, dtype=np.float64).ravel()
        rows = np.empty((0, 0)) if data is None else np.asarray(data)
        if rows.ndim == 1:
            rows = rows.reshape(1, -1) if rows.size else rows.reshape(0, 0)
        n_radii, n_rows = len(radii), rows.shape[0]

        if n_radii == 0 and n_rows in (0, 1):
            kind = ProfileType.SURFACE if n_rows else ProfileType.SURFACE_EMPTY
        elif n_radii == 1 and n_rows == 1:
            kind = ProfileType.THIN
        elif n_radii == 2 and n_rows in (0, 1):
            kind = ProfileType.CONSTANT if n_rows else ProfileType.EMPTY
        elif n_radii >= 2 and n_rows == n_radii:
            kind = ProfileType.NPOINT
        else:
            msg = f"Cannot build a profile from {n_radii} radii and {n_rows} data rows"
            raise ModelValidationError(msg)
        return cls(kind, radii, rows)

    @classmethod
    def empty(cls, radius_bottom: float, radius_top: float) -> Profile:
        return cls(ProfileType.EMPTY, [radius_bottom, radius_top], None)

    @classmethod
    def thin(cls, radius: float, data: np.ndarray | list[float]) -> Profile:
        return cls(ProfileType.THIN, [radius], np.asarray(data).reshape(1, -1))

    @classmethod
    def constant(cls, radius_bottom: float, radius_top: float, data: np.ndarray | list[float]) -> Profile:
        return cls(ProfileType.CONSTANT, [radius_bottom, radius_top], np.asarray(data).reshape(1, -1))

    @classmethod
    def npoint(cls, radii: np.ndarray | list[float], data: np.ndarray) -> Profile:
        data = np.asarray(data)
        if data.ndim == 1:
            # one attribute per radius
            data = data.reshape(-1, 1)
        return cls(ProfileType.NPOINT, radii, data)

    @classmethod
    def surface(cls, data: np.ndarray | list[float]) -> Profile:
        return cls(ProfileType.SURFACE, [], np.asarray(data).reshape(1, -1))

    @classmethod
    def surface_empty(cls) -> Profile:
        return cls(ProfileType.SURFACE_EMPTY, [], None)

    def copy(self) -> Profile:
        return Profile(self.kind, self.radii.copy(), self.data.copy())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Profile):
            return NotImplemented
        return (
            self.kind is other.kind
            and np.array_equal(self.radii, other.radii)
            and self.data.shape == other.data.shape
            and np.array_equal(self.data, other.data, equal_nan=self.data.dtype.kind == "f")
        )

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        if self.kind.has_radii:
            return f"Profile({self.kind.name}, radii=[{self.radius_bottom:g}, {self.radius_top:g}], rows={self.n_data})"
        return f"Profile({self.kind.name}, rows={self.n_data})"

    # Shape

    @property
    def n_radii(self) -> int:
        return len(self.radii)

    @property
    def n_data(self) -> int:
        return int(self.data.shape[0])

    @property
    def n_attributes(self) -> int:
        return int(self.data.shape[1]) if self.n_data else 0

    @property
    def radius_bottom(self) -> float:
        if not self.kind.has_radii:
            msg = f"{self.kind.name} profiles have no radii"
            raise ProfileTypeError(msg)
        return float(self.radii[0])

    @property
    def radius_top(self) -> float:
        if not self.kind.has_radii:
            msg = f"{self.kind.name} profiles have no radii"
            raise ProfileTypeError(msg)
        return float(self.radii[-1])

    @property
    def thickness(self) -> float:
        return self.radius_top - self.radius_bottom

    def set_radius_bottom(self, radius: float) -> None:
        """Move the bottom of the profile. Used to repair small layer boundary mismatches."""
        if not self.kind.has_radii:
            msg = f"{self.kind.name} profiles have no radii"
            raise ProfileTypeError(msg)
        if self.n_radii > 1 and radius > self.radii[1]:
            msg = f"Bottom radius {radius} would lie above the next radius {self.radii[1]}"
            raise ModelValidationError(msg)
        self.radii[0] = radius
        self._invalidate()

    def get_radius(self, node: int) -> float:
        """Radius of a data node. CONSTANT profiles report their bottom radius."""
        if not self.kind.has_radii:
            msg = f"{self.kind.name} profiles have no radii"
            raise ProfileTypeError(msg)
        check_index(node, self.n_data, "node")
        return float(self.radii[node])

    # Data access

    def _check_data(self) -> None:
        if not self.kind.has_data:
            msg = f"{self.kind.name} profiles store no data"
            raise ProfileTypeError(msg)

    def get_data(self, node: int = 0) -> np.ndarray:
        self._check_data()
        check_index(node, self.n_data, "node")
        return self.data[node]

    def get_value(self, attribute: int, node: int = 0) -> float:
        self._check_data()
        check_index(node, self.n_data, "node")
        check_index(attribute, self.n_attributes, "attribute")
        return self.data[node, attribute].item()

    def set_value(self, attribute: int, node: int, value: float) -> None:
        """Overwrite one stored value in place, cast to the profile's dtype."""
        self._check_data()
        check_index(node, self.n_data, "node")
        check_index(attribute, self.n_attributes, "attribute")
        if self.data.dtype.kind != "f" and np.isnan(value):
            msg = f"NaN cannot be stored in a profile of dtype {self.data.dtype}"
            raise InvalidQueryError(msg)
        self.data[node, attribute] = value
        self._invalidate()

    def astype(self, dtype: np.dtype) -> Profile:
        """Return this profile with data cast to `dtype` (self if already of that dtype)."""
        if not self.n_data or self.data.dtype == dtype:
            return self
        if np.dtype(dtype).kind != "f" and self.data.dtype.kind == "f" and np.isnan(self.data).any():
            msg = f"Profile data contains NaN and cannot be stored as {np.dtype(dtype)}"
            raise InvalidQueryError(msg)
        return Profile(self.kind, self.radii, self.data.astype(dtype))

    def _invalidate(self) -> None:
        self._y2 = None
        self._y2_identity = None

    # Radial interpolation

    def interpolate(
        self,
        radius: float,
        radial: RadialMethod = "linear",
        allow_radius_out_of_range: bool = False,
    ) -> np.ndarray:
        """Interpolate every attribute at `radius`.

        Args:
            radius: Radius in km
            radial: 'linear' or 'cubic_spline'
            allow_radius_out_of_range: Extrapolate linearly from the end interval
                instead of clamping to the end value

        Returns:
            float64 array of length n_attributes.
        """
        self._check_data()
        if self.kind is not ProfileType.NPOINT:
            return self.data[0].astype(np.float64)

        spline = _use_spline(radial)
        lo, hi, a, b, h = self._bracket(radius, allow_radius_out_of_range)
        data = self.data
        if hi < 0:
            return data[lo].astype(np.float64)

        value = a * data[lo].astype(np.float64) + b * data[hi].astype(np.float64)
        if spline and a >= 0.0 and b >= 0.0:
            y2 = self._second_derivatives()
            value += ((a**3 - a) * y2[lo] + (b**3 - b) * y2[hi]) * (h * h) / 6.0
        return value

    def get_radial_coefficients(
        self,
        radius: float,
        radial: RadialMethod = "linear",
        allow_radius_out_of_range: bool = False,
    ) -> tuple[np.ndarray, np.ndarray]:
        """Node indices and weights whose weighted sum of data rows gives the interpolated value.

        Returns:
            (nodes, weights) arrays of equal length.
        """
        self._check_data()
        if self.kind is not ProfileType.NPOINT:
            return np.array([0]), np.array([1.0])

        spline = _use_spline(radial)
        lo, hi, a, b, h = self._bracket(radius, allow_radius_out_of_range)
        if hi < 0:
            return np.array([lo]), np.array([1.0])

        if not (spline and a >= 0.0 and b >= 0.0):
            return np.array([lo, hi]), np.array([a, b])

        w2 = self._identity_second_derivatives()
        weights = ((a**3 - a) * w2[lo] + (b**3 - b) * w2[hi]) * (h * h) / 6.0
        weights[lo] += a
        weights[hi] += b
        nodes = np.flatnonzero(weights)
        return nodes, weights[nodes]

    def _bracket(self, radius: float, allow_radius_out_of_range: bool) -> tuple[int, int, float, float, float]:
        """Locate the interval of an NPOINT profile that brackets `radius`.

        Returns:
            (lo, hi, a, b, h): node indices, the weights of lo and hi for linear
            interpolation and the interval width. hi is -1 when the value of
            node lo is to be used unchanged.
        """
        radii = self.radii
        n = len(radii)
        if not allow_radius_out_of_range:
            if radius <= radii[0]:
                return 0, -1, 1.0, 0.0, 0.0
            if radius >= radii[-1]:
                return n - 1, -1, 1.0, 0.0, 0.0

        lo = int(np.searchsorted(radii, radius, side="right")) - 1
        lo = min(max(lo, 0), n - 2)
        hi = lo + 1
        h = radii[hi] - radii[lo]
        if h == 0.0:
            # Discontinuity: take the side the radius lies on
            return (hi if radius >= radii[hi] else lo), -1, 1.0, 0.0, 0.0

        a = (radii[hi] - radius) / h
        b = (radius - radii[lo]) / h
        return lo, hi, float(a), float(b), float(h)

    def _spline_segments(self) -> list[tuple[int, int]]:
        """Index ranges of strictly increasing runs of radii, split at repeated radii."""
        breaks = np.flatnonzero(np.diff(self.radii) == 0.0) + 1
        bounds = [0, *breaks.tolist(), len(self.radii)]
        return list(zip(bounds[:-1], bounds[1:]))

    def _solve_segments(self, y: np.ndarray) -> np.ndarray:
        y2 = np.zeros(y.shape, dtype=np.float64)
        for start, stop in self._spline_segments():
            if stop - start > 2:
                y2[start:stop] = natural_spline_second_derivatives(
                    np.ascontiguousarray(self.radii[start:stop]),
                    np.ascontiguousarray(y[start:stop]),
                )
        return y2

    def _second_derivatives(self) -> np.ndarray:
        if self._y2 is None:
            self._y2 = self._solve_segments(self.data.astype(np.float64))
        return self._y2

    def _identity_second_derivatives(self) -> np.ndarray:
        if self._y2_identity is None:
            self._y2_identity = self._solve_segments(np.eye(self.n_data))
        return self._y2_identity


def _use_spline(radial: str) -> bool:
    if radial == "cubic_spline":
        return True
    if radial == "linear":
        return False
    msg = f"Unsupported radial interpolation method: {radial}"
    raise InvalidQueryError(msg)
