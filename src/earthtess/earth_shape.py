"""
Reference ellipsoids used to convert between geographic and geocentric
coordinates and between depth and radius.

Unit vectors in earthtess are geocentric. Latitudes supplied by callers are
geographic and are converted with the model's EarthShape.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np

from earthtess.utils import InvalidQueryError


@dataclass(frozen=True)
class EarthShape:
    """An ellipsoid of revolution, or a sphere when `inverse_flattening` is 0.

    Attributes:
        name: Name used in model metadata
        equatorial_radius: Semi-major axis in km
        inverse_flattening: 1/f, or 0 for a sphere
        constant_radius: If True, latitude conversions use the ellipsoid but the
            Earth radius is 6371 km everywhere
    """

    name: str
    equatorial_radius: float
    inverse_flattening: float = 0.0
    constant_radius: bool = False

    @property
    def flattening(self) -> float:
        return 0.0 if self.inverse_flattening == 0.0 else 1.0 / self.inverse_flattening

    @property
    def eccentricity_squared(self) -> float:
        f = self.flattening
        return f * (2.0 - f)

    @classmethod
    def from_name(cls, name: str) -> EarthShape:
        try:
            return _EARTH_SHAPES[name.upper()]
        except KeyError:
            msg = f"Unknown EarthShape '{name}'. Choose one of {sorted(_EARTH_SHAPES)}"
            raise InvalidQueryError(msg) from None

    def get_geocentric_lat(self, lat: float) -> float:
        """Convert a geographic latitude (radians) to geocentric."""
        return math.atan2((1.0 - self.eccentricity_squared) * math.sin(lat), math.cos(lat))

    def get_geographic_lat(self, lat: float) -> float:
        """Convert a geocentric latitude (radians) to geographic."""
        return math.atan2(math.sin(lat), (1.0 - self.eccentricity_squared) * math.cos(lat))

    def get_vector(self, lat: float, lon: float) -> np.ndarray:
        """Unit vector for a geographic latitude and longitude in radians."""
        lat = self.get_geocentric_lat(lat)
        return np.array(
            [math.cos(lat) * math.cos(lon), math.cos(lat) * math.sin(lon), math.sin(lat)],
            dtype=np.float64,
        )

    def get_vector_degrees(self, lat: float, lon: float) -> np.ndarray:
        """Unit vector for a geographic latitude and longitude in degrees."""
        return self.get_vector(math.radians(lat), math.radians(lon))

    def get_lat(self, u: np.ndarray) -> float:
        """Geographic latitude in radians of unit vector `u`."""
        return self.get_geographic_lat(math.atan2(u[2], math.hypot(u[0], u[1])))

    def get_lon(self, u: np.ndarray) -> float:
        return math.atan2(u[1], u[0])

    def get_lat_degrees(self, u: np.ndarray) -> float:
        return math.degrees(self.get_lat(u))

    def get_lon_degrees(self, u: np.ndarray) -> float:
        return math.degrees(self.get_lon(u))

    def get_earth_radius(self, u: np.ndarray) -> float:
        """Radius in km of the ellipsoid surface in the direction of `u`."""
        if self.constant_radius:
            return 6371.0
        e2 = self.eccentricity_squared
        polar_radius = self.equatorial_radius * (1.0 - self.flattening)
        cos2 = 1.0 - u[2] * u[2]
        return polar_radius / math.sqrt(1.0 - e2 * cos2)

    def get_radius(self, u: np.ndarray, depth: float) -> float:
        return self.get_earth_radius(u) - depth

    def get_depth(self, u: np.ndarray, radius: float) -> float:
        return self.get_earth_radius(u) - radius


SPHERE = EarthShape("SPHERE", 6371.0)
GRS80 = EarthShape("GRS80", 6378.137, 298.257222101)
GRS80_RCONST = EarthShape("GRS80_RCONST", 6378.137, 298.257222101, constant_radius=True)
WGS84 = EarthShape("WGS84", 6378.137, 298.257223563)
WGS84_RCONST = EarthShape("WGS84_RCONST", 6378.137, 298.257223563, constant_radius=True)
IERS2003 = EarthShape("IERS2003", 6378.1366, 298.25642)
IERS2003_RCONST = EarthShape("IERS2003_RCONST", 6378.1366, 298.25642, constant_radius=True)

_EARTH_SHAPES = {
    shape.name: shape
    for shape in (SPHERE, GRS80, GRS80_RCONST, WGS84, WGS84_RCONST, IERS2003, IERS2003_RCONST)
}
