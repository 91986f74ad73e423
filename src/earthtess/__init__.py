"""
earthtess: 3D Earth models on multi-level triangular tessellations of the sphere.
"""

from earthtess.constants import DataType, ProfileType
from earthtess.earth_shape import EarthShape
from earthtess.grid import Grid, GridRegistry, Spoke
from earthtess.model import MetaData, Model, PointMap
from earthtess.position import Position
from earthtess.profiles import Profile
from earthtess.utils import (
    GridInconsistencyError,
    InvalidQueryError,
    ModelValidationError,
    ProfileTypeError,
)

__version__ = "0.1.0"

__all__ = [
    "DataType",
    "EarthShape",
    "Grid",
    "GridInconsistencyError",
    "GridRegistry",
    "InvalidQueryError",
    "MetaData",
    "Model",
    "ModelValidationError",
    "PointMap",
    "Position",
    "Profile",
    "ProfileType",
    "ProfileTypeError",
    "Spoke",
]
