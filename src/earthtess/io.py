"""
netCDF persistence of grids and models.

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

import logging
import warnings

import numpy as np
import xarray as xr

from earthtess.constants import DataType, ProfileType
from earthtess.grid import Grid, GridRegistry
from earthtess.model import MetaData, Model
from earthtess.profiles import Profile
from earthtess.utils import ModelValidationError, content_hash

logger = logging.getLogger(__name__)

_SEPARATOR = ";"


def _grid_to_dataset(grid: Grid) -> xr.Dataset:
    level_tessellation = np.empty(grid.n_levels, dtype=np.int32)
    for tess_id, levels in enumerate(grid.tessellations):
        level_tessellation[list(levels)] = tess_id

    ds = xr.Dataset(
        {
            "vertices": (("vertex", "xyz"), grid.vertices),
            "triangles": (("triangle", "corner"), grid.triangles),
            "levels": (("level", "bound"), grid.levels),
            "level_tessellation": ("level", level_tessellation),
        }
    )
    ds.attrs["grid_id"] = grid.grid_id
    return ds


def _grid_from_dataset(ds: xr.Dataset, registry: GridRegistry | None = None) -> Grid:
    vertices = ds["vertices"].values.astype(np.float64)
    triangles = ds["triangles"].values.astype(np.int64)
    levels = ds["levels"].values
    level_tessellation = ds["level_tessellation"].values
    tessellations = [
        np.flatnonzero(level_tessellation == tess_id).tolist() for tess_id in range(int(level_tessellation.max()) + 1)
    ]
    grid_id = str(ds.attrs["grid_id"])

    if content_hash(vertices, triangles) != grid_id:
        warnings.warn(
            f"Stored grid id {grid_id} does not match the content of the stored grid",
            stacklevel=3,
        )

    def build() -> Grid:
        return Grid(vertices, triangles, levels, tessellations, grid_id=grid_id)

    if registry is None:
        return build()
    return registry.get_or_create(grid_id, build)


def _grid_to_netcdf(grid: Grid, filepath: str) -> None:
    """Write a grid to the 'grid' group of a netCDF file."""
    _grid_to_dataset(grid).to_netcdf(filepath, mode="w", group="grid", engine="h5netcdf")


def _grid_from_netcdf(filepath: str, registry: GridRegistry | None = None) -> Grid:
    """Read a grid from the 'grid' group of a netCDF file."""
    with xr.open_dataset(filepath, group="grid", engine="h5netcdf") as ds:
        return _grid_from_dataset(ds.load(), registry)


def _model_to_netcdf(model: Model, filepath: str) -> None:
    """Write a model to a netCDF file.

    The grid is stored in the 'grid' group. Profiles are flattened in the
    'model' group: per (vertex, layer) kind and radius/row counts, with all
    radii and data rows concatenated in vertex-major order. Empty arrays and
    empty strings are left out of the file.
    """
    _grid_to_netcdf(model.grid, filepath)

    profiles = [model.get_profile(vertex, layer) for vertex in range(model.n_vertices) for layer in range(model.n_layers)]
    shape = (model.n_vertices, model.n_layers)
    kinds = np.array([profile.kind.value for profile in profiles], dtype=np.int8).reshape(shape)
    n_radii = np.array([profile.n_radii for profile in profiles], dtype=np.int32).reshape(shape)
    n_rows = np.array([profile.n_data for profile in profiles], dtype=np.int32).reshape(shape)

    ds = xr.Dataset(
        {
            "profile_type": (("vertex", "layer"), kinds),
            "n_radii": (("vertex", "layer"), n_radii),
            "n_rows": (("vertex", "layer"), n_rows),
        }
    )
    if n_radii.any():
        ds["radii"] = ("radius", np.concatenate([profile.radii for profile in profiles]))
    if n_rows.any():
        rows = [profile.data for profile in profiles if profile.n_data]
        ds["data"] = (("row", "attribute"), np.concatenate(rows).astype(model.metadata.data_type.numpy_dtype))

    metadata = model.metadata
    attrs = {
        "description": metadata.description,
        "layer_names": _SEPARATOR.join(metadata.layer_names),
        "attribute_names": _SEPARATOR.join(metadata.attribute_names),
        "attribute_units": _SEPARATOR.join(metadata.attribute_units),
        "data_type": metadata.data_type.value,
        "earth_shape": metadata.earth_shape,
        "model_software_version": metadata.model_software_version,
        "model_generation_date": metadata.model_generation_date,
        "grid_id": model.grid.grid_id,
    }
    ds.attrs.update({key: value for key, value in attrs.items() if value})
    ds.attrs["layer_tess_ids"] = np.asarray(metadata.layer_tess_ids, dtype=np.int32)
    ds.to_netcdf(filepath, mode="a", group="model", engine="h5netcdf")
    logger.debug("Wrote model with %d profiles to %s", len(profiles), filepath)


def _split(value: str) -> list[str]:
    return str(value).split(_SEPARATOR) if value else []


def _model_from_netcdf(filepath: str, registry: GridRegistry | None = None) -> Model:
    """Read a model from a netCDF file."""
    grid = _grid_from_netcdf(filepath, registry)

    with xr.open_dataset(filepath, group="model", engine="h5netcdf") as ds:
        ds = ds.load()
        attrs = ds.attrs
        if str(attrs["grid_id"]) != grid.grid_id:
            msg = f"Model references grid {attrs['grid_id']} but the file stores grid {grid.grid_id}"
            raise ModelValidationError(msg)

        attribute_names = _split(attrs.get("attribute_names", ""))
        # A single blank unit is not written
        attribute_units = _split(attrs.get("attribute_units", "")) or [""] * len(attribute_names)
        metadata = MetaData(
            description=str(attrs.get("description", "")),
            layer_names=_split(attrs.get("layer_names", "")),
            attribute_names=attribute_names,
            attribute_units=attribute_units,
            data_type=DataType(str(attrs["data_type"])),
            layer_tess_ids=np.atleast_1d(attrs["layer_tess_ids"]).tolist(),
            earth_shape=str(attrs["earth_shape"]),
            model_software_version=str(attrs.get("model_software_version", "")),
            model_generation_date=str(attrs.get("model_generation_date", "")),
        )
        kinds = ds["profile_type"].values
        n_radii = ds["n_radii"].values
        n_rows = ds["n_rows"].values
        radii = ds["radii"].values if "radii" in ds else np.empty(0)
        dtype = metadata.data_type.numpy_dtype
        data = ds["data"].values.astype(dtype) if "data" in ds else np.empty((0, metadata.n_attributes), dtype=dtype)

    radius_offsets = np.concatenate([[0], np.cumsum(n_radii.ravel())])
    row_offsets = np.concatenate([[0], np.cumsum(n_rows.ravel())])
    n_layers = metadata.n_layers
    profiles = []
    for vertex in range(grid.n_vertices):
        column = []
        for layer in range(n_layers):
            k = vertex * n_layers + layer
            column.append(
                Profile(
                    ProfileType(int(kinds[vertex, layer])),
                    radii[radius_offsets[k] : radius_offsets[k + 1]],
                    data[row_offsets[k] : row_offsets[k + 1]] if n_rows[vertex, layer] else None,
                )
            )
        profiles.append(column)

    logger.debug("Read model %r from %s", metadata.description, filepath)
    return Model(grid, metadata, profiles)
