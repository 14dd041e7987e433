#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Coordinate frames used between the label mask and the Visium spots.

Polygons travel through three frames:

- ``RasterSpace``: ``(row, col)`` array indices of the (possibly flipped)
  label mask, as returned by contour tracing.
- ``HiresPixelSpace``: ``(x, y)`` pixels of the hires image the mask was
  thresholded from.
- ``FullresPixelSpace``: ``(x, y)`` pixels of the full-resolution image,
  the frame of Visium spot coordinates.

Each frame wraps a GeoDataFrame and the conversions only accept the frame
they convert from, so an axis swap or a rescale cannot be applied twice.
The y orientation travels with the polygons (``y_up``); Visium spots are
y-down, so y-up polygons have to go through :func:`hires_y_down` before
they are compared with spots.
"""
from dataclasses import dataclass
from typing import Optional

import geopandas as gpd
from shapely.affinity import affine_transform, scale


@dataclass(frozen=True)
class RasterSpace:
    polygons: gpd.GeoDataFrame
    height: int
    flipped: bool = False


@dataclass(frozen=True)
class HiresPixelSpace:
    polygons: gpd.GeoDataFrame
    height: Optional[int] = None
    y_up: bool = False


@dataclass(frozen=True)
class FullresPixelSpace:
    polygons: gpd.GeoDataFrame
    y_up: bool = False


def _require(obj, frame):
    if not isinstance(obj, frame):
        raise ValueError(
            f"Expected polygons in {frame.__name__}, got {type(obj).__name__}.")


def _with_geometry(gdf, geometry):
    out = gdf.copy()
    out[out.geometry.name] = gpd.GeoSeries(geometry, index=gdf.index, crs=gdf.crs)
    return out


def raster_to_hires(raster: RasterSpace) -> HiresPixelSpace:
    """Swap ``(row, col)`` vertices into ``(x, y)`` hires pixel coordinates.

    If the mask was flipped before tracing, rows already count from the
    bottom edge and the result is marked ``y_up``.
    """
    _require(raster, RasterSpace)
    swapped = [
        affine_transform(geom, [0, 1, 1, 0, 0, 0])
        for geom in raster.polygons.geometry
    ]
    return HiresPixelSpace(_with_geometry(raster.polygons, swapped),
                           height=raster.height, y_up=raster.flipped)


def hires_y_down(hires: HiresPixelSpace) -> HiresPixelSpace:
    """Return hires polygons with y pointing down (image rows).

    y-up polygons are mirrored with ``y' = height - 1 - y``; y-down input is
    returned as is.
    """
    _require(hires, HiresPixelSpace)
    if not hires.y_up:
        return hires
    if hires.height is None:
        raise ValueError("Cannot flip y-up polygons without the mask height.")
    mirrored = [
        affine_transform(geom, [1, 0, 0, -1, 0, hires.height - 1])
        for geom in hires.polygons.geometry
    ]
    return HiresPixelSpace(_with_geometry(hires.polygons, mirrored),
                           height=hires.height, y_up=False)


def hires_to_fullres(hires: HiresPixelSpace, scale_factor: float) -> FullresPixelSpace:
    """Divide hires coordinates by ``tissue_hires_scalef``.

    Args:
        hires (HiresPixelSpace): Polygons in hires pixel coordinates.
        scale_factor (float): Full-res → hires ratio (``tissue_hires_scalef``,
            below 1 for Visium).

    Returns:
        FullresPixelSpace: Polygons scaled about the origin by
        ``1 / scale_factor``, with the same y orientation.
    """
    _require(hires, HiresPixelSpace)
    if scale_factor <= 0:
        raise ValueError(f"scale_factor must be positive, got {scale_factor}")
    factor = 1.0 / scale_factor
    scaled = [
        scale(geom, xfact=factor, yfact=factor, origin=(0, 0))
        for geom in hires.polygons.geometry
    ]
    return FullresPixelSpace(_with_geometry(hires.polygons, scaled), y_up=hires.y_up)


def fullres_to_hires(fullres: FullresPixelSpace, scale_factor: float) -> HiresPixelSpace:
    """Inverse of :func:`hires_to_fullres`."""
    _require(fullres, FullresPixelSpace)
    if scale_factor <= 0:
        raise ValueError(f"scale_factor must be positive, got {scale_factor}")
    scaled = [
        scale(geom, xfact=scale_factor, yfact=scale_factor, origin=(0, 0))
        for geom in fullres.polygons.geometry
    ]
    return HiresPixelSpace(_with_geometry(fullres.polygons, scaled), y_up=fullres.y_up)
