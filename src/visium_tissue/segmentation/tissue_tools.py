#!/usr/bin/env python3
# -*- coding: utf-8 -*-
import logging
import math
import warnings
from pathlib import Path
from typing import Iterable, Optional, Sequence, Tuple, Union

import geopandas as gpd
import numpy as np
import pandas as pd
import xarray as xr
from scipy import ndimage
from shapely import STRtree
from shapely.geometry import Polygon, box
from shapely.ops import unary_union
from skimage import io
from skimage.measure import find_contours, label, regionprops, regionprops_table
from skimage.morphology import disk
from skimage.util import img_as_float
from tqdm import tqdm

from visium_tissue._constants import CATEGORY_LEVELS, TissueKeys, VisiumKeys
from visium_tissue._errors import (
    DegenerateRegionWarning,
    InvalidInputError,
    ScaleMismatchWarning,
)
from visium_tissue.coordinates import (
    FullresPixelSpace,
    HiresPixelSpace,
    RasterSpace,
    hires_to_fullres,
    hires_y_down,
    raster_to_hires,
)

log = logging.getLogger(__name__)

_FEATURE_COLUMNS = {
    "centroid-0": "centroid_row",
    "centroid-1": "centroid_col",
    "bbox-0": "bbox_min_row",
    "bbox-1": "bbox_min_col",
    "bbox-2": "bbox_max_row",
    "bbox-3": "bbox_max_col",
}
_FEATURE_PROPERTIES = ("label", "area", "centroid", "bbox", "eccentricity", "perimeter")


# ---------------- LOADER ---------------- #

def _check_image(img: np.ndarray, n_channels: Optional[int] = None) -> np.ndarray:
    if img.ndim not in (2, 3):
        raise InvalidInputError(
            f"Expected a 2-D (y, x) or 3-D (y, x, c) image, got shape {img.shape}")
    if img.ndim == 3 and img.shape[-1] < 1:
        raise InvalidInputError(f"Image has no channels: shape {img.shape}")
    if n_channels is not None:
        found = 1 if img.ndim == 2 else img.shape[-1]
        if found != n_channels:
            raise InvalidInputError(
                f"Expected {n_channels} channel(s), image has {found}")
    return img


def load_image(path: Union[str, Path], n_channels: Optional[int] = None) -> np.ndarray:
    """Decode a tissue image into floating point intensities in [0, 1].

    Args:
        path (str | Path): Image file (PNG/TIFF/JPEG), typically
            ``spatial/tissue_hires_image.png``.
        n_channels (int | None, optional): Expected number of colour bands.
            If given, a mismatch raises ``InvalidInputError``.

    Returns:
        numpy.ndarray: ``(y, x)`` or ``(y, x, c)`` float array.

    Raises:
        FileNotFoundError: If ``path`` does not exist.
        InvalidInputError: If the decoded array is not a 2-D/3-D image or
            has the wrong number of channels.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Image file not found: {path}")
    img = img_as_float(io.imread(str(path)))
    log.info("Loaded image %s with shape %s", path, img.shape)
    return _check_image(img, n_channels)


def image_from_spatialdata(sdata, image_name: str, n_channels: Optional[int] = None) -> np.ndarray:
    """Extract a SpatialData image element as a ``(y, x, c)`` float array.

    Multiscale elements are read at full resolution (``scale0``).
    """
    if image_name not in sdata.images:
        raise InvalidInputError(
            f"Image {image_name!r} not found. Available: {list(sdata.images.keys())}")
    img_xr = sdata.images[image_name]
    if not isinstance(img_xr, xr.DataArray):
        img_xr = img_xr["scale0"].ds["image"]
    img = np.asarray(img_xr.transpose("y", "x", "c").values)  # (H, W, C)
    return _check_image(img_as_float(img), n_channels)


# ---------------- MASK BUILDER ---------------- #

def threshold_channel(
    image: np.ndarray,
    channel: int,
    threshold: float,
    foreground: str = "below"
) -> np.ndarray:
    """Threshold one colour channel into a binary tissue mask.

    On brightfield H&E the tissue is darker than the glass, so the default
    keeps pixels *below* the threshold. Use ``foreground="above"`` for
    stains where tissue is the bright side.

    Args:
        image (numpy.ndarray): ``(y, x)`` or ``(y, x, c)`` image in [0, 1].
        channel (int): Channel index; ignored for 2-D images.
        threshold (float): Literal cut-off in [0, 1].
        foreground (str, optional): ``"below"`` or ``"above"``.

    Returns:
        numpy.ndarray: Boolean mask with the image's spatial shape.
    """
    if foreground not in ("below", "above"):
        raise ValueError("`foreground` must be either 'below' or 'above'.")
    if image.ndim == 3:
        if not -image.shape[-1] <= channel < image.shape[-1]:
            raise InvalidInputError(
                f"Channel {channel} not available in image with {image.shape[-1]} channel(s)")
        values = image[..., channel]
    elif image.ndim == 2:
        values = image
    else:
        raise InvalidInputError(f"Cannot threshold image of shape {image.shape}")

    if foreground == "below":
        return values < threshold
    return values > threshold


# ---------------- MORPHOLOGICAL CLEANER ---------------- #

def _erode(mask, footprint):
    # outside the image counts as foreground so borders are not eaten away
    return ndimage.binary_erosion(mask, structure=footprint, border_value=1)


def _dilate(mask, footprint):
    return ndimage.binary_dilation(mask, structure=footprint, border_value=0)


def clean_mask(mask: np.ndarray, radius: int) -> np.ndarray:
    """Opening then closing with a disk footprint.

    The opening removes foreground specks smaller than the disk, the
    closing fills background gaps smaller than the disk. The input is not
    modified.

    Args:
        mask (numpy.ndarray): 2-D boolean mask.
        radius (int): Disk radius in pixels. ``0`` returns a copy.

    Returns:
        numpy.ndarray: Cleaned boolean mask, same shape.
    """
    mask = np.asarray(mask, dtype=bool)
    if radius < 0:
        raise ValueError(f"radius must be >= 0, got {radius}")
    if radius == 0:
        return mask.copy()
    footprint = disk(radius).astype(bool)
    return close_mask(open_mask(mask, footprint), footprint)


def open_mask(mask: np.ndarray, footprint: np.ndarray) -> np.ndarray:
    return _dilate(_erode(mask, footprint), footprint)


def close_mask(mask: np.ndarray, footprint: np.ndarray) -> np.ndarray:
    return _erode(_dilate(mask, footprint), footprint)


# ---------------- COMPONENT LABELER ---------------- #

def label_components(mask: np.ndarray, connectivity: int = 2) -> Tuple[np.ndarray, pd.DataFrame]:
    """Label connected foreground regions and measure them.

    Args:
        mask (numpy.ndarray): 2-D boolean mask.
        connectivity (int, optional): 1 for 4-connectivity, 2 for
            8-connectivity. Defaults to 2.

    Returns:
        tuple:
            - labels (numpy.ndarray): Integer mask, 0 = background,
              consecutive labels from 1.
            - features (pandas.DataFrame): One row per label (index
              ``label``) with ``area``, centroid, bbox, ``eccentricity`` and
              ``perimeter`` columns. Empty when the mask is empty.
    """
    labels = label(np.asarray(mask, dtype=bool), connectivity=connectivity)
    if labels.max() == 0:
        columns = ["area", "centroid_row", "centroid_col", "bbox_min_row", "bbox_min_col",
                   "bbox_max_row", "bbox_max_col", "eccentricity", "perimeter"]
        features = pd.DataFrame(columns=columns, index=pd.Index([], name="label", dtype="int64"))
        features["area"] = features["area"].astype("int64")
        return labels, features

    props = regionprops_table(labels, properties=_FEATURE_PROPERTIES)
    features = pd.DataFrame(props).rename(columns=_FEATURE_COLUMNS).set_index("label")
    features["area"] = features["area"].astype("int64")
    log.info("Labelled %d connected component(s)", len(features))
    return labels, features


# ---------------- REGION FILTER ---------------- #

def labels_at_points(labels: np.ndarray, points: Iterable[Sequence[int]]) -> set:
    """Return the labels found under ``(row, col)`` pixel positions.

    Points on background or outside the image are logged and skipped.
    """
    found = set()
    h, w = labels.shape
    for point in points:
        row, col = int(point[0]), int(point[1])
        if not (0 <= row < h and 0 <= col < w):
            log.warning("Exclusion point (%d, %d) lies outside the %dx%d mask", row, col, h, w)
            continue
        value = int(labels[row, col])
        if value == 0:
            log.warning("Exclusion point (%d, %d) lies on background", row, col)
            continue
        found.add(value)
    return found


def fill_region_holes(labels: np.ndarray) -> np.ndarray:
    """Give background pixels enclosed by a region that region's label."""
    filled = labels.copy()
    for region in regionprops(labels):
        min_row, min_col, max_row, max_col = region.bbox
        window = labels[min_row:max_row, min_col:max_col]
        holes = ndimage.binary_fill_holes(window == region.label) & (window == 0)
        filled[min_row:max_row, min_col:max_col][holes] = region.label
    return filled


def filter_regions(
    labels: np.ndarray,
    features: pd.DataFrame,
    min_area: int,
    exclude_labels: Iterable[int] = (),
    exclude_points: Iterable[Sequence[int]] = (),
) -> np.ndarray:
    """Drop small or excluded regions, then fill holes in the survivors.

    ``exclude_labels`` are raw label values and only make sense for the
    labelling run they were read from. ``exclude_points`` name regions by a
    pixel lying on them, which survives relabelling.

    Args:
        labels (numpy.ndarray): Labelled mask from ``label_components``.
        features (pandas.DataFrame): Feature table for ``labels``.
        min_area (int): Regions with fewer pixels are removed.
        exclude_labels (Iterable[int], optional): Labels to remove.
        exclude_points (Iterable[tuple], optional): ``(row, col)`` pixels on
            regions to remove.

    Returns:
        numpy.ndarray: Filtered labelled mask. Surviving regions keep their
        label values. May be all background.
    """
    labels = np.asarray(labels)
    dropped = {int(k) for k in exclude_labels}
    dropped |= labels_at_points(labels, exclude_points)
    dropped |= {int(k) for k in features.index[features["area"] < min_area]}

    kept = [int(k) for k in features.index if int(k) not in dropped]
    lut = np.zeros(int(labels.max()) + 1, dtype=labels.dtype)
    lut[kept] = kept
    filtered = lut[labels]
    log.info("Region filter kept %d of %d region(s)", len(kept), len(features))

    return fill_region_holes(filtered)


# ---------------- POLYGONIZER ---------------- #

def orient_mask(labels: np.ndarray, flip_y: bool = False) -> np.ndarray:
    """Flip the mask vertically when polygons are wanted with y pointing up.

    Raster rows grow downwards. Visium spot pixels share that convention,
    so the default leaves the mask as is.
    """
    return np.flipud(labels).copy() if flip_y else np.array(labels, copy=True)


def _region_polygon(region_mask: np.ndarray, offset: Tuple[int, int]) -> Polygon:
    # pad so regions touching the border give closed rings
    padded = np.pad(region_mask, 1).astype(float)
    contours = find_contours(padded, 0.5, fully_connected="high")
    rings = [Polygon(c + np.array(offset) - 1) for c in contours if len(c) >= 4]
    rings = [r for r in rings if r.area > 0]
    if not rings:
        return Polygon()

    shell = max(rings, key=lambda r: r.area)
    holes = [r.exterior.coords for r in rings
             if r is not shell and shell.contains(r.representative_point())]
    poly = Polygon(shell.exterior.coords, holes)
    if not poly.is_valid:
        poly = poly.buffer(0)
    return poly


def _n_vertices(geom) -> int:
    if geom.is_empty:
        return 0
    if geom.geom_type == "MultiPolygon":
        return sum(_n_vertices(g) for g in geom.geoms)
    return (len(geom.exterior.coords) - 1) + sum(len(r.coords) - 1 for r in geom.interiors)


def simplify_polygon(poly, keep: float, max_iter: int = 50):
    """Topology-preserving simplification to ``keep`` of the vertices.

    The Douglas-Peucker tolerance is bisected until the vertex count fits
    the budget ``ceil(keep * n)``. If even the coarsest tolerance cannot
    meet it (rings never drop below a triangle), the coarsest result is
    returned.
    """
    if not 0 < keep <= 1:
        raise ValueError(f"keep must be in (0, 1], got {keep}")
    n = _n_vertices(poly)
    target = max(math.ceil(keep * n), 3)
    if keep == 1 or n <= target:
        return poly

    min_x, min_y, max_x, max_y = poly.bounds
    lo, hi = 0.0, max(max_x - min_x, max_y - min_y)
    best = poly.simplify(hi, preserve_topology=True)
    if _n_vertices(best) > target:
        return best if not best.is_empty else poly

    for _ in range(max_iter):
        mid = (lo + hi) / 2
        candidate = poly.simplify(mid, preserve_topology=True)
        if _n_vertices(candidate) <= target:
            best, hi = candidate, mid
        else:
            lo = mid

    if best.is_empty or best.area == 0:
        return poly
    return best


def restore_overlapping(full_geoms: Sequence, simplified_geoms: Sequence) -> list:
    """Put back the exact outline of simplified polygons that overlap.

    Both members of every overlapping pair are restored until no new pair
    shows up. Exact outlines of separate 8-connected components do not
    share area, so for labels from ``label_components`` the result has no
    overlaps.

    Args:
        full_geoms (Sequence): Exact polygons.
        simplified_geoms (Sequence): Simplified polygons, same order.

    Returns:
        list: ``simplified_geoms`` with overlapping members replaced by
        their entry in ``full_geoms``.
    """
    out = list(simplified_geoms)
    restored = set()
    while len(out) > 1:
        tree = STRtree(out)
        left, right = tree.query(out, predicate="intersects")
        clashing = {
            int(k)
            for i, j in zip(left, right) if i < j and out[i].intersection(out[j]).area > 0
            for k in (i, j)
        } - restored
        if not clashing:
            break
        for k in clashing:
            out[k] = full_geoms[k]
        restored |= clashing
    if restored:
        log.info("Kept exact outlines for %d overlapping region(s)", len(restored))
    return out


def _polygon_frame(labels, polygons) -> gpd.GeoDataFrame:
    return gpd.GeoDataFrame(
        {TissueKeys.LABEL.value: np.asarray(labels, dtype=np.int64)},
        geometry=gpd.GeoSeries(list(polygons), name=TissueKeys.GEOMETRY.value),
    )


def polygonize(
    labels: np.ndarray,
    keep: float = 1.0,
    flip_y: bool = False,
    progress: bool = False
) -> Tuple[HiresPixelSpace, HiresPixelSpace]:
    """Convert a labelled mask into full and simplified polygon sets.

    Each positive label becomes one polygon (shell plus holes) traced with
    marching squares on an 8-connected foreground. Background never
    produces a polygon. Outlines that come out empty, invalid or with zero
    area are dropped from both sets with a ``DegenerateRegionWarning``.
    Polygons are simplified one by one; where two simplified polygons end
    up overlapping (an island crossing the simplified hole of the region
    around it) both keep their exact outline.

    Args:
        labels (numpy.ndarray): Filtered labelled mask (hires pixels).
        keep (float, optional): Fraction of vertices kept by
            simplification, in (0, 1]. ``1`` disables simplification.
        flip_y (bool, optional): Trace a vertically flipped mask so the
            polygons have their y-axis pointing up. Both returned sets are
            marked ``y_up``. Defaults to False.
        progress (bool, optional): Show a tqdm progress bar.

    Returns:
        tuple:
            - full (HiresPixelSpace): Exact contours, one row per label.
            - simplified (HiresPixelSpace): Same labels, fewer vertices.
    """
    if not 0 < keep <= 1:
        raise ValueError(f"keep must be in (0, 1], got {keep}")

    oriented = orient_mask(np.asarray(labels), flip_y=flip_y)
    kept_labels, polygons, degenerate = [], [], []

    for region in tqdm(regionprops(oriented), desc="Polygonizing", disable=not progress):
        min_row, min_col, max_row, max_col = region.bbox
        window = oriented[min_row:max_row, min_col:max_col] == region.label
        poly = _region_polygon(window, (min_row, min_col))
        if poly.is_empty or not poly.is_valid or poly.area == 0:
            degenerate.append(region.label)
            continue
        kept_labels.append(region.label)
        polygons.append(poly)

    if degenerate:
        log.debug("Dropped degenerate regions: %s", degenerate)
        warnings.warn(
            f"Dropped {len(degenerate)} region(s) without a valid outline: {degenerate}",
            DegenerateRegionWarning,
        )

    raster = RasterSpace(_polygon_frame(kept_labels, polygons),
                         height=oriented.shape[0], flipped=flip_y)
    full = raster_to_hires(raster)

    full_geoms = list(full.polygons.geometry)
    simplified_geoms = restore_overlapping(
        full_geoms, [simplify_polygon(g, keep) for g in full_geoms])
    simplified = HiresPixelSpace(_polygon_frame(kept_labels, simplified_geoms),
                                 height=full.height, y_up=full.y_up)

    n_full = sum(_n_vertices(g) for g in full.polygons.geometry)
    n_simple = sum(_n_vertices(g) for g in simplified_geoms)
    log.info("Polygonized %d region(s): %d -> %d vertices", len(kept_labels), n_full, n_simple)

    return full, simplified


# ---------------- GEOMETRIC COMPARATOR ---------------- #

def rescale_to_fullres(polygons: HiresPixelSpace, scale_factor: float) -> FullresPixelSpace:
    """Rescale hires polygons into full-resolution pixels (divide by scale factor).

    y-up polygons are mirrored back to image rows first, so the result is
    always in the y-down frame of the Visium spots.
    """
    return hires_to_fullres(hires_y_down(polygons), scale_factor)


def tissue_boundary(polygons: FullresPixelSpace):
    """Dissolve the rescaled polygon set into a single tissue geometry.

    Returns an empty GeometryCollection when there are no polygons.

    Raises:
        ValueError: If ``polygons`` is not in FullresPixelSpace or has its
            y-axis pointing up.
    """
    if not isinstance(polygons, FullresPixelSpace):
        raise ValueError(
            "Tissue boundary must be built from polygons in FullresPixelSpace; "
            "rescale with rescale_to_fullres first.")
    if polygons.y_up:
        raise ValueError(
            "Tissue boundary must be y-down like the spots; "
            "rescale with rescale_to_fullres, which flips y-up polygons back.")
    return unary_union(list(polygons.polygons.geometry))


def spot_footprints(shapes: gpd.GeoDataFrame, radius: Optional[float] = None) -> gpd.GeoSeries:
    """Turn a spots shapes element into footprint polygons.

    SpatialData stores Visium spots as circles: point geometries with a
    ``radius`` column. Points are buffered by their radius (or by
    ``radius`` when given); polygon geometries are returned unchanged.

    Raises:
        InvalidInputError: If ``shapes`` is empty, has no geometry column,
            or has points without a radius.
    """
    if not isinstance(shapes, gpd.GeoDataFrame):
        raise InvalidInputError("Spots must be a GeoDataFrame with a geometry column")
    try:
        geoms = shapes.geometry
    except AttributeError:
        raise InvalidInputError("Spots table has no active geometry column")
    if shapes.empty:
        raise InvalidInputError("Spots table is empty")

    is_point = (geoms.geom_type == "Point").to_numpy()
    if is_point.any():
        if radius is not None:
            radii = np.full(len(shapes), float(radius))
        elif VisiumKeys.RADIUS.value in shapes.columns:
            radii = shapes[VisiumKeys.RADIUS.value].to_numpy(dtype=float)
        else:
            raise InvalidInputError(
                f"Point spots need a {VisiumKeys.RADIUS.value!r} column or an explicit radius")
    else:
        radii = np.zeros(len(shapes))

    footprints = [g.buffer(r) if p else g for g, r, p in zip(geoms, radii, is_point)]
    return gpd.GeoSeries(footprints, index=shapes.index, crs=shapes.crs)


def check_scale(boundary, spots: gpd.GeoSeries) -> bool:
    """Warn when the tissue boundary and the spots do not overlap at all.

    A disjoint pair of bounding boxes usually means the scale factor was
    applied in the wrong direction, twice, or not at all.
    """
    if boundary.is_empty or len(spots) == 0:
        return True
    if box(*boundary.bounds).intersects(box(*spots.total_bounds)):
        return True
    msg = (f"Tissue boundary bounds {tuple(np.round(boundary.bounds, 1))} do not overlap "
           f"spot bounds {tuple(np.round(spots.total_bounds, 1))}; check the scale factor.")
    log.warning(msg)
    warnings.warn(msg, ScaleMismatchWarning)
    return False


def classify_spots(in_tissue: pd.Series, intersects: pd.Series) -> pd.Categorical:
    """Three-way comparison of the vendor flag with the segmentation."""
    external = in_tissue.to_numpy(dtype=bool)
    ours = intersects.to_numpy(dtype=bool)
    category = np.where(
        external == ours,
        TissueKeys.SAME.value,
        np.where(external, TissueKeys.EXTERNAL_ONLY.value, TissueKeys.SEGMENTATION_ONLY.value),
    )
    return pd.Categorical(category, categories=CATEGORY_LEVELS)


def compare_spots(boundary, spots: gpd.GeoSeries, in_tissue: pd.Series) -> pd.DataFrame:
    """Test every spot footprint against the tissue boundary.

    Args:
        boundary (shapely geometry): Dissolved tissue boundary in full-res
            pixels.
        spots (geopandas.GeoSeries): Spot footprints in full-res pixels.
        in_tissue (pandas.Series): Vendor in-tissue flag, indexed like
            ``spots``.

    Returns:
        pandas.DataFrame: Indexed like ``spots`` with boolean
        ``intersects`` and ``covered`` columns and a categorical
        ``tissue_category`` column (``same``, ``external-only``,
        ``segmentation-only``). ``covered`` does not feed the category.

    Raises:
        InvalidInputError: If a spot has no in-tissue flag.
    """
    if isinstance(spots, gpd.GeoDataFrame):
        spots = spots.geometry
    flags = in_tissue.reindex(spots.index)
    if flags.isna().any():
        missing = list(flags.index[flags.isna()][:5])
        raise InvalidInputError(
            f"{int(flags.isna().sum())} spot(s) have no in-tissue flag, e.g. {missing}")

    intersects = spots.intersects(boundary).astype(bool)
    covered = spots.covered_by(boundary).astype(bool)

    return pd.DataFrame({
        TissueKeys.INTERSECTS.value: intersects.to_numpy(),
        TissueKeys.COVERED.value: covered.to_numpy(),
        TissueKeys.CATEGORY.value: classify_spots(flags, intersects),
    }, index=spots.index)


def category_counts(results: pd.DataFrame) -> pd.Series:
    """Number of spots per category, all three levels always present."""
    return results[TissueKeys.CATEGORY.value].value_counts().reindex(CATEGORY_LEVELS, fill_value=0)
