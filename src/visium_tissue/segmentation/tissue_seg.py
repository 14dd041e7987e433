#!/usr/bin/env python3
# -*- coding: utf-8 -*-
import os
import logging
from pathlib import Path
from typing import Iterable, Optional, Sequence

import geopandas as gpd
import pandas as pd
import spatialdata as sd
from spatialdata.models import ShapesModel
from spatialdata.transformations import get_transformation

from visium_tissue._constants import TissueKeys, VisiumKeys
from visium_tissue._errors import InvalidInputError
from visium_tissue.scalefactors import ScaleFactors, load_scale_factors
from visium_tissue.segmentation.tissue_tools import (
    check_scale,
    clean_mask,
    compare_spots,
    filter_regions,
    image_from_spatialdata,
    label_components,
    load_image,
    polygonize,
    rescale_to_fullres,
    spot_footprints,
    threshold_channel,
    tissue_boundary,
)

log = logging.getLogger(__name__)


def read_visium(path, dataset_id: Optional[str] = None):
    """Read a Space Ranger output folder into a SpatialData object."""
    from spatialdata_io import visium

    return visium(path, dataset_id=dataset_id)


class TissueSegmentation_visium:
    """Tissue boundary segmentation for one Visium sample.

    This class runs thresholding, morphological cleanup, component
    filtering and polygonization on the hires tissue image, compares the
    resulting outline with the vendor in-tissue flag of every spot, and
    writes the boundary and per-spot results back to the SpatialData
    object.

    Attributes:
        image_name (str): Image element holding the hires image.
        shape_name (str): Shapes element holding the spots.
        table_name (str): Table with the in-tissue flag.
        boundary_name (str): Shapes element the boundary is written to.
        instance_key (str): Column of the table matching the spots index.
        in_tissue_key (str): Column of the table with the vendor flag.
        sdata (sd.SpatialData): Loaded SpatialData object.
        image (np.ndarray): Hires image, float in [0, 1].
        scalefactors (ScaleFactors): Visium scale factors.
        mask (np.ndarray): Thresholded mask.
        cleaned_mask (np.ndarray): Mask after opening and closing.
        labels (np.ndarray): Connected components of ``cleaned_mask``.
        features (pd.DataFrame): Shape features per label.
        filtered_labels (np.ndarray): Labels surviving the region filter.
        polygons_full (HiresPixelSpace): Exact outlines.
        polygons_simplified (HiresPixelSpace): Simplified outlines.
        polygons_fullres (FullresPixelSpace): Simplified outlines in
            full-res pixels.
        boundary (shapely geometry): Dissolved tissue boundary.
        spot_results (pd.DataFrame): ``intersects``, ``covered`` and
            ``tissue_category`` per spot.
    """

    def __init__(self,
                 image_name: str,
                 shape_name: str,
                 table_name: str = "table",
                 boundary_name: str = TissueKeys.BOUNDARY_NAME.value,
                 instance_key: str = VisiumKeys.INSTANCE_KEY.value,
                 in_tissue_key: str = VisiumKeys.IN_TISSUE.value,
                 output_dir: str = "outputs"):

        self.image_name = image_name
        self.shape_name = shape_name
        self.table_name = table_name
        self.boundary_name = boundary_name
        self.instance_key = instance_key
        self.in_tissue_key = in_tissue_key
        self.output_dir = output_dir
        self.sdata = None
        self.image = None
        self.scalefactors = None
        self.mask = None
        self.cleaned_mask = None
        self.labels = None
        self.features = None
        self.filtered_labels = None
        self.polygons_full = None
        self.polygons_simplified = None
        self.polygons_fullres = None
        self.boundary = None
        self.spot_results = None
        os.makedirs(self.output_dir, exist_ok=True)

    @staticmethod
    def _require(value, name, step):
        if value is None:
            raise RuntimeError(f"No {name} available; run {step}() first.")

    # ---------------- LOADING ---------------- #

    def load_data(self, sdata=None, zarr_path=None, visium_path=None, dataset_id=None):
        """Attach a SpatialData object, read from Zarr or from a Visium folder.

        Exactly one of ``sdata``, ``zarr_path`` and ``visium_path`` is used,
        in that order of preference.
        """
        if sdata is not None:
            self.sdata = sdata
        elif zarr_path is not None:
            self.sdata = sd.read_zarr(zarr_path)
        elif visium_path is not None:
            self.sdata = read_visium(visium_path, dataset_id=dataset_id)
        else:
            raise ValueError("Provide one of `sdata`, `zarr_path` or `visium_path`.")

        if self.shape_name not in self.sdata.shapes:
            raise InvalidInputError(
                f"Spots element {self.shape_name!r} not found. "
                f"Available: {list(self.sdata.shapes.keys())}")
        if self.table_name not in self.sdata.tables:
            raise InvalidInputError(
                f"Table {self.table_name!r} not found. Available: {list(self.sdata.tables.keys())}")
        obs = self.sdata.tables[self.table_name].obs
        for key in (self.instance_key, self.in_tissue_key):
            if key not in obs.columns:
                raise InvalidInputError(f"Column {key!r} missing from table {self.table_name!r}")

        return self.sdata

    def load_image(self, image_path=None, n_channels: Optional[int] = None):
        """Load the hires image from a file, or from the SpatialData object."""
        if image_path is not None:
            self.image = load_image(image_path, n_channels=n_channels)
        else:
            self._require(self.sdata, "spatial data", "load_data")
            self.image = image_from_spatialdata(self.sdata, self.image_name, n_channels=n_channels)
        return self.image

    def load_scale_factors(self, path=None, scalefactors: Optional[ScaleFactors] = None):
        """Read ``scalefactors_json.json`` (or take an existing record)."""
        if scalefactors is not None:
            self.scalefactors = scalefactors
        elif path is not None:
            self.scalefactors = load_scale_factors(path)
        else:
            raise ValueError("Provide `path` or `scalefactors`.")
        return self.scalefactors

    # ---------------- RASTER STAGES ---------------- #

    def build_mask(self, channel: int, threshold: float, foreground: str = "below"):
        self._require(self.image, "image", "load_image")
        self.mask = threshold_channel(self.image, channel, threshold, foreground=foreground)
        log.info("Mask covers %.1f%% of the image", 100 * self.mask.mean())
        return self.mask

    def clean(self, radius: int):
        self._require(self.mask, "mask", "build_mask")
        self.cleaned_mask = clean_mask(self.mask, radius)
        return self.cleaned_mask

    def label(self, connectivity: int = 2):
        self._require(self.cleaned_mask, "cleaned mask", "clean")
        self.labels, self.features = label_components(self.cleaned_mask, connectivity=connectivity)
        return self.labels, self.features

    def filter(self, min_area: int,
               exclude_labels: Iterable[int] = (),
               exclude_points: Iterable[Sequence[int]] = ()):
        """Apply the region filter.

        Note:
            ``exclude_labels`` must come from inspecting ``self.labels`` of
            this very run; label values change whenever an earlier
            parameter changes.
        """
        self._require(self.labels, "labels", "label")
        self.filtered_labels = filter_regions(
            self.labels, self.features, min_area,
            exclude_labels=exclude_labels, exclude_points=exclude_points)
        return self.filtered_labels

    def polygonize(self, keep: float = 1.0, flip_y: bool = False):
        self._require(self.filtered_labels, "filtered labels", "filter")
        self.polygons_full, self.polygons_simplified = polygonize(
            self.filtered_labels, keep=keep, flip_y=flip_y, progress=True)
        if self.polygons_full.polygons.empty:
            log.warning("No polygons extracted from mask; check threshold and filters.")
        return self.polygons_full, self.polygons_simplified

    # ---------------- COMPARISON ---------------- #

    def spots(self) -> gpd.GeoSeries:
        """Spot footprints in full-res pixels, restricted to spots in the table."""
        self._require(self.sdata, "spatial data", "load_data")
        radius = None
        shapes = self.sdata.shapes[self.shape_name]
        if VisiumKeys.RADIUS.value not in shapes.columns and self.scalefactors is not None:
            radius = self.scalefactors.spot_radius_fullres
        footprints = spot_footprints(shapes, radius=radius)
        ids = self._in_tissue().index
        return footprints.loc[footprints.index.intersection(ids)]

    def _in_tissue(self) -> pd.Series:
        obs = self.sdata.tables[self.table_name].obs
        return pd.Series(obs[self.in_tissue_key].to_numpy(),
                         index=pd.Index(obs[self.instance_key].to_numpy()))

    def compare(self):
        """Rescale the simplified outline to full-res and classify every spot.

        Returns:
            pd.DataFrame: Per-spot ``intersects``, ``covered`` and
            ``tissue_category``.
        """
        self._require(self.polygons_simplified, "polygons", "polygonize")
        self._require(self.scalefactors, "scale factors", "load_scale_factors")

        self.polygons_fullres = rescale_to_fullres(
            self.polygons_simplified, self.scalefactors.tissue_hires_scalef)
        self.boundary = tissue_boundary(self.polygons_fullres)

        footprints = self.spots()
        check_scale(self.boundary, footprints)
        self.spot_results = compare_spots(self.boundary, footprints, self._in_tissue())
        return self.spot_results

    # ---------------- SPATIALDATA ---------------- #

    def update_spatialdata(self):
        """Write the boundary shapes element and the per-spot columns.

        The boundary gets the spots element's transformations, as both live
        in full-res pixels. An empty boundary is not written.
        """
        self._require(self.spot_results, "spot results", "compare")

        if self.boundary.is_empty:
            log.warning("Tissue boundary is empty; %r not written.", self.boundary_name)
        else:
            transformations = get_transformation(
                self.sdata.shapes[self.shape_name], get_all=True)
            boundary_df = gpd.GeoDataFrame(
                {"name": [self.boundary_name]},
                geometry=[self.boundary],
                index=pd.Index([self.boundary_name]),
            )
            self.sdata.shapes[self.boundary_name] = ShapesModel.parse(
                boundary_df, transformations=transformations)

        table = self.sdata.tables[self.table_name]
        ids = table.obs[self.instance_key].to_numpy()
        for column in (TissueKeys.INTERSECTS.value, TissueKeys.COVERED.value,
                       TissueKeys.CATEGORY.value):
            table.obs[column] = self.spot_results[column].reindex(ids).values

        return self.sdata

    def write(self, zarr_path):
        """Write the updated SpatialData object to Zarr."""
        self._require(self.sdata, "spatial data", "load_data")
        self.sdata.write(zarr_path, overwrite=True)
        log.info("Wrote %s", zarr_path)
        return zarr_path

    def export_boundary(self, path=None):
        """Save simplified full-res polygons as GeoParquet."""
        self._require(self.polygons_fullres, "full-res polygons", "compare")
        if path is None:
            path = Path(self.output_dir) / f"{self.boundary_name}.parquet"
        self.polygons_fullres.polygons.to_parquet(path)
        return path

    # ---------------- ALL STEPS ---------------- #

    def run(self, params: dict):
        """Run every stage with the values of a ``tissue_segmentation`` params section."""
        self.build_mask(params["channel"], params["threshold"], params.get("foreground", "below"))
        self.clean(params["footprint_radius"])
        self.label()
        self.filter(params["min_area"],
                    exclude_labels=params.get("exclude_labels") or (),
                    exclude_points=params.get("exclude_points") or ())
        self.polygonize(keep=params.get("keep", 1.0), flip_y=params.get("flip_y", False))
        self.compare()
        self.update_spatialdata()
        return self.spot_results
