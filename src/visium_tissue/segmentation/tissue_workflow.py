#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# =============================================================================
#
# Visium: tissue boundary segmentation
# Paths and settings are read from params.yaml (section: tissue_segmentation).
#
# =============================================================================
import warnings
import logging
import time
from pathlib import Path

import matplotlib.pyplot as plt

from visium_tissue._constants import VisiumKeys
from visium_tissue.params_loader import get_params
from visium_tissue.qc.tissue_qc import vis_mask_stages, vis_overlay, vis_spot_categories
from visium_tissue.segmentation.tissue_seg import TissueSegmentation_visium
from visium_tissue.segmentation.tissue_tools import category_counts


def main(params_path=None):
    start = time.time()
    # =========================================================================
    # Configuration
    # =========================================================================
    logging.basicConfig(level=logging.WARNING)
    warnings.filterwarnings("ignore", category=FutureWarning)

    p = get_params("tissue_segmentation", params_path=params_path)
    data_path = Path(p["data_path"])
    spatial_dir = data_path / VisiumKeys.SPATIAL_DIR.value
    image_path = p.get("image_path")
    if image_path is None and (spatial_dir / VisiumKeys.IMAGE_HIRES_FILE.value).exists():
        image_path = spatial_dir / VisiumKeys.IMAGE_HIRES_FILE.value
    scalefactors_path = p.get("scalefactors_path") or spatial_dir / VisiumKeys.SCALEFACTORS_FILE.value
    OUTPUT_DIR = Path(p["output_dir"])
    dpi = p.get("dpi", 300)
    SAMPLE_NAME = p["dataset_id"]

    # =========================================================================
    # 1. LOAD DATA
    # =========================================================================
    print("\n[1] Loading spatial data")
    pipe = TissueSegmentation_visium(
        image_name=p["image_name"],
        shape_name=p["shape_name"],
        table_name=p["table_name"],
        boundary_name=p["boundary_name"],
        instance_key=p["instance_key"],
        in_tissue_key=p["in_tissue_key"],
        output_dir=str(OUTPUT_DIR),
    )
    zarr_path = p.get("zarr_path")
    if zarr_path and Path(zarr_path).exists():
        pipe.load_data(zarr_path=zarr_path)
    else:
        pipe.load_data(visium_path=data_path, dataset_id=SAMPLE_NAME)
    # None reads the image element from the SpatialData object
    pipe.load_image(image_path)
    pipe.load_scale_factors(scalefactors_path)
    print(f"Loaded: {SAMPLE_NAME} (image {pipe.image.shape}, "
          f"hires scale factor {pipe.scalefactors.tissue_hires_scalef})")

    # =========================================================================
    # 2. TISSUE SEGMENTATION
    # =========================================================================
    print("\n[2] Segmenting tissue")
    results = pipe.run(p)
    print(f"Regions labelled: {len(pipe.features)}, "
          f"polygons kept: {len(pipe.polygons_simplified.polygons)}")

    vis_mask_stages(pipe.mask, pipe.cleaned_mask, pipe.filtered_labels,
                    name=str(OUTPUT_DIR / f"{SAMPLE_NAME}_mask_stages"), dpi=dpi)
    vis_overlay(pipe.image, pipe.polygons_simplified,
                name=str(OUTPUT_DIR / f"{SAMPLE_NAME}_tissue_overlay"), dpi=dpi)
    plt.close("all")

    # =========================================================================
    # 3. COMPARISON WITH IN_TISSUE
    # =========================================================================
    print("\n[3] Comparing with vendor in_tissue flag")
    print(category_counts(results).to_string())
    vis_spot_categories(pipe.spots(), results, boundary=pipe.boundary,
                        name=str(OUTPUT_DIR / f"{SAMPLE_NAME}_spot_categories"), dpi=dpi)
    plt.close("all")

    # =========================================================================
    # 4. SAVE
    # =========================================================================
    if p.get("export_boundary", True):
        print(f"Saved: {pipe.export_boundary()}")
    if p.get("write_zarr", False):
        print(f"Saved: {pipe.write(p['zarr_path'])}")

    end = time.time()
    print("time: ", end - start)
    return pipe


if __name__ == "__main__":
    main()
