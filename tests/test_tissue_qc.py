"""
Smoke tests for the QC figures.
"""

import matplotlib.pyplot as plt
import numpy as np
import pytest
from shapely.geometry import box

from visium_tissue.qc.tissue_qc import vis_mask_stages, vis_overlay, vis_spot_categories
from visium_tissue.segmentation.tissue_tools import (
    clean_mask,
    compare_spots,
    filter_regions,
    label_components,
    polygonize,
    spot_footprints,
    threshold_channel,
)


def test_overlay_saved(tissue_image, tmp_path):
    mask = threshold_channel(tissue_image, 1, 0.85)
    labels, _ = label_components(mask)
    _, simplified = polygonize(labels, keep=0.5)

    fig = vis_overlay(tissue_image, simplified, name=str(tmp_path / "overlay"), dpi=50)
    assert (tmp_path / "overlay.png").exists()
    plt.close(fig)


def test_overlay_without_polygons(tissue_image):
    _, simplified = polygonize(np.zeros((60, 60), dtype=np.int32))
    fig = vis_overlay(tissue_image, simplified)
    assert fig is not None
    plt.close(fig)


def test_spot_categories_saved(spots_gdf, in_tissue, tmp_path):
    boundary = box(19, 19, 99, 99)
    footprints = spot_footprints(spots_gdf)
    results = compare_spots(boundary, footprints, in_tissue)

    fig = vis_spot_categories(footprints, results, boundary=boundary,
                              name=str(tmp_path / "categories"), dpi=50)
    assert (tmp_path / "categories.png").exists()
    plt.close(fig)


def test_mask_stages(noisy_mask, tmp_path):
    cleaned = clean_mask(noisy_mask, 1)
    labels, features = label_components(cleaned)
    filtered = filter_regions(labels, features, min_area=10)

    fig = vis_mask_stages(noisy_mask, cleaned, filtered, name=str(tmp_path / "stages"), dpi=50)
    assert len(fig.axes) == 3
    assert (tmp_path / "stages.png").exists()
    plt.close(fig)


def _drawn_y_range(fig):
    paths = fig.axes[0].collections[-1].get_paths()
    y = np.concatenate([p.vertices[:, 1] for p in paths])
    return y.min(), y.max()


def test_overlay_draws_flipped_polygons_on_image_rows(tissue_image):
    labels = np.zeros((60, 60), dtype=np.int32)
    labels[5:20, 5:55] = 1
    _, down = polygonize(labels)
    _, up = polygonize(labels, flip_y=True)

    fig_down = vis_overlay(tissue_image, down)
    fig_up = vis_overlay(tissue_image, up)
    assert _drawn_y_range(fig_up) == pytest.approx(_drawn_y_range(fig_down))
    plt.close("all")
