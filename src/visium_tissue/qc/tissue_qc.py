#!/usr/bin/env python3
# -*- coding: utf-8 -*-
import geopandas as gpd
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns

from visium_tissue._constants import CATEGORY_LEVELS, TissueKeys
from visium_tissue.coordinates import HiresPixelSpace, hires_y_down

CATEGORY_PALETTE = {
    TissueKeys.SAME.value: "lightgrey",
    TissueKeys.EXTERNAL_ONLY.value: "tab:red",
    TissueKeys.SEGMENTATION_ONLY.value: "tab:blue",
}


def vis_overlay(image, polygons, name=None, dpi=300, ax=None):
    """Overlays tissue polygons on the hires image.

    Args:
        image (numpy.ndarray): Hires image, ``(y, x)`` or ``(y, x, c)``.
        polygons (HiresPixelSpace | geopandas.GeoDataFrame): Polygons in
            hires pixel coordinates. y-up HiresPixelSpace polygons are
            mirrored back onto image rows; a bare GeoDataFrame must
            already be y-down.
        name (str, optional): Base filename; the figure is saved as
            "{name}.png" when given.
        dpi (int, optional): Resolution of the saved image. Defaults to 300.
        ax (matplotlib.axes.Axes, optional): Axes to draw into.

    Returns:
        matplotlib.figure.Figure: The figure holding the overlay.

    Notes:
        - Polygons are drawn without fill, black 0.8 linewidth edges.
        - Axes are hidden.
    """
    if isinstance(polygons, HiresPixelSpace):
        gdf = hires_y_down(polygons).polygons
    else:
        gdf = polygons

    if ax is None:
        fig, ax = plt.subplots(figsize=(8, 8))
    else:
        fig = ax.get_figure()

    ax.imshow(image, cmap="gray" if image.ndim == 2 else None)
    if not gdf.empty:
        gdf.boundary.plot(ax=ax, color="black", linewidth=0.8)
    ax.set_title("Tissue boundary", fontsize=14)
    ax.axis("off")

    if name is not None:
        fig.savefig(name + ".png", bbox_inches="tight", dpi=dpi)
    return fig


def vis_spot_categories(spots, results, boundary=None, name=None, dpi=300):
    """Scatter spot centres coloured by their tissue category.

    Args:
        spots (geopandas.GeoSeries): Spot footprints in full-res pixels.
        results (pandas.DataFrame): Output of ``compare_spots``.
        boundary (shapely geometry, optional): Tissue boundary to outline.
        name (str, optional): Base filename for saving.
        dpi (int, optional): Resolution of the saved image.

    Returns:
        matplotlib.figure.Figure
    """
    centres = spots.loc[results.index].centroid
    df = pd.DataFrame({
        "x": centres.x.to_numpy(),
        # image rows grow downwards
        "y": -centres.y.to_numpy(),
        TissueKeys.CATEGORY.value: results[TissueKeys.CATEGORY.value].to_numpy(),
    })

    fig, ax = plt.subplots(figsize=(8, 8))
    sns.scatterplot(x="x", y="y", hue=TissueKeys.CATEGORY.value, hue_order=CATEGORY_LEVELS,
                    palette=CATEGORY_PALETTE, s=8, marker="o", linewidth=0, data=df, ax=ax)
    if boundary is not None and not boundary.is_empty:
        outline = gpd.GeoSeries([boundary]).boundary
        for line in outline.explode(index_parts=False):
            x, y = line.xy
            ax.plot(np.asarray(x), -np.asarray(y), color="black", linewidth=0.5)
    sns.move_legend(ax, "upper left", bbox_to_anchor=(1, 1))
    ax.set_xlabel("")
    ax.set_ylabel("")
    ax.set_aspect("equal")
    ax.set_title("Spot tissue categories", fontsize=14)
    plt.tight_layout()

    if name is not None:
        fig.savefig(name + ".png", bbox_inches="tight", dpi=dpi)
    return fig


def vis_mask_stages(mask, cleaned_mask, filtered_labels, name=None, dpi=300):
    fig, axs = plt.subplots(1, 3, figsize=(15, 5))
    for ax, img, title in zip(axs,
                              (mask, cleaned_mask, filtered_labels > 0),
                              ("Threshold", "Opening + closing", "Filtered regions")):
        ax.imshow(img, cmap="gray")
        ax.set_title(title)
        ax.tick_params(left=False, bottom=False, labelleft=False, labelbottom=False)
    plt.tight_layout()
    if name is not None:
        fig.savefig(name + ".png", bbox_inches="tight", dpi=dpi)
    return fig
