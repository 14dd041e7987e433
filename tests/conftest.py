"""
Pytest fixtures for the tissue segmentation tests.

Provides small synthetic images, masks and spot tables.
"""

import matplotlib

matplotlib.use("Agg")

import geopandas as gpd
import numpy as np
import pandas as pd
import pytest
from shapely.geometry import Point

from visium_tissue.scalefactors import ScaleFactors


@pytest.fixture
def tissue_image():
    """
    60x60 RGB float image: white glass with a dark 40x40 tissue square.

    Tissue occupies rows/cols 10..49 with intensity 0.2 in every channel.
    """
    img = np.ones((60, 60, 3), dtype=float)
    img[10:50, 10:50] = 0.2
    return img


@pytest.fixture
def noisy_mask():
    """
    50x50 mask with a 30x30 square, a one pixel speck and a one pixel hole.

    - square: rows/cols 10..39
    - speck: (2, 2)
    - hole: (25, 25)
    """
    mask = np.zeros((50, 50), dtype=bool)
    mask[10:40, 10:40] = True
    mask[2, 2] = True
    mask[25, 25] = False
    return mask


@pytest.fixture
def two_blobs():
    """
    Mask with a 50 pixel blob (5x10) and a 5 pixel blob (1x5).
    """
    mask = np.zeros((20, 20), dtype=bool)
    mask[2:7, 2:12] = True
    mask[15, 10:15] = True
    return mask


@pytest.fixture
def scalefactors():
    return ScaleFactors(
        tissue_hires_scalef=0.5,
        tissue_lowres_scalef=0.1,
        fiducial_diameter_fullres=10.0,
        spot_diameter_fullres=6.0,
    )


@pytest.fixture
def spots_gdf():
    """
    Four point spots with radius 3, in full-res pixels of ``tissue_image``
    scaled by 0.5 (tissue square spans roughly x, y in [19, 99]).

    ====  ==========  =========  ===================
    id    position    in_tissue  expected category
    ====  ==========  =========  ===================
    0     (60, 60)    1          same
    1     (5, 5)      1          external-only
    2     (80, 40)    0          segmentation-only
    3     (115, 115)  0          same
    ====  ==========  =========  ===================
    """
    gdf = gpd.GeoDataFrame(
        {"radius": [3.0, 3.0, 3.0, 3.0]},
        geometry=[Point(60, 60), Point(5, 5), Point(80, 40), Point(115, 115)],
        index=pd.Index([0, 1, 2, 3], name="spot_id"),
    )
    return gdf


@pytest.fixture
def in_tissue():
    return pd.Series([1, 1, 0, 0], index=pd.Index([0, 1, 2, 3], name="spot_id"))
