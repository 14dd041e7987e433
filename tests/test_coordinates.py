"""
Tests for the coordinate frame conversions in coordinates.py.

Raster contours are (row, col); hires and full-res polygons are (x, y).
"""

import geopandas as gpd
import pytest
from shapely.geometry import Polygon

from visium_tissue.coordinates import (
    FullresPixelSpace,
    HiresPixelSpace,
    RasterSpace,
    fullres_to_hires,
    hires_to_fullres,
    hires_y_down,
    raster_to_hires,
)


@pytest.fixture
def raster():
    # rows 0..2, cols 0..10: a wide, flat rectangle
    poly = Polygon([(0, 0), (0, 10), (2, 10), (2, 0)])
    return RasterSpace(gpd.GeoDataFrame({"label": [3]}, geometry=[poly]), height=20)


class TestRasterToHires:

    def test_axes_swapped(self, raster):
        hires = raster_to_hires(raster)
        assert isinstance(hires, HiresPixelSpace)
        assert hires.polygons.geometry.iloc[0].bounds == (0, 0, 10, 2)

    def test_attributes_kept(self, raster):
        hires = raster_to_hires(raster)
        assert list(hires.polygons["label"]) == [3]

    def test_input_not_modified(self, raster):
        raster_to_hires(raster)
        assert raster.polygons.geometry.iloc[0].bounds == (0, 0, 2, 10)

    def test_wrong_frame(self, raster):
        with pytest.raises(ValueError):
            raster_to_hires(raster_to_hires(raster))


class TestScaling:

    def test_divides_by_scale_factor(self, raster):
        fullres = hires_to_fullres(raster_to_hires(raster), 0.25)
        assert isinstance(fullres, FullresPixelSpace)
        assert fullres.polygons.geometry.iloc[0].bounds == pytest.approx((0, 0, 40, 8))

    def test_round_trip(self, raster):
        hires = raster_to_hires(raster)
        back = fullres_to_hires(hires_to_fullres(hires, 0.0833), 0.0833)
        assert back.polygons.geometry.iloc[0].bounds == pytest.approx(
            hires.polygons.geometry.iloc[0].bounds)

    def test_cannot_rescale_twice(self, raster):
        fullres = hires_to_fullres(raster_to_hires(raster), 0.5)
        with pytest.raises(ValueError):
            hires_to_fullres(fullres, 0.5)

    def test_raster_cannot_be_rescaled(self, raster):
        with pytest.raises(ValueError):
            hires_to_fullres(raster, 0.5)

    @pytest.mark.parametrize("factor", [0, -1.0])
    def test_non_positive_factor(self, raster, factor):
        with pytest.raises(ValueError):
            hires_to_fullres(raster_to_hires(raster), factor)


class TestYOrientation:

    @pytest.fixture
    def flipped(self, raster):
        return RasterSpace(raster.polygons, height=20, flipped=True)

    def test_flip_carried_to_fullres(self, flipped):
        hires = raster_to_hires(flipped)
        assert hires.y_up and hires.height == 20
        assert hires_to_fullres(hires, 0.5).y_up

    def test_mirrored_back_to_rows(self, flipped):
        down = hires_y_down(raster_to_hires(flipped))
        assert not down.y_up
        # y' = height - 1 - y
        assert down.polygons.geometry.iloc[0].bounds == pytest.approx((0, 17, 10, 19))

    def test_y_down_unchanged(self, raster):
        hires = raster_to_hires(raster)
        assert hires_y_down(hires) is hires

    def test_height_required(self, raster):
        hires = HiresPixelSpace(raster_to_hires(raster).polygons, y_up=True)
        with pytest.raises(ValueError):
            hires_y_down(hires)
