"""
Tests for reading scalefactors_json.json.
"""

import json

import pytest

from visium_tissue._errors import InvalidInputError
from visium_tissue.scalefactors import ScaleFactors, load_scale_factors

SCALEFACTORS = {
    "spot_diameter_fullres": 89.43,
    "tissue_hires_scalef": 0.0833,
    "fiducial_diameter_fullres": 144.47,
    "tissue_lowres_scalef": 0.025,
    "regist_target_img_scalef": 0.0833,
}


def _write(tmp_path, values):
    path = tmp_path / "scalefactors_json.json"
    path.write_text(json.dumps(values))
    return path


def test_load(tmp_path):
    sf = load_scale_factors(_write(tmp_path, SCALEFACTORS))
    assert sf.tissue_hires_scalef == 0.0833
    assert sf.tissue_lowres_scalef == 0.025
    assert sf.spot_radius_fullres == pytest.approx(89.43 / 2)


def test_missing_key(tmp_path):
    values = {k: v for k, v in SCALEFACTORS.items() if k != "tissue_hires_scalef"}
    with pytest.raises(InvalidInputError, match="tissue_hires_scalef"):
        load_scale_factors(_write(tmp_path, values))


@pytest.mark.parametrize("value", [0, -0.5, "0.08", True])
def test_invalid_value(tmp_path, value):
    values = dict(SCALEFACTORS, tissue_hires_scalef=value)
    with pytest.raises(InvalidInputError):
        load_scale_factors(_write(tmp_path, values))


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_scale_factors(tmp_path / "scalefactors_json.json")


def test_record_is_frozen():
    sf = ScaleFactors(0.5, 0.1, 10.0, 6.0)
    with pytest.raises(AttributeError):
        sf.tissue_hires_scalef = 1.0
