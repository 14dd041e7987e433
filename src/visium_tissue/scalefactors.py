#!/usr/bin/env python3
# -*- coding: utf-8 -*-
import json
import logging
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Union

from visium_tissue._constants import VisiumKeys
from visium_tissue._errors import InvalidInputError

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScaleFactors:
    """Scale factors shipped with a Visium run (scalefactors_json.json).

    Attributes:
        tissue_hires_scalef (float): Full-res → hires pixel ratio (< 1).
        tissue_lowres_scalef (float): Full-res → lowres pixel ratio (< 1).
        fiducial_diameter_fullres (float): Fiducial diameter in full-res pixels.
        spot_diameter_fullres (float): Spot diameter in full-res pixels.
    """

    tissue_hires_scalef: float
    tissue_lowres_scalef: float
    fiducial_diameter_fullres: float
    spot_diameter_fullres: float

    def __post_init__(self):
        for name, value in asdict(self).items():
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise InvalidInputError(f"Scale factor {name!r} must be a number, got {value!r}")
            if value <= 0:
                raise InvalidInputError(f"Scale factor {name!r} must be positive, got {value}")

    @property
    def spot_radius_fullres(self) -> float:
        return self.spot_diameter_fullres / 2

    @classmethod
    def from_dict(cls, values: dict) -> "ScaleFactors":
        """Build the record from a parsed scalefactors JSON object.

        Extra keys (e.g. ``regist_target_img_scalef``) are ignored.

        Raises:
            InvalidInputError: If one of the four required keys is missing.
        """
        keys = [
            VisiumKeys.SCALEFACTORS_HIRES.value,
            VisiumKeys.SCALEFACTORS_LOWRES.value,
            VisiumKeys.FIDUCIAL_DIAMETER.value,
            VisiumKeys.SPOT_DIAMETER.value,
        ]
        missing = [k for k in keys if k not in values]
        if missing:
            raise InvalidInputError(f"Scale factors missing required keys: {missing}")
        return cls(**{k: values[k] for k in keys})


def load_scale_factors(path: Union[str, Path]) -> ScaleFactors:
    """Read and validate a Visium ``scalefactors_json.json`` file."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Scale factors file not found: {path}")
    with open(path) as f:
        values = json.load(f)
    scalefactors = ScaleFactors.from_dict(values)
    log.info("Loaded scale factors from %s: %s", path, scalefactors)
    return scalefactors
