from enum import unique
from spatialdata_io._constants._enum import ModeEnum


@unique
class VisiumKeys(ModeEnum):
    """Keys for *10X Genomics Visium* formatted dataset."""

    # files and directories
    SPATIAL_DIR = "spatial"
    SCALEFACTORS_FILE = "scalefactors_json.json"
    IMAGE_HIRES_FILE = "tissue_hires_image.png"
    IMAGE_LOWRES_FILE = "tissue_lowres_image.png"
    TISSUE_POSITIONS_FILE = "tissue_positions.csv"

    # scalefactors
    SCALEFACTORS_HIRES = "tissue_hires_scalef"
    SCALEFACTORS_LOWRES = "tissue_lowres_scalef"
    FIDUCIAL_DIAMETER = "fiducial_diameter_fullres"
    SPOT_DIAMETER = "spot_diameter_fullres"

    # spots
    SPOTS_X = "pxl_col_in_fullres"
    SPOTS_Y = "pxl_row_in_fullres"
    IN_TISSUE = "in_tissue"
    INSTANCE_KEY = "spot_id"
    REGION_KEY = "region"
    RADIUS = "radius"


@unique
class TissueKeys(ModeEnum):
    """Names written by the tissue segmentation into the spatial dataset."""

    # shapes element holding the dissolved tissue outline
    BOUNDARY_NAME = "tissue_boundary"

    # per-spot columns
    INTERSECTS = "intersects"
    COVERED = "covered"
    CATEGORY = "tissue_category"

    # category levels
    SAME = "same"
    EXTERNAL_ONLY = "external-only"
    SEGMENTATION_ONLY = "segmentation-only"

    # polygon set columns
    LABEL = "label"
    GEOMETRY = "geometry"


CATEGORY_LEVELS = [
    TissueKeys.SAME.value,
    TissueKeys.EXTERNAL_ONLY.value,
    TissueKeys.SEGMENTATION_ONLY.value,
]
