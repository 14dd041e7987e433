"""Exceptions and warnings raised by the tissue segmentation pipeline."""


class InvalidInputError(ValueError):
    """Input cannot be processed (missing channel, geometry or flag column).

    Raised before any pipeline stage runs.
    """


class DegenerateRegionWarning(UserWarning):
    """A labelled region did not vectorise to a valid polygon and was dropped."""


class ScaleMismatchWarning(UserWarning):
    """Tissue polygons and spot footprints do not share a coordinate range."""
