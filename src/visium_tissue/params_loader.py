"""
Load tissue segmentation parameters from params.yaml.
Use get_params() to obtain the full dict, or get_params(section) for a subsection.
Pass params_path to read another YAML file instead of the packaged one (not cached).
"""
from pathlib import Path

import yaml

_PARAMS_PATH = Path(__file__).resolve().parent / "params.yaml"

_cached_params = None


def get_params(section: str | None = None, params_path: str | Path | None = None) -> dict:
    """
    Load and return parameters from params.yaml.

    Parameters
    ----------
    section : str, optional
        If provided, return only this top-level section (e.g.
        "tissue_segmentation"). Otherwise return the full params dict.
    params_path : str or Path, optional
        Read this file instead of the packaged params.yaml. The result is not
        cached.

    Returns
    -------
    dict
        Parameter key-value map for the requested section or full file.
    """
    global _cached_params
    if params_path is not None:
        params = _read_params(Path(params_path))
    else:
        if _cached_params is None:
            _cached_params = _read_params(_PARAMS_PATH)
        params = _cached_params
    if section is None:
        return params.copy()
    if section not in params:
        raise KeyError(f"Section {section!r} not found in params. Available: {list(params)}")
    return params[section].copy()


def _read_params(path: Path) -> dict:
    if not path.exists():
        raise FileNotFoundError(
            f"Params file not found: {path}. "
            "Copy or create params.yaml next to params_loader.py and edit paths for your setup."
        )
    with open(path) as f:
        return yaml.safe_load(f) or {}


def get_params_path() -> Path:
    """Return the path to the params.yaml file (for reference or overrides)."""
    return _PARAMS_PATH
