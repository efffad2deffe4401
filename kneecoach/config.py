"""Configuration management.

Supports JSON and YAML config files. Configuration is merged against
``DEFAULT_CONFIG`` so partial overrides work seamlessly.

Functions
---------
load_config
    Load config from a JSON or YAML file.
save_config
    Save config to a JSON or YAML file.

Attributes
----------
DEFAULT_CONFIG : dict
    Default values for every component.
"""

import copy
import json
import logging
from pathlib import Path
from typing import Union

import yaml

from .constants import CHARACTERISTIC_UUID, DEVICE_NAME, SERVICE_UUID

logger = logging.getLogger(__name__)


DEFAULT_CONFIG = {
    "transport": {
        "device_name": DEVICE_NAME,
        "service_uuid": SERVICE_UUID,
        "characteristic_uuid": CHARACTERISTIC_UUID,
        "scan_timeout": 10.0,
        "reconnect_base_ms": 1000,
        "reconnect_max_ms": 10000,
        "max_reconnect_attempts": 5,
    },
    "orientation": {
        "smoothing": True,
        "smoothing_window": 5,
        "magnitude_tolerance": 0.1,
    },
    "gait": {
        "smoothing": False,
        "step_threshold_rad": 0.15,
        "rom_min_deg": 50.0,
        "rom_target_deg": 65.0,
        "rom_moderate_deg": 45.0,
        "rom_severe_deg": 40.0,
        "asymmetry_mild_deg": 10.0,
        "asymmetry_moderate_deg": 15.0,
        "lateral_stability_rad": 0.25,
        "lateral_stability_moderate_factor": 1.5,
        "weight_mild_pct": 15.0,
        "weight_moderate_pct": 25.0,
        "weight_smoothing_window": 5,
        "target_steps": 10,
        "max_samples": 400,
        "duration_s": 10.0,
    },
    "reps": {
        "flexed_ratio": 0.3,
        "extended_margin_deg": 30.0,
        "extended_ratio": 1.5,
        "default_target_deg": 90.0,
    },
}


def load_config(path: Union[str, Path]) -> dict:
    """Load config from a JSON or YAML file.

    The loaded configuration is merged against ``DEFAULT_CONFIG``.

    Parameters
    ----------
    path : str or Path
        Path to config file (``.json`` or ``.yaml``/``.yml``).

    Returns
    -------
    dict
        Merged configuration dictionary.

    Raises
    ------
    FileNotFoundError
        If the config file does not exist.
    ValueError
        If the file content is not a dict, names a section that
        ``DEFAULT_CONFIG`` does not have, or a section is not a mapping.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        if path.suffix.lower() in (".yaml", ".yml"):
            cfg = yaml.safe_load(f)
        else:
            cfg = json.load(f)

    if not isinstance(cfg, dict):
        raise ValueError("Config must be a dict")
    _check_sections(cfg)

    merged = _deep_merge(copy.deepcopy(DEFAULT_CONFIG), cfg)
    logger.info(f"Loaded config from {path}")
    return merged


def save_config(config: dict, path: Union[str, Path]) -> str:
    """Save config to a JSON or YAML file.

    Returns
    -------
    str
        Path to the saved file.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "w") as f:
        if path.suffix.lower() in (".yaml", ".yml"):
            yaml.safe_dump(config, f, default_flow_style=False, sort_keys=False)
        else:
            json.dump(config, f, indent=2, ensure_ascii=False)

    logger.info(f"Saved config to {path}")
    return str(path)


def _check_sections(cfg: dict) -> None:
    unknown = sorted(set(cfg) - set(DEFAULT_CONFIG), key=str)
    if unknown:
        raise ValueError(f"Unknown config section(s): {', '.join(map(str, unknown))}")
    for section, values in cfg.items():
        if not isinstance(values, dict):
            raise ValueError(f"Config section {section!r} must be a mapping")
        for key in sorted(set(values) - set(DEFAULT_CONFIG[section]), key=str):
            logger.warning(f"Unknown {section} option {key!r} has no effect")


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base."""
    result = base.copy()
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result
