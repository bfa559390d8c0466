"""Run configuration: YAML merged over defaults, with paths made absolute."""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Any, Dict

import yaml

from .errors import ConfigError
from .preprocess.cloudmask import MASKS
from .preprocess.scaling import PRESETS as SCALING_PRESETS

DEFAULTS: Dict[str, Any] = {
    "region": {"boundaries": "counties", "field": "COUNTYFP", "value": None},
    "zones": {"dataset": "zip_codes", "id_field": "geoid20"},
    "vectors": {},
    "catalogs": {},
    "sensors": {
        "optical": {
            "catalog": "COPERNICUS/S2_SR_HARMONIZED",
            "start": "2022-04-01",
            "end": "2022-10-30",
            "max_cloud": 20,
            "cloud_property": "CLOUDY_PIXEL_PERCENTAGE",
            "bands": None,
            "mask": "s2_qa60",
            "scaling": "sentinel2_sr",
            "reducer": "mean",
        },
        "thermal": {
            "catalog": "LANDSAT/LC08/C02/T1_L2",
            "start": "2022-06-21",
            "end": "2022-09-21",
            "max_cloud": None,
            "cloud_property": "CLOUD_COVER",
            "bands": ["SR_B1", "SR_B2", "SR_B3", "SR_B4", "SR_B5", "SR_B6", "SR_B7", "ST_B10", "QA_PIXEL"],
            "mask": "landsat_qa_pixel",
            "scaling": "landsat_c2_l2",
            "reducer": "median",
        },
    },
    "indices": {
        "NDVI": {"expression": "(NIR - Red) / (NIR + Red)", "bindings": {"NIR": "B8", "Red": "B4"}},
        "NDWI": {"expression": "(Green - NIR) / (Green + NIR)", "bindings": {"NIR": "B8", "Green": "B3"}},
        "SAVI": {
            "expression": "((NIR - Red) / (NIR + Red + 0.5)) * (1.5)",
            "bindings": {"NIR": "B8", "Red": "B4"},
        },
    },
    "classes": {0: "tree_canopy", 1: "non_forest_vegetation", 2: "urban", 3: "water"},
    "training": {
        "label_property": "id",
        "collections": [],
        "scale": 20,
        "split": 0.8,
        "seed": None,
    },
    "classifier": {
        "n_estimators": 10,
        "features": ["B2", "B3", "B4", "B5", "B8", "B9", "B11", "NDVI", "NDWI", "SAVI"],
        "random_state": None,
        "save_model": False,
    },
    "zonal": {
        "region_class_area": {"scale": 10, "best_effort": True, "max_pixels": 10_000_000},
        "zone_class_area": {"scale": 10, "best_effort": False, "max_pixels": 10_000_000},
        "temperature": {"bands": ["ST_B10"], "scale": 30, "best_effort": False, "max_pixels": 10_000_000},
    },
    "exports": {
        "class_area": {"filename": "zip_class_coverage", "selectors": ["geoid20", "groups"], "format": "json"},
        "temperature": {"filename": "zip_avg_temp", "selectors": ["geoid20", "ST_B10"], "format": "json"},
    },
    "display": {
        "center": None,
        "zoom": 11,
        "rgb": {"bands": ["B4", "B3", "B2"], "min": 0.0, "max": 0.3},
        "temperature": {
            "bands": ["ST_B10"], "min": 300, "max": 325, "opacity": 1,
            "palette": ["black", "blue", "green", "yellow", "orange", "red", "white"],
        },
        "classification": {"min": 0, "max": 3, "palette": ["green", "yellow", "grey", "blue"]},
        "zone_color": "cyan",
    },
}


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(out.get(key), dict) and key not in {"classes", "indices"}:
            out[key] = _merge(out[key], value)
        else:
            out[key] = copy.deepcopy(value)
    return out


def _resolve(base_dir: Path, value) -> Path:
    path = Path(value).expanduser()
    return path if path.is_absolute() else base_dir / path


def validate_config(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Check a merged configuration and raise :class:`ConfigError` on the first problem."""
    region = cfg["region"]
    if region.get("value") is None:
        raise ConfigError("region.value is required (e.g. a county code)")
    for key in (region["boundaries"], cfg["zones"]["dataset"]):
        if key not in cfg["vectors"]:
            raise ConfigError(f"vectors.{key} is not configured")

    for role, sensor in cfg["sensors"].items():
        if sensor["catalog"] not in cfg["catalogs"]:
            raise ConfigError(f"sensors.{role}: catalog {sensor['catalog']!r} has no entry under catalogs")
        if sensor["mask"] not in MASKS:
            raise ConfigError(f"sensors.{role}.mask must be one of {sorted(MASKS)}")
        scaling = sensor.get("scaling")
        if isinstance(scaling, str) and scaling not in SCALING_PRESETS:
            raise ConfigError(f"sensors.{role}.scaling must be one of {sorted(SCALING_PRESETS)} or a list of groups")
        if sensor["reducer"] not in {"mean", "median"}:
            raise ConfigError(f"sensors.{role}.reducer must be 'mean' or 'median'")

    if not cfg["classes"]:
        raise ConfigError("classes must list at least one land-cover class")
    try:
        cfg["classes"] = {int(k): str(v) for k, v in cfg["classes"].items()}
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"class ids must be integers: {exc}") from exc

    training = cfg["training"]
    if not training["collections"]:
        raise ConfigError("training.collections must list the labelled polygon datasets")
    if not 0 < float(training["split"]) < 1:
        raise ConfigError("training.split must be between 0 and 1")
    for entry in training["collections"]:
        if "path" not in entry:
            raise ConfigError("every training collection needs a path")
        class_id = entry.get("class_id")
        if class_id is not None and int(class_id) not in cfg["classes"]:
            raise ConfigError(f"class_id {class_id} of {entry['path']} is not a configured class")

    if not cfg["classifier"]["features"]:
        raise ConfigError("classifier.features must not be empty")
    if int(cfg["classifier"]["n_estimators"]) < 1:
        raise ConfigError("classifier.n_estimators must be positive")
    return cfg


def load_config(path) -> Dict[str, Any]:
    """Read a YAML run configuration.

    Values are merged over :data:`DEFAULTS`; dataset paths are resolved
    relative to the configuration file.
    """
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    with open(path, encoding="utf-8") as f:
        try:
            raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError(f"{path} must contain a mapping")

    cfg = _merge(DEFAULTS, raw)
    base_dir = path.resolve().parent
    cfg["vectors"] = {k: _resolve(base_dir, v) for k, v in cfg["vectors"].items()}
    cfg["catalogs"] = {k: _resolve(base_dir, v) for k, v in cfg["catalogs"].items()}
    cfg["training"]["collections"] = [
        {**entry, "path": _resolve(base_dir, entry["path"])} if "path" in entry else entry
        for entry in cfg["training"]["collections"]
    ]
    cfg["config_path"] = path.resolve()
    return validate_config(cfg)
