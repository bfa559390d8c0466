import pytest
import yaml

from tree_canopy.config import DEFAULTS, load_config
from tree_canopy.errors import ConfigError


def _write(path, cfg):
    path.write_text(yaml.safe_dump(cfg))
    return path


def _minimal():
    return {
        "region": {"boundaries": "counties", "field": "COUNTYFP", "value": "097"},
        "zones": {"dataset": "zips"},
        "vectors": {"counties": "vectors/counties.shp", "zips": "/data/zips.geojson"},
        "catalogs": {"COPERNICUS/S2_SR_HARMONIZED": "s2", "LANDSAT/LC08/C02/T1_L2": "l8"},
        "training": {"collections": [{"path": "training/tree.geojson", "class_id": 0}]},
    }


def test_minimal_config_gets_defaults(tmp_path):
    cfg = load_config(_write(tmp_path / "run.yaml", _minimal()))
    assert cfg["sensors"]["optical"]["max_cloud"] == 20
    assert cfg["sensors"]["thermal"]["reducer"] == "median"
    assert cfg["classifier"]["n_estimators"] == 10
    assert cfg["zones"]["id_field"] == "geoid20"
    assert cfg["indices"]["NDWI"]["bindings"]["Green"] == "B3"
    assert cfg["config_path"] == (tmp_path / "run.yaml").resolve()
    # defaults are not mutated by a load
    assert DEFAULTS["vectors"] == {}


def test_relative_paths_resolve_against_config_dir(tmp_path):
    (tmp_path / "conf").mkdir()
    cfg = load_config(_write(tmp_path / "conf" / "run.yaml", _minimal()))
    base = (tmp_path / "conf").resolve()
    assert cfg["vectors"]["counties"] == base / "vectors" / "counties.shp"
    assert str(cfg["vectors"]["zips"]) == "/data/zips.geojson"
    assert cfg["catalogs"]["COPERNICUS/S2_SR_HARMONIZED"] == base / "s2"
    assert cfg["training"]["collections"][0]["path"] == base / "training" / "tree.geojson"


def test_classes_replace_defaults(tmp_path):
    raw = _minimal()
    raw["classes"] = {"0": "forest", "1": "other"}
    cfg = load_config(_write(tmp_path / "run.yaml", raw))
    assert cfg["classes"] == {0: "forest", 1: "other"}


@pytest.mark.parametrize(
    "patch, message",
    [
        ({"region": {"value": None}}, "region.value"),
        ({"zones": {"dataset": "postcodes"}}, "postcodes"),
        ({"training": {"split": 1.0}}, "split"),
        ({"training": {"collections": []}}, "collections"),
        ({"training": {"collections": [{"path": "a.geojson", "class_id": 9}]}}, "class_id 9"),
        ({"sensors": {"optical": {"mask": "fmask"}}}, "mask"),
        ({"sensors": {"thermal": {"reducer": "max"}}}, "reducer"),
        ({"sensors": {"thermal": {"catalog": "LANDSAT/LC09"}}}, "LANDSAT/LC09"),
        ({"classifier": {"features": []}}, "features"),
    ],
)
def test_invalid_config(tmp_path, patch, message):
    raw = _minimal()
    for key, value in patch.items():
        raw[key] = {**raw.get(key, {}), **value}
    with pytest.raises(ConfigError, match=message.replace(".", r"\.")):
        load_config(_write(tmp_path / "run.yaml", raw))


def test_missing_or_malformed_file(tmp_path):
    with pytest.raises(ConfigError, match="not found"):
        load_config(tmp_path / "nope.yaml")
    bad = tmp_path / "bad.yaml"
    bad.write_text("region: [unclosed\n")
    with pytest.raises(ConfigError, match="Invalid YAML"):
        load_config(bad)
    listing = tmp_path / "list.yaml"
    listing.write_text("- a\n- b\n")
    with pytest.raises(ConfigError, match="mapping"):
        load_config(listing)
