import json

import numpy as np
import pytest
import rasterio
import yaml

from tree_canopy.config import load_config
from tree_canopy.pipeline import composite as composite_cli
from tree_canopy.pipeline.run import main
from tree_canopy.pipeline.workflow import run_workflow
from tree_canopy.report.reporter import ConsoleReporter

COOL = 149 + 44177 * 0.00341802
WARM = 149 + 47103 * 0.00341802


def _properties(path):
    with open(path) as f:
        return {p["geoid20"]: p for p in (feat["properties"] for feat in json.load(f)["features"])}


@pytest.fixture
def run(study_area, tmp_path):
    cfg = load_config(study_area)
    out = tmp_path / "out"
    return run_workflow(cfg, out, reporter=ConsoleReporter()), out


def test_outputs_are_written(run):
    result, out = run
    assert result.ok
    for name in ("classification.tif", "metrics.json", "zip_class_coverage.json", "zip_avg_temp.json", "config.yaml"):
        assert (out / name).exists(), name
    assert set(result.export_urls) == {"class_area", "temperature"}
    assert result.export_urls["class_area"].startswith("file://")
    with rasterio.open(out / "classification.tif") as src:
        assert src.count == 1
        assert src.dtypes[0] == "uint8"
        assert (src.width, src.height) == (40, 40)


def test_cloudy_pixels_do_not_reach_the_composite(run):
    result, _ = run
    b2 = result.optical.band("B2")
    # rows 0-4 are clouds (0.9) in the first scene, the 50 % scene is excluded
    assert np.nanmax(b2[:5]) < 0.2
    assert np.nanmax(b2) < 0.2
    assert {"NDVI", "NDWI", "SAVI"} <= set(result.optical.band_names)


def test_training_split_and_accuracy(run):
    result, out = run
    assert len(result.train) + len(result.test) == 400
    assert set(result.train.index).isdisjoint(result.test.index)
    cm = result.confusion_matrix
    assert cm.total == len(result.test)
    assert cm.accuracy() >= 0.9
    metrics = json.loads((out / "metrics.json").read_text())
    assert metrics["overall_accuracy"] == pytest.approx(cm.accuracy())


def test_zone_class_coverage(run):
    result, out = run
    coverage = _properties(out / "zip_class_coverage.json")
    assert set(coverage) == {"46201", "46202", "46203"}
    assert set(coverage["46201"]) == {"geoid20", "groups"}

    west = {g["group"]: g["sum"] for g in coverage["46201"]["groups"]}
    east = {g["group"]: g["sum"] for g in coverage["46202"]["groups"]}
    assert sum(west.values()) == pytest.approx(80000.0)
    assert sum(east.values()) == pytest.approx(80000.0)
    assert max(west, key=west.get) in {0, 2}
    assert west[0] == pytest.approx(40000.0, rel=0.05)
    assert west[2] == pytest.approx(40000.0, rel=0.05)
    assert east[1] == pytest.approx(40000.0, rel=0.05)
    assert east[3] == pytest.approx(40000.0, rel=0.05)
    assert coverage["46203"]["groups"] == []

    region = result.region_class_area
    assert sum(g["sum"] for g in region["groups"]) == pytest.approx(160000.0)


def test_zone_mean_temperature(run):
    result, out = run
    temperature = _properties(out / "zip_avg_temp.json")
    assert set(temperature) == {"46201", "46202", "46203"}
    assert temperature["46201"]["ST_B10"] == pytest.approx(COOL, rel=1e-6)
    assert temperature["46202"]["ST_B10"] == pytest.approx(WARM, rel=1e-6)
    assert temperature["46203"]["ST_B10"] is None
    by_zone = {r["geoid20"]: r for r in result.zone_temperature}
    assert by_zone["46203"]["empty"] is True


def test_seed_makes_runs_reproducible(study_area, tmp_path):
    cfg = load_config(study_area)
    a = run_workflow(cfg, tmp_path / "a", seed=11)
    b = run_workflow(cfg, tmp_path / "b", seed=11)
    assert a.test.index.equals(b.test.index)
    np.testing.assert_array_equal(a.confusion_matrix.matrix, b.confusion_matrix.matrix)


def test_failed_export_is_reported_and_others_survive(study_area, tmp_path, capsys):
    cfg = load_config(study_area)
    cfg["exports"]["temperature"]["selectors"] = ["geoid20", "ST_B11"]
    out = tmp_path / "out"
    result = run_workflow(cfg, out)
    assert not result.ok
    assert "ST_B11" in result.export_errors["temperature"]
    assert (out / "zip_class_coverage.json").exists()
    assert not (out / "zip_avg_temp.json").exists()
    assert "Export 'temperature' failed" in capsys.readouterr().err


def test_cli_runs_end_to_end(study_area, tmp_path, capsys):
    out = tmp_path / "cli"
    code = main(["--config", str(study_area), "--output-dir", str(out), "--seed", "3", "--map", str(out / "map.html")])
    assert code == 0
    assert (out / "zip_avg_temp.json").exists()
    assert (out / "map.html").exists()
    stdout = capsys.readouterr().out
    assert "Overall Accuracy:" in stdout
    assert "Zones without valid pixels" in stdout
    assert f"Saved results to {out}" in stdout


def test_composite_cli(study_area, tmp_path):
    target = tmp_path / "thermal.tif"
    composite_cli.main(["--config", str(study_area), "--sensor", "thermal", "--output", str(target)])
    with rasterio.open(target) as src:
        assert "ST_B10" in src.descriptions
        st = src.read(src.descriptions.index("ST_B10") + 1)
    assert np.nanmax(st) == pytest.approx(WARM, rel=1e-5)


def test_cli_exits_non_zero_when_an_export_fails(study_area, tmp_path, capsys):
    cfg = yaml.safe_load(study_area.read_text())
    cfg["exports"] = {"temperature": {"selectors": ["geoid20", "ST_B11"]}}
    study_area.write_text(yaml.safe_dump(cfg))
    code = main(["--config", str(study_area), "--output-dir", str(tmp_path / "cli")])
    captured = capsys.readouterr()
    assert code == 1
    assert "1 export(s) failed: ['temperature']" in captured.err
    assert "Saved results" not in captured.out
