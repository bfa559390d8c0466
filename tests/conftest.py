from pathlib import Path

import geopandas as gpd
import numpy as np
import pytest
import rasterio
import yaml
from rasterio.transform import from_origin
from shapely.geometry import box

from tree_canopy.raster import BandStack

CRS = "EPSG:32616"
X0, Y0 = 570000.0, 4400000.0


def make_stack(bands, res=10.0, crs=CRS, origin=(X0, Y0)):
    """BandStack from ``{name: 2-D array}`` on a north-up grid."""
    names = list(bands)
    data = np.stack([np.asarray(bands[n], dtype="float64") for n in names])
    return BandStack(data, tuple(names), from_origin(origin[0], origin[1], res, res), crs)


def write_scene(path, bands, res, dtype="uint16", crs=CRS, origin=(X0, Y0)):
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    names = list(bands)
    data = np.stack([np.asarray(bands[n]) for n in names]).astype(dtype)
    meta = {
        "driver": "GTiff",
        "height": data.shape[1],
        "width": data.shape[2],
        "count": data.shape[0],
        "dtype": dtype,
        "crs": crs,
        "transform": from_origin(origin[0], origin[1], res, res),
    }
    with rasterio.open(path, "w", **meta) as dst:
        dst.write(data)
        for i, name in enumerate(names, 1):
            dst.set_band_description(i, name)
    return path


def write_catalog(catalog_dir, collection_id, band_names, scenes):
    """``scenes`` is a list of ``(date, properties, bands_dict, res)``."""
    catalog_dir = Path(catalog_dir)
    entries = []
    for date, properties, bands, res in scenes:
        rel = f"{date}/BANDS.tif"
        write_scene(catalog_dir / rel, {n: bands[n] for n in band_names}, res)
        entries.append({"path": rel, "date": date, "properties": properties})
    (catalog_dir / "catalog.yaml").write_text(
        yaml.safe_dump({"id": collection_id, "bands": list(band_names), "scenes": entries})
    )
    return catalog_dir


def square(x0, y0, x1, y1):
    """Box in offsets (metres) from the grid's north-west corner, y growing south."""
    return box(X0 + x0, Y0 - y1, X0 + x1, Y0 - y0)


@pytest.fixture
def rng():
    return np.random.default_rng(42)


# --- synthetic study area -------------------------------------------------

# Reflectance signatures for B2, B3, B4, B5, B8, B9, B11.
SIGNATURES = {
    0: [0.03, 0.06, 0.03, 0.10, 0.40, 0.40, 0.15],  # tree canopy
    1: [0.05, 0.09, 0.07, 0.15, 0.30, 0.30, 0.25],  # non-forest vegetation
    2: [0.12, 0.13, 0.14, 0.16, 0.20, 0.20, 0.28],  # urban
    3: [0.06, 0.05, 0.03, 0.02, 0.01, 0.01, 0.005],  # water
}
S2_BANDS = ["B2", "B3", "B4", "B5", "B8", "B9", "B11"]
SIZE = 40  # 40 x 40 pixels at 10 m -> 400 m square


def quadrant_classes(size=SIZE):
    """Class layout: tree NW, vegetation NE, urban SW, water SE."""
    half = size // 2
    classes = np.empty((size, size), dtype=int)
    classes[:half, :half] = 0
    classes[:half, half:] = 1
    classes[half:, :half] = 2
    classes[half:, half:] = 3
    return classes


def s2_scene(rng, qa=None, fill=None):
    classes = quadrant_classes()
    bands = {}
    for i, name in enumerate(S2_BANDS):
        refl = np.choose(classes, [SIGNATURES[c][i] for c in range(4)])
        dn = refl * 10000 + rng.normal(0, 5, classes.shape)
        bands[name] = np.clip(dn, 1, None) if fill is None else np.full(classes.shape, fill)
    bands["QA60"] = np.zeros(classes.shape) if qa is None else qa
    return bands


def landsat_scene(qa=None):
    n = 13  # 13 x 30 m = 390 m, inside the 400 m area
    cols = np.arange(n) * 30 + 15
    left = cols < 200
    st = np.where(left, 44177, 47103)[np.newaxis, :].repeat(n, axis=0)
    bands = {f"SR_B{i}": np.full((n, n), 10000) for i in range(1, 8)}
    bands["ST_B10"] = st
    bands["QA_PIXEL"] = np.zeros((n, n)) if qa is None else qa
    return bands


@pytest.fixture
def study_area(tmp_path, rng):
    """Catalogs, vectors and a config for a complete synthetic run."""
    root = tmp_path / "area"

    cloudy_qa = np.zeros((SIZE, SIZE))
    cloudy_qa[:5, :] = 1 << 10
    cloudy = s2_scene(rng, qa=cloudy_qa)
    for name in S2_BANDS:
        cloudy[name][:5, :] = 9000
    write_catalog(
        root / "s2",
        "COPERNICUS/S2_SR_HARMONIZED",
        S2_BANDS + ["QA60"],
        [
            ("2022-05-01", {"CLOUDY_PIXEL_PERCENTAGE": 10.0}, cloudy, 10),
            ("2022-07-01", {"CLOUDY_PIXEL_PERCENTAGE": 15.0}, s2_scene(rng), 10),
            ("2022-08-01", {"CLOUDY_PIXEL_PERCENTAGE": 50.0}, s2_scene(rng, fill=5000), 10),
        ],
    )

    shadow_qa = np.zeros((13, 13))
    shadow_qa[0, :] = 1 << 4
    l8_bands = ["SR_B1", "SR_B2", "SR_B3", "SR_B4", "SR_B5", "SR_B6", "SR_B7", "ST_B10", "QA_PIXEL"]
    write_catalog(
        root / "l8",
        "LANDSAT/LC08/C02/T1_L2",
        l8_bands,
        [
            ("2022-07-01", {"CLOUD_COVER": 5.0}, landsat_scene(qa=shadow_qa), 30),
            ("2022-08-15", {"CLOUD_COVER": 3.0}, landsat_scene(), 30),
        ],
    )

    vectors = root / "vectors"
    vectors.mkdir(parents=True)
    gpd.GeoDataFrame(
        {"COUNTYFP": ["097", "001"]},
        geometry=[square(0, 0, 500, 400), square(2000, 2000, 2400, 2400)],
        crs=CRS,
    ).to_file(vectors / "counties.geojson", driver="GeoJSON")
    gpd.GeoDataFrame(
        {"geoid20": ["46201", "46202", "46203", "99999"]},
        geometry=[
            square(0, 0, 200, 400),
            square(200, 0, 400, 400),
            square(400, 0, 500, 400),
            square(3000, 3000, 3100, 3100),
        ],
        crs=CRS,
    ).to_file(vectors / "zips.geojson", driver="GeoJSON")

    training = root / "training"
    training.mkdir()
    quadrants = {0: (0, 0), 1: (200, 0), 2: (0, 200), 3: (200, 200)}
    collections = []
    for class_id, (x, y) in quadrants.items():
        path = training / f"class_{class_id}.geojson"
        gpd.GeoDataFrame(
            {"name": [f"class {class_id}"]},
            geometry=[square(x + 5, y + 5, x + 195, y + 195)],
            crs=CRS,
        ).to_file(path, driver="GeoJSON")
        collections.append({"path": f"training/{path.name}", "class_id": class_id})

    cfg = {
        "region": {"boundaries": "counties", "field": "COUNTYFP", "value": "097"},
        "zones": {"dataset": "zips", "id_field": "geoid20"},
        "vectors": {"counties": "vectors/counties.geojson", "zips": "vectors/zips.geojson"},
        "catalogs": {"COPERNICUS/S2_SR_HARMONIZED": "s2", "LANDSAT/LC08/C02/T1_L2": "l8"},
        "training": {"collections": collections, "scale": 20, "split": 0.8, "seed": 7},
        "classifier": {"n_estimators": 10, "random_state": 0},
    }
    config_path = root / "config.yaml"
    config_path.write_text(yaml.safe_dump(cfg))
    return config_path
