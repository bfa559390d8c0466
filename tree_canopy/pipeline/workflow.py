"""End-to-end land-cover and surface-temperature workflow.

Region → composites → indices → training set → classifier → accuracy and
zonal statistics → exports and report. Data flows strictly forward; every
intermediate value is a new object.
"""

from __future__ import annotations

import json
import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd

from ..analysis.region import filter_bounds, region_geometry, select_region
from ..analysis.zonal import class_area, class_area_by_zone, empty_zones, zonal_mean
from ..classification.accuracy import ConfusionMatrix, error_matrix
from ..classification.predict import TrainedClassifier
from ..classification.train_model import save_classifier, train_classifier
from ..classification.training_set import (
    add_random_column,
    merge_collections,
    sample_regions,
    split_train_test,
    validate_labels,
)
from ..errors import ExportError
from ..preprocess.cloudmask import MASKS
from ..preprocess.composite import ImageCollection, build_composite
from ..preprocess.features import compute_indices
from ..preprocess.scaling import PRESETS as SCALING_PRESETS
from ..preprocess.scaling import scaling_function
from ..raster import BandStack
from ..report.export import export_table
from ..report.reporter import ConsoleReporter, Reporter
from ..report.visualization import NullMapDisplay
from ..utils.io_raster import write_classification
from ..utils.io_vector import read_features

logger = logging.getLogger(__name__)


@dataclass
class WorkflowResult:
    optical: BandStack
    thermal: BandStack
    classification: BandStack
    classifier: TrainedClassifier
    train: pd.DataFrame
    test: pd.DataFrame
    confusion_matrix: ConfusionMatrix
    region_class_area: Dict[str, Any]
    zone_class_area: List[Dict[str, Any]]
    zone_temperature: List[Dict[str, Any]]
    export_urls: Dict[str, str] = field(default_factory=dict)
    export_errors: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.export_errors


def sensor_composite(cfg: Dict[str, Any], role: str) -> BandStack:
    """Build the composite for ``cfg["sensors"][role]``."""
    sensor = cfg["sensors"][role]
    collection = ImageCollection.from_catalog(cfg["catalogs"][sensor["catalog"]])
    scaling = sensor.get("scaling")
    if isinstance(scaling, str):
        scaling = SCALING_PRESETS[scaling]
    transforms = [scaling_function(tuple(g) for g in scaling)] if scaling else []
    return build_composite(
        collection,
        sensor["start"],
        sensor["end"],
        mask_fn=MASKS[sensor["mask"]],
        reducer=sensor["reducer"],
        max_cloud=sensor.get("max_cloud"),
        cloud_property=sensor.get("cloud_property", "CLOUDY_PIXEL_PERCENTAGE"),
        bands=sensor.get("bands"),
        transforms=transforms,
    )


def build_training_samples(cfg: Dict[str, Any], image: BandStack, seed: Optional[int]):
    training = cfg["training"]
    label = training["label_property"]
    entries = training["collections"]
    merged = merge_collections(
        [read_features(e["path"]) for e in entries],
        label_property=label,
        class_ids=[e.get("class_id") for e in entries],
    )
    samples = sample_regions(
        image, merged, cfg["classifier"]["features"], label_property=label, scale=training["scale"]
    )
    samples = validate_labels(samples, label, cfg["classes"])
    samples = add_random_column(samples, seed=seed)
    return split_train_test(samples, threshold=training["split"])


def _export_all(cfg, output_dir, tables, reporter):
    urls, errors = {}, {}
    for name, records in tables.items():
        export_cfg = cfg["exports"][name]
        try:
            urls[name] = export_table(
                records,
                output_dir / export_cfg["filename"],
                selectors=export_cfg.get("selectors"),
                file_format=export_cfg.get("format", "json"),
            )
        except ExportError as exc:
            logger.exception("Export %s failed", name)
            reporter.error(f"Export {name!r} failed: {exc}")
            errors[name] = str(exc)
    return urls, errors


def run_workflow(
    cfg: Dict[str, Any],
    output_dir,
    reporter: Optional[Reporter] = None,
    map_display=None,
    seed: Optional[int] = None,
) -> WorkflowResult:
    """Run the whole analysis described by ``cfg`` and write outputs to ``output_dir``.

    Export failures are reported and recorded in the result; every other
    error propagates.
    """
    reporter = reporter or ConsoleReporter()
    map_display = map_display or NullMapDisplay()
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    if seed is None:
        seed = cfg["training"].get("seed")

    # region of interest and zones
    region_cfg = cfg["region"]
    boundaries = read_features(cfg["vectors"][region_cfg["boundaries"]])
    region = select_region(boundaries, region_cfg["field"], region_cfg["value"])
    zones = filter_bounds(read_features(cfg["vectors"][cfg["zones"]["dataset"]]), region)
    id_field = cfg["zones"]["id_field"]
    logger.info("Region %s=%s intersects %d zones", region_cfg["field"], region_cfg["value"], len(zones))

    # composites
    optical = sensor_composite(cfg, "optical")
    thermal = sensor_composite(cfg, "thermal")
    thermal = thermal.clip(region_geometry(region, thermal.crs))
    indices = {k: (v["expression"], v["bindings"]) for k, v in cfg["indices"].items()}
    optical = compute_indices(optical, indices)

    # training and classification
    train, test = build_training_samples(cfg, optical, seed)
    logger.info("Training samples: %d train / %d test", len(train), len(test))
    clf_cfg = cfg["classifier"]
    random_state = clf_cfg.get("random_state")
    classifier = train_classifier(
        train,
        clf_cfg["features"],
        label=cfg["training"]["label_property"],
        n_estimators=int(clf_cfg["n_estimators"]),
        random_state=seed if random_state is None else random_state,
    )
    if clf_cfg.get("save_model"):
        save_classifier(classifier, output_dir / "model.pkl")
    classification = classifier.classify(optical)
    write_classification(output_dir / "classification.tif", classification)

    # accuracy
    predicted = classifier.classify(test)
    cm = error_matrix(test[classifier.label], predicted[classifier.output], list(cfg["classes"]))
    with open(output_dir / "metrics.json", "w", encoding="utf-8") as f:
        json.dump(cm.to_dict(), f, indent=2, ensure_ascii=False)

    # zonal statistics
    zonal_cfg = cfg["zonal"]
    roi_coverage = class_area(
        classification, region_geometry(region, classification.crs), **zonal_cfg["region_class_area"]
    )
    zip_coverage = class_area_by_zone(classification, zones, id_field, **zonal_cfg["zone_class_area"])
    mean_temperature = zonal_mean(thermal, zones, id_field, **zonal_cfg["temperature"])

    urls, errors = _export_all(
        cfg, output_dir, {"class_area": zip_coverage, "temperature": mean_temperature}, reporter
    )

    # display
    display = cfg["display"]
    map_display.add_layer("RGB", optical.clip(region_geometry(region, optical.crs)), display["rgb"], shown=False)
    map_display.add_layer("Surface Temp (K)", thermal, display["temperature"], shown=False)
    map_display.add_layer(
        "Classifier", classification.clip(region_geometry(region, classification.crs)), display["classification"]
    )
    map_display.add_zones("Zones", zones, color=display["zone_color"])
    if display.get("center"):
        lon, lat = display["center"][:2]
        map_display.set_center(lon, lat, display.get("zoom", 11))

    # report
    reporter.confusion_matrix(cm, cfg["classes"])
    for name, url in urls.items():
        reporter.section(f"URL for downloading FeatureCollection as JSON ({name})", url)
    reporter.section("Mean per zone:", mean_temperature)
    reporter.section("Class area (m^2) of region:", roi_coverage)
    reporter.section(
        "Class area (m^2) of each zone:",
        [{id_field: r[id_field], "groups": r["groups"]} for r in zip_coverage],
    )
    for title, records in (("class area", zip_coverage), ("temperature", mean_temperature)):
        missing = empty_zones(records, id_field)
        if missing:
            reporter.section(f"Zones without valid pixels ({title}):", missing)

    config_path = cfg.get("config_path")
    if config_path and Path(config_path).parent.resolve() != output_dir.resolve():
        shutil.copy(config_path, output_dir / Path(config_path).name)

    return WorkflowResult(
        optical=optical,
        thermal=thermal,
        classification=classification,
        classifier=classifier,
        train=train,
        test=test,
        confusion_matrix=cm,
        region_class_area=roi_coverage,
        zone_class_area=zip_coverage,
        zone_temperature=mean_temperature,
        export_urls=urls,
        export_errors=errors,
    )
