import argparse
import logging
import sys

from ..config import load_config
from ..report.reporter import ConsoleReporter
from ..report.visualization import FoliumMapDisplay, NullMapDisplay
from .workflow import run_workflow


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="Classify land cover and summarise class area and surface temperature per zone"
    )
    parser.add_argument("--config", required=True, help="YAML config file")
    parser.add_argument("--output-dir", required=True, help="Directory for exports and rasters")
    parser.add_argument("--seed", type=int, default=None, help="Seed for the train/test split")
    parser.add_argument("--map", help="Optional HTML path for an interactive map of the results")
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    cfg = load_config(args.config)
    print(f"config file = {args.config}")
    map_display = FoliumMapDisplay() if args.map else NullMapDisplay()
    result = run_workflow(
        cfg,
        args.output_dir,
        reporter=ConsoleReporter(),
        map_display=map_display,
        seed=args.seed,
    )
    if args.map:
        print(f"Saved map to {map_display.save(args.map)}")

    if not result.ok:
        print(f"{len(result.export_errors)} export(s) failed: {sorted(result.export_errors)}", file=sys.stderr)
        return 1
    print(f"Saved results to {args.output_dir}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
