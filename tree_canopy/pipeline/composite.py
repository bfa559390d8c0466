import argparse
from pathlib import Path

from ..config import load_config
from ..preprocess.features import compute_indices
from ..utils.io_raster import write_stack
from .workflow import sensor_composite


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(
        description="Cloud-mask, scale and temporally reduce one sensor's scenes into a composite"
    )
    parser.add_argument("--config", required=True, help="YAML config file")
    parser.add_argument(
        "--sensor", default="optical", choices=["optical", "thermal"],
        help="Sensor section of the config to composite"
    )
    parser.add_argument("--indices", action="store_true", help="Attach the configured spectral indices")
    parser.add_argument("--output", required=True, help="Output GeoTIFF path")
    args = parser.parse_args(argv)

    cfg = load_config(args.config)
    stack = sensor_composite(cfg, args.sensor)
    if args.indices:
        stack = compute_indices(
            stack, {k: (v["expression"], v["bindings"]) for k, v in cfg["indices"].items()}
        )
    out = write_stack(Path(args.output), stack)
    print(f"Saved {args.sensor} composite ({', '.join(stack.band_names)}) to {out}")


if __name__ == "__main__":
    main()
