#!/usr/bin/env python3
"""Crop an RGB image and its depth map with one rectangle and export the bundle.

Example:
    python scripts/crop_rgbd.py --rgb scene/rgb.png --depth scene/depth.npy \\
        --rect 120,80,640,480 --out outputs/crops

Configuration:
- `--config path.yaml`, or the `RGBD_CROPPER_CONFIG` environment variable, selects
  a YAML file with validation thresholds and export naming.

Exit codes: 0 exported, 1 blocked by validation or export failure, 2 unreadable
input or config.
"""

import argparse
import logging
import math
import sys
from pathlib import Path

from rgbd_cropper.config import CropperConfig
from rgbd_cropper.errors import ExportError, FormatError, ValidationBlockedError
from rgbd_cropper.export.writer import write_directory, write_zip
from rgbd_cropper.geometry.interaction import PointerDown, PointerMove, PointerUp
from rgbd_cropper.session import CropSession

LOG = logging.getLogger("crop_rgbd")


def _parse_rect(raw: str) -> tuple[float, float, float, float]:
    parts = [p.strip() for p in raw.split(",")]
    if len(parts) != 4:
        raise argparse.ArgumentTypeError(f"Expected X,Y,W,H, got {raw!r}")
    try:
        x, y, w, h = (float(p) for p in parts)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"Non-numeric rectangle {raw!r}") from e
    if not all(math.isfinite(v) for v in (x, y, w, h)):
        raise argparse.ArgumentTypeError(f"Rectangle values must be finite, got {raw!r}")
    return x, y, w, h


def main(argv: list[str]) -> int:
    ap = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    ap.add_argument("--rgb", type=Path, required=True)
    ap.add_argument("--depth", type=Path, required=True)
    ap.add_argument("--rect", type=_parse_rect, required=True, help="X,Y,W,H in raster pixels")
    ap.add_argument("--out", type=Path, default=Path("outputs/crops"))
    ap.add_argument("--config", type=Path, default=None)
    ap.add_argument("--format", choices=("zip", "dir"), default="zip")
    ap.add_argument("--verbose", action="store_true")
    args = ap.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s | %(levelname)s | %(message)s",
    )

    try:
        config = CropperConfig.from_yaml(args.config) if args.config else CropperConfig.from_env()
    except (OSError, ValueError) as e:
        LOG.error("Cannot load config: %s", e)
        return 2

    session = CropSession(config)
    try:
        session.load_file(args.rgb.name, args.rgb.read_bytes())
        session.load_file(args.depth.name, args.depth.read_bytes())
    except (OSError, FormatError) as e:
        LOG.error("%s", e)
        return 2

    # Drive the selection the way the shell would: press, drag to the far corner, release.
    x, y, w, h = args.rect
    session.apply(PointerDown(x, y))
    session.apply(PointerMove(x + w, y + h))
    session.apply(PointerUp())

    report = session.report
    print(report.summary())
    try:
        bundle = session.export()
    except ValidationBlockedError as e:
        LOG.error("%s", e.summary())
        return 1
    except ExportError as e:
        LOG.error("Export failed: %s", e)
        return 1

    out_dir = args.out.expanduser().resolve()
    try:
        target = write_zip(bundle, out_dir) if args.format == "zip" else write_directory(bundle, out_dir)
    except OSError as e:
        LOG.error("Cannot write bundle: %s", e)
        return 1
    print(f"Exported {bundle.window.width}x{bundle.window.height} crop to {target}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
