"""Command line interface.

Usage:
    comicstruct analyze page.png
    comicstruct analyze page.png --preset comics --json out.json
    comicstruct analyze page.png --config detect.yaml --candidates boxes.json --debug
    comicstruct analyze mask.png --ink bright
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from typing import List, Optional

from . import __version__
from .config import PRESET_ENV_VAR, PRESETS, AnalyzerConfig, get_preset, load_config
from .detector import PageAnalyzer, PageStructure
from .detector.boxes import ScoredBox, deserialize
from .image_utils import InkPolarity, load_grayscale

log = logging.getLogger("comicstruct")


def load_candidates(path: str) -> List[ScoredBox]:
    """Read candidate boxes from JSON.

    Accepts a list whose items are either ``"x,y,w,h"`` strings or objects
    with ``x``, ``y``, ``width``, ``height`` and optional ``confidence`` /
    ``class_id``.
    """
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, list):
        raise ValueError(f"{path}: expected a JSON list of boxes")
    boxes = []
    for item in data:
        if isinstance(item, str):
            b = deserialize(item)
            boxes.append(ScoredBox(b.x, b.y, b.width, b.height))
        else:
            boxes.append(ScoredBox(
                float(item["x"]),
                float(item["y"]),
                float(item["width"]),
                float(item["height"]),
                confidence=item.get("confidence"),
                class_id=item.get("class_id"),
            ))
    return boxes


def build_config(args: argparse.Namespace) -> AnalyzerConfig:
    preset = args.preset or os.environ.get(PRESET_ENV_VAR)
    config = get_preset(preset) if preset else AnalyzerConfig()
    if args.config:
        config = load_config(args.config, base=config)
    if args.ink:
        config.panels.ink_polarity = args.ink
    return config


def format_summary(structure: PageStructure) -> str:
    lines = [f"Page {structure.width}x{structure.height}: {len(structure.panels)} panels"]
    for panel in structure.panels:
        b = panel.bbox
        lines.append(
            f"  #{panel.reading_order} {panel.type.value:<10} "
            f"({b.x:.0f}, {b.y:.0f}, {b.width:.0f}x{b.height:.0f}) conf={panel.confidence:.2f}"
        )
        for region in panel.regions:
            lines.append(
                f"    - {region.type.value:<9} #{region.reading_order} "
                f"{len(region.lines)} lines, conf={region.confidence:.2f}"
            )
    return "\n".join(lines)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="comicstruct", description="Comic page structure analysis")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command")

    analyze = sub.add_parser("analyze", help="Analyze one page image")
    analyze.add_argument("image", help="Page image readable by OpenCV")
    analyze.add_argument("--config", type=str, default=None,
                         help="YAML configuration file")
    analyze.add_argument("--preset", type=str, default=None, choices=sorted(PRESETS),
                         help=f"Configuration preset (default: ${PRESET_ENV_VAR} or manga)")
    analyze.add_argument("--candidates", type=str, default=None,
                         help="JSON list of upstream region boxes")
    analyze.add_argument("--ink", type=str, default=None, choices=[p.value for p in InkPolarity],
                         help="How the image encodes ink (default: auto)")
    analyze.add_argument("--scale", type=float, default=None,
                         help="Working scale for panel segmentation")
    analyze.add_argument("--json", dest="json_out", type=str, default=None,
                         help="Write the structure as JSON to this file ('-' for stdout)")
    analyze.add_argument("--debug", action="store_true",
                         help="Enable debug logging")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command != "analyze":
        parser.print_help()
        return 2

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        config = build_config(args)
        page = load_grayscale(args.image)
        candidates = load_candidates(args.candidates) if args.candidates else None
    except (OSError, ValueError, KeyError) as e:
        log.error(f"{e}")
        return 1

    structure = PageAnalyzer(config).analyze(page, candidates=candidates, scale=args.scale)

    if args.json_out:
        payload = json.dumps(structure.to_dict(), indent=2, ensure_ascii=False)
        if args.json_out == "-":
            sys.stdout.write(payload + "\n")
        else:
            with open(args.json_out, "w", encoding="utf-8") as f:
                f.write(payload)
            log.info(f"Wrote {args.json_out}")
    else:
        print(format_summary(structure))
    return 0


if __name__ == "__main__":
    sys.exit(main())
