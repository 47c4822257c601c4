"""Command line interface for the background swap engine."""
from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from .core.utils_io import atomic_write_bytes, decode_data_uri
from .modules.bse import BSEPipeline

LOGGER = logging.getLogger("bse_pipeline.main_bse")


class BoolAction(argparse.Action):
    """Boolean flag parser supporting affirmative and negative forms."""

    def __call__(self, parser, namespace, values, option_string=None):  # type: ignore[override]
        if values is None:
            setattr(namespace, self.dest, True)
            return
        normalized = str(values).strip().lower()
        if normalized in {"1", "y", "yes", "t", "true", "on"}:
            setattr(namespace, self.dest, True)
        elif normalized in {"0", "n", "no", "f", "false", "off"}:
            setattr(namespace, self.dest, False)
        else:
            raise argparse.ArgumentTypeError(f"Invalid boolean for {option_string}: {values!r}")


def _configure_logging(log_path: Optional[Path], level: int = logging.INFO) -> None:
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s", "%Y-%m-%d %H:%M:%S")
    handlers: list[logging.Handler] = []
    if log_path is not None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8", delay=True)
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)
    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    handlers.append(console_handler)
    logging.basicConfig(level=level, handlers=handlers)


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Replace the background of a subject photo with a reference image")
    parser.add_argument("--source", required=True, help="Subject image: data URI, http(s) URL or local path")
    parser.add_argument("--background", required=True, help="Reference background: data URI, http(s) URL or local path")
    parser.add_argument("--config", type=Path, default=None, help="JSON file with configuration overrides")
    parser.add_argument("--job-id", default=None, help="Job identifier (default: job_<epoch-ms>)")
    parser.add_argument("--output-json", type=Path, default=None, help="Write the JSON response to this file")
    parser.add_argument("--save-image", type=Path, default=None, help="Write the decoded output image to this file")
    parser.add_argument("--log-file", type=Path, default=None, help="Also log to this file")
    parser.add_argument("--workers", type=int, default=None, help="Worker threads for per-pixel stages")
    parser.add_argument("--verbose", action="store_true", help="Log numeric details at DEBUG level")
    parser.add_argument(
        "--debug",
        nargs="?",
        default=None,
        action=BoolAction,
        help="Return stage outputs in the response (default: config value)",
    )
    parser.add_argument(
        "--no-debug",
        dest="debug",
        action="store_false",
        help="Omit stage outputs from the response",
    )
    return parser.parse_args(argv)


def build_payload(args: argparse.Namespace) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if args.config is not None:
        with args.config.open("r", encoding="utf-8") as handle:
            overrides = json.load(handle)
        if not isinstance(overrides, dict):
            raise SystemExit(f"{args.config} must contain a JSON object")
    if args.debug is not None:
        debug = dict(overrides.get("debug") or {})
        debug["return_stage_outputs"] = args.debug
        overrides["debug"] = debug
    payload: Dict[str, Any] = {
        "source_image_id": args.source,
        "background_ref_id": args.background,
        "config": overrides,
    }
    if args.job_id:
        payload["job_id"] = args.job_id
    return payload


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    _configure_logging(args.log_file, logging.DEBUG if args.verbose else logging.INFO)
    payload = build_payload(args)
    LOGGER.info("Starting background swap job %s", payload.get("job_id", "<auto>"))

    result = BSEPipeline(max_workers=args.workers).process(payload)
    response = result.to_response()
    rendered = json.dumps(response, indent=2)

    if args.output_json is not None:
        atomic_write_bytes(args.output_json, rendered.encode("utf-8"))
        LOGGER.info("Response written to %s", args.output_json)
    else:
        print(rendered)

    if args.save_image is not None and result.ok:
        atomic_write_bytes(args.save_image, decode_data_uri(result.output.url))
        LOGGER.info("Image written to %s", args.save_image)
    return 0 if result.ok else 1


if __name__ == "__main__":
    raise SystemExit(main())
