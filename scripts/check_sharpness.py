#!/usr/bin/env python
from __future__ import annotations

import argparse
import os
import sys
from collections import deque
from pathlib import Path
from typing import Deque, Dict, List, Optional, Tuple

from tqdm import tqdm

# Add project root to sys.path for the "logiaudit" package
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from logiaudit.config import GatekeeperConfig  # noqa: E402
from logiaudit.quality.gatekeeper import GateJob, Gatekeeper  # noqa: E402
from logiaudit.utils.fs import iter_images, write_json  # noqa: E402
from logiaudit.utils.image import guess_mime_type  # noqa: E402
from logiaudit.utils.logging import setup_logger  # noqa: E402


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Check document photos for blur before sending them to audit")
    ap.add_argument("--input", required=True, help="Image file or directory (searched recursively)")
    ap.add_argument("--out", help="Optional JSON report path")
    ap.add_argument("--workers", type=int, default=2, help="Images analysed in parallel")
    ap.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING (default: $LOG_LEVEL or INFO)")
    ap.add_argument("--target-width", type=int, default=None, help="Analysis width in px")
    ap.add_argument("--noise-floor", type=float, default=None, help="Ignore Laplacian magnitudes at or below this")
    ap.add_argument("--min-edges", type=int, default=None, help="Fewer gated edges than this means blurry")
    ap.add_argument("--top-fraction", type=float, default=None, help="Fraction of strongest edges averaged")
    ap.add_argument("--threshold", type=int, default=None, help="Scores below this are blurry")
    return ap


def run(argv: Optional[List[str]] = None) -> Dict:
    args = build_parser().parse_args(argv)
    logger = setup_logger(args.log_level)

    config = GatekeeperConfig.from_env().replace(
        target_width=args.target_width,
        noise_floor=args.noise_floor,
        min_edges=args.min_edges,
        top_fraction=args.top_fraction,
        threshold=args.threshold,
    )

    paths = iter_images(args.input)
    if not paths:
        logger.warning(f"No images found under {args.input}")

    results: List[Dict] = []

    def collect(p: Path, job: GateJob) -> None:
        verdict = job.result()
        results.append({"path": str(p), **verdict.to_dict()})
        status = "BLURRY" if verdict.is_blurry else "ok"
        tqdm.write(f"{status:>6}  score={verdict.score:<4} {p}")

    workers = max(1, args.workers)
    # at most `window` files are read and waiting at any time
    window = workers * 2
    pending: Deque[Tuple[Path, GateJob]] = deque()
    with Gatekeeper(config, max_workers=workers) as gate:
        for p in tqdm(paths, desc="Checking sharpness", disable=not paths):
            pending.append((p, gate.submit_path(p, guess_mime_type(p))))
            if len(pending) >= window:
                collect(*pending.popleft())
        while pending:
            collect(*pending.popleft())

    out = {"params": config.as_dict(), "results": results}
    if args.out:
        write_json(args.out, out)
        logger.info(f"Report written to {args.out}")
    blurry = sum(1 for r in results if r["is_blurry"])
    logger.info(f"Checked {len(results)} images, {blurry} blurry.")
    return out


def main() -> None:
    run()


if __name__ == "__main__":
    main()
