from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Iterable, List


IMAGE_EXTS = (".jpg", ".jpeg", ".png", ".webp", ".bmp")


def iter_images(root: str | Path, exts: Iterable[str] = IMAGE_EXTS) -> List[Path]:
    """Return `root` itself if it is a file, else recursively list images under it (case-insensitive)."""
    root_p = Path(root)
    if root_p.is_file():
        return [root_p]
    exts_l = {e.lower() for e in exts}
    files: List[Path] = []
    for p in root_p.rglob("*"):
        try:
            if p.is_file() and p.suffix.lower() in exts_l:
                files.append(p)
        except OSError:
            continue
    return sorted(files)


def write_json(path: str | Path, data: Any) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with p.open("w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2)
