"""Export of generated file maps to disk."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Dict, List, Mapping


def ensure_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def atomic_write(path: Path, content: str) -> None:
    """Write through a sibling temp file so readers never see a partial file."""
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
            handle.write(content)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def resolve_inside(root: Path, name: str) -> Path:
    """Join a generated file name onto ``root`` refusing escapes like ``../``."""
    target = (root / name).resolve()
    base = root.resolve()
    if target != base and base not in target.parents:
        raise ValueError(f"Generated file escapes output directory: {name}")
    return target


def write_generated_files(root: Path, files: Mapping[str, str]) -> List[Path]:
    """Export a ``{relative path: content}`` mapping under ``root``."""
    ensure_dir(root)
    written: List[Path] = []
    for name in sorted(files):
        path = resolve_inside(root, name)
        ensure_dir(path.parent)
        atomic_write(path, files[name])
        written.append(path)
    return written


def read_generated_files(root: Path, suffixes: tuple[str, ...] = (".py", ".json", ".md")) -> Dict[str, str]:
    """Load a previously exported file set, keyed by POSIX relative path."""
    files: Dict[str, str] = {}
    if not root.exists():
        return files
    for path in sorted(root.rglob("*")):
        if path.is_file() and path.suffix in suffixes:
            files[path.relative_to(root).as_posix()] = path.read_text(encoding="utf-8")
    return files
