from __future__ import annotations

import json
import logging
import os
import tempfile
import zipfile
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any, Sequence

from .constants import SUPPORTED_IMAGE_EXTENSIONS, SUPPORTED_PDF_EXTENSIONS
from .errors import ExtractionError


log = logging.getLogger(__name__)

RESULT_SUFFIX = "_result"
MARKDOWN_ENTRY = "result.mmd"
ORIGINAL_ENTRY = "result_ori.mmd"
METADATA_ENTRY = "metadata.json"
LAYOUTS_ENTRY = "result_layouts.pdf"
IMAGE_ENTRY_SUFFIXES = (".jpg", ".png")


@dataclass(slots=True)
class ZipContents:
    markdown: str | None = None
    original: str | None = None
    metadata: str | None = None
    layouts_pdf: str | None = None
    images: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "markdown": self.markdown,
            "original": self.original,
            "metadata": self.metadata,
            "layouts_pdf": self.layouts_pdf,
            "images": list(self.images),
        }


def atomic_write(path: Path, data: str, encoding: str = "utf-8") -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile("w", delete=False, dir=path.parent, encoding=encoding) as tmp:
        tmp.write(data)
        tmp.flush()
        os.fsync(tmp.fileno())
    os.replace(tmp.name, path)


def atomic_write_bytes(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile("wb", delete=False, dir=path.parent) as tmp:
        tmp.write(data)
        tmp.flush()
        os.fsync(tmp.fileno())
    os.replace(tmp.name, path)


def result_name(source: Path | str, suffix: str = RESULT_SUFFIX, ext: str = ".zip") -> str:
    """``scan.png`` -> ``scan_result.zip``; pass ``ext=""`` for the extraction dir."""
    return f"{Path(source).stem}{suffix}{ext}"


def unique_result_names(files: Sequence[Path]) -> dict[Path, str]:
    """Result archive names for a batch sharing one output directory.

    Inputs with the same stem (``scan.png``, ``scan.pdf``) get their
    extension folded in: ``scan_png_result.zip``, ``scan_pdf_result.zip``.
    Any name still taken gets a numeric suffix. Names compare
    case-insensitively.
    """
    stems = Counter(path.stem.casefold() for path in dict.fromkeys(files))
    taken: set[str] = set()
    names: dict[Path, str] = {}
    for path in files:
        if path in names:
            continue
        base = path.stem
        if stems[base.casefold()] > 1 and path.suffix:
            base = f"{base}_{path.suffix.lstrip('.').lower()}"
        candidate = base
        counter = 1
        while candidate.casefold() in taken:
            counter += 1
            candidate = f"{base}_{counter}"
        taken.add(candidate.casefold())
        names[path] = f"{candidate}{RESULT_SUFFIX}.zip"
    return names


def extract_zip(archive: Path, dest: Path) -> Path:
    """Extract ``archive`` into ``dest``.

    Every entry is checked before anything is written, so an archive carrying
    a path that resolves outside ``dest`` leaves the filesystem untouched.
    """
    root = dest.resolve()
    try:
        with zipfile.ZipFile(archive) as bundle:
            for name in bundle.namelist():
                target = (root / name).resolve()
                if target != root and root not in target.parents:
                    raise ExtractionError(
                        f"Unsafe ZIP entry detected: {name}. Path traversal attempt blocked."
                    )
            dest.mkdir(parents=True, exist_ok=True)
            bundle.extractall(dest)
    except zipfile.BadZipFile as exc:
        raise ExtractionError(f"Failed to extract ZIP file {archive}: {exc}") from exc
    log.debug("Extracted %s into %s", archive, dest)
    return dest


def inspect_zip(archive: Path) -> ZipContents | None:
    try:
        with zipfile.ZipFile(archive) as bundle:
            names = bundle.namelist()
    except (OSError, zipfile.BadZipFile) as exc:
        log.debug("Cannot inspect %s: %s", archive, exc)
        return None
    contents = ZipContents()
    for name in names:
        if name == MARKDOWN_ENTRY:
            contents.markdown = name
        elif name == ORIGINAL_ENTRY:
            contents.original = name
        elif name == METADATA_ENTRY:
            contents.metadata = name
        elif name == LAYOUTS_ENTRY:
            contents.layouts_pdf = name
        elif PurePosixPath(name).parts[:1] == ("images",) and name.endswith(IMAGE_ENTRY_SUFFIXES):
            contents.images.append(name)
    return contents


def read_zip_metadata(archive: Path) -> dict[str, Any] | None:
    try:
        with zipfile.ZipFile(archive) as bundle:
            if METADATA_ENTRY not in bundle.namelist():
                return None
            raw = bundle.read(METADATA_ENTRY)
    except (OSError, zipfile.BadZipFile) as exc:
        log.debug("Cannot read metadata from %s: %s", archive, exc)
        return None
    try:
        data = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None
    return data if isinstance(data, dict) else None


def format_file_size(size: int) -> str:
    if size < 1024:
        return f"{size}B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f}KB"
    return f"{size / (1024 * 1024):.2f}MB"


def scan_directory(directory: Path, pattern: str = "*") -> list[Path]:
    """List the files directly inside ``directory`` that match ``pattern``.

    ``*`` (or ``*.*``) selects every supported image or PDF, ``*.ext`` selects
    one extension case-insensitively and anything else is a name substring.
    """
    supported = SUPPORTED_IMAGE_EXTENSIONS + SUPPORTED_PDF_EXTENSIONS
    matches: list[Path] = []
    for entry in sorted(directory.iterdir()):
        if not entry.is_file():
            continue
        suffix = entry.suffix.lower()
        if pattern in {"*", "*.*"}:
            selected = suffix in supported
        elif pattern.startswith("*."):
            selected = suffix == pattern[1:].lower()
        else:
            selected = pattern in entry.name
        if selected:
            matches.append(entry)
    return matches


__all__ = [
    "ZipContents",
    "atomic_write",
    "atomic_write_bytes",
    "extract_zip",
    "format_file_size",
    "inspect_zip",
    "read_zip_metadata",
    "result_name",
    "scan_directory",
    "unique_result_names",
]
