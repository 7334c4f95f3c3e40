"""Checks run on user input before anything is sent to the server."""

from __future__ import annotations

from pathlib import Path

from .constants import (
    MAX_DPI,
    MAX_FILE_SIZE_BYTES,
    MAX_PDF_PAGES,
    MAX_WORKERS,
    MIN_DPI,
    MIN_WORKERS,
    SUPPORTED_IMAGE_EXTENSIONS,
    SUPPORTED_PDF_EXTENSIONS,
    FileKind,
    OCRMode,
    Resolution,
)
from .errors import ValidationError
from .models import ProcessingParams


_EXTENSIONS = {
    FileKind.IMAGE: SUPPORTED_IMAGE_EXTENSIONS,
    FileKind.PDF: SUPPORTED_PDF_EXTENSIONS,
}

_OVERSIZE_HINTS = {
    FileKind.IMAGE: "Compress the image before processing.",
    FileKind.PDF: "Split the PDF into smaller parts.",
}


def validate_file(path: Path, kind: FileKind) -> Path:
    if not path.exists():
        raise ValidationError(f"File not found: {path}")
    if not path.is_file():
        raise ValidationError(f"Not a file: {path}")
    size = path.stat().st_size
    if size > MAX_FILE_SIZE_BYTES:
        raise ValidationError(
            f"File too large: {size / (1024 * 1024):.2f}MB (max {MAX_FILE_SIZE_BYTES // (1024 * 1024)}MB)",
            hints=(_OVERSIZE_HINTS[kind],),
        )
    suffix = path.suffix.lower()
    allowed = _EXTENSIONS[kind]
    if suffix not in allowed:
        raise ValidationError(
            f"Unsupported {kind.value} format: {suffix or '(none)'}",
            hints=(f"Supported formats: {', '.join(allowed)}",),
        )
    return path


def validate_image_file(path: Path) -> Path:
    return validate_file(path, FileKind.IMAGE)


def validate_pdf_file(path: Path) -> Path:
    return validate_file(path, FileKind.PDF)


def classify_file(path: Path) -> FileKind:
    """Return the kind of a supported, valid file or raise ``ValidationError``."""
    suffix = path.suffix.lower()
    for kind, extensions in _EXTENSIONS.items():
        if suffix in extensions:
            validate_file(path, kind)
            return kind
    raise ValidationError(f"Unsupported file type: {suffix or '(none)'} ({path.name})")


def validate_mode(mode: str) -> str:
    allowed = [item.value for item in OCRMode]
    if mode not in allowed:
        raise ValidationError(f"Invalid mode: {mode}", hints=(f"Supported modes: {', '.join(allowed)}",))
    return mode


def validate_resolution(resolution: str) -> str:
    allowed = [item.value for item in Resolution]
    if resolution not in allowed:
        raise ValidationError(
            f"Invalid resolution: {resolution}",
            hints=(f"Supported resolutions: {', '.join(allowed)}",),
        )
    return resolution


def _bounded_int(value: object, low: int, high: int, label: str) -> int:
    try:
        number = int(str(value).strip())
    except ValueError as exc:
        raise ValidationError(f"Invalid {label}: {value}. Must be between {low} and {high}") from exc
    if number < low or number > high:
        raise ValidationError(f"Invalid {label}: {value}. Must be between {low} and {high}")
    return number


def validate_dpi(dpi: object) -> int:
    return _bounded_int(dpi, MIN_DPI, MAX_DPI, "DPI")


def validate_max_pages(max_pages: object) -> int:
    return _bounded_int(max_pages, 1, MAX_PDF_PAGES, "max pages")


def validate_workers(workers: object) -> int:
    return _bounded_int(workers, MIN_WORKERS, MAX_WORKERS, "workers count")


def validate_custom_prompt(prompt: str | None) -> str:
    if prompt is None or not prompt.strip():
        raise ValidationError("Custom prompt cannot be empty", hints=("Pass --prompt with custom mode.",))
    return prompt


def validate_params(params: ProcessingParams) -> ProcessingParams:
    validate_mode(params.mode)
    validate_resolution(params.resolution)
    if params.mode == OCRMode.CUSTOM.value:
        validate_custom_prompt(params.custom_prompt)
    if params.dpi is not None:
        validate_dpi(params.dpi)
    if params.max_pages is not None:
        validate_max_pages(params.max_pages)
    return params


__all__ = [
    "classify_file",
    "validate_custom_prompt",
    "validate_dpi",
    "validate_file",
    "validate_image_file",
    "validate_max_pages",
    "validate_mode",
    "validate_params",
    "validate_pdf_file",
    "validate_resolution",
    "validate_workers",
]
