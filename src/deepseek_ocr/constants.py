from __future__ import annotations

from enum import Enum


APP_NAME = "deepseek-ocr"
ENV_PREFIX = "DEEPSEEK_OCR_"
CONFIG_FILE_NAME = "config.toml"
HISTORY_FILE_NAME = "history.json"
BATCH_SUMMARY_NAME = "batch_summary.json"


class OCRMode(str, Enum):
    DOCUMENT_MARKDOWN = "document_markdown"
    FREE_OCR = "free_ocr"
    FIGURE_PARSE = "figure_parse"
    GROUNDING_OCR = "grounding_ocr"
    CUSTOM = "custom"


class Resolution(str, Enum):
    TINY = "Tiny"
    SMALL = "Small"
    BASE = "Base"
    LARGE = "Large"
    GUNDAM = "Gundam"


class FileKind(str, Enum):
    IMAGE = "image"
    PDF = "pdf"


DEFAULT_BASE_URL = "http://localhost:8000"
DEFAULT_API_KEY = ""
DEFAULT_TIMEOUT_S = 30.0
DEFAULT_MODE = OCRMode.DOCUMENT_MARKDOWN.value
DEFAULT_RESOLUTION = Resolution.GUNDAM.value
DEFAULT_DPI = 144
DEFAULT_MAX_PAGES = 50
DEFAULT_WORKERS = 3
DEFAULT_MAX_RETRIES = 3

# Async task polling, in seconds.
INITIAL_POLL_DELAY_S = 2.0
MAX_POLL_DELAY_S = 30.0
POLL_TIMEOUT_S = 600.0
BURST_POLLS = 5
POLL_BACKOFF_FACTOR = 1.5

# Request timeouts for calls that carry or return documents.
UPLOAD_TIMEOUT_S = 300.0
SYNC_PDF_TIMEOUT_S = 600.0

# Transport retry backoff, in seconds.
RETRY_BASE_DELAY_S = 1.0
RETRY_MAX_DELAY_S = 10.0

TASK_RETENTION_DAYS = 7

MAX_FILE_SIZE_BYTES = 20 * 1024 * 1024
MAX_PDF_PAGES = 50
MIN_DPI = 72
MAX_DPI = 300
MIN_WORKERS = 1
MAX_WORKERS = 20
SYNC_ASYNC_THRESHOLD_PAGES = 10

SUPPORTED_IMAGE_EXTENSIONS: tuple[str, ...] = (".jpg", ".jpeg", ".png", ".webp", ".bmp")
SUPPORTED_PDF_EXTENSIONS: tuple[str, ...] = (".pdf",)

EXIT_SUCCESS = 0
EXIT_ERROR = 1
EXIT_USAGE = 2
EXIT_INTERRUPTED = 130


__all__ = [
    "APP_NAME",
    "BATCH_SUMMARY_NAME",
    "BURST_POLLS",
    "CONFIG_FILE_NAME",
    "DEFAULT_API_KEY",
    "DEFAULT_BASE_URL",
    "DEFAULT_DPI",
    "DEFAULT_MAX_PAGES",
    "DEFAULT_MAX_RETRIES",
    "DEFAULT_MODE",
    "DEFAULT_RESOLUTION",
    "DEFAULT_TIMEOUT_S",
    "DEFAULT_WORKERS",
    "ENV_PREFIX",
    "EXIT_ERROR",
    "EXIT_INTERRUPTED",
    "EXIT_SUCCESS",
    "EXIT_USAGE",
    "FileKind",
    "HISTORY_FILE_NAME",
    "INITIAL_POLL_DELAY_S",
    "MAX_DPI",
    "MAX_FILE_SIZE_BYTES",
    "MAX_PDF_PAGES",
    "MAX_POLL_DELAY_S",
    "MAX_WORKERS",
    "MIN_DPI",
    "MIN_WORKERS",
    "OCRMode",
    "POLL_BACKOFF_FACTOR",
    "POLL_TIMEOUT_S",
    "RETRY_BASE_DELAY_S",
    "RETRY_MAX_DELAY_S",
    "Resolution",
    "SUPPORTED_IMAGE_EXTENSIONS",
    "SUPPORTED_PDF_EXTENSIONS",
    "SYNC_ASYNC_THRESHOLD_PAGES",
    "SYNC_PDF_TIMEOUT_S",
    "TASK_RETENTION_DAYS",
    "UPLOAD_TIMEOUT_S",
]
