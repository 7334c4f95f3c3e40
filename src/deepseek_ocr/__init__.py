"""Command-line client and Python API for the DeepSeek-OCR service."""

from .batch import run_batch
from .client import OCRClient, RetryPolicy
from .config import ConfigOverrides, ConfigStore, EffectiveConfig, resolve_config, validate_config
from .constants import FileKind, OCRMode, Resolution
from .core import OCRResult, OCRService, PDFStrategy
from .errors import (
    APIError,
    AuthenticationError,
    ConfigurationError,
    ExtractionError,
    OCRError,
    TaskExpired,
    TaskFailed,
    TaskNotFound,
    TaskTimeout,
    TransientNetworkError,
    ValidationError,
)
from .history import TaskHistory
from .models import BatchItemResult, BatchOutcome, BatchSummary, ProcessingParams, Task, TaskError, TaskStatus
from .polling import PollTiming, poll_until_done

__version__ = "0.1.0"

__all__ = [
    "APIError",
    "AuthenticationError",
    "BatchItemResult",
    "BatchOutcome",
    "BatchSummary",
    "ConfigOverrides",
    "ConfigStore",
    "ConfigurationError",
    "EffectiveConfig",
    "ExtractionError",
    "FileKind",
    "OCRClient",
    "OCRError",
    "OCRMode",
    "OCRResult",
    "OCRService",
    "PDFStrategy",
    "PollTiming",
    "ProcessingParams",
    "Resolution",
    "RetryPolicy",
    "Task",
    "TaskError",
    "TaskExpired",
    "TaskFailed",
    "TaskHistory",
    "TaskNotFound",
    "TaskStatus",
    "TaskTimeout",
    "TransientNetworkError",
    "ValidationError",
    "__version__",
    "poll_until_done",
    "resolve_config",
    "run_batch",
    "validate_config",
]
