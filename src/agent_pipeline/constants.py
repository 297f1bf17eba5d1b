"""Stable constants shared across the pipeline packages."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Final

# Subject templating.
REQUEST_ID_PLACEHOLDER: Final[str] = "{requestId}"
DEFAULT_RESULT_SUBJECT_SUFFIX: Final[str] = "result"

# Dispatch message envelope.
STAGE_STARTED_EVENT: Final[str] = "stage.started"
DISPATCH_SCHEMA_VERSION: Final[int] = 1

# Schema versions for file contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1
WORKFLOW_SCHEMA_VERSION: Final[int] = 1

# Default runtime values (overridable by config).
DEFAULT_STAGE_TIMEOUT_SECONDS: Final[float] = 3600.0
DEFAULT_LOG_DIR: Final[PurePosixPath] = PurePosixPath("logs")
DEFAULT_LOGGER_NAME: Final[str] = "agent_pipeline"

__all__ = [
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_LOGGER_NAME",
    "DEFAULT_LOG_DIR",
    "DEFAULT_RESULT_SUBJECT_SUFFIX",
    "DEFAULT_STAGE_TIMEOUT_SECONDS",
    "DISPATCH_SCHEMA_VERSION",
    "REQUEST_ID_PLACEHOLDER",
    "STAGE_STARTED_EVENT",
    "WORKFLOW_SCHEMA_VERSION",
]
