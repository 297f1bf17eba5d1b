"""
agent-pipeline config package public API.

File: src/agent_pipeline/config/__init__.py

Purpose
- Export config loading/validation entrypoints and public error types.
"""

from agent_pipeline.config.loader import (
    DEFAULT_CONFIG_FILE,
    ENV_PREFIX,
    ConfigLoadError,
    dump_effective_config,
    load_config,
    normalize_paths,
)
from agent_pipeline.config.schema import (
    BUILTIN_PROFILE_NAMES,
    DEFAULT_CONFIG,
    LOG_LEVELS,
    PATH_FIELDS,
    ConfigValidationError,
    ConfigValidationIssue,
    ConfigValidationResult,
    PipelineSettings,
    ProfileOverlay,
    apply_profile_overlay,
    assert_valid_config,
    default_config,
    merge_config,
    validate_config,
)

__all__ = [
    "BUILTIN_PROFILE_NAMES",
    "ConfigLoadError",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "LOG_LEVELS",
    "PATH_FIELDS",
    "PipelineSettings",
    "ProfileOverlay",
    "apply_profile_overlay",
    "assert_valid_config",
    "default_config",
    "dump_effective_config",
    "load_config",
    "merge_config",
    "normalize_paths",
    "validate_config",
]
