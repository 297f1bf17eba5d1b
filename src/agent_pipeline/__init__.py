"""
agent-pipeline — package root

File: src/agent_pipeline/__init__.py

Purpose
- Package root for the stage-group pipeline orchestrator: a flat, ordered list of
  worker stages is partitioned into a chain of stage groups, each group is fanned
  out over a message bus, and results flow back into conditional and verification
  decisions.

Import boundary rules
- No side effects at import time (no config loading, no logging init).
- Submodules are imported lazily by callers; only metadata lives here.
"""

from __future__ import annotations

from typing import Final

__version__: Final[str] = "0.1.0"

__all__ = ["__version__"]
