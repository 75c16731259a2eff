"""Configuration for specgen."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


DEFAULT_STORAGE_DIR = ".specgen"


@dataclass
class SpecGenConfig:
    """Configuration for the workflow manager and MCP server."""

    # Paths
    project_root: Optional[Path] = None
    storage_dir: str = DEFAULT_STORAGE_DIR

    # Logging
    log_level: str = "INFO"
    log_file: Optional[Path] = None

    # Relationship thresholds
    related_min_score: float = 0.2
    parent_min_score: float = 0.6
    related_limit: int = 10

    @classmethod
    def from_env(cls) -> "SpecGenConfig":
        """Create configuration from environment variables."""
        root_str = os.environ.get("SPECGEN_PROJECT_ROOT")
        log_file_str = os.environ.get("SPECGEN_LOG_FILE")
        return cls(
            project_root=Path(root_str).expanduser() if root_str else None,
            storage_dir=os.environ.get("SPECGEN_STORAGE_DIR") or DEFAULT_STORAGE_DIR,
            log_level=os.environ.get("SPECGEN_LOG_LEVEL", "INFO").upper(),
            log_file=Path(log_file_str).expanduser() if log_file_str else None,
            related_min_score=float(os.environ.get("SPECGEN_RELATED_MIN_SCORE", 0.2)),
            parent_min_score=float(os.environ.get("SPECGEN_PARENT_MIN_SCORE", 0.6)),
            related_limit=int(os.environ.get("SPECGEN_RELATED_LIMIT", 10)),
        )
