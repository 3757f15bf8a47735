"""Application configuration for taxmap.

This module provides the configuration object shared by the command line
interface and the cache manager. Library functions never read it; they take
their configuration explicitly.
"""

import os
from pathlib import Path
from typing import Any, Dict


class Config:
    """Runtime settings for taxmap commands.

    Defaults can be overridden with the ``TAXMAP_CACHE_DIR`` and
    ``TAXMAP_OUTPUT_FORMAT`` environment variables, and then by
    command-line arguments through ``update_from_args``.
    """

    def __init__(self):
        self.cache_base_dir = os.environ.get(
            "TAXMAP_CACHE_DIR",
            str(Path.home() / ".cache" / "taxmap"),
        )
        self.cache_dir = self.cache_base_dir
        self.output_format = os.environ.get("TAXMAP_OUTPUT_FORMAT", "parquet")
        self.progress = True
        self.cache_max_age = None  # seconds; None keeps entries until cleared
        self.log_level = "INFO"

    def update_from_args(self, args: Dict[str, Any]) -> None:
        """Update configuration from parsed command-line arguments.

        Only known settings are taken; other arguments are ignored.
        """
        for key in ("output_format", "log_level"):
            value = args.get(key)
            if value is not None:
                setattr(self, key, value)
        if args.get("no_progress"):
            self.progress = False

    def ensure_directories(self) -> None:
        """Create the cache directories if they do not exist."""
        Path(self.cache_base_dir).mkdir(parents=True, exist_ok=True)
        Path(self.cache_dir).mkdir(parents=True, exist_ok=True)

    def get_config_summary(self) -> str:
        """Return a human-readable summary of the current configuration."""
        lines = ["taxmap configuration:"]
        for key, value in vars(self).items():
            lines.append(f"  {key}: {value}")
        return "\n".join(lines)


config = Config()
