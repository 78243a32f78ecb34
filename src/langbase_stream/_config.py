"""
This module manages runtime configuration for the stream decoders.
It resolves the debug switch from an explicit value or the environment.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

ENV_DEBUG = "LANGBASE_STREAM_DEBUG"
_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True, slots=True)
class StreamConfig:
    """
    Configuration container shared by the source adapters.
    When `debug` is set, every decoded event is logged before it is interpreted.
    """

    debug: bool = False

    @staticmethod
    def from_env_or_value(debug: bool | None = None) -> StreamConfig:
        """
        Create a StreamConfig from a provided value or environment variable.

        Args:
            debug: Optional explicit flag. Takes precedence over the environment.

        Returns:
            An initialized StreamConfig instance.
        """
        if debug is None:
            debug = os.getenv(ENV_DEBUG, "").strip().lower() in _TRUTHY
        return StreamConfig(debug=debug)
