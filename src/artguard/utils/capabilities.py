"""Cached availability checks for external tools (git, tsc, ...).

Checks run once per tool per process. ``reset_capabilities()`` drops the
cache so tests can swap in a different environment.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import threading
from collections.abc import Callable
from typing import NamedTuple

logger = logging.getLogger(__name__)

VERSION_TIMEOUT = 5


class ToolStatus(NamedTuple):
    """Availability of one tool."""

    available: bool
    version: str = ""


def _probe(tool: str) -> ToolStatus:
    if shutil.which(tool) is None:
        return ToolStatus(False)
    try:
        result = subprocess.run(
            [tool, "--version"],
            capture_output=True,
            text=True,
            timeout=VERSION_TIMEOUT,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.debug("Version check for %s failed: %s", tool, e)
        return ToolStatus(False)
    if result.returncode != 0:
        return ToolStatus(False)
    return ToolStatus(True, result.stdout.strip())


class ToolCapabilities:
    """Lazily populated, thread-safe tool availability cache."""

    def __init__(self, probe: Callable[[str], ToolStatus] = _probe):
        self._probe = probe
        self._cache: dict[str, ToolStatus] = {}
        self._lock = threading.Lock()

    def check(self, tool: str) -> ToolStatus:
        """Probe ``tool`` on first use, then return the cached status."""
        with self._lock:
            status = self._cache.get(tool)
            if status is None:
                status = self._probe(tool)
                self._cache[tool] = status
                logger.debug("Tool %s available=%s version=%r", tool, status.available, status.version)
            return status

    def is_available(self, tool: str) -> bool:
        return self.check(tool).available

    def version(self, tool: str) -> str:
        return self.check(tool).version

    def reset(self) -> None:
        """Forget every cached result."""
        with self._lock:
            self._cache.clear()


_capabilities: ToolCapabilities | None = None


def get_capabilities() -> ToolCapabilities:
    """Get the process-wide capability cache."""
    global _capabilities
    if _capabilities is None:
        _capabilities = ToolCapabilities()
    return _capabilities


def set_capabilities(capabilities: ToolCapabilities) -> None:
    """Replace the process-wide cache (tests inject a fake probe)."""
    global _capabilities
    _capabilities = capabilities


def reset_capabilities() -> None:
    """Drop the process-wide cache; the next call re-probes."""
    global _capabilities
    _capabilities = None
