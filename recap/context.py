"""Application context: the one place runtime paths are derived.

Every service and router receives this object instead of individual path
strings. Paths are fixed at boot; services read them once at construction.
"""

from __future__ import annotations

import os


class AppContext:
    """Holds all runtime directory paths for the application."""

    def __init__(
        self,
        *,
        cwd: str,
        data_dir: str,
        config_path: str,
    ) -> None:
        self._cwd = cwd
        self._data_dir = data_dir
        self._config_path = config_path

    @property
    def data_dir(self) -> str:
        return self._data_dir

    # ── Derived data paths ─────────────────────────────────────────────

    @property
    def meetings_path(self) -> str:
        # Whole-list store keyed "meetings"
        return os.path.join(self._data_dir, "meetings.json")

    @property
    def recordings_dir(self) -> str:
        return os.path.join(self._data_dir, "recordings")

    @property
    def uploads_dir(self) -> str:
        return os.path.join(self._data_dir, "uploads")

    @property
    def config_path(self) -> str:
        return self._config_path

    # ── Logs (stay in cwd, not in data_dir) ────────────────────────────

    @property
    def logs_dir(self) -> str:
        return os.path.join(self._cwd, "logs")

    def ensure_dirs(self) -> None:
        """Create all required directories if they don't exist."""
        for d in (
            self.data_dir,
            self.recordings_dir,
            self.uploads_dir,
            self.logs_dir,
        ):
            os.makedirs(d, exist_ok=True)
