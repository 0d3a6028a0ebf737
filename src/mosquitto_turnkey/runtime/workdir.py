from __future__ import annotations

import logging
import shutil
import tempfile
from pathlib import Path
from typing import Optional

from mosquitto_turnkey.core.naming import WORKDIR_PREFIX

LOGGER = logging.getLogger(__name__)

WORKDIR_MODE = 0o750


class WorkingDirectory:
    """Exclusively owned ephemeral directory holding the rendered artifacts."""

    def __init__(self, base_dir: Optional[Path] = None) -> None:
        self.base_dir = base_dir
        self._path: Optional[Path] = None

    @property
    def path(self) -> Path:
        if self._path is None:
            raise RuntimeError("WorkingDirectory is not created. Call create() first.")
        return self._path

    @property
    def exists(self) -> bool:
        return self._path is not None and self._path.exists()

    def create(self) -> Path:
        """Create the directory (mode 0750) and return its path."""
        if self._path is not None:
            return self._path

        created = Path(tempfile.mkdtemp(prefix=WORKDIR_PREFIX, dir=self.base_dir))
        created.chmod(WORKDIR_MODE)
        self._path = created
        LOGGER.debug("created working directory %s", created)
        return created

    def cleanup(self) -> None:
        """Remove the directory and everything beneath it. Safe to call twice."""
        if self._path is None:
            return

        path, self._path = self._path, None
        if path.exists():
            shutil.rmtree(path)
            LOGGER.debug("removed working directory %s", path)
