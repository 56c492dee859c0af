"""Persisted key-value state shared between stages.

Each run owns a working directory. Values live in
``<work_dir>/.test-data/<key>.json`` so a later process (a rerun with
earlier stages skipped) can read what an earlier one wrote.
"""

import json
import logging
import os
import re
import shutil
import tempfile
from pathlib import Path
from typing import Any, Union

from errors import ConfigurationError, KeyNotFoundError

logger = logging.getLogger(__name__)

TEST_DATA_DIR = '.test-data'

KEY_PATTERN = re.compile(r'^[A-Za-z0-9_.-]+$')

# Hints shown when a key is read before its writer ran
KEY_HINTS = {
    'region': "written by the 'bootstrap' stage",
    'project': "written by the 'bootstrap' stage",
    'terraform_options': "written by the 'deploy' stage; was it skipped on a fresh working directory?",
}


class StateStore:
    """Durable string/blob entries scoped to one working directory."""

    def __init__(self, work_dir: Union[str, Path]):
        self.work_dir = Path(work_dir)

    @property
    def data_dir(self) -> Path:
        return self.work_dir / TEST_DATA_DIR

    def _path(self, key: str) -> Path:
        if not KEY_PATTERN.match(key):
            raise ConfigurationError(f"Invalid state key: {key!r}")
        return self.data_dir / f'{key}.json'

    def save(self, key: str, value: Union[str, dict]) -> Path:
        """Create or overwrite an entry.

        The file is written to a temp name and renamed into place so a
        crash never leaves a half-written entry behind.
        """
        if not isinstance(value, (str, dict)):
            raise ConfigurationError(
                f"State value for '{key}' must be str or dict, got {type(value).__name__}"
            )
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(prefix=f'.{key}-', suffix='.tmp', dir=path.parent)
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(value, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug(f"Saved '{key}' to {path}")
        return path

    def load(self, key: str) -> Any:
        """Return a stored value.

        Raises:
            KeyNotFoundError: If no stage has written the key
            ConfigurationError: If the entry is not valid JSON
        """
        path = self._path(key)
        if not path.exists():
            raise KeyNotFoundError(key, self.work_dir, KEY_HINTS.get(key, ''))
        try:
            with open(path, encoding='utf-8') as f:
                value = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Corrupt state entry {path}: {e}") from e
        logger.debug(f"Loaded '{key}' from {path}")
        return value

    def exists(self, key: str) -> bool:
        return self._path(key).exists()

    def delete(self, key: str) -> bool:
        """Remove an entry. Returns False if it did not exist."""
        path = self._path(key)
        if not path.exists():
            return False
        path.unlink()
        return True

    def clear(self) -> None:
        """Remove every entry for this working directory."""
        if self.data_dir.exists():
            shutil.rmtree(self.data_dir)
            logger.debug(f"Removed {self.data_dir}")

    def save_string(self, key: str, value: str) -> Path:
        if not isinstance(value, str):
            raise ConfigurationError(f"Expected string for '{key}', got {type(value).__name__}")
        return self.save(key, value)

    def load_string(self, key: str) -> str:
        value = self.load(key)
        if not isinstance(value, str):
            raise ConfigurationError(
                f"State entry '{key}' holds {type(value).__name__}, expected a string"
            )
        return value

    def save_options(self, options, key: str = 'terraform_options') -> Path:
        """Persist provisioning options (anything with to_dict())."""
        return self.save(key, options.to_dict())

    def load_options(self, key: str = 'terraform_options'):
        """Reload provisioning options persisted by deploy."""
        from actions.terraform import ProvisioningOptions

        data = self.load(key)
        if not isinstance(data, dict):
            raise ConfigurationError(f"State entry '{key}' is not a provisioning options blob")
        return ProvisioningOptions.from_dict(data)
