# deployment_engine/infrastructure/envfile/store.py
"""
Credential Store - key=value configuration files.

Reads go through python-dotenv so quoting and comments are parsed the same
way docker compose and Laravel parse them. Writes are line-based so every
unrelated key, comment and blank line survives untouched.
"""

import logging
import os
import re
import shutil
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

from dotenv import dotenv_values

from deployment_engine.core.errors import CredentialStoreError

logger = logging.getLogger(__name__)


def _key_pattern(key: str):
    return re.compile(rf"^\s*(?:export\s+)?{re.escape(key)}\s*=")


def quote_value(value: str) -> str:
    escaped = (
        value.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
    )
    return f'"{escaped}"'


class EnvFileStore:
    """One named key=value file."""

    def __init__(self, name: str, path: Path):
        self.name = name
        self.path = Path(path)
        self._backed_up = False

    def exists(self) -> bool:
        return self.path.is_file()

    # -------------------------
    # READ
    # -------------------------

    def read_all(self) -> Dict[str, str]:
        if not self.exists():
            return {}
        try:
            values = dotenv_values(self.path, interpolate=False)
        except OSError as e:
            raise CredentialStoreError(f"Cannot read {self.path}: {e}")
        return {k: (v if v is not None else "") for k, v in values.items()}

    def get(self, key: str) -> Optional[str]:
        """Missing file or missing key both read as None."""
        return self.read_all().get(key)

    # -------------------------
    # WRITE
    # -------------------------

    def set(self, key: str, value: str, create: bool = False) -> bool:
        """
        Upsert one key, preserving every other line.

        Returns:
            True if the key existed before the write

        Raises:
            CredentialStoreError: if the file is missing (and create is False)
                or cannot be written
        """
        return self.set_many({key: value}, create=create)[key]

    def set_many(self, values: Dict[str, str], create: bool = False) -> Dict[str, bool]:
        if not self.exists():
            if not create:
                raise CredentialStoreError(
                    f"{self.name} store not found: {self.path}",
                    remediation=f"create {self.path} before writing credentials to it",
                )
            lines = []
        else:
            lines = self._read_lines()
            self._backup()

        existed = {}
        for key, value in values.items():
            pattern = _key_pattern(key)
            new_line = f"{key}={quote_value(value)}\n"
            found = False
            for i, line in enumerate(lines):
                if pattern.match(line):
                    lines[i] = new_line
                    found = True
            if not found:
                if lines and not lines[-1].endswith("\n"):
                    lines[-1] += "\n"
                lines.append(new_line)
            existed[key] = found

        self._write_lines(lines)
        return existed

    def delete(self, key: str) -> bool:
        if not self.exists():
            return False
        lines = self._read_lines()
        pattern = _key_pattern(key)
        kept = [line for line in lines if not pattern.match(line)]
        if len(kept) == len(lines):
            return False
        self._backup()
        self._write_lines(kept)
        return True

    # -------------------------
    # INTERNALS
    # -------------------------

    def _read_lines(self):
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return f.readlines()
        except OSError as e:
            raise CredentialStoreError(f"Cannot read {self.path}: {e}")

    def _backup(self) -> None:
        """Keep one copy of the file as it was before this store first touched it."""
        if self._backed_up or not self.exists():
            return
        stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        backup_path = self.path.with_name(f"{self.path.name}.backup.{stamp}")
        try:
            shutil.copy2(self.path, backup_path)
        except OSError as e:
            raise CredentialStoreError(f"Cannot back up {self.path}: {e}")
        self._backed_up = True
        logger.debug(f"Backed up {self.path} -> {backup_path}")

    def _write_lines(self, lines) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=self.path.parent)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.writelines(lines)
            if self.exists():
                shutil.copymode(self.path, tmp)
            else:
                os.chmod(tmp, 0o600)
            os.replace(tmp, self.path)
        except OSError as e:
            raise CredentialStoreError(f"Cannot write {self.path}: {e}")


class CredentialStores:
    """Registry of the named stores making up one deployment."""

    ROOT = "root"
    NODE = "node"
    DASHBOARD = "dashboard"

    def __init__(self, stores: Dict[str, EnvFileStore]):
        self._stores = dict(stores)

    @classmethod
    def for_project(cls, project_root: Path) -> "CredentialStores":
        root = Path(project_root)
        return cls({
            cls.ROOT: EnvFileStore(cls.ROOT, root / ".env"),
            cls.NODE: EnvFileStore(cls.NODE, root / "veriscope_ta_node" / ".env"),
            cls.DASHBOARD: EnvFileStore(cls.DASHBOARD, root / "veriscope_ta_dashboard" / ".env"),
        })

    def __getitem__(self, name: str) -> EnvFileStore:
        try:
            return self._stores[name]
        except KeyError:
            raise CredentialStoreError(f"Unknown credential store '{name}'")

    def __contains__(self, name: str) -> bool:
        return name in self._stores

    def names(self):
        return list(self._stores)
