"""Configuração e layout do diretório root."""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

# Diretório padrão (pode ser alterado via env ou --root)
DEFAULT_ROOT = Path(os.environ.get("ALTPKG_ROOT", Path.home() / ".altpkg")).expanduser()

DESCRIPTOR_NAME = "package.yml"
DB_FILENAME = "db.yml"
LOCK_FILENAME = "db.lock"
STORE_DIRNAME = "packages"

HASH_CHUNK = 1024 * 1024


@dataclass(frozen=True)
class RootLayout:
    root: Path

    @property
    def db_path(self) -> Path:
        return self.root / DB_FILENAME

    @property
    def lock_path(self) -> Path:
        return self.root / LOCK_FILENAME

    @property
    def store_dir(self) -> Path:
        return self.root / STORE_DIRNAME

    def package_dir(self, content_hash: str) -> Path:
        return self.store_dir / content_hash

    def ensure_dirs(self) -> None:
        for d in (self.root, self.store_dir):
            d.mkdir(parents=True, exist_ok=True)
