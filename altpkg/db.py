"""
DB: pacotes instalados (db.yml) + lock.

O lock tem dois níveis:
  - db.lock: marcador de processo, criado no início do comando e removido
    no fim; enquanto o comando roda ele fica preso por flock.
  - um mutex em memória, por mutação, pois a instalação em lote roda vários
    workers dentro do mesmo comando.
"""
from __future__ import annotations

import contextlib
import fcntl
import logging
import os
import threading
from pathlib import Path
from typing import Dict, Iterator, List, Optional

import yaml

from .config import RootLayout
from .errors import AlreadyLocked, AlreadyInstalled, NotFound, RegistryError
from .models import DBPackage

log = logging.getLogger("altpkg.db")


def read_db(root: Path) -> Dict[str, DBPackage]:
    """
    Carrega db.yml; se não existir, cria um vazio.
    Um arquivo ilegível ou corrompido é erro (não volta para um DB vazio).
    """
    layout = RootLayout(Path(root))
    path = layout.db_path
    if not path.exists():
        layout.ensure_dirs()
        path.touch()
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError) as e:
        raise RegistryError(f"Falha ao ler {path}: {e}")
    except yaml.YAMLError as e:
        raise RegistryError(f"DB corrompido em {path}: {e}")

    if data is None:
        return {}
    if not isinstance(data, dict) or not isinstance(data.get("package", {}) or {}, dict):
        raise RegistryError(f"DB corrompido em {path}: esperado mapeamento 'package'")

    packages: Dict[str, DBPackage] = {}
    for name, record in (data.get("package") or {}).items():
        try:
            entry = DBPackage.from_record(record)
        except ValueError as e:
            raise RegistryError(f"DB corrompido em {path}: entrada {name!r}: {e}")
        if entry.name != name:
            raise RegistryError(f"DB corrompido em {path}: chave {name!r} aponta para {entry.name!r}")
        packages[name] = entry
    return packages


def write_db(root: Path, packages: Dict[str, DBPackage]) -> None:
    """Reescreve db.yml por inteiro (tmp + rename, nunca append)."""
    layout = RootLayout(Path(root))
    layout.ensure_dirs()
    data = {"package": {name: packages[name].to_record() for name in sorted(packages)}}
    tmp = layout.db_path.with_suffix(".tmp")
    try:
        tmp.write_text(yaml.safe_dump(data, sort_keys=True, allow_unicode=True), encoding="utf-8")
        tmp.replace(layout.db_path)
    except OSError as e:
        raise RegistryError(f"Falha ao gravar {layout.db_path}: {e}")


class ProcessLock:
    """Marcador db.lock, mantido com flock enquanto o comando roda."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._fd: Optional[int] = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def acquire(self, reclaim_stale: bool = False) -> None:
        if self._fd is not None:
            raise AlreadyLocked(self.path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            if not reclaim_stale:
                raise AlreadyLocked(self.path)
            fd = self._reclaim()
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            # o marcador pode ter sido removido e recriado por outro processo
            if os.fstat(fd).st_ino != os.stat(self.path).st_ino:
                raise OSError("marcador substituído")
        except OSError:
            os.close(fd)
            raise AlreadyLocked(self.path)
        self._fd = fd
        log.debug("Lock adquirido: %s", self.path)

    def _reclaim(self) -> int:
        # marcador existe: só é "stale" se nenhum processo vivo segura o flock
        try:
            fd = os.open(self.path, os.O_WRONLY)
        except FileNotFoundError:
            # liberado entre o O_EXCL e aqui
            return os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError:
            os.close(fd)
            raise AlreadyLocked(self.path)
        log.warning("Removendo lock órfão deixado por um processo anterior: %s", self.path)
        return fd

    def release(self) -> None:
        """Remove o marcador; falhas são só registradas no log."""
        fd, self._fd = self._fd, None
        if fd is None:
            return
        try:
            self.path.unlink()
        except OSError as e:
            log.warning("Falha ao remover lock %s: %s", self.path, e)
        try:
            fcntl.flock(fd, fcntl.LOCK_UN)
            os.close(fd)
        except OSError as e:
            log.warning("Falha ao liberar flock de %s: %s", self.path, e)


class PackageDB:
    """
    Registro de pacotes de um root.

    Cada instância tem o seu próprio mutex e o seu próprio lock de processo,
    de modo que vários roots podem ser usados no mesmo processo.
    """

    def __init__(self, root: Path) -> None:
        self.layout = RootLayout(Path(root))
        self.mutex = threading.RLock()
        self._lock = ProcessLock(self.layout.lock_path)
        self._packages: Dict[str, DBPackage] = {}

    @property
    def root(self) -> Path:
        return self.layout.root

    @classmethod
    @contextlib.contextmanager
    def open(cls, root: Path, reclaim_stale: bool = False) -> Iterator["PackageDB"]:
        """Trava o root, carrega o DB e garante o unlock no fim do comando."""
        db = cls(root)
        db.layout.ensure_dirs()
        db.lock(reclaim_stale=reclaim_stale)
        try:
            db.load()
            yield db
        finally:
            db.unlock()

    def lock(self, reclaim_stale: bool = False) -> None:
        self._lock.acquire(reclaim_stale=reclaim_stale)

    def unlock(self) -> None:
        self._lock.release()

    @property
    def locked(self) -> bool:
        return self._lock.held

    def load(self) -> None:
        with self.mutex:
            self._packages = read_db(self.root)

    def _save(self) -> None:
        write_db(self.root, self._packages)

    # leituras

    def snapshot(self) -> Dict[str, DBPackage]:
        with self.mutex:
            return dict(self._packages)

    def get(self, name: str) -> Optional[DBPackage]:
        with self.mutex:
            return self._packages.get(name)

    def __contains__(self, name: object) -> bool:
        with self.mutex:
            return name in self._packages

    def names(self) -> List[str]:
        with self.mutex:
            return sorted(self._packages)

    def dependents_of(self, name: str) -> List[str]:
        """Pacotes (além do próprio) que listam `name` em required."""
        with self.mutex:
            return sorted(
                other for other, entry in self._packages.items()
                if other != name and name in entry.dependencies.required_names()
            )

    def hash_in_use(self, content_hash: str, exclude: Optional[str] = None) -> bool:
        with self.mutex:
            return any(e.hash == content_hash for n, e in self._packages.items() if n != exclude)

    # mutações

    def commit(self, entry: DBPackage) -> None:
        with self.mutex:
            if entry.name in self._packages:
                raise AlreadyInstalled(entry.name)
            self._packages[entry.name] = entry
            try:
                self._save()
            except Exception:
                del self._packages[entry.name]
                raise
        log.info("Registrado %s (%s)", entry.package.ident, entry.hash[:12])

    def delete(self, name: str) -> DBPackage:
        with self.mutex:
            entry = self._packages.pop(name, None)
            if entry is None:
                raise NotFound(name)
            try:
                self._save()
            except Exception:
                self._packages[name] = entry
                raise
        log.info("Removido do DB: %s", entry.package.ident)
        return entry
