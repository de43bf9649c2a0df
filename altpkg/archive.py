"""
Arquivos de pacote (tar, opcionalmente comprimido) e o store endereçado
por conteúdo em <root>/packages/<sha256>.
"""
from __future__ import annotations

import hashlib
import logging
import os
import shutil
import stat
import tarfile
import threading
from pathlib import Path, PurePosixPath
from typing import Dict, List, Tuple

from .config import DESCRIPTOR_NAME, HASH_CHUNK, RootLayout
from .errors import CorruptArchive, ManifestNotFound, PackageIOError
from .models import Manifest, decode_manifest

log = logging.getLogger("altpkg.archive")


def content_hash(path: Path) -> str:
    h = hashlib.sha256()
    try:
        with Path(path).open("rb") as f:
            for chunk in iter(lambda: f.read(HASH_CHUNK), b""):
                h.update(chunk)
    except OSError as e:
        raise PackageIOError(f"Falha ao ler {path}: {e}")
    return h.hexdigest()


def _member_name(m: tarfile.TarInfo) -> str:
    name = PurePosixPath(m.name.lstrip("/")).as_posix()
    return name[2:] if name.startswith("./") else name


def _open_stream(archive: Path) -> tarfile.TarFile:
    try:
        return tarfile.open(str(archive), mode="r|*")
    except FileNotFoundError:
        raise PackageIOError(f"Arquivo não encontrado: {archive}")
    except OSError as e:
        raise PackageIOError(f"Falha ao abrir {archive}: {e}")
    except tarfile.TarError as e:
        raise CorruptArchive(f"Arquivo inválido {archive}: {e}")


def inspect_archive(archive: Path) -> Manifest:
    """Lê o package.yml do arquivo sem extrair as demais entradas."""
    archive = Path(archive)
    tf = _open_stream(archive)
    try:
        for m in tf:
            if _member_name(m) != DESCRIPTOR_NAME or not m.isfile():
                continue
            fobj = tf.extractfile(m)
            if fobj is None:
                break
            return decode_manifest(fobj.read(), origin=f"{archive}:{DESCRIPTOR_NAME}")
    except (tarfile.TarError, EOFError, OSError) as e:
        raise CorruptArchive(f"Arquivo corrompido {archive}: {e}")
    finally:
        tf.close()
    raise ManifestNotFound(archive)


def _check_member(m: tarfile.TarInfo, archive: Path) -> None:
    # Segurança: impedir path traversal e hardlinks para fora do pacote
    name = m.name.lstrip("/")
    if ".." in PurePosixPath(name).parts:
        raise CorruptArchive(f"Tar inseguro (..) em {archive}: {m.name}")
    if m.islnk():
        link = m.linkname.lstrip("/")
        if ".." in PurePosixPath(link).parts:
            raise CorruptArchive(f"Tar inseguro (hardlink ..) em {archive}: {m.name} -> {m.linkname}")
    if not (m.isfile() or m.isdir() or m.issym() or m.islnk()):
        raise CorruptArchive(f"Tipo de entrada não suportado em {archive}: {m.name}")


def _clear_link_target(m: tarfile.TarInfo, target: Path) -> None:
    # os.link não sobrescreve: ao extrair de novo sobre a mesma árvore o destino sai antes
    dest = target / _member_name(m)
    if dest.is_symlink() or dest.is_file():
        dest.unlink()


def extract_archive(archive: Path, target: Path) -> None:
    """
    Extrai todas as entradas em `target`, preservando caminhos, permissões,
    diretórios, symlinks e hardlinks. Hardlinks apontam para entradas já
    extraídas; a ordem do tar não é alterada. Em falha o conteúdo parcial
    fica no disco.

    O filtro "tar" limpa setuid/setgid/sticky e a escrita de grupo/outros;
    os bits do tar são reaplicados depois de cada arquivo e, no fim, nos
    diretórios (do mais fundo para cima, para não bloquear a extração).
    """
    archive = Path(archive)
    target = Path(target)
    try:
        target.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise PackageIOError(f"Falha ao criar {target}: {e}")
    dirs: List[Tuple[Path, int]] = []
    tf = _open_stream(archive)
    try:
        for m in tf:
            _check_member(m, archive)
            if m.islnk():
                _clear_link_target(m, target)
            tf.extract(m, path=str(target), set_attrs=True, filter="tar")
            if m.isfile():
                os.chmod(target / _member_name(m), stat.S_IMODE(m.mode))
            elif m.isdir():
                dirs.append((target / _member_name(m), stat.S_IMODE(m.mode)))
        for d, mode in sorted(dirs, key=lambda x: len(x[0].parts), reverse=True):
            os.chmod(d, mode)
    except tarfile.FilterError as e:
        raise CorruptArchive(f"Tar inseguro em {archive}: {e}")
    except (tarfile.ReadError, tarfile.CompressionError, EOFError) as e:
        raise CorruptArchive(f"Arquivo corrompido {archive}: {e}")
    except (OSError, tarfile.ExtractError, tarfile.StreamError) as e:
        raise PackageIOError(f"Falha ao extrair {archive} em {target}: {e}")
    except tarfile.TarError as e:
        raise CorruptArchive(f"Arquivo corrompido {archive}: {e}")
    finally:
        tf.close()


class ArchiveStore:
    """
    Store em <root>/packages. Extrações do mesmo hash são serializadas
    (dois membros do lote podem ter o mesmo conteúdo).

    A extração vai para packages/.<hash>.partial e só então é renomeada para
    packages/<hash>; um diretório de hash existente está sempre completo e é
    reaproveitado, nunca reescrito.
    """

    def __init__(self, layout: RootLayout) -> None:
        self.layout = layout
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def _hash_lock(self, digest: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(digest, threading.Lock())

    def path_for(self, digest: str) -> Path:
        return self.layout.package_dir(digest)

    def staging_for(self, digest: str) -> Path:
        return self.layout.store_dir / f".{digest}.partial"

    def extract(self, archive: Path, digest: str) -> Path:
        dest = self.path_for(digest)
        with self._hash_lock(digest):
            if dest.is_dir():
                log.info("Store %s já extraído, reaproveitando", digest[:12])
                return dest
            staging = self.staging_for(digest)
            try:
                if staging.exists():
                    log.warning("Removendo extração incompleta anterior: %s", staging)
                    shutil.rmtree(staging)
            except OSError as e:
                raise PackageIOError(f"Falha ao limpar {staging}: {e}")
            log.info("Extraindo %s em %s", archive, dest)
            extract_archive(archive, staging)
            try:
                staging.rename(dest)
            except OSError as e:
                raise PackageIOError(f"Falha ao mover {staging} para {dest}: {e}")
        return dest

    def read_manifest(self, digest: str) -> Manifest:
        path = self.path_for(digest) / DESCRIPTOR_NAME
        try:
            raw = path.read_bytes()
        except FileNotFoundError:
            raise ManifestNotFound(path.parent)
        except OSError as e:
            raise PackageIOError(f"Falha ao ler {path}: {e}")
        return decode_manifest(raw, origin=str(path))
