"""
Materialização dos arquivos declarados em `files` no root.

Arquivos são hardlinks para a cópia no store (o store nunca é alterado no
lugar), então root e store compartilham o mesmo conteúdo.
"""
from __future__ import annotations

import logging
import os
import stat
from pathlib import Path
from typing import Iterator, List, Mapping, Tuple

from .errors import FileConflict, InvalidManifest, PackageIOError

log = logging.getLogger("altpkg.materialize")


def is_relative_to(child: Path, parent: Path) -> bool:
    try:
        child.relative_to(parent)
        return True
    except ValueError:
        return False


def _resolve_inside(base: Path, rel: str, what: str) -> Path:
    # rel já foi validado no manifesto; ainda assim symlinks podem escapar
    path = base / rel
    if not is_relative_to(Path(os.path.abspath(path.parent)), Path(os.path.abspath(base))):
        raise InvalidManifest(f"{what} fora de {base}: {rel}")
    return path


def _walk(source: Path) -> Iterator[Tuple[Path, List[str], List[str]]]:
    for dirpath, dirnames, filenames in os.walk(source, followlinks=False):
        dirnames.sort()
        # symlinks para diretórios são linkados como arquivos
        links = [d for d in dirnames if (Path(dirpath) / d).is_symlink()]
        dirnames[:] = [d for d in dirnames if d not in links]
        yield Path(dirpath), dirnames, sorted(filenames + links)


def _same_inode(a: Path, b: Path) -> bool:
    sa, sb = os.lstat(a), os.lstat(b)
    return (sa.st_dev, sa.st_ino) == (sb.st_dev, sb.st_ino)


def _link(src: Path, dst: Path) -> None:
    if dst.exists() or dst.is_symlink():
        # já linkado por uma tentativa anterior que falhou no meio
        if _same_inode(src, dst):
            log.debug("Já linkado: %s", dst)
            return
        raise FileConflict(dst)
    try:
        os.link(src, dst, follow_symlinks=False)
    except FileExistsError:
        raise FileConflict(dst)
    except OSError as e:
        raise PackageIOError(f"Falha ao linkar {src} -> {dst}: {e}")


def _mkdir_like(src_dir: Path, dst_dir: Path) -> None:
    mode = stat.S_IMODE(src_dir.stat().st_mode)
    if dst_dir.is_dir():
        return
    try:
        dst_dir.mkdir(parents=True, exist_ok=True)
        os.chmod(dst_dir, mode)
    except FileExistsError:
        raise FileConflict(dst_dir)
    except OSError as e:
        raise PackageIOError(f"Falha ao criar {dst_dir}: {e}")


def install_files(root: Path, package_dir: Path, files: Mapping[str, str]) -> int:
    """
    Para cada destino -> origem: diretório é percorrido e cada arquivo é
    linkado em root/destino/<subcaminho>; arquivo único é linkado direto.
    Falha no meio deixa o pacote parcialmente linkado.
    """
    root = Path(root)
    package_dir = Path(package_dir)
    linked = 0
    for target, source in sorted(files.items()):
        src = _resolve_inside(package_dir, source, "origem")
        dst = _resolve_inside(root, target, "destino")
        if src.is_dir() and not src.is_symlink():
            for dirpath, _dirs, names in _walk(src):
                out_dir = dst / dirpath.relative_to(src)
                _mkdir_like(dirpath, out_dir)
                for fn in names:
                    _link(dirpath / fn, out_dir / fn)
                    linked += 1
        elif src.exists() or src.is_symlink():
            try:
                dst.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise PackageIOError(f"Falha ao criar {dst.parent}: {e}")
            _link(src, dst)
            linked += 1
        else:
            raise PackageIOError(f"Origem declarada não existe no pacote: {source}")
        log.debug("Materializado %s -> %s", source, target)
    return linked


def remove_files(root: Path, package_dir: Path, files: Mapping[str, str]) -> int:
    """
    Espelho de install_files: remove só as folhas. Diretórios que ficarem
    vazios são removidos (best-effort); os demais permanecem.
    """
    root = Path(root)
    package_dir = Path(package_dir)
    removed = 0
    for target, source in sorted(files.items()):
        src = _resolve_inside(package_dir, source, "origem")
        dst = _resolve_inside(root, target, "destino")
        if src.is_dir() and not src.is_symlink():
            dirs: List[Path] = []
            for dirpath, _dirs, names in _walk(src):
                out_dir = dst / dirpath.relative_to(src)
                dirs.append(out_dir)
                for fn in names:
                    removed += _unlink(out_dir / fn)
            for d in sorted(dirs, key=lambda p: len(p.parts), reverse=True):
                try:
                    d.rmdir()
                except OSError:
                    pass
        else:
            removed += _unlink(dst)
    return removed


def _unlink(path: Path) -> int:
    try:
        path.unlink()
        return 1
    except FileNotFoundError:
        return 0
    except IsADirectoryError:
        log.warning("Esperado arquivo, encontrado diretório (mantido): %s", path)
        return 0
    except OSError as e:
        raise PackageIOError(f"Falha ao remover {path}: {e}")
