"""Fixtures compartilhadas: roots temporários e construção de pacotes .tar em disco."""
from __future__ import annotations

import io
import tarfile
from pathlib import Path
from typing import Dict, Iterable, Optional

import pytest
import yaml


def make_manifest(
    name: str,
    version: str = "1.0.0",
    required: Iterable[str] = (),
    optional: Iterable[str] = (),
    files: Optional[Dict[str, str]] = None,
    hooks: Optional[Dict[str, str]] = None,
    **extra,
) -> dict:
    data = {
        "spec": 1,
        "package": {
            "name": name,
            "version": version,
            "description": f"pacote {name}",
            "authors": ["Fulano <fulano@example.org>"],
            "maintainers": ["Ciclano <ciclano@example.org>"],
        },
        "dependencies": {"required": list(required), "optional": list(optional)},
        "files": dict(files or {}),
    }
    if hooks:
        data["hooks"] = dict(hooks)
    data.update(extra)
    return data


def _add_bytes(tf: tarfile.TarFile, name: str, payload: bytes, mode: int = 0o644) -> None:
    info = tarfile.TarInfo(name)
    info.size = len(payload)
    info.mode = mode
    info.mtime = 0
    tf.addfile(info, io.BytesIO(payload))


def build_archive(
    path: Path,
    manifest: Optional[dict],
    contents: Optional[Dict[str, str]] = None,
    executables: Iterable[str] = (),
    symlinks: Optional[Dict[str, str]] = None,
    hardlinks: Optional[Dict[str, str]] = None,
    dirs: Iterable[str] = (),
    compression: str = "xz",
    modes: Optional[Dict[str, int]] = None,
) -> Path:
    """
    Escreve um tar (xz por padrão) com package.yml + arquivos.
    `contents`: nome -> texto; nomes em `executables` ganham modo 0755.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    mode = f"w:{compression}" if compression else "w"
    exe = set(executables)
    modes = dict(modes or {})
    with tarfile.open(path, mode) as tf:
        for d in dirs:
            info = tarfile.TarInfo(d)
            info.type = tarfile.DIRTYPE
            info.mode = modes.get(d, 0o755)
            tf.addfile(info)
        if manifest is not None:
            _add_bytes(tf, "package.yml", yaml.safe_dump(manifest).encode("utf-8"))
        for name, text in (contents or {}).items():
            _add_bytes(tf, name, text.encode("utf-8"), modes.get(name, 0o755 if name in exe else 0o644))
        for name, target in (symlinks or {}).items():
            info = tarfile.TarInfo(name)
            info.type = tarfile.SYMTYPE
            info.linkname = target
            tf.addfile(info)
        for name, target in (hardlinks or {}).items():
            info = tarfile.TarInfo(name)
            info.type = tarfile.LNKTYPE
            info.linkname = target
            info.mode = 0o644
            tf.addfile(info)
    return path


def hook_script(label: str) -> str:
    """Hook /bin/sh que registra '<pacote> <hook>' em $ALTPKG_ROOT/hooks.log."""
    return (
        "#!/bin/sh\n"
        f'echo "$ALTPKG_PACKAGE {label}" >> "$ALTPKG_ROOT/hooks.log"\n'
    )


@pytest.fixture
def root(tmp_path) -> Path:
    r = tmp_path / "root"
    r.mkdir()
    return r


@pytest.fixture
def archives(tmp_path) -> Path:
    d = tmp_path / "archives"
    d.mkdir()
    return d


@pytest.fixture
def simple_pkg(archives):
    """Fábrica: pacote com um binário em bin/<nome> e hooks que escrevem no log."""

    def _make(name: str, version: str = "1.0.0", required=(), optional=(), with_hooks=False, filename=None):
        contents = {f"build/{name}": f"#!/bin/sh\necho {name}\n"}
        hooks = None
        if with_hooks:
            hooks = {}
            for h in ("preinstall", "postinstall", "preremove", "postremove"):
                contents[f"hooks/{h}.sh"] = hook_script(h)
                hooks[h] = f"hooks/{h}.sh"
        manifest = make_manifest(
            name, version, required=required, optional=optional,
            hooks=hooks, bin={name: f"build/{name}"},
        )
        return build_archive(
            archives / (filename or f"{name}-{version}.tar.xz"),
            manifest,
            contents,
            executables=[f"build/{name}"],
        )

    return _make
