from __future__ import annotations

import hashlib
import os
import stat
import threading
import time

import pytest

import altpkg.archive as archive_mod
from altpkg.archive import ArchiveStore, content_hash, extract_archive, inspect_archive
from altpkg.config import RootLayout
from altpkg.errors import CorruptArchive, ManifestNotFound, PackageIOError
from altpkg.models import decode_manifest

from conftest import build_archive, make_manifest


@pytest.mark.parametrize("compression", ["xz", "gz", "bz2", ""])
def test_inspect_and_extract_agree(archives, tmp_path, compression):
    path = build_archive(
        archives / f"foo.tar.{compression or 'plain'}",
        make_manifest("foo", "1.2.3"),
        {"build/foo": "binário"},
        compression=compression,
    )
    inspected = inspect_archive(path)
    target = tmp_path / "out"
    extract_archive(path, target)
    extracted = decode_manifest((target / "package.yml").read_bytes())
    assert (inspected.name, inspected.version) == (extracted.name, extracted.version) == ("foo", "1.2.3")
    assert (target / "build/foo").read_text() == "binário"


def test_manifest_not_found(archives):
    path = build_archive(archives / "empty.tar.xz", None, {"README": "oi"})
    with pytest.raises(ManifestNotFound):
        inspect_archive(path)


def test_not_an_archive(archives):
    path = archives / "junk.tar"
    path.write_bytes(b"x" * 4096)
    with pytest.raises(CorruptArchive):
        inspect_archive(path)


def test_missing_archive(archives):
    with pytest.raises(PackageIOError):
        inspect_archive(archives / "nope.tar.xz")


def test_content_hash(archives):
    a = build_archive(archives / "a.tar", make_manifest("foo"), compression="")
    b = build_archive(archives / "b.tar", make_manifest("foo"), compression="")
    c = build_archive(archives / "c.tar", make_manifest("foo", "1.0.1"), compression="")
    assert content_hash(a) == hashlib.sha256(a.read_bytes()).hexdigest()
    assert content_hash(a) == content_hash(a)
    assert content_hash(a) == content_hash(b)
    assert content_hash(a) != content_hash(c)


def test_links_and_modes_preserved(archives, tmp_path):
    path = build_archive(
        archives / "links.tar.xz",
        make_manifest("foo"),
        {"data/real": "conteúdo", "bin/tool": "#!/bin/sh\n"},
        executables=["bin/tool"],
        symlinks={"data/link": "real"},
        hardlinks={"data/hard": "data/real"},
        dirs=["empty"],
    )
    target = tmp_path / "out"
    extract_archive(path, target)
    assert (target / "data/link").is_symlink()
    assert os.readlink(target / "data/link") == "real"
    assert os.stat(target / "data/hard").st_ino == os.stat(target / "data/real").st_ino
    assert (target / "bin/tool").stat().st_mode & stat.S_IXUSR
    assert not (target / "data/real").stat().st_mode & stat.S_IXUSR
    assert (target / "empty").is_dir()


def test_path_traversal_rejected(archives, tmp_path):
    path = build_archive(archives / "evil.tar.xz", make_manifest("foo"), {"../evil": "x"})
    with pytest.raises(CorruptArchive):
        extract_archive(path, tmp_path / "out")
    assert not (tmp_path / "evil").exists()


def test_hardlink_outside_rejected(archives, tmp_path):
    path = build_archive(
        archives / "evil.tar.xz", make_manifest("foo"), hardlinks={"x": "../../etc/passwd"}
    )
    with pytest.raises(CorruptArchive):
        extract_archive(path, tmp_path / "out")


def test_store(root, archives):
    path = build_archive(archives / "foo.tar.xz", make_manifest("foo"), {"a": "b"})
    store = ArchiveStore(RootLayout(root))
    digest = content_hash(path)
    dest = store.extract(path, digest)
    assert dest == root / "packages" / digest
    assert store.read_manifest(digest).name == "foo"
    # extrair de novo o mesmo conteúdo é idempotente
    store.extract(path, digest)
    assert (dest / "a").read_text() == "b"


def test_store_missing_manifest(root):
    with pytest.raises(ManifestNotFound):
        ArchiveStore(RootLayout(root)).read_manifest("f" * 64)


def test_extract_again_over_existing_tree(archives, tmp_path):
    path = build_archive(
        archives / "links.tar.xz", make_manifest("foo"), {"data/real": "x"}, hardlinks={"data/hard": "data/real"}
    )
    target = tmp_path / "out"
    extract_archive(path, target)
    extract_archive(path, target)
    assert os.stat(target / "data/hard").st_ino == os.stat(target / "data/real").st_ino
    assert (target / "data/hard").read_text() == "x"


def test_special_mode_bits_preserved(archives, tmp_path):
    path = build_archive(
        archives / "modes.tar.xz",
        make_manifest("foo"),
        {"bin/suid": "#!/bin/sh\n", "share/shared": "y"},
        dirs=["private"],
        modes={"bin/suid": 0o4755, "share/shared": 0o664, "private": 0o700},
    )
    target = tmp_path / "out"
    extract_archive(path, target)
    assert stat.S_IMODE(os.stat(target / "bin/suid").st_mode) == 0o4755
    assert stat.S_IMODE(os.stat(target / "share/shared").st_mode) == 0o664
    assert stat.S_IMODE(os.stat(target / "private").st_mode) == 0o700


class TestStoreExtraction:
    def test_complete_extraction_is_reused(self, root, archives, monkeypatch):
        path = build_archive(archives / "foo.tar.xz", make_manifest("foo"), {"a": "b"})
        store = ArchiveStore(RootLayout(root))
        digest = content_hash(path)
        store.extract(path, digest)
        calls = []
        monkeypatch.setattr(archive_mod, "extract_archive", lambda *a: calls.append(a))
        assert store.extract(path, digest) == store.path_for(digest)
        assert calls == []

    def test_leftover_partial_is_discarded(self, root, archives):
        path = build_archive(archives / "foo.tar.xz", make_manifest("foo"), {"a": "b"})
        store = ArchiveStore(RootLayout(root))
        digest = content_hash(path)
        staging = store.staging_for(digest)
        staging.mkdir(parents=True)
        (staging / "lixo").write_text("x")
        dest = store.extract(path, digest)
        assert not (dest / "lixo").exists()
        assert not staging.exists()
        assert (dest / "a").read_text() == "b"

    def test_failed_extraction_never_publishes_hash_dir(self, root, archives):
        path = build_archive(archives / "evil.tar.xz", make_manifest("foo"), {"../evil": "x"})
        store = ArchiveStore(RootLayout(root))
        digest = content_hash(path)
        with pytest.raises(CorruptArchive):
            store.extract(path, digest)
        assert not store.path_for(digest).exists()

    def test_same_hash_extractions_are_serialized(self, root, archives, monkeypatch):
        path = build_archive(archives / "foo.tar.xz", make_manifest("foo"), {"a": "b"})
        store = ArchiveStore(RootLayout(root))
        digest = content_hash(path)
        real = archive_mod.extract_archive
        guard = threading.Lock()
        state = {"active": 0, "peak": 0, "calls": 0}

        def slow_extract(archive, target):
            with guard:
                state["active"] += 1
                state["calls"] += 1
                state["peak"] = max(state["peak"], state["active"])
            try:
                time.sleep(0.2)
                real(archive, target)
            finally:
                with guard:
                    state["active"] -= 1

        monkeypatch.setattr(archive_mod, "extract_archive", slow_extract)
        barrier = threading.Barrier(2, timeout=10)
        results, errors = [], []

        def worker():
            barrier.wait()
            try:
                results.append(store.extract(path, digest))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(30)

        assert errors == []
        assert results == [store.path_for(digest)] * 2
        assert state["peak"] == 1
        assert state["calls"] == 1
        assert store.read_manifest(digest).name == "foo"
