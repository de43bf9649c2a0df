from __future__ import annotations

import pytest

from altpkg.errors import InvalidDependencySpec, InvalidManifest
from altpkg.models import DBPackage, DependencySpec, Manifest, decode_manifest

from conftest import make_manifest


class TestDependencySpec:
    def test_parse(self):
        spec = DependencySpec.parse("foo@^1.0.0")
        assert spec.name == "foo"
        assert spec.constraint == "^1.0.0"
        assert not spec.optional
        assert spec.raw == "foo@^1.0.0"

    def test_optional_flag(self):
        assert DependencySpec.parse("foo@*", optional=True).optional

    @pytest.mark.parametrize("raw", ["foo", "foo@1@2", "@1.0.0", "foo@", ""])
    def test_malformed(self, raw):
        with pytest.raises(InvalidDependencySpec):
            DependencySpec.parse(raw)


class TestManifest:
    def test_from_recipe(self):
        m = Manifest.from_recipe(make_manifest("foo", "1.2.0", required=["bar@^1.0.0"]))
        assert m.name == "foo"
        assert m.version == "1.2.0"
        assert m.package.ident == "foo@1.2.0"
        assert m.package.authors == ("Fulano <fulano@example.org>",)
        assert [s.raw for s in m.dependencies.specs()] == ["bar@^1.0.0"]

    def test_bin_and_lib_folded_into_files(self):
        m = Manifest.from_recipe(make_manifest(
            "foo", files={"share/foo": "data"},
            bin={"foo": "build/foo"}, lib={"libfoo.so": "build/libfoo.so"},
        ))
        assert m.files == {
            "share/foo": "data",
            "bin/foo": "build/foo",
            "lib/libfoo.so": "build/libfoo.so",
        }

    def test_files_mapping_is_read_only(self):
        m = Manifest.from_recipe(make_manifest("foo", files={"share/foo": "data"}))
        with pytest.raises(TypeError):
            m.files["bin/evil"] = "x"
        assert dict(m.files) == {"share/foo": "data"}

    def test_duplicate_target(self):
        with pytest.raises(InvalidManifest):
            Manifest.from_recipe(make_manifest("foo", files={"bin/foo": "a"}, bin={"foo": "b"}))

    @pytest.mark.parametrize("files", [
        {"../etc/passwd": "x"},
        {"/etc/passwd": "x"},
        {"bin/foo": "../../outside"},
    ])
    def test_unsafe_paths(self, files):
        with pytest.raises(InvalidManifest):
            Manifest.from_recipe(make_manifest("foo", files=files))

    def test_unsafe_hook_path(self):
        with pytest.raises(InvalidManifest):
            Manifest.from_recipe(make_manifest("foo", hooks={"preinstall": "../x.sh"}))

    def test_missing_package(self):
        with pytest.raises(InvalidManifest):
            Manifest.from_recipe({"spec": 1})

    def test_invalid_version(self):
        with pytest.raises(InvalidManifest):
            Manifest.from_recipe(make_manifest("foo", version="banana"))

    def test_invalid_name(self):
        with pytest.raises(InvalidManifest):
            Manifest.from_recipe(make_manifest("foo@bar"))

    def test_decode_bad_yaml(self):
        with pytest.raises(InvalidManifest):
            decode_manifest(b"package: [unclosed")

    def test_decode_not_a_mapping(self):
        with pytest.raises(InvalidManifest):
            decode_manifest(b"- a\n- b\n")

    def test_malformed_dependency_detected_late(self):
        # decode aceita; a estrutura é validada ao montar o grafo
        m = Manifest.from_recipe(make_manifest("foo", required=["bar"]))
        with pytest.raises(InvalidDependencySpec):
            m.dependencies.specs()


class TestDBPackage:
    def test_record(self):
        m = Manifest.from_recipe(make_manifest("foo", required=["bar@^1"], optional=["baz@*"]))
        entry = DBPackage.from_manifest("ab" * 32, m)
        rec = entry.to_record()
        assert rec["hash"] == "ab" * 32
        assert rec["package"]["name"] == "foo"
        assert rec["dependencies"] == {"required": ["bar@^1"], "optional": ["baz@*"]}
        assert DBPackage.from_record(rec) == entry

    def test_record_without_hash(self):
        with pytest.raises(ValueError):
            DBPackage.from_record({"package": {"name": "foo", "version": "1.0.0"}})
