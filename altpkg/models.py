"""
Modelos do descritor de pacote (package.yml) e das entradas do DB.

Formato do package.yml:

  spec: 1
  package:
    name: foo
    version: 1.0.0
    description: ...
    authors: [...]
    maintainers: [...]
  dependencies:
    required: ["bar@^1.0.0"]
    optional: []
  files:
    share/foo: data          # diretório inteiro
    etc/foo.conf: foo.conf   # arquivo único
  bin:
    foo: build/foo           # atalho para files: {bin/foo: build/foo}
  lib: {}
  hooks:
    preinstall: hooks/pre.sh
"""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import PurePosixPath
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml

from .constraints import ConstraintError, parse_version
from .errors import InvalidDependencySpec, InvalidManifest

HOOK_NAMES = ("preinstall", "postinstall", "preremove", "postremove")


def _str_list(obj: Any, key: str) -> List[str]:
    if obj is None:
        return []
    if isinstance(obj, (str, int, float)):
        return [str(obj)]
    if isinstance(obj, list) and all(isinstance(x, (str, int, float)) for x in obj):
        return [str(x).strip() for x in obj if str(x).strip()]
    raise ValueError(f"{key} deve ser uma lista de strings")


def safe_relpath(raw: Any, key: str) -> str:
    """Caminho relativo POSIX sem '..' nem prefixo absoluto."""
    if not isinstance(raw, str) or not raw.strip():
        raise ValueError(f"{key}: caminho vazio ou inválido")
    p = PurePosixPath(raw.strip())
    if p.is_absolute() or ".." in p.parts:
        raise ValueError(f"{key}: caminho inseguro {raw!r}")
    rel = p.as_posix()
    if rel == ".":
        raise ValueError(f"{key}: caminho vazio ou inválido")
    return rel


@dataclass(frozen=True)
class DependencySpec:
    name: str
    constraint: str
    optional: bool = False

    @property
    def raw(self) -> str:
        return f"{self.name}@{self.constraint}"

    @staticmethod
    def parse(raw: str, optional: bool = False) -> "DependencySpec":
        parts = raw.split("@")
        if len(parts) != 2:
            raise InvalidDependencySpec(raw)
        name, constraint = parts[0].strip(), parts[1].strip()
        if not name or not constraint:
            raise InvalidDependencySpec(raw)
        return DependencySpec(name=name, constraint=constraint, optional=optional)

    def __str__(self) -> str:
        return self.raw


@dataclass(frozen=True)
class PackageInfo:
    name: str
    version: str
    description: str = ""
    authors: Tuple[str, ...] = ()
    maintainers: Tuple[str, ...] = ()

    @property
    def ident(self) -> str:
        return f"{self.name}@{self.version}"

    @staticmethod
    def from_recipe(obj: Any) -> "PackageInfo":
        if not isinstance(obj, dict):
            raise ValueError("Campo 'package' deve ser um objeto (dict)")
        name = str(obj.get("name", "") or "").strip()
        version = str(obj.get("version", "") or "").strip()
        if not name:
            raise ValueError("Campo obrigatório ausente: package.name")
        if "@" in name or "/" in name:
            raise ValueError(f"package.name inválido: {name!r}")
        if not version:
            raise ValueError("Campo obrigatório ausente: package.version")
        try:
            parse_version(version)
        except ConstraintError as e:
            raise ValueError(f"package.version: {e}")
        return PackageInfo(
            name=name,
            version=version,
            description=str(obj.get("description", "") or ""),
            authors=tuple(_str_list(obj.get("authors"), "package.authors")),
            maintainers=tuple(_str_list(obj.get("maintainers"), "package.maintainers")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "version": self.version,
            "authors": list(self.authors),
            "maintainers": list(self.maintainers),
        }


@dataclass(frozen=True)
class Dependencies:
    required: Tuple[str, ...] = ()
    optional: Tuple[str, ...] = ()

    @staticmethod
    def from_recipe(obj: Any) -> "Dependencies":
        if obj is None:
            return Dependencies()
        if not isinstance(obj, dict):
            raise ValueError("Campo 'dependencies' deve ser um objeto (dict)")
        return Dependencies(
            required=tuple(_str_list(obj.get("required"), "dependencies.required")),
            optional=tuple(_str_list(obj.get("optional"), "dependencies.optional")),
        )

    def specs(self) -> List[DependencySpec]:
        """Specs estruturados; falha com InvalidDependencySpec em entradas malformadas."""
        out = [DependencySpec.parse(d) for d in self.required]
        out += [DependencySpec.parse(d, optional=True) for d in self.optional]
        return out

    def required_names(self) -> List[str]:
        # usado na checagem de dependentes; entradas malformadas são ignoradas aqui
        return [d.split("@", 1)[0].strip() for d in self.required if d.strip()]

    def to_dict(self) -> Dict[str, Any]:
        return {"required": list(self.required), "optional": list(self.optional)}


@dataclass(frozen=True)
class Hooks:
    preinstall: str = ""
    postinstall: str = ""
    preremove: str = ""
    postremove: str = ""

    @staticmethod
    def from_recipe(obj: Any) -> "Hooks":
        if obj is None:
            return Hooks()
        if not isinstance(obj, dict):
            raise ValueError("Campo 'hooks' deve ser um objeto (dict)")
        values = {}
        for key in HOOK_NAMES:
            raw = obj.get(key)
            values[key] = safe_relpath(raw, f"hooks.{key}") if raw else ""
        return Hooks(**values)

    def get(self, name: str) -> str:
        return getattr(self, name)


@dataclass(frozen=True)
class Manifest:
    package: PackageInfo
    spec: int = 1
    dependencies: Dependencies = field(default_factory=Dependencies)
    files: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    hooks: Hooks = field(default_factory=Hooks)

    @property
    def name(self) -> str:
        return self.package.name

    @property
    def version(self) -> str:
        return self.package.version

    @staticmethod
    def from_recipe(data: Any, origin: str = "package.yml") -> "Manifest":
        if not isinstance(data, dict):
            raise InvalidManifest(f"Descritor inválido (esperado dict): {origin}")
        try:
            spec = int(data.get("spec", 1) or 1)
            if "package" not in data:
                raise ValueError("Campo obrigatório ausente: package")
            files: Dict[str, str] = {}
            for section, prefix in (("files", ""), ("bin", "bin/"), ("lib", "lib/")):
                raw = data.get(section) or {}
                if not isinstance(raw, dict):
                    raise ValueError(f"Campo '{section}' deve ser um mapeamento destino -> origem")
                for target, source in raw.items():
                    key = safe_relpath(prefix + str(target), f"{section}.{target}")
                    if key in files:
                        raise ValueError(f"Destino duplicado: {key}")
                    files[key] = safe_relpath(source, f"{section}.{target}")
            return Manifest(
                package=PackageInfo.from_recipe(data["package"]),
                spec=spec,
                dependencies=Dependencies.from_recipe(data.get("dependencies")),
                files=MappingProxyType(files),
                hooks=Hooks.from_recipe(data.get("hooks")),
            )
        except (ValueError, TypeError) as e:
            raise InvalidManifest(f"{origin}: {e}")


def decode_manifest(raw: bytes, origin: str = "package.yml") -> Manifest:
    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise InvalidManifest(f"{origin}: YAML inválido ({e})")
    return Manifest.from_recipe(data, origin=origin)


@dataclass(frozen=True)
class DBPackage:
    """Entrada do db.yml: nome -> {hash, package, dependencies}."""

    hash: str
    package: PackageInfo
    dependencies: Dependencies = field(default_factory=Dependencies)

    @property
    def name(self) -> str:
        return self.package.name

    @property
    def version(self) -> str:
        return self.package.version

    @staticmethod
    def from_manifest(content_hash: str, manifest: Manifest) -> "DBPackage":
        return DBPackage(hash=content_hash, package=manifest.package, dependencies=manifest.dependencies)

    @staticmethod
    def from_record(obj: Any) -> "DBPackage":
        if not isinstance(obj, dict) or not obj.get("hash"):
            raise ValueError("registro sem 'hash'")
        return DBPackage(
            hash=str(obj["hash"]),
            package=PackageInfo.from_recipe(obj.get("package")),
            dependencies=Dependencies.from_recipe(obj.get("dependencies")),
        )

    def to_record(self) -> Dict[str, Any]:
        return {
            "hash": self.hash,
            "package": self.package.to_dict(),
            "dependencies": self.dependencies.to_dict(),
        }
