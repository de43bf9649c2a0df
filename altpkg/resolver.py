"""
Resolução de dependências 'nome@restrição' contra o DB e contra os demais
membros do lote.

Dependências opcionais passam pela mesma resolução das obrigatórias e uma
opcional não satisfeita também aborta o lote.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Hashable, Mapping, Optional, Union

from .constraints import ConstraintError, check_constraint
from .errors import DependencyNotFound, InvalidDependencySpec, UnmetConstraint
from .models import DBPackage, DependencySpec, Manifest

log = logging.getLogger("altpkg.resolver")

REGISTRY = "registry"
BATCH = "batch"


@dataclass(frozen=True)
class Candidate:
    """Membro do lote: chave do vértice + manifesto inspecionado."""

    key: Hashable
    manifest: Manifest


@dataclass(frozen=True)
class Resolution:
    spec: DependencySpec
    source: str
    version: str
    vertex: Optional[Hashable] = None


def satisfies(name: str, version: str, spec: DependencySpec) -> None:
    try:
        ok = check_constraint(version, spec.constraint)
    except ConstraintError as e:
        raise InvalidDependencySpec(spec.raw, str(e))
    if not ok:
        raise UnmetConstraint(name, required=spec.constraint, found=version)


def resolve_dependency(
    spec: Union[str, DependencySpec],
    registry: Mapping[str, DBPackage],
    candidates: Optional[Mapping[str, Candidate]] = None,
    requester: Optional[str] = None,
) -> Resolution:
    """
    1. DB primeiro: a versão instalada precisa satisfazer a restrição.
    2. Depois o lote: idem para a versão declarada do candidato.
    3. Senão, DependencyNotFound.
    """
    if isinstance(spec, str):
        spec = DependencySpec.parse(spec)

    installed = registry.get(spec.name)
    if installed is not None:
        satisfies(spec.name, installed.version, spec)
        return Resolution(spec=spec, source=REGISTRY, version=installed.version)

    cand = (candidates or {}).get(spec.name)
    if cand is not None:
        satisfies(spec.name, cand.manifest.version, spec)
        return Resolution(spec=spec, source=BATCH, version=cand.manifest.version, vertex=cand.key)

    raise DependencyNotFound(spec.raw, requester=requester)


def check_installed(manifest: Manifest, registry: Mapping[str, DBPackage]) -> None:
    """Revalida todas as dependências contra o DB atual (só o DB conta aqui)."""
    for spec in manifest.dependencies.specs():
        resolve_dependency(spec, registry, None, requester=manifest.package.ident)
