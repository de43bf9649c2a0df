"""
Instalação e remoção de pacotes.

Instalação em lote:
  1. inspeção de todos os arquivos (sequencial, mutex do DB);
  2. arestas: cada dependência é resolvida contra o DB e o lote; qualquer
     erro aborta o lote antes de qualquer efeito colateral;
  3. agendamento pelo grafo (ver scheduler.py).

Não há rollback entre etapas nem entre pacotes: um pacote concluído antes
de uma falha continua instalado.
"""
from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from .archive import ArchiveStore, content_hash, inspect_archive
from .db import PackageDB
from .errors import AlreadyInstalled, DependentExists, DuplicatePackage, NotFound, PackageIOError
from .graph import DependencyGraph
from .hooks import HookRunner
from .materialize import install_files, remove_files
from .models import DBPackage, Manifest
from .resolver import BATCH, Candidate, check_installed, resolve_dependency
from .scheduler import BatchScheduler

log = logging.getLogger("altpkg.installer")


@dataclass(frozen=True)
class BatchPlan:
    graph: DependencyGraph  # chave: caminho do arquivo, valor: Manifest

    def order(self) -> List[str]:
        return self.graph.topological_order()

    def manifest(self, key: str) -> Manifest:
        return self.graph.value(key)


class Installer:
    def __init__(self, db: PackageDB, hooks: Optional[HookRunner] = None) -> None:
        self.db = db
        self.store = ArchiveStore(db.layout)
        self.hooks = hooks or HookRunner(db.root)

    @property
    def root(self) -> Path:
        return self.db.root

    # ----------------------------
    # Lote
    # ----------------------------

    def plan(self, archives: Iterable[Path]) -> BatchPlan:
        """Inspeção + arestas. Só valida; nada é escrito no disco."""
        graph: DependencyGraph = DependencyGraph()
        candidates: Dict[str, Candidate] = {}

        with self.db.mutex:
            for archive in archives:
                key = str(archive)
                if key in graph:
                    log.warning("Arquivo repetido no lote, ignorando: %s", key)
                    continue
                manifest = inspect_archive(Path(archive))
                other = candidates.get(manifest.name)
                if other is not None:
                    raise DuplicatePackage(manifest.name, other.key, key)
                graph.add_vertex(key, manifest)
                candidates[manifest.name] = Candidate(key=key, manifest=manifest)
                log.debug("Inspecionado %s: %s", key, manifest.package.ident)

            registry = self.db.snapshot()

        for key in list(graph):
            manifest: Manifest = graph.value(key)
            for spec in manifest.dependencies.specs():
                res = resolve_dependency(spec, registry, candidates, requester=manifest.package.ident)
                if res.source == BATCH:
                    graph.add_edge(key, res.vertex)
                    log.debug("%s -> %s (%s)", manifest.name, spec.name, res.version)
                else:
                    log.debug("%s: %s satisfeita pelo DB (%s)", manifest.name, spec.raw, res.version)
        return BatchPlan(graph=graph)

    def install_batch(self, archives: Iterable[Path]) -> List[str]:
        """Instala o lote; retorna os nomes na ordem topológica."""
        plan = self.plan(archives)
        order = plan.order()
        log.info("Ordem de instalação: %s", ", ".join(plan.manifest(k).package.ident for k in order))

        def work(key: str) -> None:
            self.install_archive(Path(key), manifest=plan.manifest(key))

        BatchScheduler(plan.graph, work).run()
        return [plan.manifest(k).name for k in order]

    # ----------------------------
    # Pacote único
    # ----------------------------

    def install_archive(self, archive: Path, manifest: Optional[Manifest] = None) -> DBPackage:
        """
        hash -> colisão de nome -> extração -> revalidação de dependências ->
        preinstall -> arquivos -> commit no DB -> postinstall.
        """
        archive = Path(archive)
        digest = content_hash(archive)
        if manifest is None:
            manifest = inspect_archive(archive)
        name = manifest.name
        if name in self.db:
            raise AlreadyInstalled(name)

        pkg_dir = self.store.extract(archive, digest)
        manifest = self.store.read_manifest(digest)
        if manifest.name != name:
            raise PackageIOError(f"Conteúdo de {archive} mudou durante a instalação")

        # outro worker pode ter alterado o DB desde a montagem do grafo
        with self.db.mutex:
            check_installed(manifest, self.db.snapshot())

        self.hooks.run_named(pkg_dir, manifest, "preinstall")
        n = install_files(self.root, pkg_dir, manifest.files)
        log.debug("%s: %d arquivo(s) linkado(s)", manifest.package.ident, n)

        entry = DBPackage.from_manifest(digest, manifest)
        self.db.commit(entry)

        self.hooks.run_named(pkg_dir, manifest, "postinstall")
        log.info("Instalado %s", manifest.package.ident)
        return entry

    def remove(self, name: str, force: bool = False) -> DBPackage:
        """
        Existe? -> ninguém depende (a menos de force) -> preremove ->
        arquivos -> postremove -> store -> DB.
        """
        with self.db.mutex:
            entry = self.db.get(name)
            if entry is None:
                raise NotFound(name)
            dependents = self.db.dependents_of(name)
        if dependents:
            if not force:
                raise DependentExists(name, dependents)
            log.warning("Removendo %s mesmo com dependentes (--force): %s", name, ", ".join(dependents))

        pkg_dir = self.store.path_for(entry.hash)
        manifest = self.store.read_manifest(entry.hash)

        self.hooks.run_named(pkg_dir, manifest, "preremove")
        n = remove_files(self.root, pkg_dir, manifest.files)
        log.debug("%s: %d arquivo(s) removido(s)", entry.package.ident, n)
        self.hooks.run_named(pkg_dir, manifest, "postremove")

        if self.db.hash_in_use(entry.hash, exclude=name):
            log.info("Store %s ainda em uso, mantido", entry.hash[:12])
        else:
            try:
                shutil.rmtree(pkg_dir)
            except FileNotFoundError:
                pass
            except OSError as e:
                raise PackageIOError(f"Falha ao remover {pkg_dir}: {e}")

        self.db.delete(name)
        log.info("Removido %s", entry.package.ident)
        return entry

    # ----------------------------
    # Consultas
    # ----------------------------

    def installed(self) -> List[DBPackage]:
        snap = self.db.snapshot()
        return [snap[n] for n in sorted(snap)]

    def describe(self, name: str) -> Tuple[DBPackage, Manifest]:
        entry = self.db.get(name)
        if entry is None:
            raise NotFound(name)
        return entry, self.store.read_manifest(entry.hash)
