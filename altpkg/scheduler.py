"""
Agendador do lote: instala cada vértice só depois de todas as suas
dependências no lote, e em paralelo tudo o que não depende entre si.

Um loop despachante começa pelos sinks; quando um vértice termina, os seus
dependentes (pais) entram na fila. Cada worker reivindica o seu vértice
(pedidos repetidos para o mesmo vértice retornam sem fazer nada) e espera
na condition até que todos os filhos estejam `done`, reavaliando o próprio
predicado a cada broadcast.
"""
from __future__ import annotations

import logging
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Callable, Dict, Generic, Hashable, List, Set, TypeVar

from .errors import DependencyAborted
from .graph import DependencyGraph

log = logging.getLogger("altpkg.scheduler")

UNSTARTED = "unstarted"
WORKING = "working"
DONE = "done"
FAILED = "failed"

K = TypeVar("K", bound=Hashable)


class BatchScheduler(Generic[K]):
    def __init__(self, graph: DependencyGraph, work: Callable[[K], None]) -> None:
        self.graph = graph
        self._work = work
        self._cond = threading.Condition()
        self._state: Dict[K, str] = {k: UNSTARTED for k in graph}
        self._aborted = False
        self._errors: List[BaseException] = []

    def state(self, key: K) -> str:
        with self._cond:
            return self._state[key]

    def states(self) -> Dict[K, str]:
        with self._cond:
            return dict(self._state)

    def _fail(self, key: K, exc: BaseException) -> None:
        with self._cond:
            self._state[key] = FAILED
            self._aborted = True
            self._errors.append(exc)
            self._cond.notify_all()

    def _blocker(self, children: List[K]):
        # filho que nunca vai terminar: falhou, ou o lote abortou antes dele começar
        for c in children:
            st = self._state[c]
            if st == FAILED or (self._aborted and st == UNSTARTED):
                return c
        return None

    def _worker(self, key: K) -> List[K]:
        with self._cond:
            if self._aborted or self._state[key] != UNSTARTED:
                return []
            self._state[key] = WORKING
            children = self.graph.children(key)
            while not all(self._state[c] == DONE for c in children):
                blocker = self._blocker(children)
                if blocker is not None:
                    exc = DependencyAborted(key, blocker)
                    self._state[key] = FAILED
                    self._errors.append(exc)
                    self._cond.notify_all()
                    raise exc
                self._cond.wait()

        log.debug("Iniciando %s", key)
        try:
            self._work(key)
        except BaseException as e:
            self._fail(key, e)
            raise

        with self._cond:
            self._state[key] = DONE
            self._cond.notify_all()
        log.debug("Concluído %s", key)
        return self.graph.parents(key)

    def run(self) -> None:
        """Roda o lote inteiro; propaga o primeiro erro ocorrido."""
        if not len(self.graph):
            return
        sinks = self.graph.sinks()
        log.debug("Sinks: %s", ", ".join(str(s) for s in sinks))

        # um thread por vértice no máximo: concorrência = largura do grafo
        with ThreadPoolExecutor(max_workers=len(self.graph), thread_name_prefix="altpkg") as pool:
            pending: Set[Future] = {pool.submit(self._worker, k) for k in sinks}
            while pending:
                done, pending = wait(pending, return_when=FIRST_COMPLETED)
                for fut in done:
                    if fut.exception() is not None:
                        continue
                    with self._cond:
                        if self._aborted:
                            continue
                    for parent in fut.result():
                        pending.add(pool.submit(self._worker, parent))

        if self._errors:
            first = self._errors[0]
            for other in self._errors[1:]:
                log.debug("Erro adicional no lote: %s", other)
            raise first
