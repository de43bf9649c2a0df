"""Execução dos hooks de ciclo de vida (pre/post install/remove)."""
from __future__ import annotations

import logging
import os
import subprocess
import threading
from pathlib import Path
from typing import Dict, Optional

from .errors import HookFailed
from .materialize import is_relative_to
from .models import Manifest

log = logging.getLogger("altpkg.hooks")


class HookRunner:
    """
    Roda hooks com stdin/stdout/stderr herdados e cwd no diretório do pacote.

    Todas as execuções, de todos os pacotes do lote, passam pelo mesmo mutex:
    hooks podem mexer em estado global do sistema e não podem se intercalar.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self._mutex = threading.Lock()

    def _env(self, manifest: Optional[Manifest], hook: str) -> Dict[str, str]:
        env = os.environ.copy()
        env["ALTPKG_ROOT"] = str(self.root)
        env["ALTPKG_HOOK"] = hook
        if manifest is not None:
            env["ALTPKG_PACKAGE"] = manifest.name
            env["ALTPKG_VERSION"] = manifest.version
        return env

    def run(self, installation_path: Path, rel_path: str, hook: str = "hook",
            manifest: Optional[Manifest] = None) -> None:
        if not rel_path:
            return
        installation_path = Path(installation_path)
        script = installation_path / rel_path
        if not is_relative_to(Path(os.path.abspath(script)), Path(os.path.abspath(installation_path))):
            raise HookFailed(hook, -1, f"caminho fora do pacote: {rel_path}")
        if not script.is_file():
            raise HookFailed(hook, -1, f"script não encontrado: {rel_path}")

        with self._mutex:
            who = manifest.package.ident if manifest is not None else installation_path.name
            log.info("Executando hook %s de %s: %s", hook, who, rel_path)
            try:
                os.chmod(script, 0o755)
                proc = subprocess.run(
                    [str(script.resolve())],
                    cwd=str(installation_path),
                    env=self._env(manifest, hook),
                )
            except OSError as e:
                raise HookFailed(hook, -1, str(e))
        if proc.returncode != 0:
            raise HookFailed(hook, proc.returncode)

    def run_named(self, installation_path: Path, manifest: Manifest, hook: str) -> None:
        self.run(installation_path, manifest.hooks.get(hook), hook=hook, manifest=manifest)
