"""
Erros do altpkg.

Toda falha propagada ao usuário é uma subclasse de PackageError; a CLI
captura essa base, imprime a mensagem e sai com código != 0.
"""
from __future__ import annotations

from typing import Optional


class PackageError(Exception):
    """Base de todos os erros do gerenciador."""


class AlreadyLocked(PackageError):
    def __init__(self, lock_path) -> None:
        super().__init__(f"Banco de dados já travado: {lock_path}")
        self.lock_path = lock_path


class PackageIOError(PackageError):
    """Falha de I/O no filesystem ou no arquivo do pacote."""


class RegistryError(PackageIOError):
    """db.yml ilegível ou corrompido."""


class FileConflict(PackageIOError):
    def __init__(self, path) -> None:
        super().__init__(f"Conflito: {path} já existe no root")
        self.path = path


class CorruptArchive(PackageError):
    pass


class InvalidManifest(CorruptArchive):
    pass


class ManifestNotFound(CorruptArchive):
    def __init__(self, archive) -> None:
        super().__init__(f"package.yml não encontrado em {archive}")
        self.archive = archive


class InvalidDependencySpec(PackageError):
    def __init__(self, spec: str, reason: str = "esperado formato 'nome@restrição'") -> None:
        super().__init__(f"Dependência inválida {spec!r}: {reason}")
        self.spec = spec


class DependencyNotFound(PackageError):
    def __init__(self, spec: str, requester: Optional[str] = None) -> None:
        msg = f"Dependência não encontrada: {spec}"
        if requester:
            msg += f" (exigida por {requester})"
        super().__init__(msg)
        self.spec = spec
        self.requester = requester


class UnmetConstraint(PackageError):
    def __init__(self, name: str, required: str, found: str) -> None:
        super().__init__(
            f"Restrição de versão para {name} não satisfeita: exigido {required}, encontrado {found}"
        )
        self.name = name
        self.required = required
        self.found = found


class AlreadyInstalled(PackageError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Pacote já instalado com o nome {name}")
        self.name = name


class DuplicatePackage(AlreadyInstalled):
    def __init__(self, name: str, first, second) -> None:
        PackageError.__init__(self, f"Pacote {name} aparece duas vezes no lote: {first} e {second}")
        self.name = name


class NotFound(PackageError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Pacote não instalado: {name}")
        self.name = name


class DependentExists(PackageError):
    def __init__(self, name: str, dependents) -> None:
        dependents = sorted(dependents)
        super().__init__(f"Não é possível remover {name}: exigido por {', '.join(dependents)}")
        self.name = name
        self.dependents = dependents


class HookFailed(PackageError):
    def __init__(self, hook: str, exit_status: int, detail: str = "") -> None:
        msg = f"Hook {hook} falhou (exit={exit_status})"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)
        self.hook = hook
        self.exit_status = exit_status


class CycleDetected(PackageError):
    def __init__(self, path) -> None:
        super().__init__("Ciclo de dependências detectado: " + " -> ".join(str(p) for p in path))
        self.path = list(path)


class DependencyAborted(PackageError):
    """Vértice não instalado porque uma dependência falhou ou o lote abortou."""

    def __init__(self, vertex, dependency) -> None:
        super().__init__(f"{vertex} não instalado: dependência {dependency} não concluída")
        self.vertex = vertex
        self.dependency = dependency
