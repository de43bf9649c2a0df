"""Interface de linha de comando: altpkg [--root DIR] <comando> ..."""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from . import __version__
from .archive import content_hash, inspect_archive
from .config import DEFAULT_ROOT
from .db import PackageDB
from .errors import PackageError
from .installer import Installer
from .models import Manifest
from .term import err, ok, render_table, set_color_enabled

log = logging.getLogger("altpkg")


def _print_manifest(manifest: Manifest, content_digest: Optional[str] = None) -> None:
    pkg = manifest.package
    print(f"{pkg.name}@{pkg.version}")
    print(pkg.description)
    if content_digest:
        print(f"hash: {content_digest}")
    print()
    print("Authors:")
    for a in pkg.authors:
        print(a)
    print()
    print("Maintainers:")
    for m in pkg.maintainers:
        print(m)
    print()
    print("Dependencies:")
    for d in manifest.dependencies.required:
        print(d)
    print()
    print("Optional Dependencies:")
    for d in manifest.dependencies.optional:
        print(d)


def cmd_install(args: argparse.Namespace) -> int:
    with PackageDB.open(args.root, reclaim_stale=args.break_stale_lock) as db:
        inst = Installer(db)
        if args.dry_run:
            plan = inst.plan(Path(p) for p in args.files)
            for key in plan.order():
                print(f"{plan.manifest(key).package.ident}  {key}")
            return 0
        names = inst.install_batch(Path(p) for p in args.files)
    log.info("%d pacote(s) instalado(s)", len(names))
    return 0


def cmd_remove(args: argparse.Namespace) -> int:
    with PackageDB.open(args.root, reclaim_stale=args.break_stale_lock) as db:
        Installer(db).remove(args.name, force=args.force)
    return 0


def cmd_list(args: argparse.Namespace) -> int:
    with PackageDB.open(args.root, reclaim_stale=args.break_stale_lock) as db:
        entries = Installer(db).installed()
    if not entries:
        print("(nenhum)")
        return 0
    print(render_table([(e.package.ident, e.hash) for e in entries]))
    return 0


def cmd_info(args: argparse.Namespace) -> int:
    target = Path(args.target)
    if target.exists():
        _print_manifest(inspect_archive(target))
        return 0
    with PackageDB.open(args.root, reclaim_stale=args.break_stale_lock) as db:
        entry, manifest = Installer(db).describe(args.target)
    _print_manifest(manifest, content_digest=entry.hash)
    return 0


def cmd_verify(args: argparse.Namespace) -> int:
    if content_hash(Path(args.file)) == args.checksum.strip().lower():
        ok("Checksums conferem")
        return 0
    err("Checksums não conferem")
    return 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="altpkg",
        description="Backend de gerenciador de pacotes (instalação em lote por grafo de dependências).",
    )
    parser.add_argument("--root", type=Path, default=DEFAULT_ROOT,
                        help=f"Diretório root do altpkg (padrão: {DEFAULT_ROOT}; env ALTPKG_ROOT)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Mais logs")
    parser.add_argument("--no-color", action="store_true", help="Desativa cores (também respeita NO_COLOR).")
    parser.add_argument("--break-stale-lock", action="store_true",
                        help="Recupera um db.lock deixado por um processo que morreu")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_i = sub.add_parser("install", aliases=["i"], help="Instala um ou mais pacotes (em lote)")
    p_i.add_argument("files", nargs="+", help="Arquivos de pacote (.tar, .tar.xz, ...)")
    p_i.add_argument("-n", "--dry-run", action="store_true", help="Só mostra a ordem de instalação")
    p_i.set_defaults(func=cmd_install)

    p_r = sub.add_parser("remove", aliases=["r"], help="Remove um pacote")
    p_r.add_argument("name")
    p_r.add_argument("--force", action="store_true", help="Remove mesmo se outros pacotes dependem dele")
    p_r.set_defaults(func=cmd_remove)

    p_l = sub.add_parser("list", aliases=["l"], help="Lista pacotes instalados")
    p_l.set_defaults(func=cmd_list)

    p_in = sub.add_parser("info", aliases=["in"], help="Informações de um arquivo ou pacote instalado")
    p_in.add_argument("target", help="Arquivo de pacote ou nome instalado")
    p_in.set_defaults(func=cmd_info)

    p_v = sub.add_parser("verify", help="Compara o sha256 de um arquivo com o esperado")
    p_v.add_argument("file")
    p_v.add_argument("checksum")
    p_v.set_defaults(func=cmd_verify)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    set_color_enabled(not args.no_color)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )
    try:
        return args.func(args)
    except KeyboardInterrupt:
        err("Interrompido.")
        return 130
    except PackageError as e:
        err(str(e))
        return 1
    except OSError as e:
        err(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
