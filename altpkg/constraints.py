"""
Restrições de versão semântica.

Traduz a gramática usual de ranges semver para SpecifierSet (PEP 440) e
delega a comparação ao `packaging`:

  - comparações: =, ==, !=, >, >=, =>, <, <=, =<
  - ^1.2.3  -> >=1.2.3,<2.0.0   (^0.2.3 -> <0.3.0, ^0.0.3 -> <0.0.4)
  - ~1.2.3  -> >=1.2.3,<1.3.0   (~> é sinônimo)
  - curingas: 1.2.x, 1.*, *
  - hífen:    1.2.3 - 2.0.0 -> >=1.2.3,<=2.0.0
  - AND por vírgula ou espaço, OR por '||'
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import List, Optional, Tuple

from packaging.specifiers import InvalidSpecifier, SpecifierSet
from packaging.version import InvalidVersion, Version

_WILDCARDS = ("x", "X", "*")

_PARTIAL_RE = re.compile(
    r"^v?(?P<major>\d+|[xX*])"
    r"(?:\.(?P<minor>\d+|[xX*]))?"
    r"(?:\.(?P<patch>\d+|[xX*]))?"
    r"(?:-(?P<pre>[0-9A-Za-z.-]+))?"
    r"(?:\+[0-9A-Za-z.-]+)?$"
)
_SEMVER_RE = re.compile(
    r"^v?(?P<major>\d+)(?:\.(?P<minor>\d+))?(?:\.(?P<patch>\d+))?"
    r"(?:-(?P<pre>[0-9A-Za-z.-]+))?"
    r"(?:\+[0-9A-Za-z.-]+)?$"
)
_PRE_TAGS = {
    "alpha": "a", "a": "a",
    "beta": "b", "b": "b",
    "rc": "rc", "c": "rc", "pre": "rc", "preview": "rc",
}
_CLAUSE_RE = re.compile(r"^(?P<op>\^|~>|~|>=|=>|<=|=<|!=|==|>|<|=)?\s*(?P<ver>\S+)$")
_HYPHEN_RE = re.compile(r"(\S+)\s+-\s+(\S+)")
_OP_SPACE_RE = re.compile(r"(\^|~>|~|>=|=>|<=|=<|!=|==|>|<|=)\s+")


class ConstraintError(ValueError):
    pass


@dataclass(frozen=True)
class _Partial:
    major: Optional[int]
    minor: Optional[int]
    patch: Optional[int]
    pre: Optional[str]

    @property
    def is_any(self) -> bool:
        return self.major is None

    def floor(self) -> str:
        s = f"{self.major or 0}.{self.minor or 0}.{self.patch or 0}"
        if self.pre and self.patch is not None:
            s += "-" + self.pre
        return pep440(s)


def _parse_partial(text: str) -> _Partial:
    m = _PARTIAL_RE.match(text)
    if not m:
        raise ConstraintError(f"versão inválida na restrição: {text!r}")
    parts: List[Optional[int]] = []
    wildcard = False
    for key in ("major", "minor", "patch"):
        raw = m.group(key)
        if raw is None or raw in _WILDCARDS or wildcard:
            wildcard = True
            parts.append(None)
        else:
            parts.append(int(raw))
    return _Partial(parts[0], parts[1], parts[2], m.group("pre"))


def _pre_segment(pre: str) -> str:
    # um prerelease semver é sempre menor que a versão final: nunca vira post/local
    head = re.match(r"[A-Za-z]*", pre.split(".", 1)[0]).group(0).lower()
    digits = re.findall(r"\d+", pre)
    n = digits[-1] if digits else "0"
    tag = _PRE_TAGS.get(head)
    if tag:
        return f"{tag}{n}"
    return f".dev{n}"


def pep440(version: str) -> str:
    """
    Normaliza uma versão semver para a forma PEP 440 (sem build metadata).

    1.0.0-alpha.1 -> 1.0.0a1, 1.0.0-rc.2 -> 1.0.0rc2; qualquer outro
    prerelease (1.0.0-1, 1.0.0-r1, 1.0.0-foo.3) vira .devN.
    """
    v = version.strip()
    m = _SEMVER_RE.match(v)
    if m:
        core = ".".join(p for p in (m.group("major"), m.group("minor"), m.group("patch")) if p is not None)
        pre = m.group("pre")
        return str(Version(core + (_pre_segment(pre) if pre else "")))
    if "-" not in v:
        # forma PEP 440 explícita (1.0a1, 1.0.post2)
        try:
            return str(Version(v.lstrip("v").split("+", 1)[0]))
        except InvalidVersion:
            pass
    raise ConstraintError(f"versão inválida: {version!r}")


def parse_version(version: str) -> Version:
    return Version(pep440(version))


def _bump(p: _Partial, level: str) -> str:
    if level == "major":
        return f"{(p.major or 0) + 1}.0.0"
    if level == "minor":
        return f"{p.major}.{(p.minor or 0) + 1}.0"
    return f"{p.major}.{p.minor}.{(p.patch or 0) + 1}"


def _wildcard_upper(p: _Partial) -> str:
    # limite superior exclusivo do intervalo coberto por uma versão parcial
    if p.minor is None:
        return _bump(p, "major")
    if p.patch is None:
        return _bump(p, "minor")
    return _bump(p, "patch")


def _translate_clause(op: str, p: _Partial) -> List[str]:
    if p.is_any:
        if op in ("", "=", "==", ">=", "=>", "<=", "=<", "^", "~", "~>"):
            return []
        # >*, <*, !=* não casam nada
        return ["<0.0.0.dev0"]

    partial = p.minor is None or p.patch is None
    lo = p.floor()

    if op == "^":
        if p.major != 0 or p.minor is None:
            hi = _bump(p, "major")
        elif p.minor != 0 or p.patch is None:
            hi = _bump(p, "minor")
        else:
            hi = _bump(p, "patch")
        return [f">={lo}", f"<{hi}"]
    if op in ("~", "~>"):
        hi = _bump(p, "major") if p.minor is None else _bump(p, "minor")
        return [f">={lo}", f"<{hi}"]
    if op in ("", "=", "=="):
        if partial:
            return [f">={lo}", f"<{_wildcard_upper(p)}"]
        return [f"=={lo}"]
    if op == "!=":
        if partial:
            stars = ".".join(str(x) for x in (p.major, p.minor) if x is not None)
            return [f"!={stars}.*"]
        return [f"!={lo}"]
    if op == ">":
        return [f">={_wildcard_upper(p)}"] if partial else [f">{lo}"]
    if op in (">=", "=>"):
        return [f">={lo}"]
    if op == "<":
        return [f"<{lo}"]
    if op in ("<=", "=<"):
        return [f"<{_wildcard_upper(p)}"] if partial else [f"<={lo}"]
    raise ConstraintError(f"operador desconhecido: {op!r}")


def _translate_and(expr: str) -> SpecifierSet:
    expr = _HYPHEN_RE.sub(r">=\1 <=\2", expr)
    expr = _OP_SPACE_RE.sub(r"\1", expr)
    clauses: List[str] = []
    for token in re.split(r"[,\s]+", expr.strip()):
        if not token:
            continue
        m = _CLAUSE_RE.match(token)
        if not m:
            raise ConstraintError(f"restrição inválida: {token!r}")
        clauses.extend(_translate_clause(m.group("op") or "", _parse_partial(m.group("ver"))))
    try:
        return SpecifierSet(",".join(clauses))
    except InvalidSpecifier as e:
        raise ConstraintError(str(e))


@lru_cache(maxsize=256)
def compile_constraint(expression: str) -> Tuple[SpecifierSet, ...]:
    """Compila uma expressão em uma tupla de SpecifierSet (OR entre eles)."""
    if not expression or not expression.strip():
        raise ConstraintError("restrição vazia")
    branches = expression.split("||")
    if any(not b.strip() for b in branches):
        raise ConstraintError(f"alternativa vazia em {expression!r}")
    return tuple(_translate_and(branch) for branch in branches)


def check_constraint(installed_version: str, expression: str) -> bool:
    version = parse_version(installed_version)
    return any(spec.contains(version) for spec in compile_constraint(expression))
