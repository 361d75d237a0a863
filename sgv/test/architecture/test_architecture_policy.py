"""Import and process-spawning boundaries of the ``sgv`` package.

Advisory: skipped unless ``SGV_ARCH_CHECKS=1``.
"""

from __future__ import annotations

import ast
import os
from dataclasses import dataclass
from pathlib import Path

import pytest


@dataclass(frozen=True, slots=True)
class ImportRef:
    module: str
    line: int


def _require_arch_checks_enabled() -> None:
    if os.getenv("SGV_ARCH_CHECKS") != "1":
        pytest.skip("architecture checks are advisory; set SGV_ARCH_CHECKS=1 to enable")


def _sgv_root() -> Path:
    return Path(__file__).resolve().parents[2]


def _source_files() -> list[tuple[str, Path]]:
    root = _sgv_root()
    files: list[tuple[str, Path]] = []
    for path in sorted(root.rglob("*.py")):
        rel = path.relative_to(root)
        if rel.parts[0] == "test" or "__pycache__" in rel.parts:
            continue
        files.append((rel.as_posix(), path))
    return files


def _read_tree(path: Path) -> ast.AST:
    return ast.parse(path.read_text(encoding="utf-8"), filename=str(path))


def _imports(tree: ast.AST) -> list[ImportRef]:
    refs: list[ImportRef] = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            refs.extend(ImportRef(alias.name, node.lineno) for alias in node.names)
        elif isinstance(node, ast.ImportFrom) and node.module and node.level == 0:
            refs.append(ImportRef(node.module, node.lineno))
    return refs


def _is_module(name: str, package: str) -> bool:
    return name == package or name.startswith(package + ".")


# =============================================================================
# Policies
# =============================================================================


def test_subprocess_only_in_platform_process() -> None:
    _require_arch_checks_enabled()

    offenders: list[str] = []
    for rel, path in _source_files():
        if rel == "platform/process.py":
            continue
        for ref in _imports(_read_tree(path)):
            if _is_module(ref.module, "subprocess"):
                offenders.append(f"{rel}:{ref.line}: imports subprocess")

    assert not offenders, "Subprocess policy violations:\n" + "\n".join(offenders)


def test_rich_only_in_output() -> None:
    _require_arch_checks_enabled()

    offenders: list[str] = []
    for rel, path in _source_files():
        if rel.startswith("output/"):
            continue
        for ref in _imports(_read_tree(path)):
            if _is_module(ref.module, "rich"):
                offenders.append(f"{rel}:{ref.line}: direct rich import '{ref.module}'")

    assert not offenders, "Direct rich usage policy violations:\n" + "\n".join(offenders)


def test_services_do_not_import_cli() -> None:
    _require_arch_checks_enabled()

    offenders: list[str] = []
    for rel, path in _source_files():
        if rel.startswith("cli/"):
            continue
        for ref in _imports(_read_tree(path)):
            if _is_module(ref.module, "sgv.cli") or _is_module(ref.module, "typer"):
                offenders.append(f"{rel}:{ref.line}: imports '{ref.module}'")

    assert not offenders, "Layering violations:\n" + "\n".join(offenders)
