"""
Kernel Boundary & Invariants Contract.

1. lending_kernel/** may NOT import lending_config or scripts.  The kernel
   never depends upward.
2. Selectors never import services, and services never commit (only the
   InventoryCoordinator owns transaction boundaries).
3. The invariants declaration is complete and non-empty.

These tests read source code via AST -- they cannot break anything.
"""

import ast
from pathlib import Path

from lending_kernel.invariants import (
    ALL_LENDING_INVARIANTS,
    FORBIDDEN_KERNEL_IMPORTS,
    LendingInvariant,
)

ROOT = Path(__file__).resolve().parents[2]
KERNEL = ROOT / "lending_kernel"


def _python_files(root: Path) -> list[Path]:
    return sorted(root.rglob("*.py"))


def _extract_imports(path: Path) -> list[tuple[int, str]]:
    tree = ast.parse(path.read_text(encoding="utf-8"), filename=str(path))
    results: list[tuple[int, str]] = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                results.append((node.lineno, alias.name))
        elif isinstance(node, ast.ImportFrom) and node.module:
            results.append((node.lineno, node.module))
    return results


def _calls_method(path: Path, method: str) -> list[int]:
    tree = ast.parse(path.read_text(encoding="utf-8"), filename=str(path))
    return [
        node.lineno
        for node in ast.walk(tree)
        if isinstance(node, ast.Call)
        and isinstance(node.func, ast.Attribute)
        and node.func.attr == method
    ]


class TestKernelNoUpwardDependencies:
    def test_kernel_does_not_import_forbidden_packages(self):
        violations = [
            f"{path.relative_to(ROOT)}:{lineno} imports '{module}'"
            for path in _python_files(KERNEL)
            for lineno, module in _extract_imports(path)
            for prefix in FORBIDDEN_KERNEL_IMPORTS
            if module == prefix or module.startswith(f"{prefix}.")
        ]
        assert not violations, "\n".join(violations)

    def test_selectors_do_not_import_services(self):
        violations = [
            f"{path.relative_to(ROOT)}:{lineno} imports '{module}'"
            for path in _python_files(KERNEL / "selectors")
            for lineno, module in _extract_imports(path)
            if module.startswith("lending_kernel.services")
        ]
        assert not violations, "\n".join(violations)


class TestTransactionOwnership:
    def test_only_the_coordinator_commits(self):
        violations = []
        for path in _python_files(KERNEL / "services"):
            if path.name == "inventory_coordinator.py":
                continue
            for lineno in _calls_method(path, "commit"):
                # savepoint.commit() is allowed; session.commit() is not
                source_line = path.read_text(encoding="utf-8").splitlines()[lineno - 1]
                if "session.commit" in source_line:
                    violations.append(f"{path.relative_to(ROOT)}:{lineno}")
        assert not violations, "\n".join(violations)

    def test_selectors_never_flush_or_add(self):
        violations = []
        for path in _python_files(KERNEL / "selectors"):
            for method in ("add", "flush", "commit", "delete"):
                for lineno in _calls_method(path, method):
                    violations.append(f"{path.relative_to(ROOT)}:{lineno} calls {method}")
        assert not violations, "\n".join(violations)


class TestInvariantsDeclaration:
    def test_declaration_is_complete(self):
        assert len(ALL_LENDING_INVARIANTS) == len(LendingInvariant) >= 5
        assert LendingInvariant.SINGLE_ACTIVE_LOAN in ALL_LENDING_INVARIANTS

    def test_values_are_stable_identifiers(self):
        for invariant in LendingInvariant:
            assert invariant.value == invariant.name.lower()

    def test_single_active_loan_index_is_declared(self):
        from lending_kernel.models.loan import Loan

        index = next(i for i in Loan.__table__.indexes if i.name == "uq_loan_active_copy")
        assert index.unique
        assert [c.name for c in index.columns] == ["copy_id"]
