"""
Import-boundary enforcement for the returns engine packages.

1. Kernel isolation    - pharmacy_kernel/** may not import engines,
                         services or config.
2. Engine purity       - pharmacy_engines/** may import only the kernel's
                         domain layer; no ORM, DB drivers or store.
3. Engine no-impure    - pharmacy_engines/** may not read the wall clock or
                         the environment.
4. Config isolation    - pharmacy_config/** imports none of our packages.
5. Config entrypoint   - only the ReturnsService facade imports
                         pharmacy_config inside pharmacy_services.

All scanning is done via AST; these tests are read-only.
"""

import ast
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _python_files(package: str) -> list[Path]:
    """Return all .py files under *package*, sorted for deterministic order."""
    return sorted((ROOT / package).rglob("*.py"))


def _extract_imports(filepath: Path) -> list[tuple[int, str]]:
    """Return (line_number, module_string) for every import in *filepath*."""
    tree = ast.parse(filepath.read_text(), filename=str(filepath))

    results: list[tuple[int, str]] = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                results.append((node.lineno, alias.name))
        elif isinstance(node, ast.ImportFrom):
            if node.module:
                results.append((node.lineno, node.module))
    return results


def _matches_any(module: str, prefixes: tuple[str, ...]) -> bool:
    """True if *module* equals or is a child of any prefix."""
    for prefix in prefixes:
        if module == prefix or module.startswith(f"{prefix}."):
            return True
    return False


def _violations(package: str, forbidden: tuple[str, ...]) -> list[str]:
    found: list[str] = []
    for filepath in _python_files(package):
        for lineno, module in _extract_imports(filepath):
            if _matches_any(module, forbidden):
                found.append(f"  {filepath.relative_to(ROOT)}:{lineno} imports '{module}'")
    return found


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------

class TestKernelIsolation:
    """The kernel sits at the bottom of the dependency graph."""

    def test_kernel_imports_nothing_above_it(self):
        violations = _violations(
            "pharmacy_kernel", ("pharmacy_engines", "pharmacy_services", "pharmacy_config"),
        )

        assert not violations, (
            "pharmacy_kernel/** must not import engines, services or config:\n"
            + "\n".join(violations)
        )


class TestEnginePurity:
    """Engines are pure calculations over kernel domain types."""

    FORBIDDEN_PREFIXES = (
        "sqlalchemy",
        "psycopg",
        "aiosqlite",
        "sqlite3",
        "pharmacy_kernel.models",
        "pharmacy_kernel.db",
        "pharmacy_kernel.store",
        "pharmacy_kernel.services",
        "pharmacy_services",
        "pharmacy_config",
    )

    IMPURE_CALLS = ("datetime.now", "datetime.utcnow", "date.today", "os.environ", "os.getenv")

    def test_engine_files_have_no_forbidden_imports(self):
        violations = _violations("pharmacy_engines", self.FORBIDDEN_PREFIXES)

        assert not violations, (
            "Engine purity violation: pharmacy_engines/** must not import "
            "DB drivers, ORM, the store, services or config:\n" + "\n".join(violations)
        )

    def test_engine_files_do_not_read_clock_or_environment(self):
        violations: list[str] = []
        for filepath in _python_files("pharmacy_engines"):
            tree = ast.parse(filepath.read_text(), filename=str(filepath))
            for node in ast.walk(tree):
                if isinstance(node, ast.Attribute) and isinstance(node.value, ast.Name):
                    name = f"{node.value.id}.{node.attr}"
                    if name in self.IMPURE_CALLS:
                        violations.append(f"  {filepath.relative_to(ROOT)}:{node.lineno} uses {name}")

        assert not violations, "\n".join(violations)


class TestConfigBoundary:
    def test_config_imports_none_of_our_packages(self):
        violations = _violations(
            "pharmacy_config", ("pharmacy_kernel", "pharmacy_engines", "pharmacy_services"),
        )

        assert not violations, "\n".join(violations)

    def test_only_the_facade_reads_config(self):
        importers = sorted(
            filepath.name
            for filepath in _python_files("pharmacy_services")
            if any(
                _matches_any(module, ("pharmacy_config",))
                for _, module in _extract_imports(filepath)
            )
        )

        assert importers == ["returns_service.py"]
