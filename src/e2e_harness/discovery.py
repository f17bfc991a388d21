"""
Test Module Discovery

Discovers test modules from the ``<pillar>/tests`` directories of a project.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

PILLARS = ("synthetic", "integration", "performance")

# Performance scenarios are load scripts, not test modules
SCANNED_PILLARS = ("synthetic", "integration")

SKIP_DIRS = {"user-flows", "helpers", "fixtures", "utils"}

DEFAULT_DESCRIPTIONS = {
    "auth": "Authentication & sessions",
    "basic": "Health checks & smoke tests",
    "chats": "Chat functionality",
    "storage": "File storage & uploads",
    "agents": "AI agent tests",
    "tools": "Tool functionality",
    "tenants": "Multi-tenancy",
    "health": "API health checks",
    "users": "User API endpoints",
}


@dataclass
class TestModule:
    """Information about a discovered test module"""

    __test__ = False

    name: str
    display_name: str
    description: str
    path: Path
    test_count: int = 0


def _should_skip(name: str) -> bool:
    return name.startswith("_") or name.startswith(".") or name in SKIP_DIRS


def _is_test_file(path: Path) -> bool:
    return path.suffix == ".py" and (path.name.startswith("test_") or path.stem.endswith("_test"))


def _count_test_files(directory: Path) -> int:
    return sum(1 for p in directory.iterdir() if p.is_file() and _is_test_file(p))


def format_display_name(name: str) -> str:
    """kebab-case or snake_case to Title Case"""
    return " ".join(word[:1].upper() + word[1:] for word in re.split(r"[-_]", name) if word)


def _describe(directory: Path) -> str:
    """First line of README.md, or a default for well-known module names"""
    readme = directory / "README.md"
    if readme.exists():
        first_line = readme.read_text(encoding="utf-8").split("\n", 1)[0]
        description = re.sub(r"^#+\s*", "", first_line).strip()
        if description:
            return description
    return DEFAULT_DESCRIPTIONS.get(directory.name, f"{format_display_name(directory.name)} tests")


def scan_modules(pillar: str, root: Optional[Path] = None) -> list[TestModule]:
    """
    Discover test modules of a pillar.

    Args:
        pillar: "synthetic" or "integration"
        root: Project root (default: cwd)

    Returns:
        Modules sorted by name; empty modules are included
    """
    tests_dir = (root or Path.cwd()) / pillar / "tests"
    if not tests_dir.is_dir():
        logger.warning(f"Could not scan {pillar} test modules: {tests_dir} does not exist")
        return []

    modules = []
    for entry in tests_dir.iterdir():
        if not entry.is_dir() or _should_skip(entry.name):
            continue
        modules.append(
            TestModule(
                name=entry.name,
                display_name=format_display_name(entry.name),
                description=_describe(entry),
                path=entry,
                test_count=_count_test_files(entry),
            )
        )

    modules.sort(key=lambda m: m.name)
    return modules


def scan_all(root: Optional[Path] = None) -> dict[str, list[TestModule]]:
    """Discover test modules of every pillar"""
    return {pillar: scan_modules(pillar, root) for pillar in SCANNED_PILLARS}
