"""
Toolchain detection for fetched frontend projects.

Reads package.json into a Manifest and picks the install/build commands and
output directory. Rules are evaluated in a fixed priority order and the first
match wins; detection itself never fails.
"""
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from app.core.errors import ManifestInvalid

MANIFEST_NAME = "package.json"
LOCKFILE_NAME = "package-lock.json"
DEFAULT_OUTPUT_DIR = "dist"

# Server-rendering meta-frameworks and their internal build directories
META_FRAMEWORKS = (
    ("next", ".next"),
    ("nuxt", ".output/public"),
)

VITE_CONFIG_FILES = (
    "vite.config.js",
    "vite.config.ts",
    "vite.config.mjs",
    "vite.config.cjs",
    "vite.config.mts",
)

BUILD_COMMAND = ["npm", "run", "build"]


@dataclass(frozen=True)
class Manifest:
    """Dependency names declared by package.json."""
    dependencies: frozenset = field(default_factory=frozenset)
    dev_dependencies: frozenset = field(default_factory=frozenset)

    def has(self, name: str) -> bool:
        """True if the dependency is declared in either group."""
        return name in self.dependencies or name in self.dev_dependencies


@dataclass(frozen=True)
class Toolchain:
    """Install/build commands and output directory for a project."""
    name: str
    install_command: list[str]
    build_command: list[str]
    output_dir: str


def _names(value) -> frozenset:
    if not isinstance(value, dict):
        return frozenset()
    return frozenset(str(k) for k in value.keys())


def parse_manifest(text: str) -> Manifest:
    """
    Parse package.json content.

    Raises:
        ManifestInvalid: If the content is not a JSON object
    """
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, TypeError) as e:
        raise ManifestInvalid(f"Unparseable {MANIFEST_NAME}: {e}")

    if not isinstance(data, dict):
        raise ManifestInvalid(f"{MANIFEST_NAME} must contain a JSON object")

    return Manifest(
        dependencies=_names(data.get("dependencies")),
        dev_dependencies=_names(data.get("devDependencies")),
    )


def read_manifest(root: Path) -> Manifest:
    """Read and parse package.json at the root of a fetched tree."""
    manifest_path = Path(root) / MANIFEST_NAME
    if not manifest_path.is_file():
        raise ManifestInvalid(f"No {MANIFEST_NAME} at repository root")
    try:
        text = manifest_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ManifestInvalid(f"Cannot read {MANIFEST_NAME}: {type(e).__name__}")
    return parse_manifest(text)


def tree_lookup(root: Path) -> Callable[[str], bool]:
    """Filesystem lookup scoped to a fetched tree."""
    root = Path(root)

    def exists(relative_path: str) -> bool:
        return (root / relative_path).exists()

    return exists


def _install_command(exists: Callable[[str], bool]) -> list[str]:
    # Prefer npm ci for reproducible builds
    if exists(LOCKFILE_NAME):
        return ["npm", "ci"]
    return ["npm", "install"]


def detect_toolchain(manifest: Manifest, exists: Callable[[str], bool]) -> Toolchain:
    """
    Decide the toolchain for a fetched tree.

    Args:
        manifest: Parsed package.json
        exists: Lookup for paths relative to the tree root

    Returns:
        Toolchain for the first matching rule, or the fallback
    """
    install = _install_command(exists)

    def toolchain(name: str, output_dir: str = DEFAULT_OUTPUT_DIR) -> Toolchain:
        return Toolchain(
            name=name,
            install_command=list(install),
            build_command=list(BUILD_COMMAND),
            output_dir=output_dir,
        )

    for dependency, output_dir in META_FRAMEWORKS:
        if manifest.has(dependency):
            return toolchain(dependency, output_dir)

    if manifest.has("vite") or any(exists(name) for name in VITE_CONFIG_FILES):
        return toolchain("vite")

    if manifest.has("react") and exists("public"):
        return toolchain("react")

    if manifest.has("vue") and exists("vue.config.js"):
        return toolchain("vue")

    return toolchain("static")
