"""
Optional template overlays (database integrations).

An addon is a directory holding an ``addon.json`` manifest next to the files it
contributes::

    {
      "name": "sqlite",
      "description": "SQLite / Turso with Drizzle ORM",
      "files": ["drizzle.config.ts", "src/db/**"],
      "dependencies": {"drizzle-orm": "^0.44.0"},
      "devDependencies": {"drizzle-kit": "^0.31.0"},
      "scripts": {"db:push": "drizzle-kit push"}
    }

A pattern ending in ``/**`` copies the whole directory, anything else copies a
single file. The manifest maps are merged into the project's ``package.json``
with the addon winning on conflicts.
"""

import json
import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

MANIFEST_NAME = "addon.json"
PACKAGE_MANIFEST = "package.json"
RECURSIVE_SUFFIX = "/**"
MERGED_SECTIONS = ("dependencies", "devDependencies", "scripts")


class AddonError(RuntimeError):
    pass


@dataclass
class AddonManifest:
    name: str
    description: str = ""
    files: list[str] = field(default_factory=list)
    dependencies: dict[str, str] = field(default_factory=dict)
    devDependencies: dict[str, str] = field(default_factory=dict)
    scripts: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> "AddonManifest":
        if not isinstance(data, dict) or not data.get("name"):
            raise AddonError("Addon manifest must be an object with a 'name'")
        return cls(
            name=str(data["name"]),
            description=str(data.get("description", "")),
            files=[str(p) for p in data.get("files") or []],
            dependencies=dict(data.get("dependencies") or {}),
            devDependencies=dict(data.get("devDependencies") or {}),
            scripts=dict(data.get("scripts") or {}),
        )


def load_addon(addon_dir: Path) -> AddonManifest:
    manifest_path = Path(addon_dir) / MANIFEST_NAME
    try:
        data = json.loads(manifest_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise AddonError(f"Failed to read addon manifest {manifest_path}: {e}") from e
    return AddonManifest.from_dict(data)


def list_addons(addons_root: Path) -> dict[str, AddonManifest]:
    """Return every valid addon under ``addons_root`` keyed by directory name."""
    found: dict[str, AddonManifest] = {}
    root = Path(addons_root)
    if not root.is_dir():
        return found
    for child in sorted(root.iterdir()):
        if not (child / MANIFEST_NAME).is_file():
            continue
        try:
            found[child.name] = load_addon(child)
        except AddonError as e:
            logger.warning("Skipping addon %s: %s", child.name, e)
    return found


def _copy_pattern(addon_dir: Path, dest: Path, pattern: str) -> None:
    if pattern.endswith(RECURSIVE_SUFFIX):
        rel = pattern[: -len(RECURSIVE_SUFFIX)]
        shutil.copytree(addon_dir / rel, dest / rel, dirs_exist_ok=True)
    else:
        target = dest / pattern
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(addon_dir / pattern, target)


def merge_package_manifest(package_json: Path, manifest: AddonManifest) -> dict:
    try:
        package = json.loads(package_json.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise AddonError(f"Failed to read {package_json}: {e}") from e

    for section in MERGED_SECTIONS:
        entries = getattr(manifest, section)
        if not entries:
            continue
        merged = dict(package.get(section) or {})
        merged.update(entries)
        package[section] = merged

    package_json.write_text(json.dumps(package, indent=2) + "\n", encoding="utf-8")
    return package


def apply_addon(addon_dir: Path, dest: Path) -> AddonManifest:
    """Copy an addon's files into ``dest`` and merge its package entries."""
    addon_dir = Path(addon_dir)
    dest = Path(dest)
    manifest = load_addon(addon_dir)
    logger.info("Applying addon %s to %s", manifest.name, dest)

    for pattern in manifest.files:
        try:
            _copy_pattern(addon_dir, dest, pattern)
        except OSError as e:
            logger.debug("Addon %s: skipped %s (%s)", manifest.name, pattern, e)

    merge_package_manifest(dest / PACKAGE_MANIFEST, manifest)
    return manifest
