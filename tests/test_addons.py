"""
Tests for addon overlays
"""
import json
from pathlib import Path

import pytest

from create_whop_app import config
from create_whop_app.addons import AddonError, apply_addon, list_addons, load_addon


@pytest.fixture
def project(tmp_path, templates_dir):
    dest = tmp_path / "project"
    dest.mkdir()
    (dest / "package.json").write_text(
        json.dumps({"name": "app", "dependencies": {"next": "15.0.0", "zod": "3.0.0"}})
    )
    return dest


def read_package(dest: Path) -> dict:
    return json.loads((dest / "package.json").read_text())


def test_addon_versions_win_on_collision(project, templates_dir):
    apply_addon(templates_dir / "addons" / "sqlite", project)

    package = read_package(project)
    assert package["dependencies"] == {"next": "15.0.0", "zod": "4.0.0", "drizzle-orm": "0.44.0"}
    assert package["devDependencies"] == {"drizzle-kit": "0.31.0"}
    assert package["scripts"] == {"db:push": "drizzle-kit push"}
    assert package["name"] == "app"


def test_files_and_directories_are_copied(project, templates_dir):
    apply_addon(templates_dir / "addons" / "sqlite", project)

    assert (project / "drizzle.config.ts").read_text() == "export default {}\n"
    assert (project / "src" / "db" / "index.ts").read_text() == "export const db = 1\n"


def test_missing_source_file_does_not_abort(project, templates_dir):
    manifest = apply_addon(templates_dir / "addons" / "sqlite", project)

    assert "missing.txt" in manifest.files
    assert not (project / "missing.txt").exists()
    assert "drizzle-orm" in read_package(project)["dependencies"]


def test_manifest_rewritten_with_trailing_newline(project, templates_dir):
    apply_addon(templates_dir / "addons" / "sqlite", project)

    assert (project / "package.json").read_text().endswith("}\n")


def test_missing_package_json_is_an_error(tmp_path, templates_dir):
    dest = tmp_path / "empty"
    dest.mkdir()

    with pytest.raises(AddonError):
        apply_addon(templates_dir / "addons" / "sqlite", dest)


def test_invalid_manifest(tmp_path):
    (tmp_path / "addon.json").write_text(json.dumps({"description": "no name"}))

    with pytest.raises(AddonError):
        load_addon(tmp_path)


def test_list_addons_skips_invalid(templates_dir):
    broken = templates_dir / "addons" / "broken"
    broken.mkdir()
    (broken / "addon.json").write_text("{")
    (templates_dir / "addons" / "no-manifest").mkdir()

    assert list(list_addons(templates_dir / "addons")) == ["sqlite"]
    assert list_addons(templates_dir / "nope") == {}


def test_packaged_addons_are_valid():
    addons = list_addons(config.PACKAGED_TEMPLATES / "addons")

    assert set(addons) == {"sqlite", "supabase"}
    assert all(addon.files for addon in addons.values())
