"""
Checks on the packaged project templates
"""
import json
import re

import pytest

from create_whop_app.addons import list_addons
from create_whop_app.config import PACKAGED_TEMPLATES

IMPORT_RE = re.compile(r"""(?:from|import)\s+['"]([^'"]+)['"]""")


def package_name(specifier):
    parts = specifier.split("/")
    return "/".join(parts[:2]) if specifier.startswith("@") else parts[0]


def imported_packages(root):
    names = set()
    for path in root.rglob("*.ts*"):
        for specifier in IMPORT_RE.findall(path.read_text(encoding="utf-8")):
            if specifier.startswith((".", "~/", "@/")):
                continue
            names.add(package_name(specifier))
    return names


def declared(manifest):
    return set(manifest.get("dependencies", {})) | set(manifest.get("devDependencies", {}))


def test_base_template_declares_every_import():
    base = PACKAGED_TEMPLATES / "whop-next"
    manifest = json.loads((base / "package.json").read_text(encoding="utf-8"))

    assert imported_packages(base / "src") <= declared(manifest)


@pytest.mark.parametrize("name", ["sqlite", "supabase"])
def test_addon_imports_are_declared(name):
    base = json.loads((PACKAGED_TEMPLATES / "whop-next" / "package.json").read_text(encoding="utf-8"))
    addon = list_addons(PACKAGED_TEMPLATES / "addons")[name]
    manifest = json.loads((PACKAGED_TEMPLATES / "addons" / name / "addon.json").read_text(encoding="utf-8"))

    assert addon.name == name
    assert imported_packages(PACKAGED_TEMPLATES / "addons" / name) <= declared(base) | declared(manifest)
