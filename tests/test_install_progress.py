"""
Tests for package manager detection and install progress parsing
"""
import sys
from dataclasses import replace

import pytest

from create_whop_app import install_progress
from create_whop_app.install_progress import (
    InstallError,
    InstallProgressMonitor,
    PackageManager,
    detect_package_manager,
    run_install,
)

BUN_OUTPUT = "bun install v1.2.0\n" + "".join(f"+ pkg{i}@1.0.{i}\n" for i in range(5)) + "\n5 packages installed [1.2s]\n"


def feed_all(manager, chunks):
    labels = []
    monitor = InstallProgressMonitor(manager, labels.append)
    for chunk in chunks:
        monitor.feed(chunk)
    monitor.close()
    return monitor, labels


@pytest.mark.parametrize(
    "chunks",
    [
        [BUN_OUTPUT],
        BUN_OUTPUT.splitlines(keepends=True),
        [BUN_OUTPUT[:40], BUN_OUTPUT[40:41], BUN_OUTPUT[41:]],
        list(BUN_OUTPUT),
    ],
    ids=["single-chunk", "per-line", "split-mid-line", "per-char"],
)
def test_marker_lines_are_counted_regardless_of_chunking(chunks):
    monitor, labels = feed_all(PackageManager.BUN, chunks)

    assert monitor.count == 5
    assert labels[-1] == "Installing dependencies (5 packages)"


def test_unterminated_last_line_is_counted_on_close():
    monitor, labels = feed_all(PackageManager.BUN, ["+ a@1\n+ b@1"])

    assert monitor.count == 2
    assert labels[-1] == "Installing dependencies (2 packages)"


def test_summary_line_sets_count_once():
    output = "npm warn deprecated foo\n\nadded 342 packages, and audited 343 packages in 12s\n"
    monitor, labels = feed_all(PackageManager.NPM, [output])

    assert monitor.count == 342
    assert labels == ["Installing dependencies (resolving...)", "Installing dependencies (342 packages)"]


def test_pnpm_progress_updates_are_not_accumulated():
    output = (
        "Progress: resolved 10, reused 0, downloaded 10, added 10\r"
        "Progress: resolved 50, reused 0, downloaded 50, added 50\n"
        "Progress: resolved 50, reused 0, downloaded 50, added 50, done\n"
    )
    monitor, labels = feed_all(PackageManager.PNPM, [output])

    assert monitor.count == 50
    assert labels[-1] == "Installing dependencies (50 packages)"


def test_yarn_summary():
    monitor, _ = feed_all(PackageManager.YARN, ["success Saved lockfile.\nsuccess Saved 120 new dependencies.\n"])

    assert monitor.count == 120


def test_working_label_rendered_once_before_any_signal():
    labels = []
    monitor = InstallProgressMonitor(PackageManager.BUN, labels.append)
    monitor.begin()
    monitor.feed("bun install v1.2.0\n")
    monitor.feed("Resolving dependencies\n")
    monitor.begin()

    assert labels == ["Installing dependencies (downloading...)"]
    assert monitor.count == 0


def test_garbage_output_never_raises():
    monitor, labels = feed_all(PackageManager.NPM, ["\x00\x1b[31m????\n", "added many packages\n", "+ not counted\n"])

    assert monitor.count == 0
    assert labels == ["Installing dependencies (resolving...)"]


def test_ansi_colored_marker_lines_are_counted():
    monitor, _ = feed_all(PackageManager.BUN, ["\x1b[32m+\x1b[0m next@15.0.0\n"])

    assert monitor.count == 1


@pytest.mark.parametrize(
    "agent,expected",
    [
        ("pnpm/9.1.0 npm/? node/v20.11.0 darwin arm64", PackageManager.PNPM),
        ("yarn/1.22.19 npm/? node/v18.0.0 linux x64", PackageManager.YARN),
        ("bun/1.2.0 npm/? node/v22.6.0 linux x64", PackageManager.BUN),
        ("npm/10.2.0 node/v20.11.0 linux x64", PackageManager.NPM),
        ("", PackageManager.NPM),
    ],
)
def test_detect_package_manager(agent, expected):
    assert detect_package_manager(agent) is expected


def test_detect_package_manager_reads_environment(monkeypatch):
    monkeypatch.setenv("npm_config_user_agent", "bun/1.2.0")

    assert detect_package_manager() is PackageManager.BUN


def test_commands():
    assert PackageManager.BUN.install_command == ["bun", "install"]
    assert PackageManager.NPM.dev_command == ["npm", "run", "dev"]


def _fake_installer(monkeypatch, script):
    behavior = PackageManager.BUN.behavior
    monkeypatch.setitem(
        install_progress._BEHAVIORS,
        PackageManager.BUN,
        replace(behavior, install=(sys.executable, "-c", script)),
    )


@pytest.mark.asyncio
async def test_run_install_streams_progress(monkeypatch, tmp_path):
    _fake_installer(monkeypatch, "import sys\nfor i in range(3):\n    print(f'+ pkg{i}@1.0.0', flush=True)\n")
    labels = []

    count = await run_install(PackageManager.BUN, tmp_path, labels.append)

    assert count == 3
    assert labels[0] == "Installing dependencies (downloading...)"
    assert labels[-1] == "Installing dependencies (3 packages)"


@pytest.mark.asyncio
async def test_run_install_raises_with_exit_code(monkeypatch, tmp_path):
    _fake_installer(monkeypatch, "import sys\nprint('error: registry unreachable')\nsys.exit(3)\n")

    with pytest.raises(InstallError) as exc_info:
        await run_install(PackageManager.BUN, tmp_path, lambda label: None)

    assert exc_info.value.returncode == 3
    assert "registry unreachable" in str(exc_info.value)


@pytest.mark.asyncio
async def test_run_install_missing_binary(monkeypatch, tmp_path):
    behavior = PackageManager.BUN.behavior
    monkeypatch.setitem(
        install_progress._BEHAVIORS,
        PackageManager.BUN,
        replace(behavior, install=("definitely-not-a-package-manager", "install")),
    )

    with pytest.raises(InstallError) as exc_info:
        await run_install(PackageManager.BUN, tmp_path, lambda label: None)

    assert exc_info.value.returncode is None
