"""
Tests for lopatch CLI — every command via subprocess.

Every test runs the real entry point (`python -m lopatch.cli`) against a
temporary game install and state directory.
"""

import json
import os
import subprocess
import sys

import pytest

from lopatch.archive import read_archive
from lopatch.games import OVERRIDE_ARCHIVE_NAME
from lopatch.types import Record

PYTHON = sys.executable
CLI = [PYTHON, "-m", "lopatch.cli"]


def run(args, *, env=None):
    """Run a lopatch CLI command and return CompletedProcess."""
    merged_env = {k: v for k, v in os.environ.items() if not k.startswith("LOPATCH_")}
    merged_env.update(env or {})
    return subprocess.run(
        CLI + args,
        capture_output=True,
        text=True,
        env=merged_env,
        timeout=60,
    )


@pytest.fixture
def game(tmp_path, pack_file, loc_record):
    root = tmp_path / "game"
    pack_file(root / "data", "data.pack", [
        Record("ui/a.twui.xml", data=b'<a is_dev_only="true" visible="false"/>'),
    ], category="release")
    pack_file(root / "data", "mod_a.pack", [loc_record("text/a.loc", [("k", "v")])])
    (root / "used_mods.txt").write_text('mod "mod_a.pack";\n', encoding="utf-8")
    return root


@pytest.fixture
def home(tmp_path):
    return str(tmp_path / "home")


# ---------------------------------------------------------------------------
# games
# ---------------------------------------------------------------------------


class TestGames:
    def test_lists_titles(self):
        r = run(["games"])
        assert r.returncode == 0
        assert "warhammer_3" in r.stdout

    def test_json(self):
        r = run(["games", "--json"])
        data = json.loads(r.stdout)
        assert data["attila"]["legacy_locs"] is True


# ---------------------------------------------------------------------------
# load-order
# ---------------------------------------------------------------------------


class TestLoadOrder:
    def test_prints_order(self, game):
        r = run(["load-order", "-g", "warhammer_3", "--game-path", str(game), "-l", "used_mods.txt"])
        assert r.returncode == 0, r.stderr
        lines = r.stdout.strip().splitlines()
        assert os.path.basename(lines[-1]) == "mod_a.pack"

    def test_game_path_from_env(self, game):
        r = run(
            ["load-order", "-g", "warhammer_3", "-l", "used_mods.txt", "--json"],
            env={"LOPATCH_GAME_PATH": str(game)},
        )
        assert r.returncode == 0, r.stderr
        assert json.loads(r.stdout)["game"] == "warhammer_3"

    def test_missing_game_path(self):
        r = run(["load-order", "-g", "warhammer_3", "-l", "used_mods.txt"])
        assert r.returncode == 1
        assert "--game-path" in r.stderr


# ---------------------------------------------------------------------------
# patch
# ---------------------------------------------------------------------------


class TestPatch:
    def test_builds_archive(self, game, home):
        r = run([
            "patch", "-g", "warhammer_3", "--game-path", str(game), "-l", "used_mods.txt",
            "-t", "sp", "--enable-dev-ui", "--no-refresh", "--home", home, "-q",
        ])
        assert r.returncode == 0, r.stderr
        out_path = r.stdout.strip()
        assert out_path == os.path.join(str(game), "data", OVERRIDE_ARCHIVE_NAME)
        out = read_archive(out_path)
        assert out.dependencies == [(True, "mod_a.pack")]
        assert out.get("ui/a.twui.xml") is not None

    def test_json_report(self, game, home):
        r = run([
            "patch", "-g", "warhammer_3", "--game-path", str(game), "-l", "used_mods.txt",
            "--no-refresh", "--home", home, "--json", "-q",
        ])
        assert r.returncode == 0, r.stderr
        data = json.loads(r.stdout)
        assert data["game"] == "warhammer_3"
        assert data["passes"] == []

    def test_failed_script_exit_code(self, tmp_path, game, home):
        script = tmp_path / "bad.sql"
        script.write_text("SELECT 1;", encoding="utf-8")
        r = run([
            "patch", "-g", "warhammer_3", "--game-path", str(game), "-l", "used_mods.txt",
            "--sql-script", f"{script};1", "--no-refresh", "--home", home, "-q",
        ])
        assert r.returncode == 1
        assert "Script failed" in r.stderr
        assert os.path.isfile(os.path.join(str(game), "data", OVERRIDE_ARCHIVE_NAME))

    def test_missing_script_file(self, tmp_path, game, home):
        r = run([
            "patch", "-g", "warhammer_3", "--game-path", str(game), "-l", "used_mods.txt",
            "--sql-script", str(tmp_path / "nope.sql"), "--home", home, "-q",
        ])
        assert r.returncode == 1
        assert "not found" in r.stderr

    def test_unknown_game_rejected(self, game):
        r = run(["patch", "-g", "medieval_3", "--game-path", str(game)])
        assert r.returncode == 2
        assert "invalid choice" in r.stderr

    def test_bad_pool_size_env(self, game, home):
        r = run(
            ["patch", "-g", "warhammer_3", "--game-path", str(game), "-l", "used_mods.txt",
             "--no-refresh", "--home", home, "-q"],
            env={"LOPATCH_POOL_SIZE": "0"},
        )
        assert r.returncode == 1
        assert "sql.pool_size" in r.stderr


class TestNoCommand:
    def test_prints_help(self):
        r = run([])
        assert r.returncode == 1
        assert "usage" in r.stdout.lower()
