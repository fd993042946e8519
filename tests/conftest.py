"""Pytest configuration. Puts the project root on sys.path and builds throwaway git remotes."""
import subprocess
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

GIT_IDENTITY = [
    "-c", "user.name=Test User",
    "-c", "user.email=test@example.com",
    "-c", "commit.gpgsign=false",
    "-c", "init.defaultBranch=main",
]


def _git(cwd, *args) -> str:
    result = subprocess.run(
        ["git", *GIT_IDENTITY, *args],
        cwd=str(cwd),
        capture_output=True,
        text=True,
        check=True,
    )
    return result.stdout.strip()


@pytest.fixture
def git():
    """Run a git command in a directory and return its stdout."""
    return _git


@pytest.fixture
def remote_repo(tmp_path: Path) -> Path:
    """Bare repository on branch main holding a.txt, b.lock and docs/notes.txt."""
    seed = tmp_path / "seed"
    seed.mkdir()
    _git(seed, "init", "-q")
    _git(seed, "symbolic-ref", "HEAD", "refs/heads/main")
    (seed / "a.txt").write_text("map-migrated:true\n", encoding="utf-8")
    (seed / "b.lock").write_text("map-migrated:true\n", encoding="utf-8")
    (seed / "docs").mkdir()
    (seed / "docs" / "notes.txt").write_text("nothing to see here\n", encoding="utf-8")
    _git(seed, "add", "-A")
    _git(seed, "commit", "-q", "-m", "initial")

    remote = tmp_path / "remote.git"
    _git(tmp_path, "clone", "-q", "--bare", str(seed), str(remote))
    return remote
