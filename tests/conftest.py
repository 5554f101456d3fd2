from __future__ import annotations

import subprocess
import sys
import textwrap
from dataclasses import dataclass
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from cg.config import EngineConfig, load_config  # noqa: E402

GALLERY_SOURCE = textwrap.dedent(
    """
    import React from "react";

    export function Gallery() {
      console.log("rendering gallery");
      return (
        <section>
          <img src="/hero.png" alt="Hero" />
        </section>
      );
    }
    """
).lstrip()

UTILS_SOURCE = textwrap.dedent(
    """
    export function total(values) {
      debugger;
      return values.reduce((sum, value) => sum + value, 0);
    }
    """
).lstrip()

CONFIG_TEMPLATE = textwrap.dedent(
    """
    project:
      repo_root: .
    analysis:
      analyzers: [performance, accessibility, code_quality]
      timeout_seconds: 30
    validation:
      checks: []
      reanalyze: true
    execution:
      batch_mode: {batch_mode}
      checkpoint_backend: {backend}
    paths:
      data: .codeguard
    """
).lstrip()


@dataclass(slots=True)
class WebRepo:
    """Small front-end project with a few known findings."""

    root: Path
    config_path: Path

    def write(self, relative: str, text: str) -> Path:
        path = self.root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        return path

    def read(self, relative: str) -> str:
        return (self.root / relative).read_text(encoding="utf-8")

    def configure(self, *, batch_mode: str = "sequential", backend: str = "files") -> None:
        self.config_path.write_text(
            CONFIG_TEMPLATE.format(batch_mode=batch_mode, backend=backend),
            encoding="utf-8",
        )

    def config(self) -> EngineConfig:
        return load_config(self.config_path)

    def git(self, *args: str) -> subprocess.CompletedProcess[str]:
        return subprocess.run(
            ["git", *args],
            cwd=self.root,
            check=True,
            capture_output=True,
            text=True,
        )


def _make_web_repo(root: Path) -> WebRepo:
    root.mkdir(parents=True)
    repo = WebRepo(root=root, config_path=root / "codeguard.yaml")
    repo.write("src/Gallery.jsx", GALLERY_SOURCE)
    repo.write("src/utils.js", UTILS_SOURCE)
    repo.write("package.json", '{\n  "name": "web-app",\n  "version": "1.0.0"\n}\n')
    repo.configure()
    return repo


@pytest.fixture()
def web_repo(tmp_path: Path) -> WebRepo:
    """Create a plain directory web project configured for CodeGuard."""

    return _make_web_repo(tmp_path / "web-app")


@pytest.fixture()
def git_web_repo(tmp_path: Path) -> WebRepo:
    """Same project committed to a git repository and using git checkpoints."""

    repo = _make_web_repo(tmp_path / "git-web-app")
    repo.configure(backend="git")
    repo.write(".gitignore", ".codeguard/\n")
    repo.git("init")
    repo.git("config", "user.email", "codeguard@example.com")
    repo.git("config", "user.name", "CodeGuard Tests")
    repo.git("add", ".")
    repo.git("commit", "-m", "Initial web app")
    return repo
