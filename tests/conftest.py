"""Shared fixtures for topology tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from cli.config import Settings


def make_project(root: Path) -> Path:
    dist = root / "gui" / "dist"
    dist.mkdir(parents=True)
    (dist / "index.html").write_text("<html></html>", encoding="utf-8")
    api = root / "api"
    api.mkdir()
    (api / "api.py").write_text("def get_haiku(event, context):\n    return {}\n", encoding="utf-8")
    return root


@pytest.fixture
def haiku_settings(tmp_path: Path) -> Settings:
    return Settings(base_dir=make_project(tmp_path))
