from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from listmerge.config.merge import POLICY_ENV, THRESHOLD_ENV, WORKERS_ENV
from listmerge.config.storage import TEMPLATE_DIR_ENV

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    """Keep user templates and merge defaults of the machine out of the tests."""

    template_dir = tmp_path / "user-headers"
    monkeypatch.setenv(TEMPLATE_DIR_ENV, str(template_dir))
    for name in (POLICY_ENV, THRESHOLD_ENV, WORKERS_ENV):
        monkeypatch.delenv(name, raising=False)
    return template_dir


@pytest.fixture
def write_csv(tmp_path: Path) -> Callable[..., Path]:
    def _write(name: str, *lines: str) -> Path:
        path = tmp_path / name
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return path

    return _write
