"""Fixtures shared by the CLI tests."""

import pytest
from pkginstall.utils import formatting


@pytest.fixture(autouse=True)
def wide_console(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep long temporary paths on one line of captured output."""
    monkeypatch.setattr(formatting.console, "width", 240)
    monkeypatch.setattr(formatting.err_console, "width", 240)
