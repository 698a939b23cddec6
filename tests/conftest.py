"""
watchrun Test Configuration.

Pytest fixtures and configuration.
Requires Python 3.11+.
"""

from pathlib import Path

import pytest
import structlog


@pytest.fixture(autouse=True)
def reset_logging() -> None:
    """Give every test the default structlog configuration."""
    structlog.reset_defaults()


@pytest.fixture
def watch_dir(tmp_path: Path) -> Path:
    """Create a small source tree to watch."""
    src = tmp_path / "src"
    src.mkdir()
    (src / "app.py").write_text("print('hi')\n")
    (src / "pkg").mkdir()
    (src / "pkg" / "module.py").write_text("VALUE = 1\n")
    return src.resolve()
