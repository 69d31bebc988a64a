"""Pytest session hooks applied across the entire repository.

The gateway packages live at the repository root rather than underneath a
``src/`` directory.  When ``pytest`` is invoked through its console script,
``sys.path[0]`` points at the script location instead of the project, so
``import services.kraken_gateway`` would fail.  Prepending the repository root
keeps the behaviour in line with ``python -m pytest``.

Kraken credentials from the developer's shell are removed so that tests only
ever see the settings they construct explicitly.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

_CREDENTIAL_VARIABLES = ("KRAKEN_API_KEY", "KRAKEN_API_SECRET", "KRAKEN_GATEWAY_SELF_TEST_URL")


def _ensure_repo_root_on_path() -> None:
    """Add the repository root to ``sys.path`` if it is missing."""

    repo_root = Path(__file__).resolve().parent
    repo_str = str(repo_root)
    if repo_str not in sys.path:
        sys.path.insert(0, repo_str)


def pytest_configure(config):  # type: ignore[override]
    """Strip live Kraken credentials from the test environment."""

    for variable in _CREDENTIAL_VARIABLES:
        os.environ.pop(variable, None)


_ensure_repo_root_on_path()
