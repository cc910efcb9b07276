"""
MyPA · Shared Test-Fixtures.

Alle Tests nutzen ein temporäres Verzeichnis statt ~/.mypa/.
So sind Tests isoliert und reproduzierbar.
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest

from mypa.config import MyPAConfig, ensure_directory_structure
from mypa.db.sqlite_backend import SQLiteBackend
from mypa.scheduler.jobs import ScheduledJobStore

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path


@pytest.fixture(autouse=True)
def _clean_mypa_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """MYPA_* Variablen der Entwicklungsumgebung dürfen Tests nicht beeinflussen."""
    for key in list(os.environ):
        if key.startswith("MYPA_"):
            monkeypatch.delenv(key)


@pytest.fixture
def tmp_mypa_home(tmp_path: Path) -> Path:
    """Temporäres MyPA-Home-Verzeichnis."""
    return tmp_path / ".mypa"


@pytest.fixture
def config(tmp_mypa_home: Path) -> MyPAConfig:
    """MyPAConfig mit temporärem Home-Verzeichnis."""
    return MyPAConfig(mypa_home=tmp_mypa_home)


@pytest.fixture
def initialized_config(config: MyPAConfig) -> MyPAConfig:
    """MyPAConfig mit erstellter Verzeichnisstruktur."""
    ensure_directory_structure(config)
    return config


@pytest.fixture
async def job_store(tmp_path: Path) -> AsyncIterator[ScheduledJobStore]:
    """ScheduledJobStore auf einer frischen SQLite-Datei mit Schema."""
    backend = SQLiteBackend(tmp_path / "jobs.db")
    store = ScheduledJobStore(backend)
    await store.ensure_schema()
    yield store
    await backend.close()
