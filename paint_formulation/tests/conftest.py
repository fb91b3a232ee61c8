from __future__ import annotations

import sys
from importlib import import_module
from pathlib import Path
from typing import Generator

import pytest
from fastapi.testclient import TestClient

# Ensure project root is on sys.path
REPO_ROOT = Path(__file__).resolve().parents[2]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

# Modules that bind the database engine at import time.
_DB_BOUND_MODULES = (
    "paint_formulation.main",
    "paint_formulation.import_catalog",
    "paint_formulation.database",
)


def _forget_db_modules() -> None:
    database = sys.modules.get("paint_formulation.database")
    if database is not None:
        database.engine.dispose()
    for module in _DB_BOUND_MODULES:
        sys.modules.pop(module, None)


@pytest.fixture()
def isolated_db(tmp_path_factory: pytest.TempPathFactory, monkeypatch: pytest.MonkeyPatch) -> Generator[Path, None, None]:
    """Point the service at a throwaway SQLite file; engine-bound modules re-import against it."""
    db_path = tmp_path_factory.mktemp("data") / "test_formulations.db"
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{db_path}")
    monkeypatch.setenv("LOG_FILE", "")
    monkeypatch.setenv("SEED_CATALOG", "0")

    _forget_db_modules()
    yield db_path
    _forget_db_modules()


@pytest.fixture()
def api_client(isolated_db: Path) -> Generator[TestClient, None, None]:
    """Provide a TestClient wired to an isolated SQLite database."""
    app_module = import_module("paint_formulation.main")

    with TestClient(app_module.app) as client:
        yield client
