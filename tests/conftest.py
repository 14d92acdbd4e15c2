import sys
from pathlib import Path
from typing import Any, Callable, Dict

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from fastapi.testclient import TestClient  # noqa: E402

from config import settings  # noqa: E402
from main import create_app  # noqa: E402
from services.scheduler import harvest_scheduler  # noqa: E402
from services.snapshot_store import SnapshotStore  # noqa: E402


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def _reset_harvest_history() -> None:
    harvest_scheduler.clear()
    yield
    harvest_scheduler.clear()


@pytest.fixture
def settings_override() -> Callable[..., None]:
    original: Dict[str, Any] = {}

    def _apply(**overrides: Any) -> None:
        for key, value in overrides.items():
            if key not in original:
                original[key] = getattr(settings, key)
            setattr(settings, key, value)

    yield _apply

    for key, value in original.items():
        setattr(settings, key, value)


@pytest.fixture
def disable_harvest(settings_override: Callable[..., None]) -> None:
    settings_override(harvest_enabled=False)
    yield


@pytest.fixture
def store(tmp_path: Path) -> SnapshotStore:
    return SnapshotStore(tmp_path / "json-data")


@pytest.fixture
def client(disable_harvest: None) -> TestClient:
    app = create_app()
    with TestClient(app) as test_client:
        yield test_client
