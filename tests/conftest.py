import os
import sys

import pytest
from fastapi.testclient import TestClient

# Ensure project root is importable (so `import main` / `import cli` work without installing)
_project_root = os.path.dirname(os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from bgchaos.app import create_app  # noqa: E402
from bgchaos.chaos import ChaosState  # noqa: E402
from bgchaos.settings import Settings  # noqa: E402


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def cfg():
    # Short delay so timeout-mode tests finish quickly.
    return Settings(app_pool="blue", release_id="rel-42", chaos_timeout_s=0.3, disconnect_poll_s=0.05)


@pytest.fixture
def state():
    return ChaosState()


@pytest.fixture
def app(cfg, state):
    return create_app(cfg, state)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c
