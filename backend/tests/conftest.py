import os
import sys
import pathlib
import tempfile

import pytest

# Ensure backend root (containing the 'chainweave_server' package) is on sys.path
BACKEND_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

# Settings are read at import time; pin them before anything imports the package.
_SESSION_DIR = tempfile.mkdtemp(prefix='chainweave-tests-')
os.environ['CHAINWEAVE_DATA_DIR'] = _SESSION_DIR
os.environ['CHAINWEAVE_DATABASE_URL'] = f"sqlite:///{pathlib.Path(_SESSION_DIR) / 'session.db'}"
os.environ['CHAINWEAVE_CHAIN_ENABLED'] = 'false'
os.environ.pop('CHAINWEAVE_API_KEY', None)

from chainweave_server.core.config import settings  # noqa: E402
from chainweave_server.db.session import Base, make_engine, make_session_factory  # noqa: E402
import chainweave_server.models  # noqa: E402,F401
from chainweave_server.reconciliation.reconciler import EventReconciler  # noqa: E402
from chainweave_server.requests.store import RequestStore  # noqa: E402
from chainweave_server.services.users import UserService  # noqa: E402

from tests.fakes import WALLET, FakeGateway  # noqa: E402


@pytest.fixture
def engine(tmp_path):
    """Fresh file-backed SQLite database per test."""
    eng = make_engine(f"sqlite:///{tmp_path / 'chainweave.db'}")
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def store(session_factory):
    return RequestStore(session_factory)


@pytest.fixture
def reconciler(store, session_factory):
    return EventReconciler(store, session_factory, max_attempts=3)


@pytest.fixture
def users(session_factory):
    return UserService(session_factory)


@pytest.fixture
def registered_user(users):
    result = users.register(WALLET)
    assert result.success, result.error
    return result.data


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def test_settings():
    return settings.model_copy(update={'chain_enabled': False, 'api_key': None})
