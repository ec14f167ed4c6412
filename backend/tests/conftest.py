import os, sys, pytest
# Ensure backend directory is on path so 'opsgate' can be imported
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
import opsgate
from opsgate import create_app
from opsgate.models.authz import Base
# Import all model modules to ensure tables are registered before create_all
import opsgate.models.audit  # noqa: F401
import opsgate.models.requests  # noqa: F401
import opsgate.models.procurement  # noqa: F401
import opsgate.models.notification  # noqa: F401
from opsgate.services.policy import evaluators
from opsgate.services.realtime import hub
from tests.test_utils_seed import FALLBACK_FILE


@pytest.fixture(scope='session', autouse=True)
def app_instance():
    app = create_app({
        'DATABASE_URL': 'sqlite+pysqlite:///:memory:',
        'JWT_SECRET_KEY': 'test-secret-key-with-enough-length-for-hs256',
        'IDENTITY_FALLBACK_FILE': FALLBACK_FILE,
        'LOG_LEVEL': 'WARNING',
        'TESTING': True,
    })
    yield app


@pytest.fixture(autouse=True)
def clean_state(app_instance):
    """Fresh schema, hub and evaluator registry for every test."""
    opsgate.SessionLocal.remove()
    Base.metadata.drop_all(opsgate.db_engine)
    Base.metadata.create_all(opsgate.db_engine)
    hub.reset()
    evaluators.reset()
    yield
    evaluators.reset()
    hub.reset()
    opsgate.SessionLocal.remove()


@pytest.fixture()
def client(app_instance):
    return app_instance.test_client()


@pytest.fixture()
def session():
    return opsgate.get_db()
