import json
import os
import tempfile

import pytest

from app import create_app
from config import Config
from projectstore.catalog import CatalogIndex
from projectstore.normalizer import load_catalog


class SandboxConfig(Config):
    TESTING = True
    SECRET_KEY = 'test-secret-key'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    LOG_FILE = os.path.join(tempfile.gettempdir(), 'projectstore-test.log')
    CATALOG_URL = 'https://catalog.test/projects.json'
    CATALOG_LOAD_ON_STARTUP = False
    CATALOG_RETRIES = 0
    PAYSTACK_PUBLIC_KEY = 'pk_test_123'
    PAYSTACK_SECRET_KEY = 'sk_test_123'
    CONFIG_URL = None
    VERIFY_URL = None
    REQUIRE_SERVER_VERIFICATION = False


SAMPLE_ROWS = [
    ['P1', 'Fraud Detection System', 'Department of Computer Science',
     'Detects fraudulent card transactions.', '3000', 'abc123', '2024-01-01', 'active'],
    ['P2', 'Customer Loyalty in Retail', 'Department of Marketing',
     'Survey of customer loyalty drivers.', None, 'def456', '2024-01-02', 'Active'],
    ['P3', 'Bridge Load Analysis', 'Department of Civil Engineering',
     'Structural study of a pedestrian bridge.', '4500', 'ghi789', '2024-01-03', 'inactive'],
    ['P4', 'Hostel Booking Portal', 'Department of Computer Science',
     'Web portal for hostel allocation.', '2500', 'jkl012', '2024-01-04', None],
    ['P5', 'Audit Trail Review', 'Department of Accountancy',
     'Row without a file.', '2500', '', '2024-01-05', 'active'],
    ['P6', 'Soap Production from Palm Oil', 'Department of Chemistry',
     'Department missing from the table.', 'abc', 'mno345', '2024-01-06', 'active'],
]


def gviz_payload(rows):
    """A Google Sheets gviz response body, vendor envelope included."""
    table = {
        'cols': [{'id': c, 'label': '', 'type': 'string'} for c in 'ABCDEFGH'],
        'rows': [{'c': [None if v is None else {'v': v} for v in row]} for row in rows],
    }
    document = {'version': '0.6', 'reqId': '0', 'status': 'ok', 'table': table}
    return '/*O_o*/\ngoogle.visualization.Query.setResponse(' + json.dumps(document) + ');'


class MemoryStorage:

    def __init__(self, data=None):
        self.data = dict(data or {})

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value):
        self.data[key] = value

    def delete(self, key):
        self.data.pop(key, None)


@pytest.fixture
def sample_catalog():
    result = load_catalog(gviz_payload(SAMPLE_ROWS), default_price=2500)
    return CatalogIndex(result.projects, result.schools)


@pytest.fixture
def app():
    app = create_app(SandboxConfig)
    with app.app_context():
        app.extensions['projectstore'].refresh_catalog(gviz_payload(SAMPLE_ROWS))
        yield app


@pytest.fixture
def store(app):
    return app.extensions['projectstore']


@pytest.fixture
def client(app):
    return app.test_client()
