import json

import pytest
from unittest.mock import MagicMock


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "integration: tests that talk to a real Datastore project"
    )


# A serializer that stores values as JSON bytes, like the real serde's typed output.
class JsonSerde:
    def dumps_typed(self, obj):
        return ("json", json.dumps(obj).encode("utf-8"))

    def loads_typed(self, pair):
        return json.loads(pair[1])


@pytest.fixture
def json_serde():
    return JsonSerde()


@pytest.fixture
def fake_client():
    client = MagicMock()

    def fake_key(kind, key_name):
        key = MagicMock()
        key.kind = kind
        key.name = key_name
        return key

    client.key.side_effect = fake_key
    return client
