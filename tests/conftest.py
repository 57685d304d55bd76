import pytest
from fastapi.testclient import TestClient

from epirecord import InMemoryKeyProvider, InMemoryRecordStore
from epirecord.api import create_app
from epirecord.config import load_settings


@pytest.fixture
def settings():
    return load_settings({"EPIRECORD_STORE": "memory", "EPIRECORD_MAX_SIGNATURE_BYTES": "1024"})


@pytest.fixture
def store():
    return InMemoryRecordStore(default_timeout=1.0)


@pytest.fixture
def signer():
    return InMemoryKeyProvider("seal-test")


@pytest.fixture
def client(settings, store):
    return TestClient(create_app(settings=settings, store=store))


@pytest.fixture
def sealed_client(settings, store, signer):
    return TestClient(create_app(settings=settings, store=store, signer=signer))
