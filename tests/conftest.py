"""Shared test fixtures."""

import pytest

from datapoint_gateway import CompositeStringKey, Credential, RequestContext
from datapoint_gateway._internal.clock import ManualClock
from datapoint_gateway.auth import StaticTokenVerifier
from datapoint_gateway.stores import InMemoryTable


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def table():
    return InMemoryTable()


@pytest.fixture
def strategy():
    return CompositeStringKey()


@pytest.fixture
def verifier():
    return StaticTokenVerifier(
        {
            "alice-token": {"sub": "alice", "email": "alice@acme.com"},
            "bob-token": {"sub": "bob", "email": "bob@acme.com"},
        }
    )


@pytest.fixture
def alice_ctx():
    return RequestContext(
        source_ip="203.0.113.7",
        headers={"Authorization": "Bearer alice-token"},
        credential=Credential(token="Bearer alice-token"),
    )


@pytest.fixture
def office_ip():
    return "146.198.93.180"


@pytest.fixture
def outside_ip():
    return "198.51.100.4"
