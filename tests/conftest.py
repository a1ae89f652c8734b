from __future__ import annotations

import pytest

from helpers import FakeGateway


@pytest.fixture
def fake_gateway() -> FakeGateway:
    gateway = FakeGateway()
    gateway.load()
    return gateway
