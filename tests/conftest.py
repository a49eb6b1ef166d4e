"""Shared fixtures for the chatstore tests."""

from collections.abc import AsyncIterator

import httpx
import pytest

from chatstore.services.factory import ChatStack, create_test_chat_stack
from fakes import FakeWarehouse, SteppingNow, make_settings


@pytest.fixture
def warehouse() -> FakeWarehouse:
    return FakeWarehouse()


@pytest.fixture
def now() -> SteppingNow:
    return SteppingNow()


@pytest.fixture
async def stack(warehouse: FakeWarehouse, now: SteppingNow) -> AsyncIterator[ChatStack]:
    test_stack = create_test_chat_stack(httpx.MockTransport(warehouse.handler), settings=make_settings(), now=now)
    yield test_stack
    await test_stack.aclose()
