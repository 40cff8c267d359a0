import os

os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("TOKEN_ADDRESS", "0x2C724d1FcA1B3D471EBAa004a054621aF85D417C")
os.environ.setdefault("BULK_TOKEN_SENDER_ADDRESS", "0xfFB643E73f280B97809A8b41f7232AB401a04ee1")

import pytest
from loguru import logger

from core.batch import to_base_units
from tests.fakes import OWNER, FakeChain, make_distributor


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def chain():
    return FakeChain(balances={OWNER: to_base_units("1000000")})


@pytest.fixture
def distributor(chain):
    return make_distributor(chain)


@pytest.fixture
def log_messages():
    messages = []
    handler_id = logger.add(lambda m: messages.append(m.record["message"]), level="DEBUG")
    yield messages
    logger.remove(handler_id)
