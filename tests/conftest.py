import asyncio
import logging
import pytest
import pytest_asyncio
from eth_abi import encode
from eth_utils import event_signature_to_log_topic, function_signature_to_4byte_selector
from httpx import AsyncClient, ASGITransport
from unittest.mock import AsyncMock, patch
from typing import Any
import os


# Set test environment variables before imports
os.environ['REDIS_HOST'] = 'localhost'
os.environ['REDIS_PORT'] = '6379'
os.environ['REDIS_DB'] = '0'
os.environ['REDIS_PASSWORD'] = ''  # No password for mock
os.environ['OPENROUTER_API_KEY'] = 'test'
os.environ['MAINNET_ETHERSCAN_API_KEY'] = 'test'


CONTRACT = "0x" + "ab" * 20
SENDER = "0x" + "11" * 20
RECIPIENT = "0x" + "22" * 20

ERC20_ABI = [
    {
        "type": "function",
        "name": "transfer",
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "value", "type": "uint256"}
        ],
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "nonpayable"
    },
    {
        "type": "event",
        "name": "Transfer",
        "anonymous": False,
        "inputs": [
            {"name": "from", "type": "address", "indexed": True},
            {"name": "to", "type": "address", "indexed": True},
            {"name": "value", "type": "uint256", "indexed": False}
        ]
    },
    {
        "type": "event",
        "name": "Approval",
        "anonymous": False,
        "inputs": [
            {"name": "owner", "type": "address", "indexed": True},
            {"name": "spender", "type": "address", "indexed": True},
            {"name": "value", "type": "uint256", "indexed": False}
        ]
    }
]


def tx_hash(n: int) -> str:
    return "0x" + f"{n:064x}"


def address_topic(address: str) -> str:
    return "0x" + encode(["address"], [address]).hex()


def transfer_calldata(to: str, value: int) -> str:
    selector = function_signature_to_4byte_selector("transfer(address,uint256)")
    return "0x" + (selector + encode(["address", "uint256"], [to, value])).hex()


def transfer_log(sender: str, recipient: str, value: int) -> tuple[list[str], str]:
    topics = [
        "0x" + event_signature_to_log_topic("Transfer(address,address,uint256)").hex(),
        address_topic(sender),
        address_topic(recipient)
    ]
    return topics, "0x" + encode(["uint256"], [value]).hex()


def contract_explanation_payload() -> dict[str, Any]:
    return {
        "overview": "An ERC20 token.",
        "functions": [{
            "signature": "transfer(address,uint256)",
            "name": "transfer",
            "description": "Moves tokens to a recipient",
            "parameters": [
                {"name": "to", "type": "address", "description": "Recipient"},
                {"name": "value", "type": "uint256", "description": "Amount"}
            ],
            "returns": [{"type": "bool", "description": "Success"}],
            "visibility": ["public"],
            "payable": False,
            "modifiers": [],
            "sideEffects": ["Emits Transfer"]
        }],
        "events": [{
            "signature": "Transfer(address,address,uint256)",
            "name": "Transfer",
            "description": "Emitted on every transfer",
            "parameters": [
                {"name": "from", "type": "address", "indexed": True,
                 "description": "Sender", "significance": "Source"},
                {"name": "to", "type": "address", "indexed": True,
                 "description": "Recipient", "significance": "Destination"},
                {"name": "value", "type": "uint256", "indexed": False,
                 "description": "Amount", "significance": "Size"}
            ]
        }]
    }


def transaction_explanation_payload() -> dict[str, Any]:
    return {
        "summary": "A token transfer.",
        "details": {
            "functionCall": {"name": "transfer", "description": "Transfer", "arguments": []},
            "emittedEvents": [],
            "stateChanges": [],
            "value": {"amount": "0", "significance": "No ETH"},
            "context": {"blockNumber": 100, "from": SENDER, "to": CONTRACT},
            "securityAnalysis": "Nothing unusual",
            "businessImpact": "Payment"
        }
    }


class FakeCache:
    """In-memory stand-in for CacheService."""

    def __init__(self, fail_writes: bool = False):
        self.store: dict[str, Any] = {}
        self.fail_writes = fail_writes
        self.writes: list[str] = []

    async def get(self, key: str) -> Any | None:
        return self.store.get(key)

    async def set(self, key: str, value: Any, ttl: int | None = None) -> bool:
        self.writes.append(key)
        if self.fail_writes:
            return False
        self.store[key] = value
        return True

    async def delete(self, key: str) -> bool:
        self.store.pop(key, None)
        return True


class FakeGenerationStream:
    """
    Scripted generation stream.

    With a ``gate``, every ``gate.set()`` releases exactly one partial, so
    tests can interleave cancellation with emission.
    """

    def __init__(self, partials: list[dict], result: Any = None, error: Exception | None = None,
                 gate: asyncio.Event | None = None):
        self._partials = partials
        self._result = result
        self._error = error
        self.gate = gate
        self.result_calls = 0
        self.closed = False

    async def partials(self):
        for partial in self._partials:
            if self.gate is not None:
                await self.gate.wait()
                self.gate.clear()
            yield partial
        if self._error is not None:
            raise self._error

    async def result(self):
        self.result_calls += 1
        return self._result

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def logger() -> logging.Logger:
    return logging.getLogger("contract_explainer.tests")


@pytest.fixture
def fake_cache() -> FakeCache:
    return FakeCache()


@pytest_asyncio.fixture
async def mock_redis():
    """Mock Redis client for testing."""
    mock = AsyncMock()
    mock.ping = AsyncMock(return_value=True)
    mock.get = AsyncMock(return_value=None)
    mock.setex = AsyncMock(return_value=True)
    mock.aclose = AsyncMock()
    return mock


@pytest_asyncio.fixture
async def client(mock_redis):
    """
    Fixture for async test client with mocked Redis.

    Every test gets its own container, so the Redis mock configured by the
    test is the one the services see.

    Parameters
    ----------
    mock_redis : AsyncMock
        Mocked Redis client

    Yields
    ------
    AsyncClient
        Async HTTP client for testing
    """
    from core.container import build_container
    from main import create_app

    with patch('core.redis.providers.Redis', return_value=mock_redis):
        test_container = build_container()
        app = create_app(test_container)

        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac

        await test_container.close()
