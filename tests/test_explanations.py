import asyncio
import pytest
from unittest.mock import AsyncMock, MagicMock

from blockchain.abi import ContractAbi, parse_abi
from blockchain.entities import ChainTransaction, RawLogEntry
from blockchain.schemas import ContractDetails, TransactionDetails
from blockchain.details_service import TransactionDetailsService
from blockchain.services import TransactionService
from core.exceptions import ABIFetchException, EventNotFoundException
from core.redis.keys import (
    contract_details_key,
    explain_contract_key,
    transaction_details_key,
    transaction_explanation_key,
)
from explainer.schemas import ExplainContractOutput, ExplainTransactionOutput
from explainer.services import ExplanationService, transaction_prompt_input
from explainer.sessions import SessionRegistry
from explainer.streaming import StreamCallbacks
from conftest import (
    CONTRACT,
    ERC20_ABI,
    RECIPIENT,
    SENDER,
    FakeGenerationStream,
    contract_explanation_payload,
    transaction_explanation_payload,
    transfer_calldata,
    transfer_log,
    tx_hash,
)

TX = tx_hash(42)


def decoded_transaction(event_topics: list[str] | None = None) -> TransactionDetails:
    topics, data = transfer_log(SENDER, RECIPIENT, 5)
    return TransactionService.assemble(
        ChainTransaction(
            hash=TX,
            input=transfer_calldata(RECIPIENT, 5),
            sender=SENDER,
            recipient=CONTRACT,
            block_number=100
        ),
        [RawLogEntry(
            transaction_hash=TX,
            log_index=0,
            address=CONTRACT,
            topics=event_topics or topics,
            data=data
        )],
        ContractAbi.from_json(ERC20_ABI)
    )


class Recorder:
    """Collects callback invocations in order."""

    def __init__(self):
        self.events: list[tuple[str, object]] = []

    def callbacks(self) -> StreamCallbacks:
        return StreamCallbacks(
            on_progress=lambda partial: self.events.append(("progress", partial)),
            on_complete=lambda result: self.events.append(("complete", result)),
            on_error=lambda exc: self.events.append(("error", exc)),
        )

    @property
    def kinds(self) -> list[str]:
        return [kind for kind, _ in self.events]


async def until(condition) -> None:
    while not condition():
        await asyncio.sleep(0)


@pytest.fixture
def contract_explanation() -> ExplainContractOutput:
    return ExplainContractOutput.model_validate(contract_explanation_payload())


@pytest.fixture
def transaction_explanation() -> ExplainTransactionOutput:
    return ExplainTransactionOutput.model_validate(transaction_explanation_payload())


@pytest.fixture
def contract_service() -> MagicMock:
    service = MagicMock()
    service.get_contract = AsyncMock(
        return_value=ContractDetails(abi=parse_abi(ERC20_ABI), name="Token")
    )
    return service


@pytest.fixture
def transaction_service() -> MagicMock:
    service = MagicMock()
    service.get_transaction_by_hash = AsyncMock(return_value=decoded_transaction())
    return service


@pytest.fixture
def llm(contract_explanation) -> MagicMock:
    llm = MagicMock()
    llm.generate = AsyncMock(return_value=contract_explanation)
    llm.stream = MagicMock(
        return_value=FakeGenerationStream([{"overview": "An"}], result=contract_explanation)
    )
    return llm


@pytest.fixture
def sessions(logger) -> SessionRegistry:
    return SessionRegistry(logger)


@pytest.fixture
def details_service(transaction_service, contract_service, fake_cache, logger) -> TransactionDetailsService:
    return TransactionDetailsService(
        transaction_service=transaction_service,
        contract_service=contract_service,
        cache_service=fake_cache,
        logger=logger
    )


@pytest.fixture
def service(llm, contract_service, details_service, fake_cache, sessions, logger) -> ExplanationService:
    return ExplanationService(
        llm=llm,
        contract_service=contract_service,
        transaction_details=details_service,
        cache_service=fake_cache,
        sessions=sessions,
        logger=logger
    )


class TestExplainContract:
    """
    Unit tests for cache-first contract explanations.
    """

    @pytest.mark.asyncio
    async def test_cache_hit_skips_generation(self, service, fake_cache, llm, contract_service):
        fake_cache.store[explain_contract_key("1", CONTRACT)] = contract_explanation_payload()

        result = await service.explain_contract("1", CONTRACT)

        assert result.overview == "An ERC20 token."
        llm.generate.assert_not_awaited()
        contract_service.get_contract.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_miss_generates_and_caches(self, service, fake_cache, llm, contract_explanation):
        result = await service.explain_contract("1", CONTRACT)

        assert result == contract_explanation
        llm.generate.assert_awaited_once()
        cached = fake_cache.store[explain_contract_key("1", CONTRACT)]
        assert ExplainContractOutput.model_validate(cached) == contract_explanation
        assert cached["functions"][0]["sideEffects"] == ["Emits Transfer"]

    @pytest.mark.asyncio
    async def test_dependency_failure_propagates(self, service, fake_cache, contract_service, llm):
        contract_service.get_contract.side_effect = ABIFetchException()

        with pytest.raises(ABIFetchException):
            await service.explain_contract("1", CONTRACT)

        llm.generate.assert_not_awaited()
        assert fake_cache.store == {}

    @pytest.mark.asyncio
    async def test_from_cache_miss(self, service):
        assert await service.explain_contract_from_cache("1", CONTRACT) is None


class TestTransactionDetails:
    """
    Unit tests for cache-first transaction details.
    """

    @pytest.mark.asyncio
    async def test_cache_hit(self, service, fake_cache, transaction_service):
        fake_cache.store[transaction_details_key(TX)] = decoded_transaction().model_dump()

        details = await service.get_transaction_details("1", TX, CONTRACT)

        assert details == decoded_transaction()
        transaction_service.get_transaction_by_hash.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_miss_decodes_with_contract_abi(self, service, fake_cache, transaction_service):
        details = await service.get_transaction_details("1", TX, CONTRACT)

        assert details.function_call.function_name == "transfer"
        kwargs = transaction_service.get_transaction_by_hash.await_args.kwargs
        assert kwargs["transaction_hash"] == TX
        assert kwargs["contract_address"] == CONTRACT
        assert "0xa9059cbb" in kwargs["abi"].functions
        assert transaction_details_key(TX) in fake_cache.store


class TestContractSubscription:
    """
    Unit tests for streamed contract explanations.
    """

    @pytest.mark.asyncio
    async def test_cache_hit_completes_once(self, service, fake_cache, llm, sessions):
        fake_cache.store[explain_contract_key("1", CONTRACT)] = contract_explanation_payload()
        recorder = Recorder()

        subscription = service.subscribe_contract_explanation("s1", "1", CONTRACT, recorder.callbacks())
        await subscription.wait()

        assert recorder.kinds == ["complete"]
        llm.stream.assert_not_called()
        assert "s1" not in sessions

    @pytest.mark.asyncio
    async def test_miss_streams_and_caches_before_completion(self, service, fake_cache, contract_explanation):
        recorder = Recorder()
        cache_key = explain_contract_key("1", CONTRACT)

        def on_complete(result):
            # the result is already cached when completion is delivered
            recorder.events.append(("complete", cache_key in fake_cache.store))

        callbacks = StreamCallbacks(
            on_progress=recorder.callbacks().on_progress,
            on_complete=on_complete,
            on_error=recorder.callbacks().on_error
        )
        subscription = service.subscribe_contract_explanation("s1", "1", CONTRACT, callbacks)
        await subscription.wait()

        assert recorder.events == [("progress", {"overview": "An"}), ("complete", True)]
        assert ExplainContractOutput.model_validate(fake_cache.store[cache_key]) == contract_explanation

    @pytest.mark.asyncio
    async def test_duplicate_subscription_is_idle(self, service, llm, sessions, contract_explanation):
        gate = asyncio.Event()
        llm.stream.return_value = FakeGenerationStream([{"overview": "An"}], result=contract_explanation, gate=gate)
        first, second = Recorder(), Recorder()

        active = service.subscribe_contract_explanation("s1", "1", CONTRACT, first.callbacks())
        duplicate = service.subscribe_contract_explanation("s1", "1", CONTRACT, second.callbacks())

        assert active.active
        assert duplicate.is_idle
        duplicate.cancel()
        assert "s1" in sessions

        gate.set()
        await active.wait()
        await duplicate.wait()

        assert first.kinds == ["progress", "complete"]
        assert second.events == []
        llm.stream.assert_called_once()
        assert "s1" not in sessions

    @pytest.mark.asyncio
    async def test_identity_is_free_after_completion(self, service, sessions):
        first = service.subscribe_contract_explanation("s1", "1", CONTRACT, Recorder().callbacks())
        await first.wait()

        again = service.subscribe_contract_explanation("s1", "1", CONTRACT, Recorder().callbacks())

        assert again.active
        await again.wait()

    @pytest.mark.asyncio
    async def test_dependency_failure_errors_once(self, service, contract_service, fake_cache, llm, sessions):
        contract_service.get_contract.side_effect = ABIFetchException()
        recorder = Recorder()

        subscription = service.subscribe_contract_explanation("s1", "1", CONTRACT, recorder.callbacks())
        await subscription.wait()

        assert recorder.kinds == ["error"]
        assert isinstance(recorder.events[0][1], ABIFetchException)
        assert fake_cache.store == {}
        llm.stream.assert_not_called()
        assert "s1" not in sessions

    @pytest.mark.asyncio
    async def test_generation_failure_is_not_cached(self, service, llm, fake_cache):
        llm.stream.return_value = FakeGenerationStream([{"overview": "An"}], error=RuntimeError("boom"))
        recorder = Recorder()

        subscription = service.subscribe_contract_explanation("s1", "1", CONTRACT, recorder.callbacks())
        await subscription.wait()

        assert recorder.kinds == ["progress", "error"]
        assert explain_contract_key("1", CONTRACT) not in fake_cache.store

    @pytest.mark.asyncio
    async def test_cache_write_failure_still_completes(self, service, fake_cache):
        fake_cache.fail_writes = True
        recorder = Recorder()

        subscription = service.subscribe_contract_explanation("s1", "1", CONTRACT, recorder.callbacks())
        await subscription.wait()

        assert recorder.kinds == ["progress", "complete"]
        assert explain_contract_key("1", CONTRACT) in fake_cache.writes

    @pytest.mark.asyncio
    async def test_cancel_mid_stream(self, service, llm, fake_cache, sessions, contract_explanation):
        gate = asyncio.Event()
        stream = FakeGenerationStream([{"a": 1}, {"a": 2}], result=contract_explanation, gate=gate)
        llm.stream.return_value = stream
        recorder = Recorder()

        subscription = service.subscribe_contract_explanation("s1", "1", CONTRACT, recorder.callbacks())
        gate.set()
        while not recorder.events:
            await asyncio.sleep(0)

        subscription.cancel()
        subscription.cancel()
        gate.set()
        await subscription.wait()

        assert recorder.kinds == ["progress"]
        assert stream.result_calls == 0
        assert explain_contract_key("1", CONTRACT) not in fake_cache.store
        assert "s1" not in sessions

    @pytest.mark.asyncio
    async def test_cancel_all(self, service, llm, sessions, contract_explanation):
        llm.stream.return_value = FakeGenerationStream(
            [{"a": 1}], result=contract_explanation, gate=asyncio.Event()
        )
        recorder = Recorder()
        subscription = service.subscribe_contract_explanation("s1", "1", CONTRACT, recorder.callbacks())

        sessions.cancel_all()
        await subscription.wait()

        assert len(sessions) == 0
        assert recorder.events == []

    @pytest.mark.asyncio
    async def test_shutdown_waits_for_generation_to_close(self, service, llm, sessions, contract_explanation):
        gate = asyncio.Event()
        stream = FakeGenerationStream([{"a": 1}, {"a": 2}], result=contract_explanation, gate=gate)
        llm.stream.return_value = stream
        recorder = Recorder()
        service.subscribe_contract_explanation("s1", "1", CONTRACT, recorder.callbacks())
        gate.set()
        await asyncio.wait_for(until(lambda: recorder.events), timeout=1)

        await sessions.shutdown()

        # the generation is closed by the time shutdown returns
        assert stream.closed
        assert len(sessions) == 0
        assert recorder.kinds == ["progress"]


class TestTransactionSubscription:
    """
    Unit tests for streamed transaction explanations.
    """

    @pytest.fixture
    def primed_cache(self, fake_cache):
        fake_cache.store[explain_contract_key("1", CONTRACT)] = contract_explanation_payload()
        return fake_cache

    @pytest.mark.asyncio
    async def test_streams_and_caches(self, service, llm, primed_cache, sessions, transaction_explanation):
        llm.stream.return_value = FakeGenerationStream([{"summary": "A"}], result=transaction_explanation)
        recorder = Recorder()

        subscription = service.subscribe_transaction_explanation("s1", "1", CONTRACT, TX, recorder.callbacks())
        assert f"s1:{TX}" in sessions
        await subscription.wait()

        assert recorder.events[-1] == ("complete", transaction_explanation)
        assert transaction_explanation_key(TX) in primed_cache.store
        assert f"s1:{TX}" not in sessions

        prompt_input = llm.stream.call_args.args[2]
        assert [e["name"] for e in prompt_input["contractExplanation"]["events"]] == ["Transfer"]
        assert [f["name"] for f in prompt_input["contractExplanation"]["functions"]] == ["transfer"]

    @pytest.mark.asyncio
    async def test_cache_hit(self, service, llm, fake_cache, transaction_explanation):
        fake_cache.store[transaction_explanation_key(TX)] = transaction_explanation_payload()
        recorder = Recorder()

        subscription = service.subscribe_transaction_explanation("s1", "1", CONTRACT, TX, recorder.callbacks())
        await subscription.wait()

        assert recorder.events == [("complete", transaction_explanation)]
        llm.stream.assert_not_called()

    @pytest.mark.asyncio
    async def test_sessions_are_scoped_by_transaction(self, service, llm, primed_cache, transaction_explanation):
        llm.stream.return_value = FakeGenerationStream([], result=transaction_explanation)

        first = service.subscribe_transaction_explanation("s1", "1", CONTRACT, TX, Recorder().callbacks())
        other = service.subscribe_transaction_explanation("s1", "1", CONTRACT, tx_hash(43), Recorder().callbacks())

        assert first.active and other.active
        await first.wait()
        await other.wait()

    @pytest.mark.asyncio
    async def test_unknown_event_in_explanation(self, service, primed_cache, transaction_service, llm):
        approval_topics = [
            ContractAbi.from_json(ERC20_ABI).items[2].topic,
            *transfer_log(SENDER, RECIPIENT, 5)[0][1:]
        ]
        transaction_service.get_transaction_by_hash.return_value = decoded_transaction(approval_topics)
        recorder = Recorder()

        subscription = service.subscribe_transaction_explanation("s1", "1", CONTRACT, TX, recorder.callbacks())
        await subscription.wait()

        assert recorder.kinds == ["error"]
        error = recorder.events[0][1]
        assert isinstance(error, EventNotFoundException)
        assert error.message == "Event not found"
        llm.stream.assert_not_called()


class TestDirectStreams:
    """
    Unit tests for streaming explanations without a session.
    """

    @pytest.mark.asyncio
    async def test_contract_stream_caches_and_completes(self, service, llm, fake_cache, contract_explanation):
        """
        Test that a contract stream delivers partials, caches and completes once.

        Parameters
        ----------
        service : ExplanationService
            Service under test
        llm : MagicMock
            Mocked generation service
        fake_cache : FakeCache
            In-memory cache
        contract_explanation : ExplainContractOutput
            Expected result
        """
        recorder = Recorder()
        details = ContractDetails(abi=parse_abi(ERC20_ABI), name="Token")

        cancel = service.explain_contract_stream("1", CONTRACT, details, recorder.callbacks())
        await asyncio.wait_for(until(lambda: "complete" in recorder.kinds), timeout=1)

        assert recorder.events == [("progress", {"overview": "An"}), ("complete", contract_explanation)]
        cached = fake_cache.store[explain_contract_key("1", CONTRACT)]
        assert ExplainContractOutput.model_validate(cached) == contract_explanation
        assert llm.stream.call_args.args[2]["name"] == "Token"

        # cancelling a finished stream changes nothing
        cancel()
        cancel()
        assert recorder.kinds == ["progress", "complete"]

    @pytest.mark.asyncio
    async def test_transaction_stream_caches_and_completes(
        self, service, llm, fake_cache, contract_explanation, transaction_explanation
    ):
        llm.stream.return_value = FakeGenerationStream([{"summary": "A"}], result=transaction_explanation)
        recorder = Recorder()

        cancel = service.explain_transaction_stream(decoded_transaction(), contract_explanation, recorder.callbacks())
        await asyncio.wait_for(until(lambda: "complete" in recorder.kinds), timeout=1)

        assert recorder.events == [("progress", {"summary": "A"}), ("complete", transaction_explanation)]
        cached = fake_cache.store[transaction_explanation_key(TX)]
        assert ExplainTransactionOutput.model_validate(cached) == transaction_explanation
        assert callable(cancel)

    @pytest.mark.asyncio
    async def test_cancel_handle_stops_generation(self, service, llm, fake_cache, contract_explanation):
        stream = FakeGenerationStream([{"overview": "An"}], result=contract_explanation, gate=asyncio.Event())
        llm.stream.return_value = stream
        recorder = Recorder()
        details = ContractDetails(abi=parse_abi(ERC20_ABI))

        cancel = service.explain_contract_stream("1", CONTRACT, details, recorder.callbacks())
        await asyncio.sleep(0)
        cancel()
        stream.gate.set()
        await asyncio.wait_for(until(lambda: stream.closed), timeout=1)

        assert recorder.events == []
        assert stream.result_calls == 0
        assert explain_contract_key("1", CONTRACT) not in fake_cache.store


class TestTransactionPromptInput:
    """
    Unit tests for the transaction prompt context.
    """

    def test_unknown_events_are_skipped(self, contract_explanation):
        details = decoded_transaction(["0x" + "00" * 32])
        prompt_input = transaction_prompt_input(details, contract_explanation)
        assert prompt_input["contractExplanation"]["events"] == []

    def test_stream_raises_before_generation(self, service, llm, contract_explanation):
        explanation = contract_explanation.model_copy(update={"events": []})

        with pytest.raises(EventNotFoundException):
            service.explain_transaction_stream(decoded_transaction(), explanation, Recorder().callbacks())

        llm.stream.assert_not_called()


def test_contract_details_key_used_by_discovery_is_distinct():
    assert contract_details_key("1", CONTRACT) != explain_contract_key("1", CONTRACT)
