import asyncio
import logging
from typing import Any, Awaitable, Callable

from blockchain.codec import UNKNOWN_EVENT_NAME
from blockchain.contract_service import ContractService
from blockchain.details_service import TransactionDetailsService
from blockchain.schemas import ContractDetails, TransactionDetails
from core.exceptions import EventNotFoundException
from core.redis.keys import (
    explain_contract_key,
    transaction_explanation_key,
)
from core.redis.providers import CacheService
from explainer.llm import LLMService
from explainer.prompts import EXPLAIN_CONTRACT_PROMPT, EXPLAIN_TRANSACTION_PROMPT
from explainer.schemas import ExplainContractOutput, ExplainTransactionOutput
from explainer.sessions import SessionRegistry, Subscription, subscription_identity
from explainer.streaming import StreamCallbacks, StreamController


def contract_prompt_input(details: ContractDetails) -> dict[str, Any]:
    return details.model_dump(mode="json", by_alias=True, exclude_none=True)


def transaction_prompt_input(
    details: TransactionDetails,
    contract_explanation: ExplainContractOutput
) -> dict[str, Any]:
    """
    Build the LLM input for a transaction explanation.

    Only the explanation of the called function and of the emitted events
    is forwarded.

    Parameters
    ----------
    details : TransactionDetails
        Decoded transaction
    contract_explanation : ExplainContractOutput
        Explanation of the contract the transaction interacted with

    Returns
    -------
    dict[str, Any]
        JSON-serializable prompt input

    Raises
    ------
    EventNotFoundException
        If a decoded event has no entry in the contract explanation
    """
    explained_events = {event.name: event for event in contract_explanation.events}
    events = []
    for log in details.logs:
        if log.event_name == UNKNOWN_EVENT_NAME:
            continue
        event = explained_events.get(log.event_name)
        if event is None:
            raise EventNotFoundException()
        if event not in events:
            events.append(event)

    functions = [
        function for function in contract_explanation.functions
        if function.name == details.function_call.function_name
    ]

    return {
        "transaction": details.model_dump(mode="json"),
        "contractExplanation": {
            "overview": contract_explanation.overview,
            "functions": [function.model_dump(mode="json") for function in functions],
            "events": [event.model_dump(mode="json") for event in events],
        },
    }


class ExplanationService:
    """
    Cache-first contract and transaction explanations.

    Completed generations are cached before they are delivered. Streamed
    explanations are deduplicated per session through the session registry.

    Parameters
    ----------
    llm : LLMService
        Structured generation service
    contract_service : ContractService
        Contract discovery service
    transaction_details : TransactionDetailsService
        Cache-first decoded transactions
    cache_service : CacheService
        Cache service instance
    sessions : SessionRegistry
        Active subscriptions
    logger : logging.Logger
        Logger instance
    """

    def __init__(
        self,
        llm: LLMService,
        contract_service: ContractService,
        transaction_details: TransactionDetailsService,
        cache_service: CacheService,
        sessions: SessionRegistry,
        logger: logging.Logger
    ):
        self.llm = llm
        self.contracts = contract_service
        self.transactions = transaction_details
        self.cache = cache_service
        self.sessions = sessions
        self.logger = logger

    async def explain_contract(self, chain_id: str, contract_address: str) -> ExplainContractOutput:
        """
        Explain a contract, generating the explanation on a cache miss.

        Parameters
        ----------
        chain_id : str
            Chain id
        contract_address : str
            Contract address

        Returns
        -------
        ExplainContractOutput
            Contract explanation
        """
        cached = await self.explain_contract_from_cache(chain_id, contract_address)
        if cached is not None:
            return cached

        details = await self.get_contract_details(chain_id, contract_address)
        result = await self.llm.generate(
            EXPLAIN_CONTRACT_PROMPT, ExplainContractOutput, contract_prompt_input(details)
        )

        cache_key = explain_contract_key(chain_id, contract_address)
        if not await self.cache.set(cache_key, result.model_dump(mode="json")):
            self.logger.error(f"Failed to cache contract explanation under {cache_key}")
        return result

    async def explain_contract_from_cache(
        self,
        chain_id: str,
        contract_address: str
    ) -> ExplainContractOutput | None:
        cache_key = explain_contract_key(chain_id, contract_address)

        cached = await self.cache.get(cache_key)
        if cached:
            self.logger.info(f"Cache hit for key: {cache_key}")
            return ExplainContractOutput.model_validate(cached)

        self.logger.info(f"Cache miss for key: {cache_key}")
        return None

    async def get_contract_details(self, chain_id: str, contract_address: str) -> ContractDetails:
        return await self.contracts.get_contract(chain_id, contract_address)

    async def get_transaction_details(
        self,
        chain_id: str,
        transaction_hash: str,
        contract_address: str
    ) -> TransactionDetails:
        """
        Get a decoded transaction from cache or chain.

        Parameters
        ----------
        chain_id : str
            Chain id
        transaction_hash : str
            Transaction hash
        contract_address : str
            Contract whose ABI decodes the transaction

        Returns
        -------
        TransactionDetails
            Decoded transaction
        """
        return await self.transactions.get_transaction(chain_id, contract_address, transaction_hash)

    def _contract_controller(
        self,
        chain_id: str,
        contract_address: str,
        contract_details: ContractDetails,
        callbacks: StreamCallbacks[ExplainContractOutput]
    ) -> StreamController[ExplainContractOutput]:
        cache_key = explain_contract_key(chain_id, contract_address)
        return StreamController(
            self.llm.stream(EXPLAIN_CONTRACT_PROMPT, ExplainContractOutput, contract_prompt_input(contract_details)),
            callbacks,
            self.logger,
            persist=lambda result: self.cache.set(cache_key, result.model_dump(mode="json")),
        )

    def _transaction_controller(
        self,
        details: TransactionDetails,
        contract_explanation: ExplainContractOutput,
        callbacks: StreamCallbacks[ExplainTransactionOutput]
    ) -> StreamController[ExplainTransactionOutput]:
        prompt_input = transaction_prompt_input(details, contract_explanation)
        cache_key = transaction_explanation_key(details.hash)
        return StreamController(
            self.llm.stream(EXPLAIN_TRANSACTION_PROMPT, ExplainTransactionOutput, prompt_input),
            callbacks,
            self.logger,
            persist=lambda result: self.cache.set(cache_key, result.model_dump(mode="json")),
        )

    def explain_contract_stream(
        self,
        chain_id: str,
        contract_address: str,
        contract_details: ContractDetails,
        callbacks: StreamCallbacks[ExplainContractOutput]
    ) -> Callable[[], None]:
        """
        Stream a contract explanation.

        Parameters
        ----------
        chain_id : str
            Chain id
        contract_address : str
            Contract address, used for the cache key
        contract_details : ContractDetails
            ABI and sources to explain
        callbacks : StreamCallbacks[ExplainContractOutput]
            Consumer callbacks

        Returns
        -------
        Callable[[], None]
            Cancels the generation and silences the callbacks
        """
        return self._contract_controller(chain_id, contract_address, contract_details, callbacks).start().cancel

    def explain_transaction_stream(
        self,
        details: TransactionDetails,
        contract_explanation: ExplainContractOutput,
        callbacks: StreamCallbacks[ExplainTransactionOutput]
    ) -> Callable[[], None]:
        """
        Stream a transaction explanation.

        Parameters
        ----------
        details : TransactionDetails
            Decoded transaction
        contract_explanation : ExplainContractOutput
            Explanation of the contract the transaction interacted with
        callbacks : StreamCallbacks[ExplainTransactionOutput]
            Consumer callbacks

        Returns
        -------
        Callable[[], None]
            Cancels the generation and silences the callbacks

        Raises
        ------
        EventNotFoundException
            If a decoded event is missing from the contract explanation
        """
        return self._transaction_controller(details, contract_explanation, callbacks).start().cancel

    def subscribe_contract_explanation(
        self,
        session_id: str,
        chain_id: str,
        contract_address: str,
        callbacks: StreamCallbacks[ExplainContractOutput]
    ) -> Subscription:
        """
        Subscribe a session to a contract explanation.

        Parameters
        ----------
        session_id : str
            Caller session
        chain_id : str
            Chain id
        contract_address : str
            Contract address
        callbacks : StreamCallbacks[ExplainContractOutput]
            Consumer callbacks

        Returns
        -------
        Subscription
            Running subscription, or an idle one if the session already has one
        """
        identity = subscription_identity(session_id)
        subscription = self.sessions.acquire(identity)
        if subscription is None:
            return Subscription.idle(identity)

        guarded = self._guard(subscription, callbacks)

        async def run() -> None:
            cached = await self.explain_contract_from_cache(chain_id, contract_address)
            if cached is not None:
                guarded.on_complete(cached)
                return
            details = await self.get_contract_details(chain_id, contract_address)
            controller = self._contract_controller(chain_id, contract_address, details, guarded).start()
            subscription.bind_stream(controller.cancel, controller.wait)
            await controller.wait()

        subscription.attach(asyncio.create_task(self._supervise(subscription, guarded, run)))
        return subscription

    def subscribe_transaction_explanation(
        self,
        session_id: str,
        chain_id: str,
        contract_address: str,
        transaction_hash: str,
        callbacks: StreamCallbacks[ExplainTransactionOutput]
    ) -> Subscription:
        """
        Subscribe a session to a transaction explanation.

        Parameters
        ----------
        session_id : str
            Caller session
        chain_id : str
            Chain id
        contract_address : str
            Contract the transaction interacted with
        transaction_hash : str
            Transaction hash
        callbacks : StreamCallbacks[ExplainTransactionOutput]
            Consumer callbacks

        Returns
        -------
        Subscription
            Running subscription, or an idle one if the session already
            subscribed to this transaction
        """
        identity = subscription_identity(session_id, transaction_hash)
        subscription = self.sessions.acquire(identity)
        if subscription is None:
            return Subscription.idle(identity)

        guarded = self._guard(subscription, callbacks)

        async def run() -> None:
            cache_key = transaction_explanation_key(transaction_hash)
            cached = await self.cache.get(cache_key)
            if cached:
                self.logger.info(f"Cache hit for key: {cache_key}")
                guarded.on_complete(ExplainTransactionOutput.model_validate(cached))
                return

            self.logger.info(f"Cache miss for key: {cache_key}")
            details, contract_explanation = await asyncio.gather(
                self.get_transaction_details(chain_id, transaction_hash, contract_address),
                self.explain_contract(chain_id, contract_address),
            )
            controller = self._transaction_controller(details, contract_explanation, guarded).start()
            subscription.bind_stream(controller.cancel, controller.wait)
            await controller.wait()

        subscription.attach(asyncio.create_task(self._supervise(subscription, guarded, run)))
        return subscription

    @staticmethod
    def _guard(subscription: Subscription, callbacks: StreamCallbacks) -> StreamCallbacks:
        def progress(partial: dict[str, Any]) -> None:
            if subscription.active:
                callbacks.on_progress(partial)

        def complete(result: Any) -> None:
            if subscription.finish():
                callbacks.on_complete(result)

        def error(exc: Exception) -> None:
            if subscription.finish():
                callbacks.on_error(exc)

        return StreamCallbacks(on_progress=progress, on_complete=complete, on_error=error)

    async def _supervise(
        self,
        subscription: Subscription,
        callbacks: StreamCallbacks,
        flow: Callable[[], Awaitable[None]]
    ) -> None:
        try:
            await flow()
        except Exception as e:  # dependency failures end the subscription through on_error
            self.logger.warning(f"Explanation for {subscription.identity} failed: {e}")
            callbacks.on_error(e)
        finally:
            self.sessions.release(subscription)
