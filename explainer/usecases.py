import asyncio
import json
from typing import Any, AsyncIterator

from pydantic import BaseModel

from blockchain.schemas import ContractDetails
from core.exceptions import BaseCustomException
from explainer.schemas import ExplainContractOutput
from explainer.services import ExplanationService
from explainer.sessions import Subscription
from explainer.streaming import StreamCallbacks

# queue sentinel closing the event stream
_END = None


def format_sse(event: str, data: Any) -> str:
    """
    Encode one server-sent event.

    Parameters
    ----------
    event : str
        Event name
    data : Any
        JSON-serializable payload

    Returns
    -------
    str
        Event frame terminated by a blank line
    """
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


def error_message(exc: Exception) -> str:
    if isinstance(exc, BaseCustomException):
        return exc.message
    return "Internal server error"


class SSEBridge:
    """
    Turns stream callbacks into a queue of server-sent events.

    ``progress`` frames carry partial objects, ``complete`` the final object
    and ``error`` a ``{"message": ...}`` payload. The stream ends after the
    first terminal frame.
    """

    def __init__(self):
        self.queue: asyncio.Queue[str | None] = asyncio.Queue()

    def callbacks(self) -> StreamCallbacks:
        return StreamCallbacks(
            on_progress=self._on_progress,
            on_complete=self._on_complete,
            on_error=self._on_error,
        )

    def _on_progress(self, partial: dict[str, Any]) -> None:
        self.queue.put_nowait(format_sse("progress", partial))

    def _on_complete(self, result: BaseModel) -> None:
        self.queue.put_nowait(format_sse("complete", result.model_dump(mode="json")))
        self.queue.put_nowait(_END)

    def _on_error(self, exc: Exception) -> None:
        self.queue.put_nowait(format_sse("error", {"message": error_message(exc)}))
        self.queue.put_nowait(_END)

    async def events(self, subscription: Subscription) -> AsyncIterator[str]:
        """
        Yield frames until a terminal event; cancel the subscription when the client goes away.

        Parameters
        ----------
        subscription : Subscription
            Subscription feeding this bridge

        Yields
        ------
        str
            Server-sent event frames
        """
        if subscription.is_idle:
            return
        try:
            while (frame := await self.queue.get()) is not _END:
                yield frame
        finally:
            subscription.cancel()


class GetContractDetailsUseCase:
    """
    Use case for getting the ABI and sources of a contract.

    Parameters
    ----------
    explanation_service : ExplanationService
        Explanation orchestrator
    """

    def __init__(self, explanation_service: ExplanationService):
        self.service = explanation_service

    async def __call__(self, chain_id: str, contract_address: str) -> ContractDetails:
        return await self.service.get_contract_details(chain_id, contract_address)


class ExplainContractUseCase:
    """
    Use case for explaining a contract in one response.

    Parameters
    ----------
    explanation_service : ExplanationService
        Explanation orchestrator
    """

    def __init__(self, explanation_service: ExplanationService):
        self.service = explanation_service

    async def __call__(self, chain_id: str, contract_address: str) -> ExplainContractOutput:
        return await self.service.explain_contract(chain_id, contract_address)


class StreamContractExplanationUseCase:
    """
    Use case for streaming a contract explanation as server-sent events.

    Parameters
    ----------
    explanation_service : ExplanationService
        Explanation orchestrator
    """

    def __init__(self, explanation_service: ExplanationService):
        self.service = explanation_service

    def __call__(self, session_id: str, chain_id: str, contract_address: str) -> AsyncIterator[str]:
        """
        Execute use case.

        Parameters
        ----------
        session_id : str
            Caller session
        chain_id : str
            Chain id
        contract_address : str
            Contract address

        Returns
        -------
        AsyncIterator[str]
            Server-sent event frames, empty for a duplicate subscription
        """
        bridge = SSEBridge()
        subscription = self.service.subscribe_contract_explanation(
            session_id=session_id,
            chain_id=chain_id,
            contract_address=contract_address,
            callbacks=bridge.callbacks()
        )
        return bridge.events(subscription)


class StreamTransactionExplanationUseCase:
    """
    Use case for streaming a transaction explanation as server-sent events.

    Parameters
    ----------
    explanation_service : ExplanationService
        Explanation orchestrator
    """

    def __init__(self, explanation_service: ExplanationService):
        self.service = explanation_service

    def __call__(
        self,
        session_id: str,
        chain_id: str,
        contract_address: str,
        transaction_hash: str
    ) -> AsyncIterator[str]:
        bridge = SSEBridge()
        subscription = self.service.subscribe_transaction_explanation(
            session_id=session_id,
            chain_id=chain_id,
            contract_address=contract_address,
            transaction_hash=transaction_hash,
            callbacks=bridge.callbacks()
        )
        return bridge.events(subscription)
