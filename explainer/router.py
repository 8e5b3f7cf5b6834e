from fastapi import APIRouter
from fastapi.responses import StreamingResponse
from dishka.integrations.fastapi import inject
from dishka import FromComponent
from typing import Annotated
from blockchain.schemas import ContractRequest, ContractDetails
from explainer.schemas import (
    ContractStreamRequest,
    TransactionStreamRequest,
    ExplainContractOutput
)
from explainer.usecases import (
    ExplainContractUseCase,
    GetContractDetailsUseCase,
    StreamContractExplanationUseCase,
    StreamTransactionExplanationUseCase
)

router = APIRouter(
    prefix="/api/explainer",
    tags=["Explainer"]
)

SSE_HEADERS = {"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}


@router.post("/contract/details", response_model=ContractDetails, response_model_exclude_none=True)
@inject
async def get_contract_details(
    request: ContractRequest,
    use_case: Annotated[
        GetContractDetailsUseCase, FromComponent("explainer")
    ]
) -> ContractDetails:
    """
    Get the ABI and sources of a contract.

    Parameters
    ----------
    request : ContractRequest
        Request with chain id and contract address
    use_case : GetContractDetailsUseCase
        Use case for getting contract details

    Returns
    -------
    ContractDetails
        ABI, name and sources
    """
    return await use_case(
        chain_id=request.chain_id,
        contract_address=request.contract_address
    )


@router.post("/contract", response_model=ExplainContractOutput)
@inject
async def explain_contract(
    request: ContractRequest,
    use_case: Annotated[
        ExplainContractUseCase, FromComponent("explainer")
    ]
) -> ExplainContractOutput:
    """
    Explain a contract.

    Parameters
    ----------
    request : ContractRequest
        Request with chain id and contract address
    use_case : ExplainContractUseCase
        Use case for explaining a contract

    Returns
    -------
    ExplainContractOutput
        Contract explanation
    """
    return await use_case(
        chain_id=request.chain_id,
        contract_address=request.contract_address
    )


@router.post("/contract/stream")
@inject
async def stream_contract_explanation(
    request: ContractStreamRequest,
    use_case: Annotated[
        StreamContractExplanationUseCase, FromComponent("explainer")
    ]
) -> StreamingResponse:
    """
    Stream a contract explanation as server-sent events.

    Parameters
    ----------
    request : ContractStreamRequest
        Request with chain id, contract address and session id
    use_case : StreamContractExplanationUseCase
        Use case for streaming a contract explanation

    Returns
    -------
    StreamingResponse
        ``progress`` events followed by one ``complete`` or ``error`` event
    """
    events = use_case(
        session_id=request.session_id,
        chain_id=request.chain_id,
        contract_address=request.contract_address
    )
    return StreamingResponse(events, media_type="text/event-stream", headers=SSE_HEADERS)


@router.post("/transaction/stream")
@inject
async def stream_transaction_explanation(
    request: TransactionStreamRequest,
    use_case: Annotated[
        StreamTransactionExplanationUseCase, FromComponent("explainer")
    ]
) -> StreamingResponse:
    """
    Stream a transaction explanation as server-sent events.

    Parameters
    ----------
    request : TransactionStreamRequest
        Request with chain id, contract address, transaction hash and session id
    use_case : StreamTransactionExplanationUseCase
        Use case for streaming a transaction explanation

    Returns
    -------
    StreamingResponse
        ``progress`` events followed by one ``complete`` or ``error`` event
    """
    events = use_case(
        session_id=request.session_id,
        chain_id=request.chain_id,
        contract_address=request.contract_address,
        transaction_hash=request.transaction_hash
    )
    return StreamingResponse(events, media_type="text/event-stream", headers=SSE_HEADERS)
