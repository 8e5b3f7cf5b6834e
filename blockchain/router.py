from fastapi import APIRouter
from dishka.integrations.fastapi import inject
from dishka import FromComponent
from typing import Annotated
from blockchain.schemas import (
    GetTransactionsRequest,
    GetTransactionRequest,
    TransactionsResponse,
    TransactionDetails
)
from blockchain.usecases import GetTransactionsUseCase, GetTransactionUseCase

router = APIRouter(
    prefix="/api/blockchain",
    tags=["Blockchain"]
)


@router.post("/transactions", response_model=TransactionsResponse)
@inject
async def get_transactions(
    request: GetTransactionsRequest,
    use_case: Annotated[
        GetTransactionsUseCase, FromComponent("blockchain")
    ]
) -> TransactionsResponse:
    """
    Get decoded transactions that emitted logs from a contract.

    Parameters
    ----------
    request : GetTransactionsRequest
        Request with chain id, contract address and optional block range
    use_case : GetTransactionsUseCase
        Use case for getting transactions

    Returns
    -------
    TransactionsResponse
        Decoded transactions in discovery order
    """
    return await use_case(
        chain_id=request.chain_id,
        contract_address=request.contract_address,
        from_block=request.from_block,
        to_block=request.to_block
    )


@router.post("/transaction", response_model=TransactionDetails)
@inject
async def get_transaction(
    request: GetTransactionRequest,
    use_case: Annotated[
        GetTransactionUseCase, FromComponent("blockchain")
    ]
) -> TransactionDetails:
    """
    Get one decoded transaction.

    Parameters
    ----------
    request : GetTransactionRequest
        Request with chain id, contract address and transaction hash
    use_case : GetTransactionUseCase
        Use case for getting a transaction

    Returns
    -------
    TransactionDetails
        Decoded transaction
    """
    return await use_case(
        chain_id=request.chain_id,
        contract_address=request.contract_address,
        transaction_hash=request.transaction_hash
    )
