import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from blockchain.abi import AbiItem

_ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")
_HASH_PATTERN = re.compile(r"^0x[0-9a-fA-F]{64}$")

MAX_BLOCK_RANGE = 10_000


def validate_chain_id(v: Any) -> str:
    v = str(v)
    if not v.isdigit():
        raise ValueError('Chain id must be a decimal number')
    return v


def validate_address(v: str) -> str:
    if not _ADDRESS_PATTERN.match(v):
        raise ValueError('Invalid contract address format')
    return v.lower()


def validate_transaction_hash(v: str) -> str:
    if not _HASH_PATTERN.match(v):
        raise ValueError('Invalid transaction hash format')
    return v.lower()


class ContractRequest(BaseModel):
    """
    Request schema identifying a contract.

    Attributes
    ----------
    chain_id : str
        Decimal chain id
    contract_address : str
        Contract address, normalized to lowercase
    """
    chain_id: str = Field(default="1", description="Chain id of the contract")
    contract_address: str = Field(..., description="Contract address")

    @field_validator('chain_id', mode='before')
    @classmethod
    def check_chain_id(cls, v: Any) -> str:
        return validate_chain_id(v)

    @field_validator('contract_address')
    @classmethod
    def check_address(cls, v: str) -> str:
        return validate_address(v)

    model_config = ConfigDict(from_attributes=True)


class GetTransactionsRequest(ContractRequest):
    """
    Request schema for transactions of a contract over a block range.

    Attributes
    ----------
    from_block : int | None
        First block, defaults to ``to_block - 10000``
    to_block : int | None
        Last block, defaults to the current head
    """
    from_block: int | None = Field(default=None, ge=0, description="Starting block number")
    to_block: int | None = Field(default=None, ge=0, description="Ending block number")

    @model_validator(mode='after')
    def check_range(self) -> "GetTransactionsRequest":
        if self.from_block is not None and self.to_block is not None:
            if self.from_block > self.to_block:
                raise ValueError('from_block must not exceed to_block')
            if self.to_block - self.from_block > MAX_BLOCK_RANGE:
                raise ValueError(f'Block range cannot exceed {MAX_BLOCK_RANGE} blocks')
        return self


class GetTransactionRequest(ContractRequest):
    """
    Request schema for a single transaction.

    Attributes
    ----------
    transaction_hash : str
        Transaction hash, normalized to lowercase
    """
    transaction_hash: str = Field(..., description="Transaction hash")

    @field_validator('transaction_hash')
    @classmethod
    def check_hash(cls, v: str) -> str:
        return validate_transaction_hash(v)


class DecodedFunctionCall(BaseModel):
    """
    Decoded transaction call.

    Attributes
    ----------
    function_name : str
        Function name, the raw selector when decoding failed, or ``Deployment``
    data : str
        Raw calldata
    args : dict[str, Any] | None
        Decoded arguments by name (or position), None when decoding failed
    """
    function_name: str
    data: str
    args: dict[str, Any] | None = None


class DecodedLogEntry(BaseModel):
    """
    Decoded event log.

    Attributes
    ----------
    event_name : str
        Event name or ``Unknown Event``
    data : str
        Raw log data
    args : dict[str, Any] | None
        Decoded arguments, None when decoding failed
    """
    event_name: str
    data: str
    args: dict[str, Any] | None = None


class TransactionDetails(BaseModel):
    """
    Decoded transaction, the unit returned to callers and cached.

    Attributes
    ----------
    hash : str
        Transaction hash
    block_number : str | None
        Block number as a decimal string, None while pending
    sender : str
        ``from`` address
    recipient : str | None
        ``to`` address, None for deployments
    value : str
        Value in wei as a decimal string
    function_call : DecodedFunctionCall
        Decoded call
    logs : list[DecodedLogEntry]
        Decoded logs in emission order
    """
    hash: str
    block_number: str | None
    sender: str
    recipient: str | None
    value: str
    function_call: DecodedFunctionCall
    logs: list[DecodedLogEntry] = []

    model_config = ConfigDict(from_attributes=True)


class TransactionsResponse(BaseModel):
    """
    Response schema for transactions query.

    Attributes
    ----------
    chain_id : str
        Chain id
    contract_address : str
        Contract address
    from_block : int
        Starting block
    to_block : int
        Ending block
    transactions : list[TransactionDetails]
        Transactions in discovery order
    total_transactions : int
        Number of transactions
    """
    chain_id: str
    contract_address: str
    from_block: int
    to_block: int
    transactions: list[TransactionDetails]
    total_transactions: int


class SourceContent(BaseModel):
    """Verified source file with the contract name it declares."""
    name: str
    content: str


class KnownSource(BaseModel):
    """Well-known library contract replaced by a short explanation."""
    name: str
    explanation: str


class ContractDetails(BaseModel):
    """
    Contract ABI with optional name and sources.

    Attributes
    ----------
    abi : list[AbiItem]
        Validated ABI items
    name : str | None
        Contract name reported by the source provider
    sources : list[SourceContent | KnownSource] | None
        Sources or known-contract explanations
    """
    abi: list[AbiItem]
    name: str | None = None
    sources: list[SourceContent | KnownSource] | None = None
