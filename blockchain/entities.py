from pydantic import BaseModel, ConfigDict


class RawLogEntry(BaseModel):
    """
    Event log as returned by the chain, before decoding.

    Attributes
    ----------
    transaction_hash : str
        Hash of the emitting transaction
    log_index : int
        Position of the log in its block
    address : str
        Emitting contract address
    topics : list[str]
        32-byte topic words, hex encoded
    data : str
        Non-indexed payload, hex encoded
    block_number : int | None
        Block the log was included in
    """
    transaction_hash: str
    log_index: int
    address: str
    topics: list[str]
    data: str
    block_number: int | None = None

    model_config = ConfigDict(frozen=True)


class RawTransactionRecord(BaseModel):
    """
    Transaction hash with the logs it emitted, in emission order.

    Attributes
    ----------
    hash : str
        Transaction hash
    logs : list[RawLogEntry]
        Logs ordered by log index
    """
    hash: str
    logs: list[RawLogEntry] = []

    model_config = ConfigDict(frozen=True)


class ChainTransaction(BaseModel):
    """
    Transaction fields needed for decoding.

    Attributes
    ----------
    hash : str
        Transaction hash
    input : str
        Calldata, hex encoded
    sender : str
        ``from`` address
    recipient : str | None
        ``to`` address, None for contract creation
    value : int
        Transferred value in wei
    block_number : int | None
        Inclusion block, None while pending
    """
    hash: str
    input: str
    sender: str
    recipient: str | None = None
    value: int = 0
    block_number: int | None = None

    model_config = ConfigDict(frozen=True)
