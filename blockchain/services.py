import asyncio
import logging
from typing import Any, Iterable

from web3 import AsyncWeb3, Web3
from web3.exceptions import TransactionNotFound

from blockchain.abi import ContractAbi
from blockchain.codec import decode_function_call, decode_log
from blockchain.entities import ChainTransaction, RawLogEntry, RawTransactionRecord
from blockchain.schemas import MAX_BLOCK_RANGE, TransactionDetails
from core.exceptions import (
    BlockRangeException,
    ChainNotSupportedException,
    RPCException,
    TransactionNotFoundException,
)

# keccak256("eip1967.proxy.implementation") - 1
IMPLEMENTATION_SLOT = "0x360894a13ba1a3210667c828492db98dca3e2076cc3735a920a3ca505d382bbc"
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def _hex(value: Any) -> str:
    return value if isinstance(value, str) else Web3.to_hex(value)


def _to_raw_log(log: Any) -> RawLogEntry:
    return RawLogEntry(
        transaction_hash=_hex(log["transactionHash"]),
        log_index=log["logIndex"],
        address=log["address"],
        topics=[_hex(t) for t in log["topics"]],
        data=_hex(log["data"]),
        block_number=log.get("blockNumber"),
    )


class ChainService:
    """
    Service for reading chain data over JSON-RPC.

    Parameters
    ----------
    web3_clients : dict[str, AsyncWeb3]
        Web3 clients keyed by decimal chain id
    logger : logging.Logger
        Logger instance
    """

    def __init__(self, web3_clients: dict[str, AsyncWeb3], logger: logging.Logger):
        self.web3_clients = web3_clients
        self.logger = logger

    def _get_client(self, chain_id: str) -> AsyncWeb3:
        """
        Get Web3 client for specified chain.

        Parameters
        ----------
        chain_id : str
            Chain id

        Returns
        -------
        AsyncWeb3
            Web3 client instance

        Raises
        ------
        ChainNotSupportedException
            If chain is not supported
        """
        if chain_id not in self.web3_clients:
            raise ChainNotSupportedException()
        return self.web3_clients[chain_id]

    async def get_block_number(self, chain_id: str) -> int:
        web3 = self._get_client(chain_id)
        try:
            return await web3.eth.block_number
        except Exception as e:
            self.logger.warning(f"Error fetching block number on chain {chain_id}: {e}")
            raise RPCException() from e

    async def get_logs(
        self,
        chain_id: str,
        address: str,
        from_block: int,
        to_block: int
    ) -> list[RawLogEntry]:
        """
        Get all logs emitted by an address in a block range.

        Parameters
        ----------
        chain_id : str
            Chain id
        address : str
            Emitting contract address
        from_block : int
            Starting block number
        to_block : int
            Ending block number (inclusive)

        Returns
        -------
        list[RawLogEntry]
            Logs in chain order
        """
        web3 = self._get_client(chain_id)
        filter_params = {
            'address': web3.to_checksum_address(address),
            'fromBlock': from_block,
            'toBlock': to_block
        }

        try:
            logs = await web3.eth.get_logs(filter_params)
        except Exception as e:
            self.logger.warning(f"Error fetching logs for {address} in {from_block}-{to_block}: {e}")
            raise RPCException() from e

        self.logger.info(f"Fetched {len(logs)} logs for {address} in blocks {from_block}-{to_block}")
        return [_to_raw_log(log) for log in logs]

    async def get_transaction(self, chain_id: str, transaction_hash: str) -> ChainTransaction:
        """
        Get a transaction by hash.

        Parameters
        ----------
        chain_id : str
            Chain id
        transaction_hash : str
            Transaction hash

        Returns
        -------
        ChainTransaction
            Transaction fields

        Raises
        ------
        TransactionNotFoundException
            If the node does not know the transaction
        RPCException
            On any other RPC failure
        """
        web3 = self._get_client(chain_id)
        try:
            tx = await web3.eth.get_transaction(transaction_hash)
        except TransactionNotFound as e:
            raise TransactionNotFoundException() from e
        except Exception as e:
            self.logger.warning(f"Error fetching transaction {transaction_hash}: {e}")
            raise RPCException() from e

        return ChainTransaction(
            hash=_hex(tx["hash"]),
            input=_hex(tx["input"]),
            sender=tx["from"],
            recipient=tx.get("to"),
            value=int(tx["value"]),
            block_number=tx.get("blockNumber"),
        )

    async def get_transaction_receipt(self, chain_id: str, transaction_hash: str) -> list[RawLogEntry]:
        """
        Get the logs of a mined transaction.

        Parameters
        ----------
        chain_id : str
            Chain id
        transaction_hash : str
            Transaction hash

        Returns
        -------
        list[RawLogEntry]
            Receipt logs in emission order
        """
        web3 = self._get_client(chain_id)
        try:
            receipt = await web3.eth.get_transaction_receipt(transaction_hash)
        except TransactionNotFound as e:
            raise TransactionNotFoundException() from e
        except Exception as e:
            self.logger.warning(f"Error fetching receipt {transaction_hash}: {e}")
            raise RPCException() from e

        return [_to_raw_log(log) for log in receipt["logs"]]

    async def get_implementation_address(self, chain_id: str, proxy_address: str) -> str | None:
        """
        Read the EIP-1967 implementation slot of a proxy.

        Parameters
        ----------
        chain_id : str
            Chain id
        proxy_address : str
            Proxy contract address

        Returns
        -------
        str | None
            Implementation address, None when the slot is empty or unreadable
        """
        web3 = self._get_client(chain_id)
        try:
            storage_value = await web3.eth.get_storage_at(
                web3.to_checksum_address(proxy_address), IMPLEMENTATION_SLOT
            )
        except Exception as e:
            self.logger.warning(f"Failed to read EIP-1967 slot of {proxy_address}: {e}")
            return None

        impl_address = web3.to_checksum_address("0x" + bytes(storage_value)[-20:].hex())
        if impl_address == ZERO_ADDRESS:
            return None
        self.logger.info(f"Implementation address of {proxy_address} from storage: {impl_address}")
        return impl_address


def group_logs(logs: Iterable[RawLogEntry]) -> list[RawTransactionRecord]:
    """
    Group logs by transaction hash.

    Transactions keep the order in which they were first seen and each
    transaction keeps its logs in input order.

    Parameters
    ----------
    logs : Iterable[RawLogEntry]
        Logs in chain order

    Returns
    -------
    list[RawTransactionRecord]
        One record per distinct transaction hash
    """
    grouped: dict[str, list[RawLogEntry]] = {}
    for log in logs:
        grouped.setdefault(log.transaction_hash, []).append(log)
    return [RawTransactionRecord(hash=tx_hash, logs=tx_logs) for tx_hash, tx_logs in grouped.items()]


class TransactionService:
    """
    Service assembling decoded transactions from chain data.

    Parameters
    ----------
    chain_service : ChainService
        Chain reader
    logger : logging.Logger
        Logger instance
    """

    def __init__(self, chain_service: ChainService, logger: logging.Logger):
        self.chain = chain_service
        self.logger = logger

    async def resolve_block_range(
        self,
        chain_id: str,
        from_block: int | None = None,
        to_block: int | None = None
    ) -> tuple[int, int]:
        """
        Fill in missing bounds and check the window.

        Parameters
        ----------
        chain_id : str
            Chain id
        from_block : int | None
            Starting block, defaults to ``to_block - 10000``
        to_block : int | None
            Ending block, defaults to the current head

        Returns
        -------
        tuple[int, int]
            Inclusive block range

        Raises
        ------
        BlockRangeException
            If the range is inverted or wider than 10000 blocks
        """
        if to_block is None:
            to_block = await self.chain.get_block_number(chain_id)
        if from_block is None:
            from_block = max(0, to_block - MAX_BLOCK_RANGE)

        if from_block > to_block:
            raise BlockRangeException("error.block_range.inverted")
        if to_block - from_block > MAX_BLOCK_RANGE:
            raise BlockRangeException("error.block_range.too_wide")
        return from_block, to_block

    async def get_transactions_by_range(
        self,
        chain_id: str,
        contract_address: str,
        abi: ContractAbi,
        from_block: int | None = None,
        to_block: int | None = None
    ) -> list[TransactionDetails]:
        """
        Get decoded transactions that emitted logs from a contract.

        Parameters
        ----------
        chain_id : str
            Chain id
        contract_address : str
            Contract address
        abi : ContractAbi
            Contract ABI
        from_block : int | None
            Starting block number
        to_block : int | None
            Ending block number

        Returns
        -------
        list[TransactionDetails]
            Transactions in the order their first log appears
        """
        from_block, to_block = await self.resolve_block_range(chain_id, from_block, to_block)
        logs = await self.chain.get_logs(chain_id, contract_address, from_block, to_block)
        records = group_logs(logs)

        self.logger.info(
            f"Decoding {len(records)} transactions from {len(logs)} logs of {contract_address}"
        )

        # gather keeps input order, so results line up with discovery order
        return list(await asyncio.gather(
            *(self._assemble_record(chain_id, record, abi) for record in records)
        ))

    async def get_transaction_by_hash(
        self,
        chain_id: str,
        transaction_hash: str,
        abi: ContractAbi,
        contract_address: str | None = None
    ) -> TransactionDetails:
        """
        Get a single decoded transaction without scanning a block range.

        Parameters
        ----------
        chain_id : str
            Chain id
        transaction_hash : str
            Transaction hash
        abi : ContractAbi
            Contract ABI
        contract_address : str | None
            Keep only receipt logs emitted by this address

        Returns
        -------
        TransactionDetails
            Decoded transaction
        """
        transaction, logs = await asyncio.gather(
            self.chain.get_transaction(chain_id, transaction_hash),
            self.chain.get_transaction_receipt(chain_id, transaction_hash),
        )
        if contract_address is not None:
            logs = [log for log in logs if log.address.lower() == contract_address.lower()]
        return self.assemble(transaction, logs, abi)

    async def _assemble_record(
        self,
        chain_id: str,
        record: RawTransactionRecord,
        abi: ContractAbi
    ) -> TransactionDetails:
        transaction = await self.chain.get_transaction(chain_id, record.hash)
        return self.assemble(transaction, record.logs, abi)

    @staticmethod
    def assemble(
        transaction: ChainTransaction,
        logs: Iterable[RawLogEntry],
        abi: ContractAbi
    ) -> TransactionDetails:
        """
        Decode a transaction and its logs into the canonical record.

        Parameters
        ----------
        transaction : ChainTransaction
            Transaction fields
        logs : Iterable[RawLogEntry]
            Logs in emission order
        abi : ContractAbi
            Contract ABI

        Returns
        -------
        TransactionDetails
            Decoded transaction
        """
        return TransactionDetails(
            hash=transaction.hash,
            block_number=None if transaction.block_number is None else str(transaction.block_number),
            sender=transaction.sender,
            recipient=transaction.recipient,
            value=str(transaction.value),
            function_call=decode_function_call(abi, transaction.input, transaction.recipient),
            logs=[decode_log(abi, log.topics, log.data) for log in logs],
        )
