import asyncio
import logging

from blockchain.abi import ContractAbi
from blockchain.contract_service import ContractService
from blockchain.schemas import TransactionDetails
from blockchain.services import TransactionService
from core.redis.keys import transaction_details_key
from core.redis.providers import CacheService


class TransactionDetailsService:
    """
    Cache-first access to decoded transactions.

    Entries are keyed by transaction hash alone. A transaction is decoded
    against the ABI of the contract it was first requested for, and later
    requests for the same hash get that entry whatever contract they name.

    Parameters
    ----------
    transaction_service : TransactionService
        Transaction aggregator
    contract_service : ContractService
        ABI discovery service
    cache_service : CacheService
        Cache service instance
    logger : logging.Logger
        Logger instance
    """

    def __init__(
        self,
        transaction_service: TransactionService,
        contract_service: ContractService,
        cache_service: CacheService,
        logger: logging.Logger
    ):
        self.transactions = transaction_service
        self.contracts = contract_service
        self.cache = cache_service
        self.logger = logger

    async def get_transaction(
        self,
        chain_id: str,
        contract_address: str,
        transaction_hash: str
    ) -> TransactionDetails:
        """
        Get a decoded transaction from cache or chain.

        Parameters
        ----------
        chain_id : str
            Chain id
        contract_address : str
            Contract whose ABI decodes the transaction on a cache miss
        transaction_hash : str
            Transaction hash

        Returns
        -------
        TransactionDetails
            Decoded transaction
        """
        cache_key = transaction_details_key(transaction_hash)

        cached = await self.cache.get(cache_key)
        if cached:
            self.logger.info(f"Cache hit for key: {cache_key}")
            return TransactionDetails.model_validate(cached)

        self.logger.info(f"Cache miss for key: {cache_key}")
        contract = await self.contracts.get_contract(chain_id, contract_address)
        details = await self.transactions.get_transaction_by_hash(
            chain_id=chain_id,
            transaction_hash=transaction_hash,
            abi=ContractAbi(contract.abi),
            contract_address=contract_address
        )
        await self.cache.set(cache_key, details.model_dump())
        return details

    async def cache_transactions(self, transactions: list[TransactionDetails]) -> None:
        """
        Cache every transaction under its own key, concurrently.

        Parameters
        ----------
        transactions : list[TransactionDetails]
            Decoded transactions
        """
        results = await asyncio.gather(*(
            self.cache.set(transaction_details_key(transaction.hash), transaction.model_dump())
            for transaction in transactions
        ))
        failed = results.count(False)
        if failed:
            self.logger.warning(f"Failed to cache {failed} of {len(transactions)} transactions")
