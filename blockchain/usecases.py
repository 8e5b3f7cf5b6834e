from blockchain.abi import ContractAbi
from blockchain.contract_service import ContractService
from blockchain.details_service import TransactionDetailsService
from blockchain.schemas import TransactionDetails, TransactionsResponse
from blockchain.services import TransactionService


class GetTransactionsUseCase:
    """
    Use case for getting decoded transactions of a contract over a block range.

    Parameters
    ----------
    transaction_service : TransactionService
        Transaction aggregator
    contract_service : ContractService
        ABI discovery service
    details_service : TransactionDetailsService
        Cache of decoded transactions
    """

    def __init__(
        self,
        transaction_service: TransactionService,
        contract_service: ContractService,
        details_service: TransactionDetailsService
    ):
        self.transactions = transaction_service
        self.contracts = contract_service
        self.details = details_service

    async def __call__(
        self,
        chain_id: str,
        contract_address: str,
        from_block: int | None = None,
        to_block: int | None = None
    ) -> TransactionsResponse:
        """
        Execute use case.

        Parameters
        ----------
        chain_id : str
            Chain id
        contract_address : str
            Contract address
        from_block : int | None
            Starting block number
        to_block : int | None
            Ending block number

        Returns
        -------
        TransactionsResponse
            Transactions response
        """
        from_block, to_block = await self.transactions.resolve_block_range(chain_id, from_block, to_block)
        contract = await self.contracts.get_contract(chain_id, contract_address)

        transactions = await self.transactions.get_transactions_by_range(
            chain_id=chain_id,
            contract_address=contract_address,
            abi=ContractAbi(contract.abi),
            from_block=from_block,
            to_block=to_block
        )

        # each transaction is reusable by the single-transaction endpoints
        await self.details.cache_transactions(transactions)

        return TransactionsResponse(
            chain_id=chain_id,
            contract_address=contract_address,
            from_block=from_block,
            to_block=to_block,
            transactions=transactions,
            total_transactions=len(transactions)
        )


class GetTransactionUseCase:
    """
    Use case for getting one decoded transaction.

    Parameters
    ----------
    details_service : TransactionDetailsService
        Cache-first transaction details
    """

    def __init__(self, details_service: TransactionDetailsService):
        self.details = details_service

    async def __call__(
        self,
        chain_id: str,
        contract_address: str,
        transaction_hash: str
    ) -> TransactionDetails:
        """
        Execute use case.

        Parameters
        ----------
        chain_id : str
            Chain id
        contract_address : str
            Contract address whose ABI decodes the transaction
        transaction_hash : str
            Transaction hash

        Returns
        -------
        TransactionDetails
            Decoded transaction
        """
        return await self.details.get_transaction(chain_id, contract_address, transaction_hash)
