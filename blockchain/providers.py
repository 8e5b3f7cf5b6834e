from dishka import Provider, Scope, provide, FromComponent
from blockchain.services import ChainService, TransactionService
from blockchain.contract_service import ContractService
from blockchain.details_service import TransactionDetailsService
from blockchain.usecases import GetTransactionsUseCase, GetTransactionUseCase
from typing import Annotated
from web3 import AsyncWeb3
from core.environment.config import Settings
from core.redis.providers import CacheService
import logging


class BlockchainProvider(Provider):
    """
    Provider for blockchain-related dependencies.
    """

    component = "blockchain"

    @provide(scope=Scope.APP)
    def get_web3_clients(
        self,
        settings: Annotated[Settings, FromComponent("environment")]
    ) -> dict[str, AsyncWeb3]:
        """
        Provide Web3 clients for every supported chain.

        Parameters
        ----------
        settings : Settings
            Application settings

        Returns
        -------
        dict[str, AsyncWeb3]
            Web3 clients keyed by chain id
        """
        return {
            chain_id: AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(chain.rpc_url))
            for chain_id, chain in settings.supported_chains.items()
        }

    @provide(scope=Scope.APP)
    def get_chain_service(
        self,
        web3_clients: Annotated[
            dict[str, AsyncWeb3], FromComponent("blockchain")
        ],
        logger: Annotated[logging.Logger, FromComponent("logger")]
    ) -> ChainService:
        """
        Provide chain service.

        Parameters
        ----------
        web3_clients : dict[str, AsyncWeb3]
            Web3 clients keyed by chain id
        logger : logging.Logger
            Logger instance

        Returns
        -------
        ChainService
            Chain service instance
        """
        return ChainService(web3_clients=web3_clients, logger=logger)

    @provide(scope=Scope.APP)
    def get_transaction_service(
        self,
        chain_service: Annotated[ChainService, FromComponent("blockchain")],
        logger: Annotated[logging.Logger, FromComponent("logger")]
    ) -> TransactionService:
        return TransactionService(chain_service=chain_service, logger=logger)

    @provide(scope=Scope.APP)
    def get_contract_service(
        self,
        chain_service: Annotated[ChainService, FromComponent("blockchain")],
        cache_service: Annotated[CacheService, FromComponent("cache")],
        settings: Annotated[Settings, FromComponent("environment")],
        logger: Annotated[logging.Logger, FromComponent("logger")]
    ) -> ContractService:
        """
        Provide contract discovery service.

        Parameters
        ----------
        chain_service : ChainService
            Chain service instance
        cache_service : CacheService
            Cache service instance
        settings : Settings
            Application settings
        logger : logging.Logger
            Logger instance

        Returns
        -------
        ContractService
            Contract service instance
        """
        return ContractService(
            chain_service=chain_service,
            cache_service=cache_service,
            settings=settings,
            logger=logger
        )

    @provide(scope=Scope.APP)
    def get_transaction_details_service(
        self,
        transaction_service: Annotated[TransactionService, FromComponent("blockchain")],
        contract_service: Annotated[ContractService, FromComponent("blockchain")],
        cache_service: Annotated[CacheService, FromComponent("cache")],
        logger: Annotated[logging.Logger, FromComponent("logger")]
    ) -> TransactionDetailsService:
        return TransactionDetailsService(
            transaction_service=transaction_service,
            contract_service=contract_service,
            cache_service=cache_service,
            logger=logger
        )

    @provide(scope=Scope.REQUEST)
    def get_transactions_use_case(
        self,
        transaction_service: Annotated[TransactionService, FromComponent("blockchain")],
        contract_service: Annotated[ContractService, FromComponent("blockchain")],
        details_service: Annotated[TransactionDetailsService, FromComponent("blockchain")]
    ) -> GetTransactionsUseCase:
        """
        Provide get transactions use case.

        Parameters
        ----------
        transaction_service : TransactionService
            Transaction aggregator
        contract_service : ContractService
            Contract discovery service
        details_service : TransactionDetailsService
            Cache of decoded transactions

        Returns
        -------
        GetTransactionsUseCase
            Get transactions use case
        """
        return GetTransactionsUseCase(
            transaction_service=transaction_service,
            contract_service=contract_service,
            details_service=details_service
        )

    @provide(scope=Scope.REQUEST)
    def get_transaction_use_case(
        self,
        details_service: Annotated[TransactionDetailsService, FromComponent("blockchain")]
    ) -> GetTransactionUseCase:
        return GetTransactionUseCase(details_service=details_service)
