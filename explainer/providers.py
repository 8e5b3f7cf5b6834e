from dishka import Provider, Scope, provide, FromComponent
from typing import Annotated, AsyncIterable
from openai import AsyncOpenAI
from blockchain.contract_service import ContractService
from blockchain.details_service import TransactionDetailsService
from core.environment.config import Settings
from core.redis.providers import CacheService
from explainer.llm import LLMService
from explainer.services import ExplanationService
from explainer.sessions import SessionRegistry
from explainer.usecases import (
    ExplainContractUseCase,
    GetContractDetailsUseCase,
    StreamContractExplanationUseCase,
    StreamTransactionExplanationUseCase,
)
import logging


class ExplainerProvider(Provider):
    """
    Provider for LLM explanation dependencies.
    """

    component = "explainer"

    @provide(scope=Scope.APP)
    async def get_openai_client(
        self,
        settings: Annotated[Settings, FromComponent("environment")]
    ) -> AsyncIterable[AsyncOpenAI]:
        """
        Provide the OpenAI-compatible client pointed at OpenRouter.

        Parameters
        ----------
        settings : Settings
            Application settings

        Yields
        ------
        AsyncOpenAI
            API client, closed on shutdown
        """
        client = AsyncOpenAI(
            api_key=settings.openrouter_api_key,
            base_url=settings.openrouter_base_url
        )
        try:
            yield client
        finally:
            await client.close()

    @provide(scope=Scope.APP)
    def get_llm_service(
        self,
        client: Annotated[AsyncOpenAI, FromComponent("explainer")],
        settings: Annotated[Settings, FromComponent("environment")],
        logger: Annotated[logging.Logger, FromComponent("logger")]
    ) -> LLMService:
        return LLMService(client=client, model=settings.openrouter_model_name, logger=logger)

    @provide(scope=Scope.APP)
    def get_session_registry(
        self,
        logger: Annotated[logging.Logger, FromComponent("logger")]
    ) -> SessionRegistry:
        return SessionRegistry(logger=logger)

    @provide(scope=Scope.APP)
    def get_explanation_service(
        self,
        llm: Annotated[LLMService, FromComponent("explainer")],
        contract_service: Annotated[ContractService, FromComponent("blockchain")],
        transaction_details: Annotated[TransactionDetailsService, FromComponent("blockchain")],
        cache_service: Annotated[CacheService, FromComponent("cache")],
        sessions: Annotated[SessionRegistry, FromComponent("explainer")],
        logger: Annotated[logging.Logger, FromComponent("logger")]
    ) -> ExplanationService:
        """
        Provide explanation orchestrator.

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

        Returns
        -------
        ExplanationService
            Explanation service instance
        """
        return ExplanationService(
            llm=llm,
            contract_service=contract_service,
            transaction_details=transaction_details,
            cache_service=cache_service,
            sessions=sessions,
            logger=logger
        )

    @provide(scope=Scope.REQUEST)
    def get_contract_details_use_case(
        self,
        service: Annotated[ExplanationService, FromComponent("explainer")]
    ) -> GetContractDetailsUseCase:
        return GetContractDetailsUseCase(explanation_service=service)

    @provide(scope=Scope.REQUEST)
    def get_explain_contract_use_case(
        self,
        service: Annotated[ExplanationService, FromComponent("explainer")]
    ) -> ExplainContractUseCase:
        return ExplainContractUseCase(explanation_service=service)

    @provide(scope=Scope.REQUEST)
    def get_stream_contract_use_case(
        self,
        service: Annotated[ExplanationService, FromComponent("explainer")]
    ) -> StreamContractExplanationUseCase:
        return StreamContractExplanationUseCase(explanation_service=service)

    @provide(scope=Scope.REQUEST)
    def get_stream_transaction_use_case(
        self,
        service: Annotated[ExplanationService, FromComponent("explainer")]
    ) -> StreamTransactionExplanationUseCase:
        return StreamTransactionExplanationUseCase(explanation_service=service)
