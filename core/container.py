from dishka import AsyncContainer, make_async_container
from dishka.integrations.fastapi import FastapiProvider

from core.environment.providers import EnvironmentProvider
from blockchain.providers import BlockchainProvider
from explainer.providers import ExplainerProvider
from core.redis.providers import RedisProvider, CacheProvider
from core.logging.providers import LoggerProvider


def build_container() -> AsyncContainer:
    return make_async_container(
        FastapiProvider(),
        EnvironmentProvider(),
        LoggerProvider(),
        BlockchainProvider(),
        ExplainerProvider(),
        RedisProvider(),
        CacheProvider()
    )


container = build_container()
