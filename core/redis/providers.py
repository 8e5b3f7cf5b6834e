from dishka import Provider, Scope, provide, FromComponent
from typing import Annotated, Any, AsyncIterable
from core.environment.config import Settings
from redis.asyncio import Redis
from redis.exceptions import RedisError
import json
import logging


class RedisProvider(Provider):
    """
    Provider for Redis client.
    """

    scope = Scope.APP
    component = "redis"

    @provide(scope=Scope.APP)
    async def provide_redis_client(
        self,
        settings: Annotated[Settings, FromComponent("environment")]
    ) -> AsyncIterable[Redis]:
        """
        Create Redis client for the application.

        Parameters
        ----------
        settings : Settings
            Application settings

        Yields
        ------
        Redis
            Redis client instance
        """
        redis_client = Redis(
            host=settings.redis_host,
            port=settings.redis_port,
            db=settings.redis_db,
            password=settings.redis_password if settings.redis_password else None,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
        )

        try:
            await redis_client.ping()
            yield redis_client
        except RedisError as e:
            raise ConnectionError(f"Failed to connect to Redis: {e}") from e
        finally:
            await redis_client.aclose()


class CacheService:
    """
    JSON document cache on top of Redis.

    Reads that fail are treated as misses, writes that fail report ``False``.
    Neither ever raises into the caller.

    Parameters
    ----------
    redis_client : Redis
        Redis client instance
    logger : logging.Logger
        Logger instance
    default_ttl : int
        Expiration in seconds applied when ``set`` gets no explicit ttl
    """

    def __init__(self, redis_client: Redis, logger: logging.Logger, default_ttl: int = 86400):
        self.redis = redis_client
        self.logger = logger
        self.default_ttl = default_ttl

    async def get(self, key: str) -> Any | None:
        """
        Get cached value.

        Parameters
        ----------
        key : str
            Cache key

        Returns
        -------
        Any | None
            Cached JSON document or None on miss or read failure
        """
        try:
            value = await self.redis.get(key)
        except (RedisError, OSError) as e:
            self.logger.warning(f"Cache read failed for {key}: {e}")
            return None

        if value is None:
            return None

        try:
            return json.loads(value)
        except (TypeError, ValueError) as e:
            self.logger.warning(f"Corrupted cache entry {key}: {e}")
            return None

    async def set(self, key: str, value: Any, ttl: int | None = None) -> bool:
        """
        Set cached value.

        Parameters
        ----------
        key : str
            Cache key
        value : Any
            JSON-serializable document
        ttl : int | None
            Time to live in seconds, defaults to ``default_ttl``

        Returns
        -------
        bool
            Success status
        """
        try:
            await self.redis.setex(
                key,
                ttl or self.default_ttl,
                json.dumps(value)
            )
            return True
        except (RedisError, OSError, TypeError, ValueError) as e:
            self.logger.warning(f"Cache write failed for {key}: {e}")
            return False

    async def delete(self, key: str) -> bool:
        """
        Delete cached value.

        Parameters
        ----------
        key : str
            Cache key

        Returns
        -------
        bool
            Success status
        """
        try:
            await self.redis.delete(key)
            return True
        except (RedisError, OSError) as e:
            self.logger.warning(f"Cache delete failed for {key}: {e}")
            return False


class CacheProvider(Provider):
    """
    Provider for cache service.
    """

    component = "cache"
    scope = Scope.APP

    @provide(scope=Scope.APP)
    def provide_cache_service(
        self,
        redis_client: Annotated[Redis, FromComponent("redis")],
        settings: Annotated[Settings, FromComponent("environment")],
        logger: Annotated[logging.Logger, FromComponent("logger")]
    ) -> CacheService:
        """
        Provide cache service.

        Parameters
        ----------
        redis_client : Redis
            Redis client instance
        settings : Settings
            Application settings
        logger : logging.Logger
            Logger instance

        Returns
        -------
        CacheService
            Cache service instance
        """
        return CacheService(redis_client, logger, default_ttl=settings.default_cache_time)
