import asyncio
import logging
from typing import Any, Awaitable, Callable


def subscription_identity(session_id: str, transaction_hash: str | None = None) -> str:
    return f"{session_id}:{transaction_hash}" if transaction_hash else session_id


class Subscription:
    """
    Handle on one explanation subscription.

    An idle subscription never runs anything, which is what duplicate
    subscribers get.

    Parameters
    ----------
    identity : str
        Session identity the subscription is registered under
    registry : SessionRegistry | None
        Owning registry, None for idle subscriptions
    """

    def __init__(self, identity: str, registry: "SessionRegistry | None" = None):
        self.identity = identity
        self.registry = registry
        self.cancelled = False
        self.finished = False
        self._task: asyncio.Task | None = None
        self._cancel_stream: Callable[[], None] | None = None
        self._wait_stream: Callable[[], Awaitable[Any]] | None = None

    @classmethod
    def idle(cls, identity: str) -> "Subscription":
        return cls(identity)

    @property
    def is_idle(self) -> bool:
        return self.registry is None

    @property
    def active(self) -> bool:
        return not (self.is_idle or self.cancelled or self.finished)

    def attach(self, task: asyncio.Task) -> None:
        self._task = task

    def bind_stream(
        self,
        cancel: Callable[[], None],
        wait: Callable[[], Awaitable[Any]] | None = None
    ) -> None:
        """Register the cancel and wait handles of the generation started for this subscription."""
        self._cancel_stream = cancel
        self._wait_stream = wait
        if self.cancelled:
            cancel()

    def cancel(self) -> None:
        """Stop the subscription and free its identity. Idempotent, no-op when idle."""
        if not self.active:
            return
        self.cancelled = True
        if self._cancel_stream is not None:
            self._cancel_stream()
        if self._task is not None:
            self._task.cancel()
        self.registry.release(self)

    def finish(self) -> bool:
        """
        Mark the subscription as having delivered its terminal event.

        Returns
        -------
        bool
            False if the subscription was already cancelled or finished
        """
        if not self.active:
            return False
        self.finished = True
        self.registry.release(self)
        return True

    async def wait(self) -> None:
        """Wait for the subscription task and for the generation it started."""
        if self._task is not None:
            await asyncio.wait({self._task})
        if self._wait_stream is not None:
            await self._wait_stream()


class SessionRegistry:
    """
    Active explanation subscriptions by session identity.

    ``acquire`` checks and inserts without suspending, so two subscribe
    calls for one identity cannot both win on a single event loop.

    Parameters
    ----------
    logger : logging.Logger
        Logger instance
    """

    def __init__(self, logger: logging.Logger):
        self.logger = logger
        self._active: dict[str, Subscription] = {}

    def __contains__(self, identity: str) -> bool:
        return identity in self._active

    def __len__(self) -> int:
        return len(self._active)

    def acquire(self, identity: str) -> Subscription | None:
        """
        Register a new subscription for an identity.

        Parameters
        ----------
        identity : str
            Session identity

        Returns
        -------
        Subscription | None
            The new subscription, None if one is already active
        """
        if identity in self._active:
            self.logger.info(f"Duplicate subscription for {identity} ignored")
            return None
        subscription = Subscription(identity, self)
        self._active[identity] = subscription
        return subscription

    def release(self, subscription: Subscription) -> None:
        # a later subscription may already own the identity
        if self._active.get(subscription.identity) is subscription:
            del self._active[subscription.identity]

    def cancel_all(self) -> None:
        """Cancel every active subscription."""
        for subscription in list(self._active.values()):
            subscription.cancel()
        self._active.clear()

    async def shutdown(self) -> None:
        """Cancel every active subscription and wait until their generations have closed."""
        subscriptions = list(self._active.values())
        self.cancel_all()
        await asyncio.gather(*(subscription.wait() for subscription in subscriptions))
