"""Correlation of asynchronous responses to the requests that caused them.

Every outbound shadow request carries an opaque client token.  The
transport echoes that token on the response, which arrives later on the
shared event stream.  :class:`CorrelationRegistry` pairs the two: a
caller registers a one-shot waiter for its token, the session delivers
each response it sees, and the waiter resolves.

Responses with no registered waiter are dropped.  That is the normal
path for answers that arrive after their requester gave up (timeout)
and for tokens owned by somebody else.

Timeouts are the caller's business: the registry never expires
waiters on its own.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

logger = logging.getLogger(__name__)


class CorrelationRegistry:
    """Maps client tokens to pending one-shot waiters.

    Callers are responsible for issuing unique tokens.  Registering a
    token that already has a waiter replaces it ("last registrant
    wins"); the superseded future is cancelled so nothing awaits it
    forever.
    """

    def __init__(self) -> None:
        self._waiters: dict[str, asyncio.Future[Any]] = {}

    def wait_for(self, token: str) -> asyncio.Future[Any]:
        """Register interest in *token* and return the future to await."""
        previous = self._waiters.pop(token, None)
        if previous is not None and not previous.done():
            logger.debug("Token %s re-registered; cancelling previous waiter", token)
            previous.cancel()

        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._waiters[token] = future
        return future

    def deliver(self, token: str, message: Any) -> bool:
        """Resolve the waiter registered for *token* with *message*.

        Returns:
            ``True`` when a live waiter received the message, ``False``
            when the message was dropped.
        """
        future = self._waiters.pop(token, None)
        if future is None or future.done():
            logger.debug("No waiter for token %s, dropping response", token)
            return False
        future.set_result(message)
        return True

    def fail(self, token: str, exc: BaseException) -> bool:
        """Fail the waiter registered for *token* with *exc*.

        Returns ``False`` when no live waiter was registered.
        """
        future = self._waiters.pop(token, None)
        if future is None or future.done():
            logger.debug("No waiter for token %s, dropping failure", token)
            return False
        future.set_exception(exc)
        return True

    def discard(self, token: str) -> None:
        """Forget *token*; a later response for it will be dropped."""
        future = self._waiters.pop(token, None)
        if future is not None and not future.done():
            future.cancel()

    def discard_future(self, future: asyncio.Future[Any]) -> None:
        """Forget whichever token *future* was registered under."""
        for token, waiter in list(self._waiters.items()):
            if waiter is future:
                self.discard(token)
                return

    def __contains__(self, token: object) -> bool:
        return token in self._waiters

    def __len__(self) -> int:
        return len(self._waiters)
