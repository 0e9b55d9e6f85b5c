"""
Lookup with retry of deferred keys.

The store may answer a lookup only partially, marking some keys as deferred.
LookupRetrier keeps a shrinking set of pending keys and re-issues the lookup
for them with linear backoff until everything is resolved or the retry
budget is spent.

Invariants:
    - Retry N sleeps N * base_delay before its request
    - At most retry_limit retries follow the first request
    - Deferred keys are never silently dropped: an exhausted budget raises
      DeferredReadExhaustedError
    - Results are keyed by encoded key; a missing entity maps to None
    - Every pending key is found, missing or deferred in each response; a
      key the store leaves out raises WireFormatError
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterable

from ._wire import key_to_wire, lookup_response, read_options
from .entity import Entity
from .errors import DeferredReadExhaustedError, WireFormatError
from .keys import Key, encode_key
from .transaction import RpcFn

logger = logging.getLogger(__name__)

DEFAULT_RETRY_LIMIT = 5
DEFAULT_BASE_DELAY = 2.0


class LookupRetrier:
    """Batch entity lookup that resolves deferred keys.

    Example:
        >>> retrier = LookupRetrier(client.call)
        >>> results = await retrier.lookup([key1, key2])
        >>> results[key1.encode()]
        Entity(...)
    """

    def __init__(
        self,
        rpc: RpcFn,
        *,
        retry_limit: int = DEFAULT_RETRY_LIMIT,
        base_delay: float = DEFAULT_BASE_DELAY,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._rpc = rpc
        self.retry_limit = retry_limit
        self.base_delay = base_delay
        self._sleep = sleep

    async def lookup(
        self,
        keys: Iterable[Key],
        transaction: str | None = None,
        retry_limit: int | None = None,
    ) -> dict[str, Entity | None]:
        """Look up entities by key.

        Args:
            keys: Keys to look up
            transaction: Transaction token whose snapshot the read uses
            retry_limit: Override of the retry budget for this call

        Returns:
            Mapping of encoded key -> Entity, or None for a missing entity,
            ordered like the requested keys

        Raises:
            DeferredReadExhaustedError: If keys are still deferred after the
                retry budget
            TransportError: If a lookup request fails
            WireFormatError: If a response leaves a requested key unanswered
        """
        limit = self.retry_limit if retry_limit is None else retry_limit

        pending: dict[str, Key] = {}
        for key in keys:
            pending.setdefault(encode_key(key), key)
        requested = list(pending)
        if not requested:
            return {}

        resolved: dict[str, Entity | None] = {}
        attempt = 0
        while True:
            request: dict[str, Any] = {"keys": [key_to_wire(k) for k in pending.values()]}
            options = read_options(transaction)
            if options:
                request["readOptions"] = options

            response = await self._rpc("lookup", request)
            found, missing, deferred = lookup_response(response)

            for entity in found:
                encoded = encode_key(entity.key)  # type: ignore[arg-type]
                resolved[encoded] = entity
                pending.pop(encoded, None)
            for key in missing:
                encoded = encode_key(key)
                resolved[encoded] = None
                pending.pop(encoded, None)

            deferred_keys = {encode_key(k): k for k in deferred}
            unanswered = [k for k in pending if k not in deferred_keys]
            if unanswered:
                logger.error(f"Lookup response left {len(unanswered)} keys unanswered")
                raise WireFormatError(
                    f"Lookup response did not account for keys: {unanswered}",
                    payload=response,
                )
            if not deferred_keys:
                break

            if attempt >= limit:
                logger.error(
                    f"Lookup gave up with {len(deferred_keys)} deferred keys "
                    f"after {attempt} retries"
                )
                raise DeferredReadExhaustedError(
                    f"{len(deferred_keys)} keys still deferred after {attempt} retries",
                    attempts=attempt,
                    pending=list(deferred_keys),
                )

            attempt += 1
            delay = attempt * self.base_delay
            logger.info(
                f"Lookup deferred {len(deferred_keys)} keys, "
                f"retry {attempt}/{limit} in {delay:.1f}s"
            )
            await self._sleep(delay)
            pending = deferred_keys

        ordered = {k: resolved[k] for k in requested}
        for encoded, entity in resolved.items():
            ordered.setdefault(encoded, entity)
        return ordered
