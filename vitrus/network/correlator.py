"""Request id allocation and response correlation."""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from itertools import count
from typing import Any, Dict, Iterator

LOGGER = logging.getLogger(__name__)


@dataclass
class PendingRequest:
    request_id: str
    future: asyncio.Future[Any]
    kind: str = "request"
    created_at: float = 0.0


@dataclass
class RequestCorrelator:
    """Maps outstanding request ids to the futures awaiting their response."""

    _pending: Dict[str, PendingRequest] = field(default_factory=dict, init=False, repr=False)
    _counter: Iterator[int] = field(default_factory=lambda: count(1), init=False, repr=False)

    def new_id(self, prefix: str = "req") -> str:
        while True:
            request_id = f"{prefix}-{next(self._counter)}-{uuid.uuid4().hex[:8]}"
            if request_id not in self._pending:
                return request_id

    def register(self, request_id: str, kind: str = "request") -> asyncio.Future[Any]:
        if request_id in self._pending:
            raise ValueError(f"Request id already pending: {request_id}")
        loop = asyncio.get_running_loop()
        future: asyncio.Future[Any] = loop.create_future()
        self._pending[request_id] = PendingRequest(
            request_id=request_id,
            future=future,
            kind=kind,
            created_at=loop.time(),
        )
        LOGGER.debug("Tracking %s %s", kind, request_id)
        return future

    def resolve(self, request_id: str, value: Any) -> bool:
        pending = self._pending.pop(request_id, None)
        if pending is None:
            LOGGER.debug("Response for unknown or settled request %s", request_id)
            return False
        if not pending.future.done():
            pending.future.set_result(value)
        return True

    def reject(self, request_id: str, exc: BaseException) -> bool:
        pending = self._pending.pop(request_id, None)
        if pending is None:
            LOGGER.debug("Error for unknown or settled request %s: %s", request_id, exc)
            return False
        if not pending.future.done():
            pending.future.set_exception(exc)
        return True

    def discard(self, request_id: str) -> None:
        pending = self._pending.pop(request_id, None)
        if pending and not pending.future.done():
            pending.future.cancel()

    def reject_all(self, exc: BaseException) -> int:
        if not self._pending:
            return 0
        drained = list(self._pending.values())
        self._pending.clear()
        LOGGER.debug("Rejecting %s pending requests: %s", len(drained), exc)
        for pending in drained:
            if not pending.future.done():
                pending.future.set_exception(exc)
        return len(drained)

    def pending_count(self) -> int:
        return len(self._pending)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._pending
