"""
Common scaffolding for the analysis orchestrators.
"""

import time
from abc import ABC, abstractmethod
from typing import Awaitable, Generic, Optional, TypeVar
from pydantic import BaseModel
import structlog

from ..services.upstream import UpstreamError, bounded

logger = structlog.get_logger(__name__)

RequestT = TypeVar("RequestT")
T = TypeVar("T")


def now_unix() -> int:
    return int(time.time())


class Scanner(ABC, Generic[RequestT]):
    """
    One analysis kind behind a paid route.

    `run` collects signals and scores them; `fallback` returns a conservative
    payload marked as non-live when `run` fails.
    """

    name: str = "scanner"

    def __init__(self, timeout: float = 10.0):
        self.timeout = timeout

    @abstractmethod
    async def run(self, request: RequestT) -> BaseModel:
        """Produce the live payload for a validated request."""

    @abstractmethod
    def fallback(self, request: RequestT) -> BaseModel:
        """Produce the payload served when `run` fails."""

    async def signal(self, awaitable: Awaitable[T], source: str) -> Optional[T]:
        """
        Collect one signal from an upstream, or None when it is unavailable.

        Args:
            awaitable: Upstream call producing the signal
            source: Upstream name for logging
        """
        try:
            return await bounded(awaitable, self.timeout, source)
        except UpstreamError as e:
            logger.info("signal_unavailable", scanner=self.name, source=source, error=str(e))
            return None


__all__ = ["Scanner", "now_unix"]
