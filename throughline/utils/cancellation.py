"""Cooperative cancellation shared by every long-running component."""
import inspect
from typing import Awaitable, Callable, Optional, Union

from throughline.utils.errors import AnalysisCancelled
from throughline.utils.logging import get_logger

logger = get_logger(__name__)

ExternalCheck = Callable[[], Union[bool, Awaitable[bool]]]


class CancellationToken:
    """Local stop flag with an optional slower authoritative check."""

    def __init__(self, external_check: Optional[ExternalCheck] = None):
        """
        Initialize token.

        Args:
            external_check: Predicate polled when the local flag is clear,
                e.g. a lookup in a store written by another process.
                May be sync or async.
        """
        self.external_check = external_check
        self._cancelled = False

    def cancel(self) -> None:
        if not self._cancelled:
            logger.info("Analysis stopped by user")
        self._cancelled = True

    def reset(self) -> None:
        self._cancelled = False

    async def is_cancelled(self) -> bool:
        """Check the local flag first, then the external predicate."""
        if self._cancelled:
            return True
        if self.external_check is None:
            return False

        result = self.external_check()
        if inspect.isawaitable(result):
            result = await result
        if result:
            self._cancelled = True
        return self._cancelled

    async def raise_if_cancelled(self) -> None:
        if await self.is_cancelled():
            raise AnalysisCancelled()


async def check_cancelled(token: Optional[CancellationToken]) -> None:
    """Raise AnalysisCancelled if a token is bound and set."""
    if token is not None:
        await token.raise_if_cancelled()
