"""
Quote number allocation.

Quote numbers are ``{yy}-{sequence}-{subSequence}``. New numbers come from a
per-year counter that is read, incremented and written back inside one store
transaction; revisions bump only the sub-sequence of an existing quote. Lost
races surface as ConflictError and are retried under the ``allocation``
policy.
"""

import asyncio
from datetime import datetime
from typing import Callable, Optional

from .models import Quote, QuoteNumber, QuoteStatus, utcnow
from .store import QuoteStore, StoreTransaction
from .retry_utils import RetryManager, retry_manager as default_retry_manager
from .error_handler import NotFoundError, ValidationError
from .logging_conf import get_logger

logger = get_logger(__name__)


def year_key(moment: datetime) -> str:
    """Two-digit year used to key the counter."""
    return f"{moment.year % 100:02d}"


def revise(quote: Quote, now: datetime) -> Quote:
    """
    Pure revision step: next sub-sequence, ``revised`` status, fresh
    timestamp and no rendered assets.
    """
    if quote.quote_number is None:
        raise ValidationError("quoteNumber", None, "quote has no number to revise")
    number = quote.quote_number.next_revision()
    return quote.model_copy(
        update={
            "quote_number": number,
            "revision_number": number.sub_sequence,
            "status": QuoteStatus.REVISED,
            "last_updated": now,
            "pdf_url": None,
            "png_url": None,
        }
    )


class SequenceAllocator:
    """Issues quote numbers and revisions against an injected store."""

    def __init__(
        self,
        store: QuoteStore,
        clock: Callable[[], datetime] = utcnow,
        retry: Optional[RetryManager] = None
    ):
        self.store = store
        self.clock = clock
        self.retry = retry or default_retry_manager

    async def _run_atomic(self, fn: Callable[[StoreTransaction], object]):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.store.run_atomic, fn)

    async def issue_quote_number(self) -> QuoteNumber:
        """
        Allocate the next sequence number for the current year.

        Returns:
            QuoteNumber with ``subSequence`` 1
        """
        year = year_key(self.clock())

        def allocate(tx: StoreTransaction) -> int:
            next_seq = tx.get_counter(year) + 1
            tx.set_counter(year, next_seq)
            return next_seq

        sequence = await self.retry.execute_with_retry(
            self._run_atomic, "allocation", None, {"year": year}, allocate
        )
        number = QuoteNumber(year=year, sequence=sequence, sub_sequence=1)
        logger.info("Quote number issued", quote_no=str(number))
        return number

    async def issue_revision(self, quote_id: str) -> Quote:
        """
        Bump the sub-sequence of a stored quote and mark it revised.

        Args:
            quote_id: Stored quote id

        Returns:
            The revised quote as written

        Raises:
            NotFoundError: No such quote
            ValidationError: The quote has no number yet
        """
        def bump(tx: StoreTransaction) -> Quote:
            current = tx.get_quote(quote_id)
            if current is None:
                raise NotFoundError("quote", quote_id)
            revised = revise(current, self.clock())
            tx.put_quote(revised)
            return revised

        revised = await self.retry.execute_with_retry(
            self._run_atomic, "allocation", None, {"quote_id": quote_id}, bump
        )
        logger.info("Quote revised", quote_id=quote_id, quote_no=revised.quote_no)
        return revised
