"""
Live editing session for a single quote.

A session keeps the base snapshot and the log of committed patches. The
current quote is always ``base`` with the log replayed on top, which is how
undo works: drop the last patch and replay the rest.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional, Sequence, Union, Dict, Any

from .models import Quote, PatchOperation, utcnow
from .patch_engine import apply_patch
from .structuring import TextStructurer
from .error_handler import PatchError, ValidationError
from .logging_conf import get_logger

logger = get_logger(__name__)


@dataclass
class ChatMessage:
    """One transcript entry; assistant entries carry the patch they proposed."""
    role: str
    text: str
    patch: Optional[List[PatchOperation]] = None
    applied: bool = False
    error: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)


class StudioSession:
    """Base snapshot, patch log and chat transcript for one quote."""

    def __init__(
        self,
        base: Quote,
        structurer: Optional[TextStructurer] = None,
        auto_apply: bool = True,
        clock: Callable[[], datetime] = utcnow
    ):
        self.base = base
        self.structurer = structurer
        self.auto_apply = auto_apply
        self.clock = clock
        self.log: List[List[PatchOperation]] = []
        # message each log entry was applied from, or None for direct patches
        self.sources: List[Optional[ChatMessage]] = []
        self.messages: List[ChatMessage] = []
        self.current = base

    def _replay(self, patches: Sequence[List[PatchOperation]]) -> Quote:
        quote = self.base
        for patch in patches:
            quote = apply_patch(quote, patch, now=self.clock())
        return quote

    def apply(
        self,
        operations: Sequence[Union[PatchOperation, Dict[str, Any]]],
        source: Optional[ChatMessage] = None
    ) -> Quote:
        """
        Apply a patch to the current quote and commit it to the log.

        Raises:
            PatchError: The patch was rejected; the session is unchanged
        """
        patched = apply_patch(self.current, operations, now=self.clock())
        # apply_patch has already validated every operation
        patch = [op if isinstance(op, PatchOperation) else PatchOperation.model_validate(op)
                 for op in operations]
        self.current = patched
        self.log.append(patch)
        self.sources.append(source)
        logger.debug("Patch committed", quote_id=self.current.id, operations=len(patch), log_size=len(self.log))
        return self.current

    def undo(self) -> Quote:
        """Drop the last committed patch and replay the remainder onto the base."""
        if not self.log:
            return self.current
        self.log.pop()
        source = self.sources.pop()
        if source is not None:
            source.applied = False
        self.current = self._replay(self.log)
        return self.current

    def reset(self) -> Quote:
        """Discard every committed patch and the transcript."""
        self.log.clear()
        self.sources.clear()
        self.messages.clear()
        self.current = self.base
        return self.current

    @property
    def can_undo(self) -> bool:
        return bool(self.log)

    async def send(self, text: str) -> ChatMessage:
        """
        Ask the structurer for operations describing ``text``.

        With ``auto_apply`` the proposed patch is committed immediately. A
        rejected patch is recorded on the assistant message instead.
        """
        if self.structurer is None:
            raise ValidationError("structurer", None, "session has no text structurer")

        self.messages.append(ChatMessage(role="user", text=text, created_at=self.clock()))
        operations = await self.structurer.structure(text, self.current)

        reply = ChatMessage(
            role="assistant",
            text=f"{len(operations)} change(s) proposed" if operations else "No changes recognised",
            patch=operations,
            created_at=self.clock(),
        )
        self.messages.append(reply)

        if self.auto_apply and operations:
            self._apply_reply(reply)
        return reply

    def apply_message_patch(self, index: int) -> Quote:
        """Manually apply the patch proposed by the assistant message at ``index``."""
        if index < 0 or index >= len(self.messages):
            raise ValidationError("message_index", index, f"must be within 0..{len(self.messages) - 1}")
        message = self.messages[index]
        if message.role != "assistant" or not message.patch:
            raise ValidationError("message_index", index, "message carries no patch")
        if message.applied:
            return self.current
        self._apply_reply(message)
        if message.error:
            raise PatchError(0, "patch", "/", message.error)
        return self.current

    def _apply_reply(self, message: ChatMessage):
        try:
            self.apply(message.patch, source=message)
        except PatchError as e:
            message.error = e.reason
            logger.warning("Proposed patch rejected", op_index=e.op_index, path=e.path, reason=e.reason)
            return
        message.applied = True
        message.error = None
