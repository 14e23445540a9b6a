# Copyright 2024 TermChat contributors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Conversation state for TermChat.

The session owns the ordered message history, the usage totals and the bound
backend. Turns are write-ahead: the user message is appended before the
backend is called, and any failure truncates history back to the exact state
it had before the turn began.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from .backend import CancelToken, ChatBackend, Usage, estimate_tokens
from .config import Pricing
from .errors import BackendError, TurnCancelled, UnknownTurnError

logger = logging.getLogger(__name__)

USER = "user"
ASSISTANT = "assistant"


@dataclass(frozen=True)
class Message:
    """Read-only snapshot of a message in the conversation."""
    role: str  # "user" or "assistant"
    content: str
    created_at: Optional[datetime] = None
    token_count: Optional[int] = None
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None


@dataclass
class MessageMetadata:
    created_at: datetime
    token_count: Optional[int] = None
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None


@dataclass
class _Entry:
    role: str
    content: str


@dataclass(frozen=True)
class UsageTotals:
    """Running token totals reported by backends."""
    input_tokens: int = 0
    output_tokens: int = 0
    measured: bool = False  # True once any backend reported authoritative usage

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(frozen=True)
class CostBreakdown:
    """Token and cost summary. Costs are None when pricing is unavailable."""
    input_tokens: int
    output_tokens: int
    total_tokens: int
    input_cost: Optional[float]
    output_cost: Optional[float]
    total_cost: Optional[float]


class ConversationSession:
    """Ordered chat history bound to a hot-swappable backend."""

    def __init__(self, backend: ChatBackend, clock: Callable[[], datetime] = datetime.now):
        self._backend = backend
        self._clock = clock
        self._entries: list[_Entry] = []
        self._metadata: dict[int, MessageMetadata] = {}
        self._cursor = 0  # Next append index
        self._usage = UsageTotals()
        self._in_flight = False

    @property
    def backend(self) -> ChatBackend:
        return self._backend

    def set_backend(self, backend: ChatBackend):
        """Replace the bound backend. History is left untouched."""
        logger.info("Backend switched to %s (%s)", backend.provider_id, backend.model_id)
        self._backend = backend

    def set_model(self, model_id: str):
        """Update the model used for future turns."""
        self._backend.set_model(model_id)

    @property
    def model_id(self) -> str:
        return self._backend.model_id

    @property
    def usage(self) -> UsageTotals:
        return self._usage

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def _append(self, role: str, content: str) -> int:
        index = self._cursor
        self._entries.append(_Entry(role=role, content=content))
        self._cursor += 1
        return index

    def _rollback(self, cursor: int):
        del self._entries[cursor:]
        for index in [i for i in self._metadata if i >= cursor]:
            del self._metadata[index]
        self._cursor = cursor

    def _wire_history(self) -> list[dict]:
        return [{"role": e.role, "content": e.content} for e in self._entries[:self._cursor]]

    def _snapshot(self, index: int) -> Message:
        entry = self._entries[index]
        meta = self._metadata.get(index)
        if meta is None:
            return Message(role=entry.role, content=entry.content)
        return Message(
            role=entry.role,
            content=entry.content,
            created_at=meta.created_at,
            token_count=meta.token_count,
            input_tokens=meta.input_tokens,
            output_tokens=meta.output_tokens,
        )

    def send_message(
        self,
        user_text: str,
        on_fragment: Optional[Callable[[str, int], None]] = None,
        cancel: Optional[CancelToken] = None,
    ) -> Message:
        """Run one turn: send ``user_text`` and stream the reply.

        Args:
            user_text: The operator's message
            on_fragment: Called as ``on_fragment(text, cumulative_token_estimate)``
            cancel: Cancellation token forwarded to the backend

        Returns:
            Snapshot of the finalized assistant message

        Raises:
            TurnCancelled: The turn was cancelled
            BackendError: The backend failed
            UnknownTurnError: Any other failure
            RuntimeError: A turn is already in flight
        """
        if self._in_flight:
            raise RuntimeError("A turn is already in progress")

        cancel = cancel or CancelToken()
        start = self._cursor
        completed = False
        stream = None
        self._in_flight = True
        try:
            user_index = self._append(USER, user_text)
            self._metadata[user_index] = MessageMetadata(created_at=self._clock())
            history = self._wire_history()
            logger.info(
                "Turn started: model=%s history=%d messages", self._backend.model_id, len(history)
            )

            assistant_index = None
            usage = Usage()
            last_estimate = 0
            stream = self._backend.stream(history, cancel)
            for item in stream:
                cancel.raise_if_cancelled()
                if isinstance(item, Usage):
                    usage = item
                    continue
                if assistant_index is None:
                    assistant_index = self._append(ASSISTANT, "")
                self._entries[assistant_index].content += item.text
                last_estimate = item.token_estimate
                if on_fragment:
                    on_fragment(item.text, item.token_estimate)

            if assistant_index is None:
                # Empty reply still completes the pair
                assistant_index = self._append(ASSISTANT, "")

            token_count = usage.output_tokens if usage.reported else last_estimate
            self._metadata[assistant_index] = MessageMetadata(
                created_at=self._clock(),
                token_count=token_count,
                input_tokens=usage.input_tokens if usage.reported else None,
                output_tokens=usage.output_tokens if usage.reported else None,
            )
            self._usage = UsageTotals(
                input_tokens=self._usage.input_tokens + usage.input_tokens,
                output_tokens=self._usage.output_tokens + usage.output_tokens,
                measured=self._usage.measured or usage.reported,
            )
            completed = True
            logger.info(
                "Turn complete: input=%d output=%d reported=%s",
                usage.input_tokens, usage.output_tokens, usage.reported,
            )
            return self._snapshot(assistant_index)
        except (TurnCancelled, BackendError):
            raise
        except Exception as e:
            logger.exception("Unexpected error during turn")
            raise UnknownTurnError(str(e) or type(e).__name__) from e
        finally:
            if stream is not None and hasattr(stream, "close"):
                stream.close()
            if not completed:
                logger.info("Turn rolled back to %d messages", start)
                self._rollback(start)
            self._in_flight = False

    def clear_history(self):
        """Empty the history and zero the usage totals together."""
        if self._in_flight:
            raise RuntimeError("Cannot clear history while a turn is in progress")
        self._entries, self._metadata, self._cursor, self._usage = [], {}, 0, UsageTotals()

    def get_history(self) -> list[Message]:
        """Read-only snapshot of the conversation in chronological order."""
        return [self._snapshot(i) for i in range(self._cursor)]

    def message_count(self) -> int:
        return self._cursor

    @staticmethod
    def estimate_tokens(text: str) -> int:
        return estimate_tokens(text)

    def get_token_estimate(self) -> int:
        """Heuristic token count of the whole history."""
        return sum(estimate_tokens(e.content) for e in self._entries[:self._cursor])

    def cost_breakdown(self, pricing: Optional[Pricing] = None) -> CostBreakdown:
        usage = self._usage
        if pricing is None:
            input_cost = output_cost = total_cost = None
        else:
            input_cost = pricing.input_cost(usage.input_tokens)
            output_cost = pricing.output_cost(usage.output_tokens)
            total_cost = input_cost + output_cost
        return CostBreakdown(
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            total_tokens=usage.total_tokens,
            input_cost=input_cost,
            output_cost=output_cost,
            total_cost=total_cost,
        )

    def session_cost(self, pricing: Optional[Pricing] = None) -> Optional[float]:
        return self.cost_breakdown(pricing).total_cost
