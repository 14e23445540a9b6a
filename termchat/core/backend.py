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

"""Backend contract shared by every provider transport.

A backend turns an ordered chat history into a lazy stream of ``Fragment``
items followed by exactly one ``Usage`` record. Cancellation is cooperative:
the backend checks the ``CancelToken`` between stream events and raises
``TurnCancelled`` when it is set.
"""

import math
import threading
from dataclasses import dataclass
from typing import Iterator, Optional, Union

from .errors import TurnCancelled


@dataclass(frozen=True)
class Fragment:
    """One incremental piece of generated text."""
    text: str
    token_estimate: int  # Cumulative estimate for the response so far


@dataclass(frozen=True)
class Usage:
    """Final token usage of a response."""
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    @property
    def reported(self) -> bool:
        """Whether the backend returned authoritative numbers."""
        return self.total_tokens > 0


StreamItem = Union[Fragment, Usage]


class CancelToken:
    """Cancellation flag observed by backends between fragments.

    Setting the flag only touches a ``threading.Event``, so ``cancel`` is safe
    to call from a signal handler.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise TurnCancelled()


def estimate_tokens(text: str) -> int:
    """Length based token heuristic: characters / 4, rounded up."""
    return math.ceil(len(text) / 4)


class ChatBackend:
    """Base class for provider transports."""

    provider_id = "base"

    def __init__(self, model_id: str):
        self.model_id = model_id

    def set_model(self, model_id: str):
        """Set the model used for future requests."""
        self.model_id = model_id

    def stream(self, history: list[dict], cancel: Optional[CancelToken] = None) -> Iterator[StreamItem]:
        """Stream a response for ``history`` (a list of ``{"role", "content"}`` dicts)."""
        raise NotImplementedError
