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

"""Streaming word-wrap for assistant output.

Fragments arrive split at arbitrary points (mid-word, mid-line). The reflower
buffers the current word and line and emits complete display lines as soon
as their contents can no longer change. Feeding the same text in any
fragmentation followed by ``flush()`` produces the same lines.
"""

from dataclasses import dataclass

RIGHT_MARGIN = 6
MIN_WIDTH = 40


def wrap_width(terminal_width: int) -> int:
    """Wrap width for a terminal of the given width."""
    return max(MIN_WIDTH, terminal_width - RIGHT_MARGIN)


@dataclass(frozen=True)
class ReflowCursor:
    line_column: int
    pending_word: str
    pending_line: str


class LineReflower:
    """Converts a stream of text fragments into lines no wider than ``max_width``.

    A single token longer than ``max_width`` is emitted verbatim on its own
    line; it is the only case where a line may exceed the bound.
    """

    def __init__(self, max_width: int):
        self.max_width = max(1, max_width)
        self.reset()

    def reset(self):
        """Start a new logical message."""
        self._line = ""
        self._word = ""
        self._long_token = False  # Current line ends in an unbreakable token still growing

    def update_width(self, terminal_width: int):
        """Apply a new terminal width to fragments fed from now on."""
        self.max_width = wrap_width(terminal_width)

    @property
    def cursor(self) -> ReflowCursor:
        return ReflowCursor(
            line_column=len(self._line),
            pending_word=self._word,
            pending_line=self._line,
        )

    @property
    def pending(self) -> str:
        """Buffered text that has not been emitted yet."""
        return self._line + self._word

    def _emit(self, out: list[str]):
        out.append(self._line.rstrip(" "))
        self._line = ""

    def _place_word(self, out: list[str]):
        if not self._word:
            return
        if self._line and len(self._line) + len(self._word) > self.max_width:
            self._emit(out)
        self._line += self._word
        self._word = ""

    def feed(self, fragment: str) -> list[str]:
        """Consume a fragment and return the lines it completed."""
        out: list[str] = []
        if not fragment:
            return out

        for ch in fragment:
            if ch == "\n":
                self._long_token = False
                self._place_word(out)
                self._emit(out)
            elif ch == " ":
                self._long_token = False
                self._place_word(out)
                if len(self._line) + 1 <= self.max_width:
                    self._line += ch
            elif self._long_token:
                self._line += ch
            else:
                self._word += ch

        if self._word:
            if len(self._word) > self.max_width:
                if self._line:
                    self._emit(out)
                self._line = self._word
                self._word = ""
                self._long_token = True
            elif self._line and len(self._line) + len(self._word) > self.max_width:
                # The word can only grow, so the current line is final
                self._emit(out)
        return out

    def flush(self) -> list[str]:
        """Emit any buffered word and line. Call when the message ends."""
        out: list[str] = []
        self._place_word(out)
        if self._line:
            self._emit(out)
        self._long_token = False
        return out
