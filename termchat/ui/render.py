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

"""Terminal painting for TermChat.

All escape sequences written to the terminal are produced here. Streaming
output repaints only a small live region below the committed lines, using
relative cursor movement instead of clearing the screen.
"""

import math
import re
import shutil
import sys
from typing import Callable, Optional, TextIO

from prompt_toolkit.utils import get_cwidth

from ..core.config import Theme
from .text_wrapper import LineReflower, wrap_width

RESET = '\033[0m'
RED = '\033[91m'
GRAY = '\033[90m'
BOLD = '\033[1m'

CLEAR_LINE = '\033[2K\r'
CLEAR_BELOW = '\033[J'
CLEAR_SCREEN = '\033[2J\033[0f'

SPINNER_TEXT = "[●] Thinking..."
AI_MARKER = "🤖"
USER_MARKER = "💬 "

SGR_RE = re.compile(r'\033\[[0-9;]*m')


def colorize(text: str, color: Optional[str]) -> str:
    """Wrap text in a color, always closing it with a reset."""
    if not color:
        return text
    return f"{color}{text}{RESET}"


def cursor_up(count: int) -> str:
    return f"\033[{count}A" if count > 0 else ""


def row_count(line: str, columns: int) -> int:
    """Terminal rows a painted line occupies once the terminal soft-wraps it."""
    if columns <= 0:
        return 1
    return max(1, math.ceil(get_cwidth(SGR_RE.sub("", line)) / columns))


def repaint_sequence(previous_line_count: int, block: list[str]) -> str:
    """Escape sequence that replaces the last ``previous_line_count`` rows with ``block``.

    The cursor is assumed to sit at the start of the row immediately below
    the previous block, and is left immediately below the new block. The
    previous block is erased to the end of the screen, so rows it occupied
    beyond the new block are cleared too.
    """
    previous = max(0, previous_line_count)
    parts = []
    if previous:
        parts.append(cursor_up(previous) + "\r" + CLEAR_BELOW)
    for line in block:
        parts.append(CLEAR_LINE + line + "\n")
    return "".join(parts)


def _terminal_columns() -> int:
    return shutil.get_terminal_size().columns


class RenderSurface:
    """Owns the terminal output stream while a turn is in flight."""

    def __init__(
        self,
        output: Optional[TextIO] = None,
        theme: Optional[Theme] = None,
        width_provider: Callable[[], int] = _terminal_columns,
    ):
        self.output = output or sys.stdout
        self.theme = theme
        self._width_provider = width_provider
        self._columns = self.terminal_width()
        self.reflower = LineReflower(wrap_width(self._columns))
        self._live_rows = 0  # Terminal rows below the committed output that are repainted
        self._spinner_visible = False

    def terminal_width(self) -> int:
        return max(0, self._width_provider())

    @property
    def user_color(self) -> str:
        return self.theme.user.value if self.theme else ""

    @property
    def ai_color(self) -> str:
        return self.theme.ai.value if self.theme else ""

    @property
    def spinner_visible(self) -> bool:
        return self._spinner_visible

    def set_theme(self, theme: Optional[Theme]):
        self.theme = theme

    def write(self, text: str):
        self.output.write(text)
        self.output.flush()

    def prompt_prefix(self) -> str:
        return colorize(USER_MARKER, self.user_color)

    def _rows(self, lines: list[str]) -> int:
        return sum(row_count(line, self._columns) for line in lines)

    def begin_message(self):
        """Start painting an assistant message at the current terminal width."""
        self._columns = self.terminal_width()
        self.reflower.reset()
        self.reflower.update_width(self._columns)
        self._live_rows = 0
        self.write("\n" + colorize(AI_MARKER, self.ai_color) + "\n")

    def show_spinner(self):
        spinner = [colorize(SPINNER_TEXT, GRAY)]
        self.write(repaint_sequence(self._live_rows, spinner))
        self._live_rows = self._rows(spinner)
        self._spinner_visible = True

    def hide_spinner(self) -> bool:
        """Remove the spinner. Returns False if it was not showing."""
        if not self._spinner_visible:
            return False
        self.write(repaint_sequence(self._live_rows, []))
        self._live_rows = 0
        self._spinner_visible = False
        return True

    def paint_stream(self, fragment: str, token_estimate: int):
        """Reflow a fragment and repaint the live region."""
        completed = [colorize(line, self.ai_color) for line in self.reflower.feed(fragment)]
        live = [
            colorize(self.reflower.pending, self.ai_color),
            colorize(f"[●] Streaming... ({token_estimate} tokens)", GRAY),
        ]
        self.write(repaint_sequence(self._live_rows, completed + live))
        self._live_rows = self._rows(live)

    def finish_message(self):
        """Flush buffered text and repaint without the streaming decoration."""
        remaining = [colorize(line, self.ai_color) for line in self.reflower.flush()]
        self.write(repaint_sequence(self._live_rows, remaining))
        self._live_rows = 0

    def render_error(self, message: str):
        # Leading reset closes any style left open by an interrupted paint
        text = " ".join(message.split())
        self.write(RESET + colorize(f"❌ {text}", RED) + "\n")

    def render_info(self, message: str):
        self.write(message + "\n")

    def render_status(self, message: str):
        self.write(colorize(message, GRAY) + "\n")

    def clear_screen(self):
        self.write(CLEAR_SCREEN)

    def render_header(self, model_name: str, provider_name: str):
        width = max(0, self.terminal_width())
        content_width = max(0, width - 4)
        title_and_info = f"{AI_MARKER} TermChat │ {model_name} │ {provider_name}"
        actions = "[/help] [/settings]"
        padding = max(1, content_width - len(title_and_info) - len(actions))
        content = f"{title_and_info}{' ' * padding}{actions}"
        if len(content) > content_width:
            content = content[:max(0, content_width - 3)] + "..."
        rule = '─' * max(0, width - 2)
        self.write("\n".join([f"┌{rule}┐", f"│ {content} │", f"├{rule}┤"]) + "\n\n")
