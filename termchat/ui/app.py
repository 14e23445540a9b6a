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

"""Interactive terminal UI for TermChat.

The turn coordinator runs one turn at a time on the main thread. A SIGINT
during a turn cancels it instead of exiting, and keystrokes typed while a
turn is in flight are discarded when it ends.
"""

import logging
import os
import signal
import sys
from enum import Enum
from typing import Optional

from prompt_toolkit import PromptSession
from prompt_toolkit.completion import WordCompleter
from prompt_toolkit.formatted_text import ANSI
from prompt_toolkit.history import InMemoryHistory

from ..core.backend import CancelToken
from ..core.commands import AppState, available_commands, format_token_summary, handle_command, is_command
from ..core.errors import BackendError, TurnCancelled, UnknownTurnError
from .render import RenderSurface

logger = logging.getLogger(__name__)


def _model_display_name(config) -> str:
    try:
        return config.active_model_config.display_name
    except ValueError:
        return config.active_model


class TurnState(Enum):
    IDLE = "idle"
    AWAITING_FIRST_CHUNK = "awaiting_first_chunk"
    STREAMING = "streaming"
    COMPLETING = "completing"


class TurnCoordinator:
    """Gates operator input and drives the rendering of one turn at a time.

    Input that arrives while a turn is in flight is discarded, never queued.
    """

    def __init__(self, state: AppState, surface: RenderSurface):
        self.state = state
        self.surface = surface
        self.turn_state = TurnState.IDLE
        self._cancel: Optional[CancelToken] = None

    @property
    def busy(self) -> bool:
        return self.turn_state is not TurnState.IDLE

    def _transition(self, new_state: TurnState):
        logger.debug("Turn state %s -> %s", self.turn_state.value, new_state.value)
        self.turn_state = new_state

    def submit(self, line: str) -> bool:
        """Handle one line of operator input.

        Returns:
            False when the application should exit
        """
        if self.busy:
            logger.debug("Discarding input received during a turn")
            return True
        text = line.strip()
        if not text:
            return True
        if is_command(text):
            return self.run_command(text)
        self.run_turn(text)
        return True

    def run_command(self, text: str) -> bool:
        result = handle_command(text, self.state)
        config = self.state.config
        if result.should_clear_screen:
            self.surface.clear_screen()
            self.surface.render_header(_model_display_name(config), config.active_provider_config.name)
        if result.should_update_prompt:
            self.surface.set_theme(config.active_theme_colors)
        if result.message:
            if result.success:
                self.surface.render_info(result.message)
            else:
                self.surface.render_error(result.message)
        return not result.should_exit

    def on_fragment(self, text: str, token_estimate: int):
        if self.turn_state is TurnState.AWAITING_FIRST_CHUNK:
            self.surface.hide_spinner()
            self._transition(TurnState.STREAMING)
        self.surface.paint_stream(text, token_estimate)

    def request_cancel(self) -> bool:
        """Cancel the in-flight turn. Returns False when idle."""
        if self._cancel is None or not self.busy:
            return False
        logger.info("Cancellation requested")
        self._cancel.cancel()
        return True

    def run_turn(self, text: str):
        """Send ``text`` and paint the streamed reply. Errors are rendered, not raised."""
        self._cancel = CancelToken()
        self._transition(TurnState.AWAITING_FIRST_CHUNK)
        self.surface.begin_message()
        self.surface.show_spinner()

        error = None
        try:
            self.state.session.send_message(text, on_fragment=self.on_fragment, cancel=self._cancel)
        except (TurnCancelled, UnknownTurnError) as e:
            error = str(e)
        except BackendError as e:
            error = e.detail
        finally:
            self._transition(TurnState.COMPLETING)
            self.surface.hide_spinner()
            self.surface.finish_message()
            if error is not None:
                logger.warning("Turn failed: %s", error)
                self.surface.render_error(error)
            else:
                self.surface.render_status(format_token_summary(self.state.session, self.state.config))
            self._cancel = None
            self._transition(TurnState.IDLE)


def _discard_typeahead():
    """Drop keystrokes typed while a turn was in flight."""
    if os.name != "posix" or not sys.stdin.isatty():
        return
    import termios
    try:
        termios.tcflush(sys.stdin.fileno(), termios.TCIFLUSH)
    except termios.error as e:
        logger.debug("Could not flush pending input: %s", e)


class ChatUI:
    """Line-oriented prompt loop around a TurnCoordinator."""

    def __init__(self, state: AppState, surface: Optional[RenderSurface] = None):
        self.state = state
        self.surface = surface or RenderSurface(theme=state.config.active_theme_colors)
        self.coordinator = TurnCoordinator(state, self.surface)
        self.prompt_session = PromptSession(
            history=InMemoryHistory(),
            completer=WordCompleter(available_commands(), ignore_case=True, sentence=True),
        )

    def _prompt(self) -> ANSI:
        return ANSI(self.surface.prompt_prefix())

    def _handle_sigint(self, signum, frame):
        if not self.coordinator.request_cancel():
            raise KeyboardInterrupt

    def _submit(self, line: str) -> bool:
        previous = signal.signal(signal.SIGINT, self._handle_sigint)
        try:
            return self.coordinator.submit(line)
        finally:
            signal.signal(signal.SIGINT, previous)
            _discard_typeahead()

    def _show_intro(self):
        config = self.state.config
        self.surface.clear_screen()
        self.surface.render_header(_model_display_name(config), config.active_provider_config.name)
        self.surface.render_status("Press Enter to send • Ctrl+C cancels a reply • /exit to quit • /help for commands")

    def run(self):
        self._show_intro()
        while True:
            try:
                line = self.prompt_session.prompt(self._prompt)
            except (KeyboardInterrupt, EOFError):
                self.surface.render_info("\n👋 Goodbye!")
                break
            if not self._submit(line):
                break


def run_ui(state: AppState):  # pragma: no cover - interactive UI loop
    """Run the terminal UI."""
    ChatUI(state).run()
