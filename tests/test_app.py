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

"""Tests for the turn coordinator."""

import io
import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from termchat.core.backend import ChatBackend, Fragment, Usage
from termchat.core.commands import AppState
from termchat.core.config import load_config
from termchat.core.conversations import ConversationSession
from termchat.core.errors import BackendError
from termchat.ui.app import TurnCoordinator, TurnState
from termchat.ui.render import CLEAR_SCREEN, RenderSurface


class ScriptedBackend(ChatBackend):
    provider_id = "scripted"

    def __init__(self, *scripts):
        super().__init__("scripted-model")
        self.scripts = list(scripts)
        self.calls = 0

    def stream(self, history, cancel=None):
        self.calls += 1
        for item in self.scripts.pop(0):
            if cancel is not None:
                cancel.raise_if_cancelled()
            if isinstance(item, BaseException):
                raise item
            yield item


class RecordingCoordinator(TurnCoordinator):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.states = []

    def _transition(self, new_state):
        self.states.append(new_state)
        super()._transition(new_state)


class TurnCoordinatorTests(unittest.TestCase):

    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        env = patch.dict(os.environ, {}, clear=True)
        env.start()
        self.addCleanup(env.stop)
        self.config = load_config(Path(tmp.name) / "config.toml")
        self.output = io.StringIO()
        self.surface = RenderSurface(output=self.output, theme=self.config.active_theme_colors,
                                     width_provider=lambda: 80)

    def make_coordinator(self, *scripts):
        backend = ScriptedBackend(*scripts)
        state = AppState(config=self.config, session=ConversationSession(backend))
        return RecordingCoordinator(state, self.surface), backend

    def count_spinner_clears(self):
        clears = []
        original = self.surface.hide_spinner

        def hide_spinner():
            cleared = original()
            if cleared:
                clears.append(True)
            return cleared

        self.surface.hide_spinner = hide_spinner
        return clears

    def test_successful_turn_state_sequence(self):
        coordinator, _ = self.make_coordinator(
            [Fragment("Hello", 2), Fragment(" world", 3), Usage(5, 3)]
        )
        clears = self.count_spinner_clears()

        self.assertTrue(coordinator.submit("hi"))

        self.assertEqual(coordinator.states, [
            TurnState.AWAITING_FIRST_CHUNK,
            TurnState.STREAMING,
            TurnState.COMPLETING,
            TurnState.IDLE,
        ])
        self.assertEqual(len(clears), 1)
        self.assertEqual(coordinator.state.session.message_count(), 2)
        self.assertIn("Hello world", self.output.getvalue())
        self.assertIn("5 in · 3 out tokens", self.output.getvalue())

    def test_estimated_tokens_when_backend_reports_none(self):
        coordinator, _ = self.make_coordinator([Fragment("abcdefgh", 2), Usage()])
        coordinator.submit("abcd")
        self.assertIn("~3 tokens (estimated)", self.output.getvalue())

    def test_backend_error_renders_one_line_and_returns_to_idle(self):
        coordinator, _ = self.make_coordinator(
            [Fragment("par", 1), Fragment("tial", 2), BackendError("HTTP 500 Internal Server Error")]
        )
        clears = self.count_spinner_clears()

        self.assertTrue(coordinator.submit("hi"))

        self.assertIs(coordinator.turn_state, TurnState.IDLE)
        self.assertEqual(coordinator.states[-2:], [TurnState.COMPLETING, TurnState.IDLE])
        self.assertIn("❌ HTTP 500 Internal Server Error", self.output.getvalue())
        self.assertEqual(coordinator.state.session.get_history(), [])
        self.assertEqual(len(clears), 1)

    def test_error_before_first_fragment_clears_spinner(self):
        coordinator, _ = self.make_coordinator([BackendError("Failed to connect")])
        clears = self.count_spinner_clears()

        coordinator.submit("hi")

        self.assertEqual(coordinator.states, [
            TurnState.AWAITING_FIRST_CHUNK,
            TurnState.COMPLETING,
            TurnState.IDLE,
        ])
        self.assertEqual(len(clears), 1)
        self.assertFalse(self.surface.spinner_visible)

    def test_input_while_busy_is_discarded(self):
        coordinator, backend = self.make_coordinator(
            [Fragment("one", 1), Fragment(" two", 2), Usage(1, 1)],
            [Fragment("never", 2), Usage(1, 1)],
        )
        accepted = []
        original = coordinator.on_fragment

        def on_fragment(text, estimate):
            accepted.append(coordinator.submit("typed ahead"))
            original(text, estimate)

        coordinator.on_fragment = on_fragment
        coordinator.submit("hi")

        self.assertEqual(accepted, [True, True])
        self.assertEqual(backend.calls, 1)
        self.assertEqual([m.content for m in coordinator.state.session.get_history()], ["hi", "one two"])

    def test_cancel_request_stops_turn(self):
        coordinator, _ = self.make_coordinator(
            [Fragment("one", 1), Fragment(" two", 2), Usage(1, 1)]
        )
        original = coordinator.on_fragment

        def on_fragment(text, estimate):
            original(text, estimate)
            self.assertTrue(coordinator.request_cancel())

        coordinator.on_fragment = on_fragment
        coordinator.submit("hi")

        self.assertIs(coordinator.turn_state, TurnState.IDLE)
        self.assertIn("❌ Request cancelled", self.output.getvalue())
        self.assertEqual(coordinator.state.session.message_count(), 0)
        self.assertFalse(coordinator.request_cancel())

    def test_blank_input_ignored(self):
        coordinator, backend = self.make_coordinator()
        self.assertTrue(coordinator.submit("   "))
        self.assertEqual(backend.calls, 0)
        self.assertEqual(coordinator.states, [])

    def test_exit_command_stops_loop(self):
        coordinator, _ = self.make_coordinator()
        self.assertFalse(coordinator.submit("/exit"))

    def test_clear_command_repaints_screen(self):
        coordinator, _ = self.make_coordinator([Fragment("a", 1), Usage(1, 1)])
        coordinator.submit("hi")
        coordinator.submit("/clear")
        self.assertIn(CLEAR_SCREEN, self.output.getvalue())
        self.assertEqual(coordinator.state.session.message_count(), 0)

    def test_theme_command_updates_prompt_color(self):
        coordinator, _ = self.make_coordinator()
        coordinator.submit("/theme ocean")
        self.assertEqual(self.surface.theme.id, "ocean")
        self.assertEqual(self.surface.prompt_prefix(), "\x1b[94m💬 \x1b[0m")

    def test_failed_command_rendered_as_error(self):
        coordinator, _ = self.make_coordinator()
        self.assertTrue(coordinator.submit("/bogus"))
        self.assertIn("❌ Unknown command: /bogus", self.output.getvalue())


if __name__ == '__main__':
    unittest.main()
