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

"""Tests for the Anthropic streaming backend."""

import json
import unittest

import requests

from termchat.core.anthropic_client import AnthropicBackend
from termchat.core.backend import CancelToken, Fragment, Usage
from termchat.core.config import ProviderConfig
from termchat.core.errors import BackendError, TurnCancelled


class FakeResponse:
    def __init__(self, lines=None, status_code=200, reason="OK", body="", fail_after=None):
        self.lines = lines or []
        self.status_code = status_code
        self.reason = reason
        self.text = body
        self.fail_after = fail_after
        self.closed = False

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error", response=self)

    def json(self):
        return json.loads(self.text)

    def iter_lines(self, decode_unicode=False):
        for i, line in enumerate(self.lines):
            if self.fail_after is not None and i >= self.fail_after:
                raise requests.exceptions.ChunkedEncodingError("connection reset")
            yield line

    def close(self):
        self.closed = True


class FakeSession:
    def __init__(self, response=None, exc=None):
        self.response = response
        self.exc = exc
        self.calls = []

    def post(self, url, json=None, timeout=None, stream=False):
        self.calls.append({"url": url, "json": json, "timeout": timeout, "stream": stream})
        if self.exc:
            raise self.exc
        return self.response


def make_backend(session=None):
    provider = ProviderConfig(
        id="anthropic",
        name="Anthropic",
        type="anthropic",
        api_url="https://api.anthropic.com",
        api_key="test-key",
    )
    backend = AnthropicBackend(provider, "claude-sonnet-4-5", timeout=30)
    if session is not None:
        backend.session = session
    return backend


def sse(payload: dict) -> str:
    return "data: " + json.dumps(payload)


STREAM_LINES = [
    "event: message_start",
    sse({"type": "message_start", "message": {"usage": {"input_tokens": 12}}}),
    "",
    "event: content_block_delta",
    sse({"type": "content_block_delta", "delta": {"type": "text_delta", "text": "Hello"}}),
    sse({"type": "content_block_delta", "delta": {"type": "text_delta", "text": " there"}}),
    sse({"type": "message_delta", "usage": {"output_tokens": 4}}),
    sse({"type": "message_stop"}),
]

HISTORY = [
    {"role": "user", "content": "Hi"},
    {"role": "assistant", "content": "Hello!"},
    {"role": "user", "content": "How are you?"},
]


class AnthropicBackendTests(unittest.TestCase):

    def test_headers(self):
        backend = make_backend()
        self.assertEqual(backend.session.headers["x-api-key"], "test-key")
        self.assertEqual(backend.session.headers["anthropic-version"], "2023-06-01")

    def test_streams_fragments_then_usage(self):
        resp = FakeResponse(STREAM_LINES)
        session = FakeSession(resp)
        backend = make_backend(session)

        items = list(backend.stream(HISTORY))

        self.assertEqual(items, [
            Fragment(text="Hello", token_estimate=2),
            Fragment(text=" there", token_estimate=3),
            Usage(input_tokens=12, output_tokens=4),
        ])
        self.assertTrue(resp.closed)

        call = session.calls[0]
        self.assertEqual(call["url"], "https://api.anthropic.com/v1/messages")
        self.assertTrue(call["stream"])
        self.assertEqual(call["timeout"], 30)
        self.assertEqual(call["json"]["model"], "claude-sonnet-4-5")
        self.assertTrue(call["json"]["stream"])
        self.assertEqual(call["json"]["messages"], HISTORY)

    def test_set_model_used_in_payload(self):
        session = FakeSession(FakeResponse(STREAM_LINES))
        backend = make_backend(session)
        backend.set_model("claude-haiku-4-5")
        list(backend.stream(HISTORY))
        self.assertEqual(session.calls[0]["json"]["model"], "claude-haiku-4-5")

    def test_missing_usage_defaults_to_zero(self):
        lines = [sse({"type": "content_block_delta", "delta": {"type": "text_delta", "text": "ok"}})]
        items = list(make_backend(FakeSession(FakeResponse(lines))).stream(HISTORY))
        self.assertEqual(items[-1], Usage())
        self.assertFalse(items[-1].reported)

    def test_cancel_before_request(self):
        session = FakeSession(FakeResponse(STREAM_LINES))
        cancel = CancelToken()
        cancel.cancel()
        with self.assertRaises(TurnCancelled):
            list(make_backend(session).stream(HISTORY, cancel))
        self.assertEqual(session.calls, [])

    def test_cancel_mid_stream(self):
        resp = FakeResponse(STREAM_LINES)
        cancel = CancelToken()
        stream = make_backend(FakeSession(resp)).stream(HISTORY, cancel)

        first = next(stream)
        self.assertEqual(first.text, "Hello")
        cancel.cancel()
        with self.assertRaises(TurnCancelled):
            next(stream)
        self.assertTrue(resp.closed)

    def test_http_error_includes_api_message(self):
        body = json.dumps({"error": {"type": "authentication_error", "message": "invalid x-api-key"}})
        resp = FakeResponse(status_code=401, reason="Unauthorized", body=body)
        with self.assertRaises(BackendError) as ctx:
            list(make_backend(FakeSession(resp)).stream(HISTORY))
        self.assertIn("HTTP 401", ctx.exception.detail)
        self.assertIn("invalid x-api-key", ctx.exception.detail)
        self.assertIn("authentication_error", ctx.exception.detail)

    def test_timeout_becomes_backend_error(self):
        session = FakeSession(exc=requests.Timeout("read timed out"))
        with self.assertRaises(BackendError) as ctx:
            list(make_backend(session).stream(HISTORY))
        self.assertIn("timed out after 30 seconds", ctx.exception.detail)

    def test_connection_error_becomes_backend_error(self):
        session = FakeSession(exc=requests.ConnectionError("refused"))
        with self.assertRaises(BackendError) as ctx:
            list(make_backend(session).stream(HISTORY))
        self.assertIn("Failed to connect", ctx.exception.detail)

    def test_error_event(self):
        lines = [sse({"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}})]
        with self.assertRaises(BackendError) as ctx:
            list(make_backend(FakeSession(FakeResponse(lines))).stream(HISTORY))
        self.assertEqual(ctx.exception.detail, "Anthropic API Error: Overloaded")

    def test_interrupted_stream(self):
        resp = FakeResponse(STREAM_LINES, fail_after=5)
        stream = make_backend(FakeSession(resp)).stream(HISTORY)
        self.assertEqual(next(stream).text, "Hello")
        with self.assertRaises(BackendError) as ctx:
            list(stream)
        self.assertIn("interrupted", ctx.exception.detail)
        self.assertTrue(resp.closed)


if __name__ == '__main__':
    unittest.main()
