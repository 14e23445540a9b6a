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

"""Anthropic Claude streaming backend."""

import json
import logging
from typing import Iterator, Optional

import requests

from .backend import CancelToken, ChatBackend, Fragment, StreamItem, Usage, estimate_tokens
from .config import ProviderConfig, resolve_api_key
from .errors import BackendError, TurnCancelled

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"
MAX_OUTPUT_TOKENS = 8192


class AnthropicBackend(ChatBackend):
    """Streams responses from the Anthropic Messages API."""

    provider_id = "anthropic"

    def __init__(self, provider: ProviderConfig, model_id: str, timeout: int):
        super().__init__(model_id)
        self.provider = provider
        self.timeout = timeout
        self.session = requests.Session()
        headers = {
            "Content-Type": "application/json",
            "anthropic-version": ANTHROPIC_VERSION,
        }
        api_key = resolve_api_key(provider)
        if api_key:
            headers["x-api-key"] = api_key
        if provider.headers:
            headers.update(provider.headers)
        self.session.headers.update(headers)

    def _build_payload(self, history: list[dict]) -> dict:
        return {
            "model": self.model_id,
            "max_tokens": MAX_OUTPUT_TOKENS,
            "messages": [
                {"role": msg["role"], "content": msg["content"]}
                for msg in history
                if msg["role"] in ("user", "assistant")
            ],
            "stream": True,
        }

    def _http_error_with_body(self, resp: requests.Response, exc: requests.HTTPError) -> BackendError:
        """Build informative error from HTTP response."""
        body = ""
        error_type = None
        error_msg = None
        try:
            body = resp.text
            data = resp.json()
            err = data.get("error", {})
            error_type = err.get("type")
            error_msg = err.get("message")
        except (ValueError, AttributeError):
            pass

        msg_parts = [f"Anthropic API Error: HTTP {resp.status_code} {resp.reason}"]
        if error_msg:
            msg_parts.append(f"Message: {error_msg}")
        if error_type:
            msg_parts.append(f"Type: {error_type}")
        if body and not error_msg:
            msg_parts.append(f"Body: {body[:500]}")

        err = BackendError("; ".join(msg_parts))
        err.__cause__ = exc
        return err

    def _post(self, url: str, payload: dict):
        resp = None
        try:
            logger.debug(
                "POST %s model=%s messages=%d stream=True",
                url,
                payload.get("model"),
                len(payload.get("messages", [])),
            )
            resp = self.session.post(url, json=payload, timeout=self.timeout, stream=True)
            resp.raise_for_status()
        except requests.Timeout as e:
            raise BackendError(
                f"Request timed out after {self.timeout} seconds. "
                "Increase the timeout in config.toml."
            ) from e
        except requests.ConnectionError as e:
            raise BackendError(
                f"Failed to connect to Anthropic API at {self.provider.api_url}. "
                "Check your network or API URL."
            ) from e
        except requests.HTTPError as e:
            raise self._http_error_with_body(resp, e)
        return resp

    def stream(self, history: list[dict], cancel: Optional[CancelToken] = None) -> Iterator[StreamItem]:
        if cancel is not None:
            cancel.raise_if_cancelled()

        payload = self._build_payload(history)
        url = f"{self.provider.api_url.rstrip('/')}/v1/messages"
        resp = self._post(url, payload)

        full_response = ""
        input_tokens = 0
        output_tokens = 0
        current_event = None

        try:
            for line in resp.iter_lines(decode_unicode=True):
                if cancel is not None and cancel.cancelled:
                    logger.info("Anthropic stream cancelled after %d chars", len(full_response))
                    raise TurnCancelled()
                if not line:
                    continue
                if isinstance(line, bytes):
                    line = line.decode("utf-8")

                # Parse SSE format
                if line.startswith('event: '):
                    current_event = line[7:]
                    continue
                if not line.startswith('data: '):
                    continue

                try:
                    data = json.loads(line[6:])
                except json.JSONDecodeError:
                    continue

                event_type = data.get('type', current_event)

                if event_type == 'message_start':
                    usage = data.get('message', {}).get('usage', {})
                    input_tokens = usage.get('input_tokens', 0) or 0

                elif event_type == 'content_block_delta':
                    delta = data.get('delta', {})
                    if delta.get('type') == 'text_delta':
                        text = delta.get('text', '')
                        if text:
                            full_response += text
                            yield Fragment(text=text, token_estimate=estimate_tokens(full_response))

                elif event_type == 'message_delta':
                    usage = data.get('usage', {})
                    output_tokens = usage.get('output_tokens', output_tokens) or 0

                elif event_type == 'message_stop':
                    break

                elif event_type == 'error':
                    error = data.get('error', {})
                    raise BackendError(f"Anthropic API Error: {error.get('message', 'Unknown error')}")
        except requests.RequestException as e:
            raise BackendError(f"Anthropic stream interrupted: {e}") from e
        finally:
            resp.close()

        logger.debug("Anthropic usage: input=%d output=%d", input_tokens, output_tokens)
        yield Usage(input_tokens=input_tokens, output_tokens=output_tokens)
