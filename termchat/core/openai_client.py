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

"""OpenAI chat completions streaming backend."""

import json
import logging
from typing import Iterator, Optional

import requests

from .backend import CancelToken, ChatBackend, Fragment, StreamItem, Usage, estimate_tokens
from .config import ProviderConfig, resolve_api_key
from .errors import BackendError, TurnCancelled

logger = logging.getLogger(__name__)


class OpenAIBackend(ChatBackend):
    """Streams responses from an OpenAI-compatible chat completions endpoint."""

    provider_id = "openai"

    def __init__(self, provider: ProviderConfig, model_id: str, timeout: int):
        super().__init__(model_id)
        self.provider = provider
        self.timeout = timeout
        self.session = requests.Session()
        headers = {
            "Content-Type": "application/json",
        }
        api_key = resolve_api_key(provider)
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        if provider.headers:
            headers.update(provider.headers)
        self.session.headers.update(headers)

    def _build_payload(self, history: list[dict]) -> dict:
        return {
            "model": self.model_id,
            "messages": [{"role": msg["role"], "content": msg["content"]} for msg in history],
            "stream": True,
            "stream_options": {"include_usage": True},
        }

    def _http_error_with_body(self, resp: requests.Response, exc: requests.HTTPError) -> BackendError:
        body = ""
        error_msg = None
        error_code = None
        try:
            body = resp.text
            data = resp.json()
            err = data.get("error", {}) or {}
            error_msg = err.get("message")
            error_code = err.get("code") or err.get("type")
        except (ValueError, AttributeError):
            pass

        msg_parts = [f"OpenAI API Error: HTTP {resp.status_code} {resp.reason}"]
        if error_msg:
            msg_parts.append(f"Message: {error_msg}")
        if error_code:
            msg_parts.append(f"Code: {error_code}")
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
                f"Failed to connect to OpenAI API at {self.provider.api_url}. "
                "Check your network or API URL."
            ) from e
        except requests.HTTPError as e:
            raise self._http_error_with_body(resp, e)
        return resp

    def stream(self, history: list[dict], cancel: Optional[CancelToken] = None) -> Iterator[StreamItem]:
        if cancel is not None:
            cancel.raise_if_cancelled()

        payload = self._build_payload(history)
        url = f"{self.provider.api_url.rstrip('/')}/v1/chat/completions"
        resp = self._post(url, payload)

        full_response = ""
        prompt_tokens = 0
        completion_tokens = 0

        try:
            for line in resp.iter_lines():
                if cancel is not None and cancel.cancelled:
                    logger.info("OpenAI stream cancelled after %d chars", len(full_response))
                    raise TurnCancelled()
                if not line:
                    continue
                if isinstance(line, str):
                    line = line.encode("utf-8")
                if line.startswith(b"data: "):
                    line = line[len(b"data: "):]
                if line.strip() == b"[DONE]":
                    break
                try:
                    data = json.loads(line)
                except json.JSONDecodeError:
                    continue

                if data.get("error"):
                    err = data["error"]
                    message = err.get("message") if isinstance(err, dict) else str(err)
                    raise BackendError(f"OpenAI API Error: {message}")

                choices = data.get("choices") or []
                if choices:
                    delta = choices[0].get("delta") or {}
                    text = delta.get("content") or ""
                    if text:
                        full_response += text
                        yield Fragment(text=text, token_estimate=estimate_tokens(full_response))

                # Usage arrives on the final chunk when include_usage is set
                usage = data.get("usage") or {}
                if usage:
                    prompt_tokens = usage.get("prompt_tokens", 0) or 0
                    completion_tokens = usage.get("completion_tokens", 0) or 0
        except requests.RequestException as e:
            raise BackendError(f"OpenAI stream interrupted: {e}") from e
        finally:
            resp.close()

        logger.debug("OpenAI usage: prompt=%d completion=%d", prompt_tokens, completion_tokens)
        yield Usage(input_tokens=prompt_tokens, output_tokens=completion_tokens)
