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

"""Backend factory keyed on provider type."""

import logging

from .anthropic_client import AnthropicBackend
from .backend import ChatBackend
from .config import Config, ProviderConfig
from .openai_client import OpenAIBackend

logger = logging.getLogger(__name__)

BACKEND_TYPES: dict[str, type] = {
    "anthropic": AnthropicBackend,
    "openai": OpenAIBackend,
}


def create_backend(provider: ProviderConfig, model_id: str, timeout: int) -> ChatBackend:
    """Create a fresh backend for ``provider``.

    Every call returns a new instance with its own HTTP session, so variants
    never share mutable state.

    Raises:
        ValueError: If the provider type has no backend
    """
    backend_cls = BACKEND_TYPES.get(provider.type)
    if backend_cls is None:
        raise ValueError(f"Unsupported provider: {provider.type}")
    logger.debug("Creating %s backend for provider '%s' model=%s", provider.type, provider.id, model_id)
    return backend_cls(provider, model_id, timeout)


def create_active_backend(config: Config) -> ChatBackend:
    """Create the backend for the configured active provider and model."""
    provider = config.get_provider(config.active_provider)
    return create_backend(provider, config.active_model, config.timeout)
