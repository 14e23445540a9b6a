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

"""Interactive API key setup for TermChat.

Prompting is injected as ``ask(message, secret)`` so the wizard can be driven
by prompt_toolkit in the app and by scripted answers in tests.
"""

import logging
from typing import Callable

from .config import Config, ProviderConfig, resolve_api_key, save_config

logger = logging.getLogger(__name__)

AskFn = Callable[[str, bool], str]
RULE = '─' * 64


def _plural_models(provider: ProviderConfig) -> str:
    count = len(provider.models)
    return f"{count} model{'s' if count != 1 else ''}"


def _status(provider: ProviderConfig) -> str:
    return '✓ Configured' if resolve_api_key(provider) else '✗ Not configured'


def needs_setup(config: Config) -> bool:
    """True when no provider has an API key available."""
    return not config.configured_providers()


def providers_status(config: Config) -> str:
    """Configuration status of every provider."""
    lines = ["", "Provider Configuration Status:", RULE]
    for provider in config.providers:
        lines.append(f"  {provider.name:<15} {_status(provider):<20} ({_plural_models(provider)})")
    lines.append(RULE)
    lines.append("")
    lines.append("To configure a provider, use: /configure <provider-id>")
    lines.append("Available providers: " + ", ".join(p.id for p in config.providers))
    return "\n".join(lines)


def select_providers(config: Config, answer: str) -> list[ProviderConfig]:
    """Parse a selection like ``1,2`` or ``all`` into providers."""
    answer = answer.strip().lower()
    if answer == 'all':
        return list(config.providers)
    selected = []
    for part in answer.split(','):
        part = part.strip()
        if not part.isdigit():
            continue
        index = int(part)
        if 1 <= index <= len(config.providers):
            provider = config.providers[index - 1]
            if provider not in selected:
                selected.append(provider)
    return selected


def _store_api_key(config: Config, provider: ProviderConfig, api_key: str):
    provider.api_key = api_key
    save_config(config)
    logger.info("API key stored for provider '%s'", provider.id)


def run_first_time_setup(config: Config, ask: AskFn, out: Callable[[str], None] = print) -> bool:
    """Walk the operator through entering API keys.

    Returns:
        True if at least one provider ended up configured
    """
    out("")
    out("Welcome to TermChat!")
    out("Let's set up your AI providers. You need at least one API key to continue.")
    out("")
    out("Available Providers:")
    out(RULE)
    for i, provider in enumerate(config.providers, start=1):
        out(f"  {i}. {provider.name:<15} {_status(provider):<20} ({_plural_models(provider)})")
    out(RULE)

    answer = ask('Enter provider numbers to configure (e.g., 1,2 or "all" for all providers): ', False)
    selected = select_providers(config, answer)
    if not selected:
        out("⚠️  No providers selected. Exiting setup.")
        return False

    configured_any = False
    for provider in selected:
        out("")
        out(f"Configuring: {provider.name}")
        api_key = ask(f"Enter your {provider.name} API key (or press Enter to skip): ", True).strip()
        if not api_key:
            out(f"⏭️  Skipped {provider.name}")
            continue
        try:
            _store_api_key(config, provider, api_key)
        except OSError as e:
            out(f"❌ Error saving API key: {e}")
            continue
        out(f"✓ {provider.name} API key saved successfully!")
        configured_any = True

    if not configured_any:
        out("⚠️  No API keys configured. You need at least one to use TermChat.")
        out("Run the application again to configure, or use /configure command.")
        return False

    if not resolve_api_key(config.active_provider_config):
        first = config.first_configured_provider()
        if first is not None:
            out(f"✓ Setting active provider to {first.name}...")
            config.active_provider = first.id
            if first.models:
                config.active_model = first.models[0].id
            try:
                save_config(config)
            except OSError as e:
                # The switch still applies to this run
                logger.warning("Could not save active provider: %s", e)
                out(f"❌ Error saving configuration: {e}")

    out("✓ Setup complete! Starting TermChat...")
    return True


def configure_provider(config: Config, provider_id: str, ask: AskFn) -> str:
    """Set or replace the API key of one provider.

    Raises:
        ValueError: Unknown provider, or an empty key for an unconfigured provider
    """
    try:
        provider = config.get_provider(provider_id)
    except ValueError:
        raise ValueError(f'Provider "{provider_id}" not found')

    if provider.api_key:
        message = "Enter new API key (or press Enter to keep current): "
    else:
        message = f"Enter {provider.name} API key: "
    api_key = ask(message, True).strip()

    if not api_key:
        if provider.api_key:
            return "API key unchanged"
        raise ValueError("API key cannot be empty")

    _store_api_key(config, provider, api_key)
    return f"✓ {provider.name} API key saved"
