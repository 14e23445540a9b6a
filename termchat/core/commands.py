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

"""Command parsing and handling for TermChat."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from .. import __version__
from .config import Config, resolve_api_key, save_config
from .conversations import ASSISTANT, USER, ConversationSession
from .exports import export_conversation
from .provider_factory import create_active_backend, create_backend
from .setup_wizard import configure_provider, providers_status, run_first_time_setup

logger = logging.getLogger(__name__)

RULE = '─' * 64


# Command registry with metadata for help and completion
COMMAND_REGISTRY = {
    "help": {"usage": "/help", "description": "Show this help message"},
    "exit": {"usage": "/exit or /quit", "description": "Exit the application"},
    "quit": {"usage": "/quit", "description": "Exit the application", "hidden": True},
    "clear": {"usage": "/clear", "description": "Clear conversation history"},
    "setup": {"usage": "/setup", "description": "Run first-time setup wizard"},
    "configure": {"usage": "/configure [provider]", "description": "Configure provider API keys interactively"},
    "provider": {"usage": "/provider [provider]", "description": "Show current provider or switch providers instantly"},
    "providers": {"usage": "/providers", "description": "List providers", "hidden": True},
    "model": {"usage": "/model [model-id]", "description": "Show current model or switch models instantly"},
    "models": {"usage": "/models", "description": "List models", "hidden": True},
    "theme": {"usage": "/theme [theme-id]", "description": "Show current theme or switch themes instantly"},
    "themes": {"usage": "/themes", "description": "List themes", "hidden": True},
    "export": {"usage": "/export [filename]", "description": "Export conversation to the exports folder (auto-timestamped)"},
    "history": {"usage": "/history", "description": "Show conversation statistics"},
    "cost": {"usage": "/cost", "description": "Show token usage and cost breakdown"},
    "settings": {"usage": "/settings", "description": "Show current configuration"},
    "version": {"usage": "/version", "description": "Show application version"},
}


@dataclass
class AppState:
    """Global application state."""
    config: Config
    session: ConversationSession
    ask: Optional[Callable[[str, bool], str]] = None  # Interactive prompt, None when not attached to a terminal


@dataclass
class CommandResult:
    """Result of a command execution."""
    message: Optional[str] = None
    success: bool = True
    should_exit: bool = False
    should_clear_screen: bool = False
    should_update_prompt: bool = False


def is_command(text: str) -> bool:
    return text.startswith('/')


def available_commands() -> list[str]:
    """Command names for completion."""
    return [f"/{name}" for name in COMMAND_REGISTRY]


def format_help() -> str:
    lines = ["", "Available Commands:", RULE, ""]
    for info in COMMAND_REGISTRY.values():
        if info.get("hidden"):
            continue
        lines.append(f"  {info['usage']:<22}{info['description']}")
    lines.extend(["", RULE])
    return "\n".join(lines)


def format_version() -> str:
    return "\n".join([
        "",
        f"TermChat v{__version__}",
        "",
        "A multi-provider terminal chat application supporting Anthropic and OpenAI.",
    ])


def format_token_summary(session: ConversationSession, config: Config) -> str:
    """One-line token/cost status shown after each turn.

    Measured totals are shown when a backend reported usage; otherwise the
    history heuristic is shown and marked as an estimate.
    """
    usage = session.usage
    if not usage.measured:
        return f"~{session.get_token_estimate():,} tokens (estimated)"
    summary = f"{usage.input_tokens:,} in · {usage.output_tokens:,} out tokens"
    cost = session.session_cost(config.active_pricing)
    if cost is not None:
        summary += f" · ${cost:.4f}"
    return summary


def handle_command(line: str, state: AppState) -> CommandResult:
    """Parse and handle a command.

    Args:
        line: Command line (starting with /)
        state: Application state

    Returns:
        CommandResult with execution result
    """
    parts = line.strip().split()
    if not parts or not is_command(parts[0]):
        return CommandResult(message="Commands must start with /", success=False)

    command = parts[0][1:].lower()
    args = parts[1:]
    logger.debug("Handling command /%s args=%s", command, args)

    if command in ('exit', 'quit'):
        return CommandResult(message="👋 Goodbye!", should_exit=True)

    elif command == 'clear':
        state.session.clear_history()
        return CommandResult(message="✓ Conversation history cleared", should_clear_screen=True)

    elif command == 'help':
        return CommandResult(message=format_help())

    elif command == 'version':
        return CommandResult(message=format_version())

    elif command == 'setup':
        return _handle_setup(state)

    elif command == 'configure':
        return _handle_configure(state, args)

    elif command in ('provider', 'providers'):
        if not args:
            return CommandResult(message=_format_providers(state.config))
        return switch_provider(state, args[0])

    elif command in ('model', 'models'):
        if not args:
            return _list_models(state.config)
        return switch_model(state, args[0])

    elif command in ('theme', 'themes'):
        if not args:
            return CommandResult(message=_format_themes(state.config))
        return switch_theme(state, args[0])

    elif command == 'export':
        return _handle_export(state, args)

    elif command == 'history':
        return CommandResult(message=_format_history(state))

    elif command == 'cost':
        return _handle_cost(state)

    elif command == 'settings':
        return CommandResult(message=_format_settings(state.config))

    return CommandResult(
        message=f"Unknown command: /{command}. Type /help for available commands.",
        success=False,
    )


def _handle_setup(state: AppState) -> CommandResult:
    if state.ask is None:
        return CommandResult(message="Setup requires an interactive terminal", success=False)
    try:
        completed = run_first_time_setup(state.config, state.ask)
    except (OSError, ValueError) as e:
        return CommandResult(message=f"Error running setup: {e}", success=False)
    if not completed:
        return CommandResult(message="⚠️  Setup was not completed", success=False)
    state.session.set_backend(create_active_backend(state.config))
    return CommandResult(message="✓ Setup completed successfully", should_clear_screen=True)


def _handle_configure(state: AppState, args: list[str]) -> CommandResult:
    if not args:
        return CommandResult(message=providers_status(state.config))
    if state.ask is None:
        return CommandResult(message="Configuring a provider requires an interactive terminal", success=False)
    provider_id = args[0]
    try:
        message = configure_provider(state.config, provider_id, state.ask)
    except (OSError, ValueError) as e:
        return CommandResult(message=f"Error configuring provider: {e}", success=False)
    if provider_id == state.config.active_provider:
        # Same provider and model, so history stays valid
        state.session.set_backend(create_active_backend(state.config))
    return CommandResult(message=message)


def _format_providers(config: Config) -> str:
    current = config.active_provider_config
    lines = [
        "",
        "Current Provider:",
        f"  {current.name} ({current.id})",
        "",
        "Available Providers:",
    ]
    for p in config.providers:
        marker = '* ' if p.id == config.active_provider else '  '
        count = len(p.models)
        lines.append(f"{marker}{p.name} ({p.id}) - {count} model{'s' if count != 1 else ''}")
    lines.extend(["", "To switch providers, use: /provider <provider-id>"])
    return "\n".join(lines)


def switch_provider(state: AppState, provider_id: str) -> CommandResult:
    """Hot-swap to another provider's first model. Clears history."""
    config = state.config
    try:
        provider = config.get_provider(provider_id)
    except ValueError:
        return CommandResult(
            message=f'Provider "{provider_id}" not found. Use /provider to see available providers.',
            success=False,
        )
    if not resolve_api_key(provider):
        return CommandResult(
            message=f'Provider "{provider.name}" is missing an API key. Use /configure {provider.id} to add one.',
            success=False,
        )
    if not provider.models:
        return CommandResult(message=f'Provider "{provider.name}" has no models configured.', success=False)

    first_model = provider.models[0]
    try:
        backend = create_backend(provider, first_model.id, config.timeout)
    except ValueError as e:
        return CommandResult(message=f"Failed to switch provider: {e}", success=False)

    config.active_provider = provider.id
    config.active_model = first_model.id
    state.session.set_backend(backend)
    # Context is not portable across backends
    state.session.clear_history()
    try:
        save_config(config)
    except OSError as e:
        logger.warning("Could not save configuration: %s", e)

    return CommandResult(
        message=f"✓ Switched to {provider.name} ({first_model.display_name})\n  Conversation history has been cleared.",
        should_clear_screen=True,
    )


def _list_models(config: Config) -> CommandResult:
    try:
        provider = config.active_provider_config
    except ValueError:
        return CommandResult(message="Error: Could not find active provider", success=False)
    try:
        current_name = config.active_model_config.display_name
    except ValueError:
        current_name = config.active_model
    lines = [
        "",
        f"Current Provider: {provider.name}",
        f"Current Model: {current_name} ({config.active_model})",
        "",
        f"Available Models ({provider.name}):",
    ]
    for m in provider.models:
        marker = '* ' if m.id == config.active_model else '  '
        lines.append(f"{marker}{m.display_name} ({m.id})")
    lines.extend([
        "",
        "To switch models, use: /model <model-id>",
        "To switch providers, use: /provider <provider-id>",
    ])
    return CommandResult(message="\n".join(lines))


def switch_model(state: AppState, model_id: str) -> CommandResult:
    """Switch the model of the active provider. Clears history."""
    config = state.config
    try:
        model = config.get_model(config.active_provider, model_id)
    except ValueError:
        return CommandResult(
            message=f'Model "{model_id}" not found. Use /model to see available models.',
            success=False,
        )

    config.active_model = model.id
    state.session.set_model(model.id)
    state.session.clear_history()
    try:
        save_config(config)
    except OSError as e:
        logger.warning("Could not save configuration: %s", e)

    return CommandResult(
        message=f"✓ Switched to {model.display_name}\n  Conversation history has been cleared.",
        should_clear_screen=True,
    )


def _format_themes(config: Config) -> str:
    current = config.active_theme_colors
    if not config.themes:
        return "\n".join([
            "",
            f"Current Theme: {current.name if current else 'No theme configured'}",
            "",
            "No themes available in configuration.",
        ])
    lines = ["", f"Current Theme: {current.name if current else 'No theme'}", "", "Available Themes:"]
    for t in config.themes:
        marker = '* ' if t.id == config.active_theme else '  '
        lines.append(f"{marker}{t.name} ({t.id}) - User: {t.user.name}, AI: {t.ai.name}")
    lines.extend(["", "To switch themes, use: /theme <theme-id>"])
    return "\n".join(lines)


def switch_theme(state: AppState, theme_id: str) -> CommandResult:
    config = state.config
    theme = config.get_theme(theme_id)
    if theme is None:
        return CommandResult(
            message=f'Theme "{theme_id}" not found. Use /theme to see available themes.',
            success=False,
        )
    config.active_theme = theme.id
    try:
        save_config(config)
    except OSError as e:
        logger.warning("Could not save configuration: %s", e)
    return CommandResult(message=f'✓ Theme switched to "{theme.name}"', should_update_prompt=True)


def _handle_export(state: AppState, args: list[str]) -> CommandResult:
    history = state.session.get_history()
    if not history:
        return CommandResult(message="No conversation to export", success=False)
    # Exports always land in the exports directory
    filename = Path(args[0]).name if args else None
    try:
        path = export_conversation(
            history, state.config.exports_dir, filename, model_id=state.session.model_id
        )
    except OSError as e:
        return CommandResult(message=f"Error exporting conversation: {e}", success=False)
    logger.info("Conversation exported to %s", path)
    return CommandResult(message=f"✓ Conversation exported to {path}")


def _format_history(state: AppState) -> str:
    session = state.session
    history = session.get_history()
    user_count = sum(1 for m in history if m.role == USER)
    assistant_count = sum(1 for m in history if m.role == ASSISTANT)
    lines = [
        "",
        "Conversation Statistics:",
        RULE,
        f"  Total messages:      {len(history)}",
        f"  Your messages:       {user_count}",
        f"  Assistant messages:  {assistant_count}",
        f"  Estimated tokens:    ~{session.get_token_estimate():,}",
    ]
    if session.usage.measured:
        lines.append(f"  Measured tokens:     {session.usage.total_tokens:,}")
        cost = session.session_cost(state.config.active_pricing)
        if cost is not None:
            lines.append(f"  Session cost:        ${cost:.4f}")
    lines.append(RULE)
    return "\n".join(lines)


def _handle_cost(state: AppState) -> CommandResult:
    session = state.session
    if session.message_count() == 0:
        return CommandResult(message="No conversation to analyze", success=False)

    pricing = state.config.active_pricing
    breakdown = session.cost_breakdown(pricing)

    def with_cost(label: str, tokens: int, cost: Optional[float]) -> str:
        line = f"  {label:<21}{tokens:,}"
        if cost is not None:
            line += f" (${cost:.4f})"
        return line

    lines = ["", "Token Usage & Cost Breakdown:", RULE]
    if not session.usage.measured:
        lines.append(f"  No usage reported by the backend. ~{session.get_token_estimate():,} tokens (estimated)")
    lines.extend([
        with_cost("Input tokens:", breakdown.input_tokens, breakdown.input_cost),
        with_cost("Output tokens:", breakdown.output_tokens, breakdown.output_cost),
        with_cost("Total tokens:", breakdown.total_tokens, breakdown.total_cost),
        "",
    ])
    if pricing is not None:
        try:
            model_name = state.config.active_model_config.display_name
        except ValueError:
            model_name = state.config.active_model
        lines.extend([
            f"Pricing for {model_name}:",
            f"  Input:  ${pricing.input_per_million:.2f} per 1M tokens",
            f"  Output: ${pricing.output_per_million:.2f} per 1M tokens",
        ])
    else:
        lines.append("Note: Pricing information not available for this model.")
    lines.append(RULE)
    return CommandResult(message="\n".join(lines))


def _format_settings(config: Config) -> str:
    try:
        provider_name = config.active_provider_config.name
    except ValueError:
        provider_name = "Unknown"
    try:
        model_name = config.active_model_config.display_name
    except ValueError:
        model_name = config.active_model
    theme = config.active_theme_colors
    lines = [
        "",
        "Current Settings:",
        RULE,
        f"  Version:   {__version__}",
        f"  Provider:  {provider_name}",
        f"  Model:     {model_name}",
        f"  Model ID:  {config.active_model}",
        f"  Theme:     {theme.name if theme else 'No theme'} ({config.active_theme or 'None'})",
        f"  Timeout:   {config.timeout}s",
        f"  Config:    {config.config_path}",
        f"  Log file:  {config.log_file or 'stderr'}",
    ]
    pricing = config.active_pricing
    if pricing is not None:
        lines.extend([
            "  Pricing:",
            f"    Input:   ${pricing.input_per_million:.2f} per 1M tokens",
            f"    Output:  ${pricing.output_per_million:.2f} per 1M tokens",
        ])
    lines.append(RULE)
    return "\n".join(lines)
