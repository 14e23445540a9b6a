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

"""Configuration loading and management for TermChat."""

import copy
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import toml

from .model_defaults import DEFAULT_PROVIDER_ID, DEFAULT_PROVIDERS, DEFAULT_THEME_ID, DEFAULT_THEMES

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path.home() / ".termchat"
DEFAULT_CONFIG_PATH = DEFAULT_CONFIG_DIR / "config.toml"
DEFAULT_LOG_FILE = DEFAULT_CONFIG_DIR / "termchat.log"
DEFAULT_TIMEOUT = 600  # Socket timeout in seconds, not a per-turn limit
SUPPORTED_PROVIDER_TYPES = ("anthropic", "openai")


@dataclass
class Pricing:
    """Cost per one million tokens, in USD."""
    input_per_million: float
    output_per_million: float

    def input_cost(self, tokens: int) -> float:
        return tokens / 1_000_000 * self.input_per_million

    def output_cost(self, tokens: int) -> float:
        return tokens / 1_000_000 * self.output_per_million


@dataclass
class ModelConfig:
    """A model offered by a provider."""
    id: str
    display_name: str
    pricing: Optional[Pricing] = None


@dataclass
class ProviderConfig:
    """Configuration for a model provider."""
    id: str
    name: str
    type: str  # "anthropic" or "openai"
    api_url: str
    api_key: str = ""
    models: list[ModelConfig] = field(default_factory=list)
    headers: dict = field(default_factory=dict)
    builtin: bool = True  # False once defined or overridden in the user file


@dataclass
class ColorDefinition:
    name: str
    value: str  # ANSI SGR escape sequence


@dataclass
class Theme:
    id: str
    name: str
    user: ColorDefinition
    ai: ColorDefinition
    builtin: bool = True


@dataclass
class Config:
    """Application configuration."""
    providers: list[ProviderConfig]
    themes: list[Theme]
    active_provider: str
    active_model: str
    active_theme: Optional[str]
    timeout: int
    log_level: str  # Logging level: DEBUG, INFO, WARNING, ERROR
    log_file: Optional[Path]  # Path to log file (None = stderr)
    exports_dir: Path
    config_path: Path

    def get_provider(self, provider_id: str) -> ProviderConfig:
        """Get provider configuration by id."""
        for p in self.providers:
            if p.id == provider_id:
                return p
        raise ValueError(f"Provider '{provider_id}' not found in configuration")

    def get_model(self, provider_id: str, model_id: str) -> ModelConfig:
        """Get model configuration by provider and model id.

        Raises:
            ValueError: If the provider or model is not found
        """
        provider = self.get_provider(provider_id)
        for model in provider.models:
            if model.id == model_id:
                return model
        raise ValueError(f"Model '{model_id}' not found in provider '{provider_id}'")

    def get_theme(self, theme_id: Optional[str]) -> Optional[Theme]:
        for theme in self.themes:
            if theme.id == theme_id:
                return theme
        return None

    @property
    def active_provider_config(self) -> ProviderConfig:
        return self.get_provider(self.active_provider)

    @property
    def active_model_config(self) -> ModelConfig:
        return self.get_model(self.active_provider, self.active_model)

    @property
    def active_pricing(self) -> Optional[Pricing]:
        try:
            return self.active_model_config.pricing
        except ValueError:
            return None

    @property
    def active_theme_colors(self) -> Optional[Theme]:
        return self.get_theme(self.active_theme)

    def configured_providers(self) -> list[ProviderConfig]:
        """Providers with an API key available (config or environment)."""
        return [p for p in self.providers if resolve_api_key(p)]

    def first_configured_provider(self) -> Optional[ProviderConfig]:
        configured = self.configured_providers()
        return configured[0] if configured else None


def resolve_api_key(provider: ProviderConfig) -> Optional[str]:
    """Resolve API key from config or environment variable.

    Checks in order:
    1. provider.api_key from config
    2. {PROVIDER_ID}_API_KEY env var (e.g., ANTHROPIC_API_KEY)
    """
    if provider.api_key:
        return provider.api_key

    env_var = f"{provider.id.upper().replace('-', '_')}_API_KEY"
    env_key = os.environ.get(env_var)
    if env_key:
        logger.debug("Using API key from %s environment variable", env_var)
        return env_key

    return None


def setup_logging(config: Config, level: Optional[str] = None) -> None:
    """Configure logging based on config settings.

    Args:
        config: Configuration object with logging settings
        level: Level for this run only, overriding config.log_level without changing it
    """
    level = level or config.log_level
    numeric_level = getattr(logging, level, logging.INFO)

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    if config.log_file:
        config.log_file.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(config.log_file)
    else:
        handler = logging.StreamHandler()

    handler.setLevel(numeric_level)
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    logging.info("Logging initialized: level=%s, file=%s", level, config.log_file)


def _parse_pricing(value) -> Optional[Pricing]:
    if not value:
        return None
    if not isinstance(value, dict):
        raise ValueError(f"Invalid pricing entry: {value!r}")
    try:
        return Pricing(
            input_per_million=float(value["input_per_million"]),
            output_per_million=float(value["output_per_million"]),
        )
    except (KeyError, TypeError, ValueError):
        raise ValueError(
            "Pricing must define numeric input_per_million and output_per_million"
        )


def _parse_models(entries) -> list[ModelConfig]:
    models = []
    for entry in entries or []:
        if isinstance(entry, str):
            models.append(ModelConfig(id=entry, display_name=entry))
            continue
        model_id = entry.get('id')
        if not model_id:
            raise ValueError("Model missing 'id' field")
        models.append(ModelConfig(
            id=model_id,
            display_name=entry.get('display_name') or model_id,
            pricing=_parse_pricing(entry.get('pricing')),
        ))
    return models


def _parse_provider(entry: dict, builtin: bool) -> ProviderConfig:
    pid = entry.get('id')
    ptype = entry.get('type')
    api_url = entry.get('api_url')
    if not pid or not ptype or not api_url:
        raise ValueError("Each provider must have id, type, and api_url")
    if ptype not in SUPPORTED_PROVIDER_TYPES:
        raise ValueError(
            f"Provider '{pid}' has unsupported type '{ptype}'. Options: {list(SUPPORTED_PROVIDER_TYPES)}"
        )
    return ProviderConfig(
        id=pid,
        name=entry.get('name') or pid,
        type=ptype,
        api_url=api_url,
        api_key=entry.get('api_key', ''),
        models=_parse_models(entry.get('models')),
        headers=dict(entry.get('headers') or {}),
        builtin=builtin,
    )


def _parse_color(entry, label: str) -> ColorDefinition:
    if not isinstance(entry, dict) or not entry.get('name') or not entry.get('value'):
        raise ValueError(f"Theme {label} color must have name and value")
    return ColorDefinition(name=entry['name'], value=entry['value'])


def _parse_theme(entry: dict, builtin: bool) -> Theme:
    if not entry.get('id') or not entry.get('name'):
        raise ValueError("Theme must have id and name")
    return Theme(
        id=entry['id'],
        name=entry['name'],
        user=_parse_color(entry.get('user'), 'user'),
        ai=_parse_color(entry.get('ai'), 'ai'),
        builtin=builtin,
    )


def _merge_by_id(builtins: list, overrides: list) -> list:
    """Replace built-in entries that share an id, append the rest."""
    merged = list(builtins)
    for item in overrides:
        for i, existing in enumerate(merged):
            if existing.id == item.id:
                merged[i] = item
                break
        else:
            merged.append(item)
    return merged


def validate_config(config: Config) -> None:
    """Check cross references between active settings and the catalog.

    Raises:
        ValueError: If the configuration is inconsistent
    """
    if not config.providers:
        raise ValueError("Config must have at least one provider")

    provider_ids = [p.id for p in config.providers]
    if config.active_provider not in provider_ids:
        raise ValueError(
            f"Active provider '{config.active_provider}' not found in providers {provider_ids}"
        )

    provider = config.get_provider(config.active_provider)
    model_ids = [m.id for m in provider.models]
    if config.active_model not in model_ids:
        raise ValueError(
            f"Active model '{config.active_model}' not found in provider '{provider.id}'. Options: {model_ids}"
        )

    if config.active_theme and config.get_theme(config.active_theme) is None:
        raise ValueError(f"Active theme '{config.active_theme}' not found in themes list")

    if config.timeout <= 0:
        raise ValueError("timeout must be a positive number of seconds")


def load_config(path: Optional[Path] = None) -> Config:
    """Load configuration from ~/.termchat/config.toml merged with built-in defaults.

    A missing file is not an error: the built-in catalog is used and the setup
    wizard collects API keys on first run.

    Args:
        path: Optional config file path (defaults to $TERMCHAT_CONFIG or ~/.termchat/config.toml)

    Returns:
        Validated Config object

    Raises:
        ValueError: If the file is not valid TOML or the configuration is invalid
    """
    if path is None:
        path = Path(os.environ.get("TERMCHAT_CONFIG") or DEFAULT_CONFIG_PATH)
    config_path = Path(path).expanduser()

    data = {}
    if config_path.exists():
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                data = toml.load(f)
        except toml.TomlDecodeError as e:
            raise ValueError(f"Invalid TOML in config file {config_path}: {e}")
    else:
        logger.debug("No config file at %s, using built-in defaults", config_path)

    general_section = data.get('general', {})
    api_keys = data.get('api_keys', {})

    providers = _merge_by_id(
        [_parse_provider(copy.deepcopy(p), builtin=True) for p in DEFAULT_PROVIDERS],
        [_parse_provider(p, builtin=False) for p in data.get('providers', [])],
    )
    for provider in providers:
        if provider.id in api_keys:
            provider.api_key = str(api_keys[provider.id] or '')

    themes = _merge_by_id(
        [_parse_theme(copy.deepcopy(t), builtin=True) for t in DEFAULT_THEMES],
        [_parse_theme(t, builtin=False) for t in data.get('themes', [])],
    )

    active_provider = general_section.get('active_provider', DEFAULT_PROVIDER_ID)
    active_model = general_section.get('active_model')
    if not active_model:
        # Fall back to the first model of the active provider
        for p in providers:
            if p.id == active_provider and p.models:
                active_model = p.models[0].id
                break

    log_file_str = general_section.get('log_file')
    log_file = Path(log_file_str).expanduser() if log_file_str else config_path.parent / DEFAULT_LOG_FILE.name
    if general_section.get('log_to_stderr', False):
        log_file = None

    exports_dir = Path(general_section.get('exports_dir', 'conversations')).expanduser()

    try:
        timeout = int(general_section.get('timeout', DEFAULT_TIMEOUT))
    except (TypeError, ValueError):
        raise ValueError(f"Invalid timeout value: {general_section.get('timeout')!r}")

    config = Config(
        providers=providers,
        themes=themes,
        active_provider=active_provider,
        active_model=active_model or "",
        active_theme=general_section.get('active_theme', DEFAULT_THEME_ID),
        timeout=timeout,
        log_level=str(general_section.get('log_level', 'INFO')).upper(),
        log_file=log_file,
        exports_dir=exports_dir,
        config_path=config_path,
    )
    validate_config(config)
    return config


def _provider_to_dict(provider: ProviderConfig) -> dict:
    entry = {
        'id': provider.id,
        'name': provider.name,
        'type': provider.type,
        'api_url': provider.api_url,
        'models': [],
    }
    if provider.headers:
        entry['headers'] = dict(provider.headers)
    for model in provider.models:
        model_entry = {'id': model.id, 'display_name': model.display_name}
        if model.pricing:
            model_entry['pricing'] = {
                'input_per_million': model.pricing.input_per_million,
                'output_per_million': model.pricing.output_per_million,
            }
        entry['models'].append(model_entry)
    return entry


def _theme_to_dict(theme: Theme) -> dict:
    return {
        'id': theme.id,
        'name': theme.name,
        'user': {'name': theme.user.name, 'value': theme.user.value},
        'ai': {'name': theme.ai.name, 'value': theme.ai.value},
    }


def save_config(config: Config) -> Path:
    """Persist user settings to ``config.config_path``.

    Only user-owned data is written: general settings, API keys entered in
    TermChat, and providers/themes defined or overridden by the user.
    """
    data = {
        'general': {
            'active_provider': config.active_provider,
            'active_model': config.active_model,
            'timeout': config.timeout,
            'log_level': config.log_level,
            'exports_dir': str(config.exports_dir),
        },
        'api_keys': {p.id: p.api_key for p in config.providers if p.api_key},
    }
    if config.active_theme:
        data['general']['active_theme'] = config.active_theme
    if config.log_file:
        data['general']['log_file'] = str(config.log_file)
    else:
        data['general']['log_to_stderr'] = True

    user_providers = [_provider_to_dict(p) for p in config.providers if not p.builtin]
    if user_providers:
        data['providers'] = user_providers
    user_themes = [_theme_to_dict(t) for t in config.themes if not t.builtin]
    if user_themes:
        data['themes'] = user_themes

    config.config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config.config_path, 'w', encoding='utf-8') as f:
        toml.dump(data, f)
    # The file holds API keys
    os.chmod(config.config_path, 0o600)
    logger.info("Configuration saved to %s", config.config_path)
    return config.config_path
