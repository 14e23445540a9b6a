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

"""Built-in provider catalog and color themes.

User configuration can override any entry here (see ``config.load_config``).
Precedence: ~/.termchat/config.toml > this file.

Prices are USD per one million tokens.
"""

RESET = "\x1b[0m"

DEFAULT_PROVIDERS: list[dict] = [
    {
        "id": "anthropic",
        "name": "Anthropic",
        "type": "anthropic",
        "api_url": "https://api.anthropic.com",
        "models": [
            {"id": "claude-sonnet-4-5", "display_name": "Claude Sonnet 4.5",
             "pricing": {"input_per_million": 3.0, "output_per_million": 15.0}},
            {"id": "claude-opus-4-1", "display_name": "Claude Opus 4.1",
             "pricing": {"input_per_million": 15.0, "output_per_million": 75.0}},
            {"id": "claude-haiku-4-5", "display_name": "Claude Haiku 4.5",
             "pricing": {"input_per_million": 1.0, "output_per_million": 5.0}},
            {"id": "claude-3-5-haiku-latest", "display_name": "Claude 3.5 Haiku",
             "pricing": {"input_per_million": 0.8, "output_per_million": 4.0}},
        ],
    },
    {
        "id": "openai",
        "name": "OpenAI",
        "type": "openai",
        "api_url": "https://api.openai.com",
        "models": [
            {"id": "gpt-4o", "display_name": "GPT-4o",
             "pricing": {"input_per_million": 2.5, "output_per_million": 10.0}},
            {"id": "gpt-4o-mini", "display_name": "GPT-4o mini",
             "pricing": {"input_per_million": 0.15, "output_per_million": 0.6}},
            {"id": "gpt-4.1", "display_name": "GPT-4.1",
             "pricing": {"input_per_million": 2.0, "output_per_million": 8.0}},
            {"id": "gpt-4.1-mini", "display_name": "GPT-4.1 mini",
             "pricing": {"input_per_million": 0.4, "output_per_million": 1.6}},
        ],
    },
]

# ANSI SGR sequences; every colored span is closed with RESET when rendered
DEFAULT_THEMES: list[dict] = [
    {
        "id": "default",
        "name": "Default",
        "user": {"name": "Cyan", "value": "\x1b[36m"},
        "ai": {"name": "Green", "value": "\x1b[32m"},
    },
    {
        "id": "ocean",
        "name": "Ocean",
        "user": {"name": "Bright Blue", "value": "\x1b[94m"},
        "ai": {"name": "Bright Cyan", "value": "\x1b[96m"},
    },
    {
        "id": "sunset",
        "name": "Sunset",
        "user": {"name": "Yellow", "value": "\x1b[33m"},
        "ai": {"name": "Magenta", "value": "\x1b[35m"},
    },
    {
        "id": "mono",
        "name": "Monochrome",
        "user": {"name": "Bold", "value": "\x1b[1m"},
        "ai": {"name": "Default", "value": RESET},
    },
]

DEFAULT_PROVIDER_ID = "anthropic"
DEFAULT_THEME_ID = "default"
