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

"""Main entry point for TermChat."""

import argparse
import logging
import sys
from pathlib import Path

from prompt_toolkit import prompt

from . import __version__
from .core.commands import AppState
from .core.config import load_config, setup_logging
from .core.conversations import ConversationSession
from .core.provider_factory import create_active_backend
from .core.setup_wizard import needs_setup, run_first_time_setup
from .ui.app import run_ui

logger = logging.getLogger(__name__)


def ask(message: str, secret: bool = False) -> str:  # pragma: no cover - interactive prompt
    """Prompt the operator for one line of input."""
    return prompt(message, is_password=secret)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="TermChat: A multi-provider terminal chat client for LLMs",
        prog="termchat",
    )
    parser.add_argument(
        '--config',
        metavar='PATH',
        help='Path to config.toml (default: $TERMCHAT_CONFIG or ~/.termchat/config.toml)',
    )
    parser.add_argument(
        '--setup',
        action='store_true',
        help='Run the API key setup wizard before starting',
    )
    parser.add_argument(
        '--log-level',
        metavar='LEVEL',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        type=str.upper,
        help='Override the configured log level',
    )
    parser.add_argument(
        '--version',
        action='version',
        version=f"TermChat v{__version__}",
    )
    return parser


def main():  # pragma: no cover - interactive entrypoint not exercised in unit tests
    """Main entry point for the application."""
    args = build_parser().parse_args()

    try:
        config = load_config(Path(args.config) if args.config else None)
        log_level = args.log_level or config.log_level
        setup_logging(config, log_level)

        logger.info("=== TermChat starting ===")
        logger.info(
            "Configuration loaded: path=%s provider=%s model=%s",
            config.config_path, config.active_provider, config.active_model,
        )
        if config.log_file:
            print(f"Logging to: {config.log_file} (level: {log_level})")

        if args.setup or needs_setup(config):
            if not run_first_time_setup(config, ask):
                sys.exit(1)

        session = ConversationSession(create_active_backend(config))
        state = AppState(config=config, session=session, ask=ask)
        run_ui(state)

    except KeyboardInterrupt:
        print("\n👋 Goodbye!")
        sys.exit(0)
    except (OSError, ValueError) as e:
        print(f"❌ Configuration Error: {e}", file=sys.stderr)
        logger.error("Startup failed: %s", e)
        sys.exit(1)

    logger.info("=== TermChat exiting ===")


if __name__ == "__main__":
    main()
