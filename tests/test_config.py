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

"""Tests for configuration loading and saving."""

import logging
import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from termchat.core.config import (
    DEFAULT_TIMEOUT,
    load_config,
    resolve_api_key,
    save_config,
    setup_logging,
)


class ConfigTests(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp_path = Path(self._tmp.name)
        self.config_path = self.tmp_path / "config.toml"
        env = patch.dict(os.environ, {}, clear=True)
        env.start()
        self.addCleanup(env.stop)
        self.addCleanup(self._tmp.cleanup)

    def write(self, text: str):
        self.config_path.write_text(text, encoding="utf-8")

    def test_defaults_when_file_missing(self):
        config = load_config(self.config_path)
        self.assertEqual(config.active_provider, "anthropic")
        self.assertEqual(config.active_model, "claude-sonnet-4-5")
        self.assertEqual(config.active_theme, "default")
        self.assertEqual(config.timeout, DEFAULT_TIMEOUT)
        self.assertEqual(config.log_file, self.tmp_path / "termchat.log")
        self.assertEqual(config.exports_dir, Path("conversations"))
        self.assertEqual({p.id for p in config.providers}, {"anthropic", "openai"})
        self.assertIsNotNone(config.active_pricing)
        self.assertEqual(config.active_theme_colors.user.value, "\x1b[36m")
        self.assertEqual(config.configured_providers(), [])

    def test_config_path_from_environment(self):
        self.write('[general]\nactive_theme = "ocean"\n')
        with patch.dict(os.environ, {"TERMCHAT_CONFIG": str(self.config_path)}):
            config = load_config()
        self.assertEqual(config.active_theme, "ocean")

    def test_api_keys_section(self):
        self.write('[api_keys]\nopenai = "sk-file"\n')
        config = load_config(self.config_path)
        self.assertEqual(config.get_provider("openai").api_key, "sk-file")
        self.assertEqual(config.first_configured_provider().id, "openai")

    def test_api_key_from_environment(self):
        config = load_config(self.config_path)
        with patch.dict(os.environ, {"ANTHROPIC_API_KEY": "sk-env"}):
            self.assertEqual(resolve_api_key(config.get_provider("anthropic")), "sk-env")
            self.assertEqual(config.first_configured_provider().id, "anthropic")
        self.assertIsNone(resolve_api_key(config.get_provider("anthropic")))

    def test_general_section(self):
        self.write(
            '[general]\n'
            'active_provider = "openai"\n'
            'active_model = "gpt-4o-mini"\n'
            'timeout = 90\n'
            'log_level = "debug"\n'
            'log_to_stderr = true\n'
            f'exports_dir = "{(self.tmp_path / "out").as_posix()}"\n'
        )
        config = load_config(self.config_path)
        self.assertEqual(config.active_provider, "openai")
        self.assertEqual(config.active_model, "gpt-4o-mini")
        self.assertEqual(config.timeout, 90)
        self.assertEqual(config.log_level, "DEBUG")
        self.assertIsNone(config.log_file)
        self.assertEqual(config.exports_dir, self.tmp_path / "out")

    def test_active_model_defaults_to_first_of_provider(self):
        self.write('[general]\nactive_provider = "openai"\n')
        config = load_config(self.config_path)
        self.assertEqual(config.active_model, "gpt-4o")

    def test_invalid_toml(self):
        self.write('[general\nactive_provider = ')
        with self.assertRaises(ValueError) as ctx:
            load_config(self.config_path)
        self.assertIn("Invalid TOML", str(ctx.exception))

    def test_unknown_active_provider(self):
        self.write('[general]\nactive_provider = "missing"\n')
        with self.assertRaises(ValueError):
            load_config(self.config_path)

    def test_unknown_active_model(self):
        self.write('[general]\nactive_model = "gpt-4o"\n')
        with self.assertRaises(ValueError) as ctx:
            load_config(self.config_path)
        self.assertIn("not found in provider 'anthropic'", str(ctx.exception))

    def test_invalid_timeout(self):
        self.write('[general]\ntimeout = "soon"\n')
        with self.assertRaises(ValueError):
            load_config(self.config_path)

    def test_unsupported_provider_type(self):
        self.write(
            '[[providers]]\nid = "local"\ntype = "ollama"\napi_url = "http://localhost:11434"\n'
        )
        with self.assertRaises(ValueError) as ctx:
            load_config(self.config_path)
        self.assertIn("unsupported type", str(ctx.exception))

    def test_user_provider_and_theme(self):
        self.write(
            '[[providers]]\n'
            'id = "gateway"\n'
            'name = "Gateway"\n'
            'type = "openai"\n'
            'api_url = "http://localhost:8080"\n'
            'models = [{ id = "local-model", display_name = "Local" }]\n'
            '\n'
            '[[themes]]\n'
            'id = "alert"\n'
            'name = "Alert"\n'
            'user = { name = "Red", value = "\\u001b[31m" }\n'
            'ai = { name = "White", value = "\\u001b[37m" }\n'
        )
        config = load_config(self.config_path)
        gateway = config.get_provider("gateway")
        self.assertFalse(gateway.builtin)
        self.assertEqual(gateway.models[0].display_name, "Local")
        self.assertIsNone(gateway.models[0].pricing)
        theme = config.get_theme("alert")
        self.assertEqual(theme.user.value, "\x1b[31m")
        self.assertTrue(config.get_provider("anthropic").builtin)

    def test_save_round_trip(self):
        config = load_config(self.config_path)
        config.get_provider("openai").api_key = "sk-saved"
        config.active_provider = "openai"
        config.active_model = "gpt-4.1"
        config.active_theme = "sunset"

        saved = save_config(config)

        self.assertEqual(saved, self.config_path)
        self.assertEqual(os.stat(saved).st_mode & 0o777, 0o600)
        reloaded = load_config(self.config_path)
        self.assertEqual(reloaded.get_provider("openai").api_key, "sk-saved")
        self.assertEqual(reloaded.active_provider, "openai")
        self.assertEqual(reloaded.active_model, "gpt-4.1")
        self.assertEqual(reloaded.active_theme, "sunset")
        self.assertEqual(reloaded.log_file, config.log_file)

    def test_setup_logging_writes_to_file(self):
        config = load_config(self.config_path)
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            setup_logging(config)
            logging.getLogger("termchat.test").info("hello log")
            for handler in root.handlers:
                handler.flush()
            self.assertIn("hello log", config.log_file.read_text(encoding="utf-8"))
        finally:
            for handler in root.handlers:
                handler.close()
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)

    def test_setup_logging_level_override_is_not_saved(self):
        config = load_config(self.config_path)
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            setup_logging(config, "DEBUG")
            self.assertEqual(root.level, logging.DEBUG)
        finally:
            for handler in root.handlers:
                handler.close()
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)

        self.assertEqual(config.log_level, "INFO")
        save_config(config)
        self.assertEqual(load_config(self.config_path).log_level, "INFO")


if __name__ == '__main__':
    unittest.main()
