#
# This file is licensed under the Affero General Public License (AGPL) version 3.
#
# Copyright (C) 2026 The Blurhome Contributors
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as
# published by the Free Software Foundation, either version 3 of the
# License, or (at your option) any later version.
#
# See the GNU Affero General Public License for more details:
# <https://www.gnu.org/licenses/agpl-3.0.html>.
#
#
from typing import Any

from parameterized import parameterized
from signedjson.key import encode_verify_key_base64, generate_signing_key

from blurhome.config._base import Config, ConfigError, format_config_error
from blurhome.config.homeserver import HomeServerConfig
from blurhome.config.repository import BlurhashConfig

from tests import unittest
from tests.utils import default_config


class ConfigParsingTestCase(unittest.TestCase):
    def _parse(self, **overrides: Any) -> HomeServerConfig:
        config_dict = default_config("test", media_store_path=self.mktemp())
        config_dict.update(overrides)

        config = HomeServerConfig()
        config.parse_config_dict(config_dict, "", "")
        return config

    def test_blurhash_defaults(self) -> None:
        config = self._parse()
        self.assertEqual(config.media.blurhash, BlurhashConfig())
        self.assertTrue(config.media.blurhash.enabled)
        self.assertEqual(config.media.blurhash.x_components, 4)
        self.assertEqual(config.media.blurhash.y_components, 3)
        self.assertEqual(config.media.max_image_pixels, 32 * 1024 * 1024)

    def test_blurhash_custom(self) -> None:
        config = self._parse(
            blurhash={"enabled": False, "x_components": 9, "y_components": 1}
        )
        self.assertFalse(config.media.blurhash.enabled)
        self.assertEqual(config.media.blurhash.x_components, 9)
        self.assertEqual(config.media.blurhash.y_components, 1)

    @parameterized.expand(
        [
            ("x_too_small", {"x_components": 0}),
            ("y_too_large", {"y_components": 10}),
            ("not_a_number", {"x_components": "four"}),
            ("unknown_key", {"colour": "blue"}),
            ("negative_cache", {"cache_size": -1}),
        ]
    )
    def test_blurhash_invalid(self, _name: str, blurhash_config: dict) -> None:
        with self.assertRaises(ConfigError) as cm:
            self._parse(blurhash=blurhash_config)
        self.assertEqual(cm.exception.path[0], "blurhash")

    def test_federation_defaults(self) -> None:
        config = self._parse()
        self.assertTrue(config.federation.allow_profile_lookup_over_federation)
        self.assertIsNone(config.federation.federation_domain_whitelist)
        self.assertTrue(config.federation.is_domain_allowed("anywhere.example.com"))
        self.assertEqual(config.federation.federation_request_timeout, 60000)

    def test_federation_whitelist(self) -> None:
        config = self._parse(federation_domain_whitelist=["friend.example.com"])
        self.assertTrue(config.federation.is_domain_allowed("friend.example.com"))
        self.assertFalse(config.federation.is_domain_allowed("foe.example.com"))

    def test_federation_verify_keys(self) -> None:
        key = generate_signing_key("k1")
        config = self._parse(
            federation_verify_keys={
                "remote.example.com": {
                    "ed25519:k1": encode_verify_key_base64(key.verify_key)
                }
            }
        )
        parsed = config.key.federation_verify_keys["remote.example.com"]["ed25519:k1"]
        self.assertEqual(parsed.encode(), key.verify_key.encode())

    def test_federation_verify_keys_bad_algorithm(self) -> None:
        with self.assertRaises(ConfigError) as cm:
            self._parse(
                federation_verify_keys={"remote.example.com": {"rsa:k1": "AAAA"}}
            )
        self.assertEqual(
            list(cm.exception.path),
            ["federation_verify_keys", "remote.example.com", "rsa:k1"],
        )

    def test_federation_verify_keys_bad_key(self) -> None:
        with self.assertRaises(ConfigError):
            self._parse(
                federation_verify_keys={"remote.example.com": {"ed25519:k1": "!!"}}
            )

    def test_invalid_server_name(self) -> None:
        with self.assertRaises(ConfigError):
            self._parse(server_name="not a server name")

    def test_bad_bcrypt_rounds(self) -> None:
        with self.assertRaises(ConfigError):
            self._parse(bcrypt_rounds=2)

    def test_format_config_error(self) -> None:
        e = ConfigError("must be an integer", ("blurhash", "x_components"))
        message = "".join(format_config_error(e))
        self.assertIn("must be an integer", message)
        self.assertIn("blurhash.x_components", message)


class ParseSizeTestCase(unittest.TestCase):
    @parameterized.expand(
        [
            (123, 123),
            ("123", 123),
            ("1K", 1024),
            ("50M", 50 * 1024 * 1024),
            ("2G", 2 * 1024**3),
        ]
    )
    def test_parse_size(self, value: Any, expected: int) -> None:
        self.assertEqual(Config.parse_size(value), expected)

    def test_parse_size_invalid(self) -> None:
        with self.assertRaises(ValueError):
            Config.parse_size("lots")
        with self.assertRaises(TypeError):
            Config.parse_size(1.5)  # type: ignore[arg-type]


class ParseDurationTestCase(unittest.TestCase):
    @parameterized.expand(
        [
            (500, 500),
            ("500", 500),
            ("250ms", 250),
            ("10s", 10000),
            ("5m", 5 * 60 * 1000),
            ("1h", 60 * 60 * 1000),
            ("1d", 24 * 60 * 60 * 1000),
            ("1w", 7 * 24 * 60 * 60 * 1000),
        ]
    )
    def test_parse_duration(self, value: Any, expected: int) -> None:
        self.assertEqual(Config.parse_duration(value), expected)

    def test_parse_duration_invalid(self) -> None:
        with self.assertRaises(ValueError):
            Config.parse_duration("soon")
