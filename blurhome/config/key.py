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

import logging
import os
from typing import Any, Dict, List

from signedjson.key import (
    NACL_ED25519,
    SigningKey,
    VerifyKey,
    decode_verify_key_bytes,
    generate_signing_key,
    read_signing_keys,
    write_signing_keys,
)
from unpaddedbase64 import decode_base64

from blurhome.config._base import Config, ConfigError
from blurhome.config._util import validate_config
from blurhome.types import JsonDict
from blurhome.util.stringutils import random_string

logger = logging.getLogger(__name__)

_VERIFY_KEYS_SCHEMA = {
    "type": "object",
    "additionalProperties": {
        "type": "object",
        "additionalProperties": {"type": "string"},
    },
}


class KeyConfig(Config):
    section = "key"

    def read_config(self, config: JsonDict, **kwargs: Any) -> None:
        config_dir_path = kwargs.get("config_dir_path", "")

        # the signing key can be specified inline or in a separate file
        if "signing_key" in config:
            self.signing_key = read_signing_keys([config["signing_key"]])
        else:
            signing_key_path = config.get("signing_key_path")
            if signing_key_path is None:
                signing_key_path = os.path.join(
                    config_dir_path, config["server_name"] + ".signing.key"
                )
            self.signing_key_path = self.abspath(signing_key_path)
            self.signing_key = self._read_or_generate_signing_keys(
                self.signing_key_path
            )

        if not self.signing_key:
            raise ConfigError("No signing keys configured", ("signing_key_path",))

        # Verify keys of other servers which we trust without fetching them,
        # as a mapping from server name to a mapping of key id to unpadded
        # base64 key.
        federation_verify_keys = config.get("federation_verify_keys") or {}
        validate_config(
            _VERIFY_KEYS_SCHEMA, federation_verify_keys, ("federation_verify_keys",)
        )
        self.federation_verify_keys: Dict[str, Dict[str, VerifyKey]] = {}
        for server_name, keys in federation_verify_keys.items():
            self.federation_verify_keys[server_name] = self._parse_verify_keys(
                server_name, keys
            )

        # How long, in milliseconds, our signed key responses claim to be valid for.
        self.key_refresh_interval = self.parse_duration(
            config.get("key_refresh_interval", "1d")
        )

    @staticmethod
    def _parse_verify_keys(server_name: str, keys: Dict[str, str]) -> Dict[str, VerifyKey]:
        parsed = {}
        for key_id, key_base64 in keys.items():
            if not key_id.startswith(NACL_ED25519 + ":"):
                raise ConfigError(
                    "Unsupported key algorithm in key id %r" % (key_id,),
                    ("federation_verify_keys", server_name, key_id),
                )
            try:
                key_bytes = decode_base64(key_base64)
                parsed[key_id] = decode_verify_key_bytes(key_id, key_bytes)
            except Exception as e:
                raise ConfigError(
                    "Unable to parse verify key: %s" % (e,),
                    ("federation_verify_keys", server_name, key_id),
                )
        return parsed

    @staticmethod
    def _read_or_generate_signing_keys(signing_key_path: str) -> List[SigningKey]:
        if not os.path.exists(signing_key_path):
            logger.info("Generating signing key file %s", signing_key_path)
            key_id = "a_" + random_string(4)
            with open(signing_key_path, "w") as signing_key_file:
                write_signing_keys(signing_key_file, (generate_signing_key(key_id),))

        with open(signing_key_path) as signing_key_file:
            try:
                return read_signing_keys(signing_key_file)
            except Exception as e:
                raise ConfigError(
                    "Error reading signing_key: %s" % (str(e),), ("signing_key_path",)
                )

