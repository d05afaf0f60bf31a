#
# This file is licensed under the Affero General Public License (AGPL) version 3.
#
# Copyright 2014-2016 OpenMarket Ltd
# Copyright (C) 2023 New Vector, Ltd
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
# Originally licensed under the Apache License, Version 2.0:
# <http://www.apache.org/licenses/LICENSE-2.0>.
#
#

from typing import Any, Dict

from blurhome.types import JsonDict

# The signing key of the homeserver under test.
TEST_SIGNING_KEY = "ed25519 a_test j0N0NLglcQyoIogZ+p9Bpk8AQksP1zY+X0LEECrPgvg"


def default_config(name: str, media_store_path: str = "media_store") -> JsonDict:
    """
    Create a reasonable test config.

    Args:
        name: the server name.
        media_store_path: where uploaded media is written.
    """
    config_dict: Dict[str, Any] = {
        "server_name": name,
        "signing_key": TEST_SIGNING_KEY,
        "database": {"name": "sqlite3", "args": {"database": ":memory:"}},
        # Keep password hashing fast.
        "bcrypt_rounds": 4,
        "enable_registration": True,
        "media_store_path": media_store_path,
        "max_upload_size": "10M",
        "federation_verify_keys": {},
        "federation_domain_whitelist": None,
        "enable_metrics": False,
    }

    return config_dict
