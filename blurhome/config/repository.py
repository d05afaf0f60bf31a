#
# This file is licensed under the Affero General Public License (AGPL) version 3.
#
# Copyright 2014, 2015 OpenMarket Ltd
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

import logging
import os
from typing import Any

import attr

from blurhome.config._base import Config
from blurhome.config._util import validate_config
from blurhome.types import JsonDict

logger = logging.getLogger(__name__)

DEFAULT_BLURHASH_X_COMPONENTS = 4
DEFAULT_BLURHASH_Y_COMPONENTS = 3

_BLURHASH_SCHEMA = {
    "type": "object",
    "properties": {
        "enabled": {"type": "boolean"},
        "x_components": {"type": "integer", "minimum": 1, "maximum": 9},
        "y_components": {"type": "integer", "minimum": 1, "maximum": 9},
        "cache_size": {"type": "integer", "minimum": 0},
    },
    "additionalProperties": False,
}


@attr.s(frozen=True, slots=True, auto_attribs=True)
class BlurhashConfig:
    """Settings for MSC2448 blurhash generation on upload.

    Attributes:
        enabled: whether uploads may ask for a blurhash at all.
        x_components: number of horizontal components to encode.
        y_components: number of vertical components to encode.
        cache_size: number of computed hashes to remember, keyed by the image
            digest and component counts. 0 disables the cache.
    """

    enabled: bool = True
    x_components: int = DEFAULT_BLURHASH_X_COMPONENTS
    y_components: int = DEFAULT_BLURHASH_Y_COMPONENTS
    cache_size: int = 128


class ContentRepositoryConfig(Config):
    section = "media"

    def read_config(self, config: JsonDict, **kwargs: Any) -> None:
        data_dir_path = kwargs.get("data_dir_path", "")

        self.max_upload_size = self.parse_size(config.get("max_upload_size", "50M"))
        self.max_image_pixels = self.parse_size(config.get("max_image_pixels", "32M"))

        self.media_store_path = self.ensure_directory(
            config.get("media_store_path", os.path.join(data_dir_path, "media_store"))
        )

        blurhash_config = config.get("blurhash") or {}
        validate_config(_BLURHASH_SCHEMA, blurhash_config, ("blurhash",))
        self.blurhash = BlurhashConfig(**blurhash_config)
