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

from blurhome.config._base import RootConfig
from blurhome.config.database import DatabaseConfig
from blurhome.config.federation import FederationConfig
from blurhome.config.key import KeyConfig
from blurhome.config.logger import LoggingConfig
from blurhome.config.metrics import MetricsConfig
from blurhome.config.repository import ContentRepositoryConfig
from blurhome.config.server import ServerConfig


class HomeServerConfig(RootConfig):
    config_classes = [
        ServerConfig,
        DatabaseConfig,
        KeyConfig,
        LoggingConfig,
        ContentRepositoryConfig,
        FederationConfig,
        MetricsConfig,
    ]
