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
from typing import Any

from blurhome.config._base import Config, ConfigError
from blurhome.types import JsonDict

logger = logging.getLogger(__name__)


class DatabaseConnectionConfig:
    """Contains the connection config for a particular database.

    Args:
        name: A label for the database, used for logging.
        db_config: The `database` section of the config.
    """

    def __init__(self, name: str, db_config: dict):
        db_engine = db_config.get("name", "sqlite3")

        if db_engine != "sqlite3":
            raise ConfigError(
                "Unsupported database type %r" % (db_engine,), ("database", "name")
            )

        db_config.setdefault("args", {})
        db_config["args"].setdefault("database", ":memory:")

        # sqlite3 connections are not threadsafe, so every access goes through a
        # single connection from the adbapi pool.
        db_config["args"]["check_same_thread"] = False
        db_config["args"]["cp_min"] = 1
        db_config["args"]["cp_max"] = 1

        self.name = name
        self.config = db_config


class DatabaseConfig(Config):
    section = "database"

    def read_config(self, config: JsonDict, **kwargs: Any) -> None:
        data_dir_path = kwargs.get("data_dir_path", "")

        database_config = config.get("database")
        database_path = config.get("database_path")

        if database_config is not None and not isinstance(database_config, dict):
            raise ConfigError("database config should be a dict", ("database",))

        if database_config is None:
            database_config = {
                "name": "sqlite3",
                "args": {
                    "database": database_path
                    or os.path.join(data_dir_path, "homeserver.db")
                },
            }
        elif database_path is not None:
            raise ConfigError(
                "Cannot specify both 'database' and 'database_path'",
                ("database_path",),
            )

        self.database = DatabaseConnectionConfig("master", database_config)

    @property
    def database_path(self) -> str:
        return self.database.config["args"]["database"]
