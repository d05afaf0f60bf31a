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
from typing import TYPE_CHECKING, Generic, List, Type, TypeVar

from blurhome.storage.database import DatabasePool

if TYPE_CHECKING:
    from blurhome.server import HomeServer

logger = logging.getLogger(__name__)

DataStoreT = TypeVar("DataStoreT")


class Databases(Generic[DataStoreT]):
    """The various databases.

    These are low level interfaces to physical databases.

    Attributes:
        databases: all the physical databases
        main: the main data store
    """

    databases: List[DatabasePool]
    main: DataStoreT

    def __init__(self, main_store_class: Type[DataStoreT], hs: "HomeServer"):
        database_config = hs.config.database.database
        logger.info(
            "[database config %r]: Opening %s",
            database_config.name,
            hs.config.database.database_path,
        )

        database = DatabasePool(hs, database_config)
        self.databases = [database]
        self.main = main_store_class(database, hs)  # type: ignore[call-arg]
