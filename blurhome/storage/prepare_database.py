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

import logging
import os
import sqlite3

logger = logging.getLogger(__name__)

# Remember to update this directory's full.sql if you change the schema.
dir_path = os.path.abspath(os.path.dirname(__file__))
SCHEMA_FILE = os.path.join(dir_path, "schema", "full.sql")


class PrepareDatabaseException(Exception):
    pass


def prepare_database(db_conn: sqlite3.Connection) -> None:
    """Create any missing tables and indexes on a freshly opened connection.

    Every statement in the schema is idempotent, so this is safe to run against
    a database which has already been prepared.
    """
    try:
        with open(SCHEMA_FILE) as schema_file:
            schema = schema_file.read()
    except OSError as e:
        raise PrepareDatabaseException(
            "Unable to read database schema from %s: %s" % (SCHEMA_FILE, e)
        ) from e

    logger.debug("Applying schema %s", SCHEMA_FILE)
    db_conn.executescript(schema)
    db_conn.commit()
