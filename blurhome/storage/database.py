#
# This file is licensed under the Affero General Public License (AGPL) version 3.
#
# Copyright 2014-2016 OpenMarket Ltd
# Copyright 2017-2018 New Vector Ltd
# Copyright 2019 The Matrix.org Foundation C.I.C.
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
import contextvars
import logging
import time
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Collection,
    Dict,
    Iterable,
    Iterator,
    List,
    Optional,
    Tuple,
    TypeVar,
    cast,
)

from typing_extensions import Concatenate, Literal, ParamSpec, overload

from twisted.enterprise import adbapi

from blurhome.api.errors import StoreError
from blurhome.config.database import DatabaseConnectionConfig
from blurhome.metrics import meter
from blurhome.storage.prepare_database import prepare_database

if TYPE_CHECKING:
    from blurhome.server import HomeServer

logger = logging.getLogger(__name__)

sql_logger = logging.getLogger("blurhome.storage.SQL")
transaction_logger = logging.getLogger("blurhome.storage.txn")

sql_query_timer = meter.create_histogram(
    "blurhome_storage_query_time",
    unit="sec",
    description="Time taken by database queries, labelled by `verb`",
)
sql_txn_duration = meter.create_histogram(
    "blurhome_storage_transaction_time",
    unit="sec",
    description="Time taken by database transactions, labelled by `desc`",
)

P = ParamSpec("P")
R = TypeVar("R")


def make_pool(
    reactor: Any, db_config: DatabaseConnectionConfig
) -> adbapi.ConnectionPool:
    """Get the connection pool for the database."""

    # By default enable `cp_reconnect`. We need to fiddle with db_args in case
    # someone has explicitly set `cp_reconnect`.
    db_args = dict(db_config.config.get("args", {}))
    db_args.setdefault("cp_reconnect", True)

    def _on_new_connection(conn: Any) -> None:
        # Every new in-memory connection is a brand new database, so the
        # schema has to be applied per connection.
        prepare_database(conn)

    return adbapi.ConnectionPool(
        "sqlite3",
        cp_reactor=reactor,
        cp_openfun=_on_new_connection,
        **db_args,
    )


class LoggingTransaction:
    """An object that almost-transparently proxies for the 'txn' object
    passed to the constructor. Adds logging and metrics to the .execute()
    method.

    Args:
        txn: The database transaction object to wrap.
        name: The name of this transactions for logging.
    """

    __slots__ = ["txn", "name"]

    def __init__(self, txn: Any, name: str):
        self.txn = txn
        self.name = name

    @property
    def description(self) -> Any:
        return self.txn.description

    @property
    def rowcount(self) -> int:
        return self.txn.rowcount

    @property
    def lastrowid(self) -> Optional[int]:
        return self.txn.lastrowid

    def fetchone(self) -> Optional[Tuple]:
        return self.txn.fetchone()

    def fetchall(self) -> List[Tuple]:
        return self.txn.fetchall()

    def __iter__(self) -> Iterator[Tuple]:
        return self.txn.__iter__()

    def execute(self, sql: str, parameters: Collection[Any] = ()) -> None:
        self._do_execute(self.txn.execute, sql, parameters)

    def executemany(self, sql: str, *args: Any) -> None:
        self._do_execute(self.txn.executemany, sql, *args)

    def _do_execute(
        self,
        func: Callable[Concatenate[str, P], R],
        sql: str,
        *args: P.args,
        **kwargs: P.kwargs,
    ) -> R:
        # Remove newlines and collapse whitespace in the SQL for logging.
        one_line_sql = " ".join(sql.split())
        sql_logger.debug("[SQL] {%s} %s", self.name, one_line_sql)
        if args:
            sql_logger.debug("[SQL values] {%s} %r", self.name, args[0])

        start = time.time()
        try:
            return func(sql, *args, **kwargs)
        except Exception as e:
            sql_logger.debug("[SQL FAIL] {%s} %s", self.name, e)
            raise
        finally:
            secs = time.time() - start
            sql_logger.debug("[SQL time] {%s} %f sec", self.name, secs)
            sql_query_timer.record(secs, {"verb": one_line_sql.split(" ", 1)[0]})

    def close(self) -> None:
        self.txn.close()


class DatabasePool:
    """Wraps a single physical database and connection pool.

    A single database may be used by multiple data stores.
    """

    def __init__(self, hs: "HomeServer", database_config: DatabaseConnectionConfig):
        self.hs = hs
        self._clock = hs.get_clock()
        self._database_config = database_config
        self._db_pool = make_pool(hs.get_reactor(), database_config)

    def is_running(self) -> bool:
        """Is the database pool currently running"""
        return self._db_pool.running

    def new_transaction(
        self,
        conn: Any,
        desc: str,
        func: Callable[Concatenate[LoggingTransaction, P], R],
        *args: P.args,
        **kwargs: P.kwargs,
    ) -> R:
        """Run `func` with a cursor on the given connection.

        Committing or rolling back is left to the adbapi pool, which does so
        once this returns or raises.
        """
        start = time.time()
        transaction_logger.debug("[TXN START] {%s}", desc)

        cursor = LoggingTransaction(conn.cursor(), name=desc)
        try:
            return func(cursor, *args, **kwargs)
        except Exception:
            transaction_logger.debug("[TXN FAIL] {%s}", desc, exc_info=True)
            raise
        finally:
            cursor.close()
            duration = time.time() - start
            transaction_logger.debug("[TXN END] {%s} %f sec", desc, duration)
            sql_txn_duration.record(duration, {"desc": desc})

    async def runInteraction(
        self,
        desc: str,
        func: Callable[Concatenate[LoggingTransaction, P], R],
        *args: P.args,
        **kwargs: P.kwargs,
    ) -> R:
        """Starts a transaction on the database and runs a given function

        Arguments:
            desc: description of the transaction, for logging and metrics
            func: callback function, which will be called with a
                database transaction (twisted.enterprise.adbapi.Transaction) as
                its first argument, followed by `args` and `kwargs`.
            args: positional args to pass to `func`
            kwargs: named args to pass to `func`

        Returns:
            The result of func
        """
        # Run in a copy of the calling context, so that SQL logging carries
        # the request id.
        ctx = contextvars.copy_context()

        def inner_func(conn: Any) -> R:
            return ctx.run(self.new_transaction, conn, desc, func, *args, **kwargs)

        return await self._db_pool.runWithConnection(inner_func)

    async def execute(self, desc: str, query: str, *args: Any) -> List[Tuple[Any, ...]]:
        """Runs a single query for a result set.

        Args:
            desc: description of the transaction, for logging and metrics
            query: The query string to execute
            *args: Query args.
        Returns:
            The result of decoder(results)
        """

        def interaction(txn: LoggingTransaction) -> List[Tuple[Any, ...]]:
            txn.execute(query, args)
            return txn.fetchall()

        return await self.runInteraction(desc, interaction)

    # "Simple" SQL API methods that operate on a single table with no JOINs,
    # no complex WHERE clauses, just a dict of values for columns.

    async def simple_insert(
        self, table: str, values: Dict[str, Any], desc: str = "simple_insert"
    ) -> None:
        """Executes an INSERT query on the named table.

        Args:
            table: string giving the table name
            values: dict of new column names and values for them
            desc: description of the transaction, for logging and metrics
        """
        await self.runInteraction(desc, self.simple_insert_txn, table, values)

    @staticmethod
    def simple_insert_txn(
        txn: LoggingTransaction, table: str, values: Dict[str, Any]
    ) -> None:
        keys, vals = zip(*values.items())

        sql = "INSERT INTO %s (%s) VALUES(%s)" % (
            table,
            ", ".join(k for k in keys),
            ", ".join("?" for _ in keys),
        )

        txn.execute(sql, vals)

    async def simple_upsert(
        self,
        table: str,
        keyvalues: Dict[str, Any],
        values: Dict[str, Any],
        insertion_values: Optional[Dict[str, Any]] = None,
        desc: str = "simple_upsert",
    ) -> None:
        """Insert a row, or update only the given columns of an existing one.

        Args:
            table: The table to upsert into
            keyvalues: The unique key columns and their new values
            values: The nonunique columns and their new values
            insertion_values: additional key/values to use only when inserting
            desc: description of the transaction, for logging and metrics
        """
        await self.runInteraction(
            desc,
            self.simple_upsert_txn,
            table,
            keyvalues,
            values,
            insertion_values,
        )

    @staticmethod
    def simple_upsert_txn(
        txn: LoggingTransaction,
        table: str,
        keyvalues: Dict[str, Any],
        values: Dict[str, Any],
        insertion_values: Optional[Dict[str, Any]] = None,
    ) -> None:
        insertion_values = insertion_values or {}

        allvalues: Dict[str, Any] = {}
        allvalues.update(keyvalues)
        allvalues.update(values)
        allvalues.update(insertion_values)

        if not values:
            latter = "NOTHING"
        else:
            latter = "UPDATE SET " + ", ".join(k + "=EXCLUDED." + k for k in values)

        sql = "INSERT INTO %s (%s) VALUES (%s) ON CONFLICT (%s) DO %s" % (
            table,
            ", ".join(k for k in allvalues),
            ", ".join("?" for _ in allvalues),
            ", ".join(k for k in keyvalues),
            latter,
        )
        txn.execute(sql, list(allvalues.values()))

    @overload
    async def simple_select_one(
        self,
        table: str,
        keyvalues: Dict[str, Any],
        retcols: Collection[str],
        allow_none: Literal[False] = False,
        desc: str = "simple_select_one",
    ) -> Tuple[Any, ...]: ...

    @overload
    async def simple_select_one(
        self,
        table: str,
        keyvalues: Dict[str, Any],
        retcols: Collection[str],
        allow_none: bool = False,
        desc: str = "simple_select_one",
    ) -> Optional[Tuple[Any, ...]]: ...

    async def simple_select_one(
        self,
        table: str,
        keyvalues: Dict[str, Any],
        retcols: Collection[str],
        allow_none: bool = False,
        desc: str = "simple_select_one",
    ) -> Optional[Tuple[Any, ...]]:
        """Executes a SELECT query on the named table, which is expected to
        return a single row, returning multiple columns from it.

        Args:
            table: string giving the table name
            keyvalues: dict of column names and values to select the row with
            retcols: list of strings giving the names of the columns to return
            allow_none: If true, return None instead of raising StoreError if no
                row is found
            desc: description of the transaction, for logging and metrics

        Returns:
            A tuple of the values of `retcols`, in order.
        """
        return await self.runInteraction(
            desc, self.simple_select_one_txn, table, keyvalues, retcols, allow_none
        )

    @staticmethod
    def simple_select_one_txn(
        txn: LoggingTransaction,
        table: str,
        keyvalues: Dict[str, Any],
        retcols: Collection[str],
        allow_none: bool = False,
    ) -> Optional[Tuple[Any, ...]]:
        select_sql = "SELECT %s FROM %s WHERE %s" % (
            ", ".join(retcols),
            table,
            " AND ".join("%s = ?" % (k,) for k in keyvalues),
        )

        txn.execute(select_sql, list(keyvalues.values()))
        row = txn.fetchone()

        if not row:
            if allow_none:
                return None
            raise StoreError(404, "No row found (%s)" % (table,))
        if txn.fetchone() is not None:
            raise StoreError(500, "More than one row matched (%s)" % (table,))

        return tuple(row)

    @overload
    async def simple_select_one_onecol(
        self,
        table: str,
        keyvalues: Dict[str, Any],
        retcol: str,
        allow_none: Literal[False] = False,
        desc: str = "simple_select_one_onecol",
    ) -> Any: ...

    @overload
    async def simple_select_one_onecol(
        self,
        table: str,
        keyvalues: Dict[str, Any],
        retcol: str,
        allow_none: Literal[True] = True,
        desc: str = "simple_select_one_onecol",
    ) -> Optional[Any]: ...

    async def simple_select_one_onecol(
        self,
        table: str,
        keyvalues: Dict[str, Any],
        retcol: str,
        allow_none: bool = False,
        desc: str = "simple_select_one_onecol",
    ) -> Optional[Any]:
        """Executes a SELECT query on the named table, which is expected to
        return a single row, returning a single column from it.

        Args:
            table: string giving the table name
            keyvalues: dict of column names and values to select the row with
            retcol: string giving the name of the column to return
            allow_none: If true, return None instead of raising StoreError if no
                row is found
            desc: description of the transaction, for logging and metrics
        """
        row = await self.simple_select_one(
            table, keyvalues, (retcol,), allow_none=allow_none, desc=desc
        )
        if row is None:
            return None
        return row[0]

    async def simple_select_list(
        self,
        table: str,
        keyvalues: Optional[Dict[str, Any]],
        retcols: Collection[str],
        desc: str = "simple_select_list",
    ) -> List[Tuple[Any, ...]]:
        """Executes a SELECT query on the named table, which may return zero or
        more rows, returning the result as a list of tuples.

        Args:
            table: the table name
            keyvalues:
                column names and values to select the rows with, or None to not
                apply a WHERE clause.
            retcols: the names of the columns to return
            desc: description of the transaction, for logging and metrics
        """
        return await self.runInteraction(
            desc, self.simple_select_list_txn, table, keyvalues, retcols
        )

    @classmethod
    def simple_select_list_txn(
        cls,
        txn: LoggingTransaction,
        table: str,
        keyvalues: Optional[Dict[str, Any]],
        retcols: Iterable[str],
    ) -> List[Tuple[Any, ...]]:
        if keyvalues:
            sql = "SELECT %s FROM %s WHERE %s" % (
                ", ".join(retcols),
                table,
                " AND ".join("%s = ?" % (k,) for k in keyvalues),
            )
            txn.execute(sql, list(keyvalues.values()))
        else:
            sql = "SELECT %s FROM %s" % (", ".join(retcols), table)
            txn.execute(sql)

        return cast(List[Tuple[Any, ...]], txn.fetchall())

    async def simple_update_one(
        self,
        table: str,
        keyvalues: Dict[str, Any],
        updatevalues: Dict[str, Any],
        desc: str = "simple_update_one",
    ) -> None:
        """Executes an UPDATE query on the named table, setting new values for
        columns in a row matching the key values.

        Raises:
            StoreError(404) if no row matched.
        """
        await self.runInteraction(
            desc, self.simple_update_one_txn, table, keyvalues, updatevalues
        )

    @classmethod
    def simple_update_one_txn(
        cls,
        txn: LoggingTransaction,
        table: str,
        keyvalues: Dict[str, Any],
        updatevalues: Dict[str, Any],
    ) -> None:
        rowcount = cls.simple_update_txn(txn, table, keyvalues, updatevalues)

        if rowcount == 0:
            raise StoreError(404, "No row found (%s)" % (table,))
        if rowcount > 1:
            raise StoreError(500, "More than one row matched (%s)" % (table,))

    @staticmethod
    def simple_update_txn(
        txn: LoggingTransaction,
        table: str,
        keyvalues: Dict[str, Any],
        updatevalues: Dict[str, Any],
    ) -> int:
        """Update rows in the given database table.

        Returns:
            The number of rows that were updated.
        """
        if keyvalues:
            where = "WHERE %s" % " AND ".join("%s = ?" % k for k in keyvalues)
        else:
            where = ""

        update_sql = "UPDATE %s SET %s %s" % (
            table,
            ", ".join("%s = ?" % (k,) for k in updatevalues),
            where,
        )

        txn.execute(update_sql, list(updatevalues.values()) + list(keyvalues.values()))

        return txn.rowcount
