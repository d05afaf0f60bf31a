#
# This file is licensed under the Affero General Public License (AGPL) version 3.
#
# Copyright 2018-2019 New Vector Ltd
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
import logging
from typing import Any, List, Optional, Tuple

import attr

from blurhome.api.constants import Direction, EventTypes
from blurhome.api.errors import NotFoundError
from blurhome.events import FrozenEvent
from blurhome.storage._base import SQLBaseStore, db_to_json
from blurhome.storage.database import LoggingTransaction
from blurhome.util import json_encoder

logger = logging.getLogger(__name__)

_EVENT_COLUMNS = (
    "event_id",
    "room_id",
    "type",
    "sender",
    "content",
    "origin_server_ts",
    "state_key",
    "stream_ordering",
)


@attr.s(slots=True, frozen=True, auto_attribs=True)
class TransactionIdInfo:
    """The client transaction an event was sent with, for deduplication."""

    user_id: str
    token_id: int
    txn_id: str


def _row_to_event(row: Tuple[Any, ...]) -> FrozenEvent:
    return FrozenEvent(
        event_id=row[0],
        room_id=row[1],
        type=row[2],
        sender=row[3],
        content=db_to_json(row[4]),
        origin_server_ts=row[5],
        state_key=row[6],
        stream_ordering=row[7],
    )


class EventsStore(SQLBaseStore):
    async def persist_event(
        self, event: FrozenEvent, txn_info: Optional[TransactionIdInfo] = None
    ) -> FrozenEvent:
        """Persist an event, updating the current membership and join rules of
        the room where the event changes them.

        Returns:
            The event, with its stream ordering filled in.
        """
        stream_ordering = await self.db_pool.runInteraction(
            "persist_event", self._persist_event_txn, event, txn_info
        )
        return attr.evolve(event, stream_ordering=stream_ordering)

    def _persist_event_txn(
        self,
        txn: LoggingTransaction,
        event: FrozenEvent,
        txn_info: Optional[TransactionIdInfo],
    ) -> int:
        txn.execute(
            "INSERT INTO events"
            " (event_id, room_id, type, sender, content, origin_server_ts, state_key)"
            " VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                event.event_id,
                event.room_id,
                event.type,
                event.sender,
                json_encoder.encode(event.content),
                event.origin_server_ts,
                event.state_key,
            ),
        )
        stream_ordering = txn.lastrowid
        assert stream_ordering is not None

        if event.type == EventTypes.Member and event.state_key is not None:
            self.db_pool.simple_upsert_txn(
                txn,
                "local_current_membership",
                keyvalues={"room_id": event.room_id, "user_id": event.state_key},
                values={"event_id": event.event_id, "membership": event.membership},
            )
        elif event.type == EventTypes.JoinRules and event.state_key == "":
            self.db_pool.simple_update_txn(
                txn,
                "rooms",
                keyvalues={"room_id": event.room_id},
                updatevalues={"join_rule": event.content.get("join_rule")},
            )

        if txn_info is not None:
            self.db_pool.simple_insert_txn(
                txn,
                "event_txn_id",
                values={
                    "event_id": event.event_id,
                    "room_id": event.room_id,
                    "user_id": txn_info.user_id,
                    "token_id": txn_info.token_id,
                    "txn_id": txn_info.txn_id,
                    "inserted_ts": self._clock.time_msec(),
                },
            )

        return stream_ordering

    async def get_event(
        self, event_id: str, allow_none: bool = False
    ) -> Optional[FrozenEvent]:
        """Get an event from the database by event_id.

        Args:
            event_id: The event_id of the event to fetch
            allow_none: If True, return None if no event found, if
                False throw a NotFoundError

        Returns:
            The event, or None if the event was not found and allow_none is `True`.
        """
        row = await self.db_pool.simple_select_one(
            "events",
            {"event_id": event_id},
            _EVENT_COLUMNS,
            allow_none=True,
            desc="get_event",
        )
        if row is None:
            if allow_none:
                return None
            raise NotFoundError("Could not find event %s" % (event_id,))

        return _row_to_event(row)

    async def get_event_id_from_transaction_id(
        self, room_id: str, user_id: str, token_id: int, txn_id: str
    ) -> Optional[str]:
        """Look up if we have already persisted an event for the transaction ID,
        returning the event ID if so.
        """
        return await self.db_pool.simple_select_one_onecol(
            table="event_txn_id",
            keyvalues={
                "room_id": room_id,
                "user_id": user_id,
                "token_id": token_id,
                "txn_id": txn_id,
            },
            retcol="event_id",
            allow_none=True,
            desc="get_event_id_from_transaction_id",
        )

    async def get_room_max_stream_ordering(self) -> int:
        """Get the stream ordering of the most recently persisted event, or 0."""
        rows = await self.db_pool.execute(
            "get_room_max_stream_ordering", "SELECT MAX(stream_ordering) FROM events"
        )
        return rows[0][0] or 0

    async def paginate_room_events(
        self,
        room_id: str,
        from_key: int,
        direction: str = Direction.BACKWARDS,
        limit: int = 10,
    ) -> Tuple[List[FrozenEvent], int]:
        """Returns list of events in a room, starting at the given position.

        Positions sit between events: position N is just after the event with
        stream ordering N.

        Args:
            room_id: The room to fetch events for.
            from_key: The position to start from.
            direction: Direction.BACKWARDS to return events before the position,
                newest first, or Direction.FORWARDS for events after it, oldest
                first.
            limit: The maximum number of events to return.

        Returns:
            The list of events and the position to continue from.
        """
        if direction == Direction.BACKWARDS:
            sql = (
                "SELECT %s FROM events WHERE room_id = ? AND stream_ordering <= ?"
                " ORDER BY stream_ordering DESC LIMIT ?"
            )
        else:
            sql = (
                "SELECT %s FROM events WHERE room_id = ? AND stream_ordering > ?"
                " ORDER BY stream_ordering ASC LIMIT ?"
            )

        rows = await self.db_pool.execute(
            "paginate_room_events",
            sql % (", ".join(_EVENT_COLUMNS),),
            room_id,
            from_key,
            limit,
        )
        events = [_row_to_event(row) for row in rows]

        if not events:
            return events, from_key

        last = events[-1].stream_ordering
        assert last is not None
        if direction == Direction.BACKWARDS:
            next_key = last - 1
        else:
            next_key = last

        return events, next_key
