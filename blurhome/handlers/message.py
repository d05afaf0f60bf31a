#
# This file is licensed under the Affero General Public License (AGPL) version 3.
#
# Copyright 2014-2016 OpenMarket Ltd
# Copyright 2017-2018 New Vector Ltd
# Copyright 2019-2020 The Matrix.org Foundation C.I.C.
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
from typing import TYPE_CHECKING, Optional

import attr
from canonicaljson import encode_canonical_json

from blurhome.api.constants import MAX_PDU_SIZE, Direction, EventTypes
from blurhome.api.errors import Codes, MatrixError, NotFoundError
from blurhome.events import FrozenEvent, serialize_event
from blurhome.storage.databases.main.events import TransactionIdInfo
from blurhome.types import JsonDict, Requester
from blurhome.util.async_helpers import Linearizer
from blurhome.util.stringutils import random_string

if TYPE_CHECKING:
    from blurhome.server import HomeServer

logger = logging.getLogger(__name__)

# The largest number of events a client may ask for in a single page.
MAX_PAGINATION_LIMIT = 1000


@attr.s(slots=True, frozen=True, auto_attribs=True)
class StreamToken:
    """A position in the event stream, as handed to clients.

    Serialised as `s<stream_ordering>`. The position sits just after the event
    with the given stream ordering.
    """

    stream: int

    @classmethod
    def from_string(cls, string: str) -> "StreamToken":
        if not string.startswith("s") or not string[1:].isdigit():
            raise MatrixError(400, "Invalid stream token", Codes.INVALID_PARAM)
        return cls(int(string[1:]))

    def to_string(self) -> str:
        return "s%d" % (self.stream,)


@attr.s(slots=True, frozen=True, auto_attribs=True)
class PaginationConfig:
    """Pagination parameters of a /messages request."""

    from_token: Optional[StreamToken]
    direction: str = Direction.BACKWARDS
    limit: int = 10


class MessageHandler:
    """Contains some read only APIs to get state about a room"""

    def __init__(self, hs: "HomeServer"):
        self.auth = hs.get_auth()
        self.clock = hs.get_clock()
        self.store = hs.get_datastores().main

    async def get_event(
        self, requester: Requester, room_id: str, event_id: str
    ) -> FrozenEvent:
        """Retrieve a single specified event.

        Args:
            requester: The user requesting the event
            room_id: The expected room id. We'll return None if the
                event's room does not match.
            event_id: The event ID to obtain.

        Returns:
            The event, exactly as it was sent.

        Raises:
            AuthError if the user does not have the rights to inspect this
                event.
            NotFoundError if the event does not exist in the room.
        """
        await self.auth.check_user_in_room(room_id, requester)

        event = await self.store.get_event(event_id, allow_none=True)
        if event is None or event.room_id != room_id:
            raise NotFoundError("Could not find event %s" % (event_id,))

        return event

    async def get_messages(
        self,
        requester: Requester,
        room_id: str,
        pagin_config: PaginationConfig,
    ) -> JsonDict:
        """Get messages in a room.

        Args:
            requester: The user requesting messages.
            room_id: The room they want messages from.
            pagin_config: The pagination config rules to apply, if any.

        Returns:
            Pagination API results
        """
        await self.auth.check_user_in_room(room_id, requester)

        if pagin_config.from_token is not None:
            from_token = pagin_config.from_token
        elif pagin_config.direction == Direction.BACKWARDS:
            from_token = StreamToken(await self.store.get_room_max_stream_ordering())
        else:
            from_token = StreamToken(0)

        limit = min(pagin_config.limit, MAX_PAGINATION_LIMIT)

        events, next_key = await self.store.paginate_room_events(
            room_id,
            from_token.stream,
            direction=pagin_config.direction,
            limit=limit,
        )

        if not events:
            return {"chunk": [], "start": from_token.to_string()}

        time_now = self.clock.time_msec()
        return {
            "chunk": [serialize_event(e, time_now) for e in events],
            "start": from_token.to_string(),
            "end": StreamToken(next_key).to_string(),
        }


class EventCreationHandler:
    def __init__(self, hs: "HomeServer"):
        self.hs = hs
        self.auth = hs.get_auth()
        self.store = hs.get_datastores().main
        self.clock = hs.get_clock()
        self.server_name = hs.hostname

        # We limit concurrent event creation for a room, so that client
        # transaction ids are checked and recorded atomically.
        self.limiter = Linearizer(name="room_event_creation_limit")

    async def create_and_send_nonmember_event(
        self,
        requester: Requester,
        event_dict: JsonDict,
        txn_id: Optional[str] = None,
    ) -> FrozenEvent:
        """
        Creates an event, then sends it.

        The sender must be joined to the room.

        Args:
            requester: The requester sending the event.
            event_dict: An entire event, without an event id.
            txn_id: The transaction ID.

        Returns:
            The event, which is the one originally persisted for this
            transaction id if the client has retried.

        Raises:
            MatrixError if the event is a membership event or too large.
            AuthError if the sender is not joined to the room.
        """
        if event_dict["type"] == EventTypes.Member:
            raise MatrixError(
                400,
                "Membership events cannot be sent with this endpoint",
                Codes.INVALID_PARAM,
            )

        await self.auth.check_user_in_room(event_dict["room_id"], requester)

        return await self.create_and_send_event(requester, event_dict, txn_id)

    async def create_and_send_event(
        self,
        requester: Requester,
        event_dict: JsonDict,
        txn_id: Optional[str] = None,
    ) -> FrozenEvent:
        """Build an event from a dict and persist it, without any
        authorisation checks.

        Args:
            requester: The requester sending the event.
            event_dict: An entire event, without an event id.
            txn_id: The transaction ID.

        Returns:
            The persisted event.
        """
        room_id = event_dict["room_id"]

        async with self.limiter.queue(room_id):
            if txn_id is not None and requester.access_token_id is not None:
                existing_event_id = await self.store.get_event_id_from_transaction_id(
                    room_id,
                    requester.user.to_string(),
                    requester.access_token_id,
                    txn_id,
                )
                if existing_event_id:
                    logger.info(
                        "Returning %s for retried transaction %s",
                        existing_event_id,
                        txn_id,
                    )
                    event = await self.store.get_event(existing_event_id)
                    assert event is not None
                    return event

            event = self._build_event(requester, event_dict)
            self._validate_event_size(event)

            txn_info = None
            if txn_id is not None and requester.access_token_id is not None:
                txn_info = TransactionIdInfo(
                    user_id=requester.user.to_string(),
                    token_id=requester.access_token_id,
                    txn_id=txn_id,
                )

            event = await self.store.persist_event(event, txn_info)

        logger.info(
            "Persisted %s event %s in %s", event.type, event.event_id, event.room_id
        )
        return event

    def _build_event(self, requester: Requester, event_dict: JsonDict) -> FrozenEvent:
        return FrozenEvent(
            event_id="$%s:%s" % (random_string(24), self.server_name),
            room_id=event_dict["room_id"],
            type=event_dict["type"],
            sender=requester.user.to_string(),
            content=event_dict["content"],
            origin_server_ts=self.clock.time_msec(),
            state_key=event_dict.get("state_key"),
        )

    def _validate_event_size(self, event: FrozenEvent) -> None:
        """
        Checks the size of the event, as encoded over federation, to ensure
        the event is not too large.

        Raises:
            MatrixError: if the event is too large
        """
        if len(encode_canonical_json(event.get_pdu_json())) > MAX_PDU_SIZE:
            raise MatrixError(413, "event too large", Codes.TOO_LARGE)
