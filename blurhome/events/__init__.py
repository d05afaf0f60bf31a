#
# This file is licensed under the Affero General Public License (AGPL) version 3.
#
# Copyright 2014-2016 OpenMarket Ltd
# Copyright 2019 New Vector Ltd
# Copyright 2020 The Matrix.org Foundation C.I.C.
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
from typing import Any, Dict, Optional

import attr

from blurhome.types import JsonDict


@attr.s(slots=True, frozen=True, auto_attribs=True)
class FrozenEvent:
    """A room event, as persisted.

    The content is kept exactly as the client sent it; nothing in it (such as
    the blurhash in an image's `info`) is interpreted by the server.
    """

    event_id: str
    room_id: str
    type: str
    sender: str
    content: JsonDict
    origin_server_ts: int
    state_key: Optional[str] = None
    # Position in the server-wide event stream, set once persisted.
    stream_ordering: Optional[int] = None

    def is_state(self) -> bool:
        return self.state_key is not None

    @property
    def membership(self) -> str:
        return self.content["membership"]

    def get_pdu_json(self) -> JsonDict:
        """The event as it would be sent over federation, without the
        server-local stream position."""
        pdu: Dict[str, Any] = {
            "event_id": self.event_id,
            "room_id": self.room_id,
            "type": self.type,
            "sender": self.sender,
            "content": self.content,
            "origin_server_ts": self.origin_server_ts,
        }
        if self.state_key is not None:
            pdu["state_key"] = self.state_key
        return pdu


def serialize_event(e: FrozenEvent, time_now_ms: int) -> JsonDict:
    """Serialize event for clients

    Args:
        e: the event to serialize
        time_now_ms: the current time, used to compute the event's age

    Returns:
        The serialized event dictionary.
    """
    d = e.get_pdu_json()
    d["unsigned"] = {"age": max(0, time_now_ms - e.origin_server_ts)}
    return d
