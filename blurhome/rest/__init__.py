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
from typing import TYPE_CHECKING, Callable, Iterable

from blurhome.http.server import HttpServer, JsonResource
from blurhome.rest.client import login, media, profile, register, room

if TYPE_CHECKING:
    from blurhome.server import HomeServer

RegisterServletsFunc = Callable[["HomeServer", HttpServer], None]

CLIENT_SERVLET_FUNCTIONS: Iterable[RegisterServletsFunc] = (
    login.register_servlets,
    register.register_servlets,
    profile.register_servlets,
    room.register_servlets,
    media.register_servlets,
)


class ClientRestResource(JsonResource):
    """Matrix Client API REST resource.

    This gets mounted at various points under /_matrix/client, including:
       * /_matrix/client/r0
       * /_matrix/client/v1
       * /_matrix/client/v3
       * /_matrix/client/unstable
       * etc
    """

    def __init__(self, hs: "HomeServer"):
        JsonResource.__init__(self, hs, canonical_json=False)
        self.register_servlets(self, hs)

    @staticmethod
    def register_servlets(client_resource: HttpServer, hs: "HomeServer") -> None:
        for servlet_func in CLIENT_SERVLET_FUNCTIONS:
            servlet_func(hs, client_resource)


class MediaRestResource(JsonResource):
    """The legacy media API, mounted at /_matrix/media."""

    def __init__(self, hs: "HomeServer"):
        JsonResource.__init__(self, hs, canonical_json=False)
        media.register_legacy_servlets(hs, self)
