#
# This file is licensed under the Affero General Public License (AGPL) version 3.
#
# Copyright 2021 The Matrix.org Foundation C.I.C.
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

# This file provides some classes for setting up (partially-populated)
# homeservers; either as a full homeserver as a real application, or a small
# partial one for unit test mocking.


import functools
import logging
from typing import Any, Callable, Optional, TypeVar, cast

from signedjson.key import SigningKey

from twisted.internet.interfaces import IReactorCore

from blurhome import __version__
from blurhome.api.auth import Auth
from blurhome.config.homeserver import HomeServerConfig
from blurhome.crypto.keyring import Keyring
from blurhome.federation.federation_client import FederationClient
from blurhome.federation.federation_server import (
    FederationHandlerRegistry,
    FederationServer,
)
from blurhome.handlers.auth import AuthHandler
from blurhome.handlers.media import MediaHandler
from blurhome.handlers.message import EventCreationHandler, MessageHandler
from blurhome.handlers.profile import ProfileHandler
from blurhome.handlers.register import RegistrationHandler
from blurhome.handlers.room import RoomCreationHandler, RoomMemberHandler
from blurhome.http.matrixfederationclient import MatrixFederationHttpClient
from blurhome.media.media_repository import MediaRepository
from blurhome.storage.databases import Databases
from blurhome.storage.databases.main import DataStore
from blurhome.types import UserID
from blurhome.util import Clock

logger = logging.getLogger(__name__)


T = TypeVar("T")
F = TypeVar("F", bound=Callable[["HomeServer"], Any])


def cache_in_self(builder: F) -> F:
    """Wraps a function called e.g. `get_foo`, checking if `self.foo` exists and
    returning if so. If not, calls the given function and sets `self.foo` to it.

    Also ensures that dependency cycles throw an exception correctly, rather
    than overflowing the stack.
    """

    if not builder.__name__.startswith("get_"):
        raise Exception(
            "@cache_in_self can only be used on functions starting with `get_`"
        )

    # get_attr -> _attr
    depname = builder.__name__[len("get") :]

    building = [False]

    @functools.wraps(builder)
    def _get(self: "HomeServer") -> T:
        try:
            return getattr(self, depname)
        except AttributeError:
            pass

        # Prevent cyclic dependencies from deadlocking
        if building[0]:
            raise ValueError("Cyclic dependency while building %s" % (depname,))

        building[0] = True
        try:
            dep = builder(self)
            setattr(self, depname, dep)
        finally:
            building[0] = False

        return dep

    return cast(F, _get)


class HomeServer:
    """A basic homeserver object without lazy component builders.

    This will need all of the components it requires to either be passed as
    constructor arguments, or the relevant methods overriding to create them.
    Typically this would only be used for unit tests.

    Dependency-injection is done using the `cache_in_self` decorator, which
    builds each component the first time its `get_*` accessor is called.

    Attributes:
        config: The parsed homeserver config.
        hostname: The name of this server, as used in user and room ids.
    """

    def __init__(
        self,
        hostname: str,
        config: HomeServerConfig,
        reactor: Optional[IReactorCore] = None,
        version_string: str = "Blurhome",
    ):
        """
        Args:
            hostname : The hostname for the server.
            config: The full config for the homeserver.
        """
        if not reactor:
            from twisted.internet import reactor as _reactor

            reactor = cast(IReactorCore, _reactor)

        self._reactor = reactor
        self.hostname = hostname
        self.config = config
        self.version_string = "%s/%s" % (version_string, __version__)

        # the key we use to sign events and requests
        self.signing_key: SigningKey = config.key.signing_key[0]

        self.datastores: Optional[Databases[DataStore]] = None

    def setup(self) -> None:
        """Set up the database connection pool and the data stores."""
        logger.info("Setting up.")
        self.datastores = Databases(DataStore, self)

        # Handlers which register federation query handlers must exist before
        # the first inbound query.
        self.get_profile_handler()

        logger.info("Finished setting up.")

    def get_reactor(self) -> IReactorCore:
        """
        Fetch the Twisted reactor in use by this HomeServer.
        """
        return self._reactor

    def is_mine(self, domain_specific_string: UserID) -> bool:
        return domain_specific_string.domain == self.hostname

    def is_mine_server_name(self, server_name: str) -> bool:
        """Determines whether a server name refers to this homeserver."""
        return server_name == self.hostname

    @cache_in_self
    def get_clock(self) -> Clock:
        return Clock(self._reactor)

    def get_datastores(self) -> Databases[DataStore]:
        if not self.datastores:
            raise Exception("HomeServer.setup must be called before getting datastores")

        return self.datastores

    @cache_in_self
    def get_auth(self) -> Auth:
        return Auth(self)

    @cache_in_self
    def get_auth_handler(self) -> AuthHandler:
        return AuthHandler(self)

    @cache_in_self
    def get_registration_handler(self) -> RegistrationHandler:
        return RegistrationHandler(self)

    @cache_in_self
    def get_profile_handler(self) -> ProfileHandler:
        return ProfileHandler(self)

    @cache_in_self
    def get_event_creation_handler(self) -> EventCreationHandler:
        return EventCreationHandler(self)

    @cache_in_self
    def get_message_handler(self) -> MessageHandler:
        return MessageHandler(self)

    @cache_in_self
    def get_room_creation_handler(self) -> RoomCreationHandler:
        return RoomCreationHandler(self)

    @cache_in_self
    def get_room_member_handler(self) -> RoomMemberHandler:
        return RoomMemberHandler(self)

    @cache_in_self
    def get_media_repository(self) -> MediaRepository:
        return MediaRepository(self)

    @cache_in_self
    def get_media_handler(self) -> MediaHandler:
        return MediaHandler(self)

    @cache_in_self
    def get_federation_http_client(self) -> MatrixFederationHttpClient:
        """
        An HTTP client for federation, signing each request with this
        server's key.
        """
        return MatrixFederationHttpClient(self)

    @cache_in_self
    def get_federation_client(self) -> FederationClient:
        return FederationClient(self)

    @cache_in_self
    def get_federation_registry(self) -> FederationHandlerRegistry:
        return FederationHandlerRegistry(self)

    @cache_in_self
    def get_federation_server(self) -> FederationServer:
        return FederationServer(self)

    @cache_in_self
    def get_keyring(self) -> Keyring:
        return Keyring(self)
