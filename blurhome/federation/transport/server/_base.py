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

import functools
import logging
import re
from http import HTTPStatus
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Optional, Tuple

from blurhome.api.errors import Codes, FederationDeniedError, MatrixError
from blurhome.api.urls import FEDERATION_V1_PREFIX
from blurhome.http.server import HttpServer, ServletCallback
from blurhome.http.servlet import parse_json_object_from_request
from blurhome.http.site import BlurhomeRequest
from blurhome.types import JsonDict
from blurhome.util.stringutils import parse_and_validate_server_name

if TYPE_CHECKING:
    from blurhome.server import HomeServer

logger = logging.getLogger(__name__)


class AuthenticationError(MatrixError):
    """There was a problem authenticating the request"""


class NoAuthenticationError(AuthenticationError):
    """The request had no authentication information"""


class Authenticator:
    def __init__(self, hs: "HomeServer"):
        self._clock = hs.get_clock()
        self.keyring = hs.get_keyring()
        self.server_name = hs.hostname
        self._is_mine_server_name = hs.is_mine_server_name
        self.federation_domain_whitelist = (
            hs.config.federation.federation_domain_whitelist
        )

    async def authenticate_request(
        self, request: BlurhomeRequest, content: Optional[JsonDict]
    ) -> str:
        """Check the X-Matrix authorization of an inbound federation request.

        Returns:
            The name of the server which sent the request.

        Raises:
            NoAuthenticationError: the request carries no X-Matrix header.
            AuthenticationError: the header is malformed or addressed to
                another server.
            FederationDeniedError: the origin is not on our whitelist.
            AuthError: the signature could not be verified.
        """
        now = self._clock.time_msec()
        json_request: JsonDict = {
            "method": request.method.decode("ascii"),
            "uri": request.uri.decode("ascii"),
            "destination": self.server_name,
            "signatures": {},
        }

        if content is not None:
            json_request["content"] = content

        origin = None

        auth_headers = request.requestHeaders.getRawHeaders(b"Authorization")

        if not auth_headers:
            raise NoAuthenticationError(
                HTTPStatus.UNAUTHORIZED,
                "Missing Authorization headers",
                Codes.UNAUTHORIZED,
            )

        for auth in auth_headers:
            if auth.startswith(b"X-Matrix"):
                (origin, key, sig, destination) = _parse_auth_header(auth)
                json_request["origin"] = origin
                json_request["signatures"].setdefault(origin, {})[key] = sig

                # if the origin_server sent a destination along it needs to match our own server_name
                if destination is not None and not self._is_mine_server_name(
                    destination
                ):
                    raise AuthenticationError(
                        HTTPStatus.UNAUTHORIZED,
                        "Destination mismatch in auth header",
                        Codes.UNAUTHORIZED,
                    )
                if destination is not None:
                    json_request["destination"] = destination

        if origin is None or not json_request["signatures"]:
            raise NoAuthenticationError(
                HTTPStatus.UNAUTHORIZED,
                "Missing Authorization headers",
                Codes.UNAUTHORIZED,
            )

        if (
            self.federation_domain_whitelist is not None
            and origin not in self.federation_domain_whitelist
        ):
            raise FederationDeniedError(origin)

        await self.keyring.verify_json_for_server(origin, json_request, now)

        logger.debug("Request from %s", origin)
        request.requester = origin

        return origin


def _parse_auth_header(header_bytes: bytes) -> Tuple[str, str, str, Optional[str]]:
    """Parse an X-Matrix auth header

    Args:
        header_bytes: header value

    Returns:
        origin, key id, signature, destination.

    Raises:
        AuthenticationError if the header could not be parsed
    """
    try:
        header_str = header_bytes.decode("utf-8")
        params = re.split(" +", header_str)[1].split(",")
        param_dict: Dict[str, str] = {
            k.lower(): v for k, v in [param.split("=", maxsplit=1) for param in params]
        }

        def strip_quotes(value: str) -> str:
            if value.startswith('"'):
                return re.sub(
                    "\\\\(.)", lambda matchobj: matchobj.group(1), value[1:-1]
                )
            else:
                return value

        origin = strip_quotes(param_dict["origin"])

        # ensure that the origin is a valid server name
        parse_and_validate_server_name(origin)

        key = strip_quotes(param_dict["key"])
        sig = strip_quotes(param_dict["sig"])

        # get the destination server_name from the auth header if it exists
        destination = param_dict.get("destination")
        if destination is not None:
            destination = strip_quotes(destination)

        return origin, key, sig, destination
    except Exception as e:
        logger.warning(
            "Error parsing auth header '%s': %s",
            header_bytes.decode("ascii", "replace"),
            e,
        )
        raise AuthenticationError(
            HTTPStatus.UNAUTHORIZED,
            "Malformed Authorization header",
            Codes.UNAUTHORIZED,
        )


class BaseFederationServlet:
    """Abstract base class for federation servlet classes.

    The servlet object should have a PATH attribute which takes the form of a regexp to
    match against the request path (excluding the /federation/v1 prefix).

    The servlet should also implement one or more of on_GET, on_POST or on_PUT, to
    match the appropriate HTTP method. These methods must be *asynchronous* and must
    have the signature:

        on_<METHOD>(self, origin, content, query, **kwargs)

        With arguments:

            origin: The authenticated server_name of the calling server.

            content: The decoded body of the request, or None for GET
                requests.

            query: Query args, as a dict of bytes to list of bytes (the
                Twisted `request.args`).

            **kwargs: the dict mapping keys to path components as specified
                in the path match regexp.

        Returns:
            Either a tuple of (response code, response object) to return a JSON
            response, or None if the request has already been handled.

        Raises:
            MatrixError: to return an error code
    """

    PATH = ""  # Overridden in subclasses, the regex to match against the path.

    PREFIX = FEDERATION_V1_PREFIX  # Allows specifying the API version

    def __init__(
        self,
        hs: "HomeServer",
        authenticator: Authenticator,
        server_name: str,
    ):
        self.hs = hs
        self.authenticator = authenticator
        self.server_name = server_name

    def _wrap(self, func: Callable[..., Awaitable[Tuple[int, Any]]]) -> ServletCallback:
        authenticator = self.authenticator

        @functools.wraps(func)
        async def new_func(
            request: BlurhomeRequest, *args: Any, **kwargs: str
        ) -> Optional[Tuple[int, Any]]:
            """A callback which can be passed to HttpServer.RegisterPaths

            Args:
                request: the incoming request.
                **kwargs: the dict mapping keys to path components as specified
                    in the path match regexp.

            Returns:
                (response code, response object) as returned by the callback method.
                None if the request has already been handled.
            """
            content = None
            if request.method in [b"PUT", b"POST"]:
                content = parse_json_object_from_request(request)

            origin = await authenticator.authenticate_request(request, content)

            return await func(origin, content, request.args, *args, **kwargs)

        return new_func

    def register(self, server: HttpServer) -> None:
        pattern = re.compile("^" + self.PREFIX + self.PATH + "$")

        for method in ("GET", "PUT", "POST"):
            code = getattr(self, "on_%s" % (method), None)
            if code is None:
                continue

            server.register_paths(
                method,
                (pattern,),
                self._wrap(code),
                self.__class__.__name__,
            )
