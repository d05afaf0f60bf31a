#
# This file is licensed under the Affero General Public License (AGPL) version 3.
#
# Copyright 2014-2021 The Matrix.org Foundation C.I.C.
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
import urllib.parse
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Union

import attr
import treq
from canonicaljson import encode_canonical_json
from signedjson.sign import sign_json
from treq.client import HTTPClient

from twisted.internet.defer import CancelledError, TimeoutError
from twisted.internet.error import ConnectError, DNSLookupError
from twisted.web.client import Agent, HTTPConnectionPool
from twisted.web.http_headers import Headers
from twisted.web.iweb import UNKNOWN_LENGTH, IResponse

from blurhome.api.errors import (
    FederationDeniedError,
    HttpResponseException,
    RequestSendFailed,
)
from blurhome.http import RequestTimedOutError, redact_uri
from blurhome.types import JsonDict
from blurhome.util import json_decoder

if TYPE_CHECKING:
    from blurhome.server import HomeServer

logger = logging.getLogger(__name__)

QueryParams = Dict[str, Union[str, List[str]]]

# Responses larger than this are treated as a failed request.
MAX_RESPONSE_SIZE = 100 * 1024 * 1024


@attr.s(slots=True, frozen=True, auto_attribs=True)
class MatrixFederationRequest:
    method: str
    """HTTP method
    """

    path: str
    """HTTP path
    """

    destination: str
    """The remote server to send the HTTP request to.
    """

    json: Optional[JsonDict] = None
    """JSON to send in the body.
    """

    query: Optional[QueryParams] = None
    """Query arguments.
    """

    @property
    def uri(self) -> str:
        """The request target, as signed: the path plus any query string."""
        if not self.query:
            return self.path
        return "%s?%s" % (self.path, urllib.parse.urlencode(self.query, True))


class MatrixFederationHttpClient:
    """HTTP client used to talk to other homeservers over the federation
    protocol. Send client certificates and signs requests.

    Attributes:
        agent (twisted.web.client.Agent): The twisted Agent used to send the
            requests.
    """

    def __init__(self, hs: "HomeServer"):
        self.hs = hs
        self.signing_key = hs.signing_key
        self.server_name = hs.hostname
        self.reactor = hs.get_reactor()
        self.clock = hs.get_clock()

        self._federation_config = hs.config.federation
        self.default_timeout_seconds = (
            self._federation_config.federation_request_timeout / 1000.0
        )

        pool = HTTPConnectionPool(self.reactor)
        pool.retryAutomatically = False
        pool.maxPersistentPerHost = 5
        pool.cachedConnectionTimeout = 2 * 60

        self.agent = Agent(self.reactor, pool=pool)
        self._client = HTTPClient(self.agent)

        self.version_string_bytes = hs.version_string.encode("ascii")

    def _base_url_for(self, destination: str) -> str:
        override = self._federation_config.federation_destination_base_urls.get(
            destination
        )
        if override is not None:
            return override
        return "https://%s" % (destination,)

    def build_auth_headers(
        self,
        destination: str,
        method: bytes,
        url_bytes: bytes,
        content: Optional[JsonDict] = None,
    ) -> List[bytes]:
        """
        Builds the Authorization headers for a federation request

        Args:
            destination: The destination homeserver of the request.
            method: The HTTP method of the request
            url_bytes: The URI path of the request, including any query string
            content: The body of the request

        Returns:
            A list of headers to be added as "Authorization:" headers
        """
        request: JsonDict = {
            "method": method.decode("ascii"),
            "uri": url_bytes.decode("ascii"),
            "origin": self.server_name,
            "destination": destination,
        }

        if content is not None:
            request["content"] = content

        request = sign_json(request, self.server_name, self.signing_key)

        auth_headers = []

        for key, sig in request["signatures"][self.server_name].items():
            auth_headers.append(
                (
                    'X-Matrix origin="%s",key="%s",sig="%s",destination="%s"'
                    % (
                        self.server_name,
                        key,
                        sig,
                        destination,
                    )
                ).encode("ascii")
            )
        return auth_headers

    async def _send_request(
        self,
        request: MatrixFederationRequest,
        timeout: Optional[float] = None,
    ) -> IResponse:
        """
        Sends a request to the given server.

        Args:
            request: details of request to be sent
            timeout: number of seconds to wait for the response headers.

        Returns:
            Resolves with the HTTP response object on success.

        Raises:
            HttpResponseException: If we get an HTTP response code >= 300.
            FederationDeniedError: If this destination is not on our
                federation whitelist
            RequestSendFailed: If there were problems connecting to the
                remote, due to e.g. DNS failures, connection timeouts etc.
        """
        if not self._federation_config.is_domain_allowed(request.destination):
            raise FederationDeniedError(request.destination)

        if timeout is None:
            timeout = self.default_timeout_seconds

        method_bytes = request.method.encode("ascii")
        url_bytes = request.uri.encode("ascii")
        url_str = self._base_url_for(request.destination) + request.uri

        headers_dict: Dict[bytes, List[bytes]] = {
            b"User-Agent": [self.version_string_bytes],
        }

        data = None
        if request.json is not None:
            data = encode_canonical_json(request.json)
            headers_dict[b"Content-Type"] = [b"application/json"]

        headers_dict[b"Authorization"] = self.build_auth_headers(
            request.destination, method_bytes, url_bytes, request.json
        )

        logger.debug(
            "{%s} Sending request: %s %s",
            request.destination,
            request.method,
            redact_uri(url_str),
        )

        try:
            response = await self._client.request(
                request.method,
                url_str,
                headers=Headers(headers_dict),
                data=data,
                timeout=timeout,
                reactor=self.reactor,
            )
        except (DNSLookupError, ConnectError) as e:
            raise RequestSendFailed(e, can_retry=True) from e
        except Exception as e:
            # treq surfaces timeouts as a cancelled request
            if _is_timeout(e):
                raise RequestSendFailed(
                    RequestTimedOutError("Timeout waiting for response"),
                    can_retry=True,
                ) from e
            logger.info(
                "{%s} Request failed: %s %s: %r",
                request.destination,
                request.method,
                redact_uri(url_str),
                e,
            )
            raise RequestSendFailed(e, can_retry=False) from e

        logger.info(
            "{%s} [%s] Got response headers: %d %s",
            request.destination,
            request.method,
            response.code,
            response.phrase.decode("ascii", errors="replace"),
        )

        if 200 <= response.code < 300:
            return response

        # :'(
        try:
            body = await treq.content(response)
        except Exception as e:
            logger.warning(
                "{%s} Failed to get error response: %s %s: %s",
                request.destination,
                request.method,
                redact_uri(url_str),
                e,
            )
            body = b""

        raise HttpResponseException(
            response.code, response.phrase.decode("ascii", errors="replace"), body
        )

    async def get_json(
        self,
        destination: str,
        path: str,
        args: Optional[QueryParams] = None,
        timeout: Optional[float] = None,
    ) -> JsonDict:
        """GETs some json from the given host homeserver and path

        Args:
            destination: The remote server to send the HTTP request to.
            path: The HTTP path.
            args: A dictionary used to create query strings, defaults to
                None.
            timeout: number of seconds to wait for the response. Defaults to
                the configured `federation_request_timeout`.

        Returns:
            Succeeds when we get a 2xx HTTP response. The result will be the
            decoded JSON body.

        Raises:
            HttpResponseException: If we get an HTTP response code >= 300
            FederationDeniedError: If this destination is not on our
                federation whitelist
            RequestSendFailed: If there were problems connecting to the
                remote, due to e.g. DNS failures, connection timeouts etc.
        """
        request = MatrixFederationRequest(
            method="GET", destination=destination, path=path, query=args
        )

        response = await self._send_request(request, timeout=timeout)

        return await self._read_json_body(request, response)

    async def _read_json_body(
        self, request: MatrixFederationRequest, response: IResponse
    ) -> Any:
        check_content_type_is_json(response.headers)

        if response.length != UNKNOWN_LENGTH and (
            response.length > MAX_RESPONSE_SIZE
        ):
            raise RequestSendFailed(
                ValueError("Response too large (%d bytes)" % (response.length,)),
                can_retry=False,
            )

        try:
            body = await treq.content(response)
            return json_decoder.decode(body.decode("utf-8"))
        except ValueError as e:
            logger.warning(
                "{%s} [%s] Failed to parse JSON response: %s",
                request.destination,
                request.method,
                e,
            )
            raise RequestSendFailed(e, can_retry=False) from e


def _is_timeout(e: BaseException) -> bool:
    return isinstance(e, (CancelledError, TimeoutError))


def check_content_type_is_json(headers: Headers) -> None:
    """
    Check that a set of HTTP headers have a Content-Type header, and that it
    is application/json.

    Args:
        headers: headers to check

    Raises:
        RequestSendFailed: if the Content-Type header is missing or doesn't match
    """
    content_type_headers = headers.getRawHeaders(b"Content-Type")
    if content_type_headers is None:
        raise RequestSendFailed(
            RuntimeError("No Content-Type header received from remote server"),
            can_retry=False,
        )

    # Coerce to a str so we don't have to juggle bytes.
    c_type = content_type_headers[0].decode("ascii")
    val, _ = c_type.split(";", 1) if ";" in c_type else (c_type, "")
    if val.strip().lower() != "application/json":
        raise RequestSendFailed(
            RuntimeError(
                "Remote server sent Content-Type header of '%s', not 'application/json'"
                % c_type,
            ),
            can_retry=False,
        )
