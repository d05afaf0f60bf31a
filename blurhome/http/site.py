#
# This file is licensed under the Affero General Public License (AGPL) version 3.
#
# Copyright 2016 OpenMarket Ltd
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
import contextlib
import logging
import time
from typing import Any, Generator, Optional, Union

import attr

from twisted.internet.address import UNIXAddress
from twisted.internet.defer import Deferred
from twisted.internet.interfaces import IAddress
from twisted.python.failure import Failure
from twisted.web.http import HTTPChannel
from twisted.web.resource import IResource, Resource
from twisted.web.server import Request, Site

from blurhome.config.server import ListenerConfig
from blurhome.http import redact_uri
from blurhome.http.request_metrics import RequestMetrics
from blurhome.logging.context import request_context
from blurhome.types import Requester

logger = logging.getLogger(__name__)

_next_request_seq = 0


def _next_seq() -> int:
    global _next_request_seq
    _next_request_seq += 1
    return _next_request_seq


class BlurhomeRequest(Request):
    """Class which encapsulates an HTTP request to blurhome.

    All of the requests processed in blurhome are of this type.

    It extends twisted's twisted.web.server.Request, and adds:
     * Unique request ID
     * A log line when the request is processed
     * Redaction of access_token query-params in __repr__
     * Metrics of the time taken to handle the request
     * A cap on the size of the request body

    Attributes:
        requester: the user (or server name, for federation requests) the
            request was authenticated as, once known.
    """

    def __init__(
        self,
        channel: HTTPChannel,
        site: "BlurhomeSite",
        our_server_name: str,
        *args: Any,
        max_request_body_size: int = 1024,
        **kw: Any,
    ):
        super().__init__(channel, *args, **kw)
        self._max_request_body_size = max_request_body_size
        self.blurhome_site = site
        self.reactor = site.reactor
        self.our_server_name = our_server_name

        # The requester, if authenticated. For federation requests this is the
        # server name, for client requests this is the Requester object.
        self.requester: Optional[Union[Requester, str]] = None

        self.request_metrics: Optional[RequestMetrics] = None

        # the time when we started processing the request, and when it finished
        # being processed (not including any time spent streaming the response).
        self.start_time = 0.0
        self._processing_finished_time: Optional[float] = None

        # what time we finished sending the response to the client (or the connection
        # dropped)
        self.finish_time: Optional[float] = None

        # we can't yet create the request id, because we don't know the method
        self.request_seq = _next_seq()

        # whether an asynchronous request handler has called processing()
        self._is_processing = False

        # The deferred for the coroutine rendering this request, if any.
        self.render_deferred: Optional["Deferred[None]"] = None

    def __repr__(self) -> str:
        # We overwrite this so that we don't log ``access_token``
        return "<%s at 0x%x method=%r uri=%r clientproto=%r site=%r>" % (
            self.__class__.__name__,
            id(self),
            self.get_method(),
            self.get_redacted_uri(),
            self.clientproto.decode("ascii", errors="replace"),
            self.blurhome_site.site_tag,
        )

    def handleContentChunk(self, data: bytes) -> None:
        # we should have a `content` by now.
        assert self.content, "handleContentChunk() called before gotLength()"
        if self.content.tell() + len(data) > self._max_request_body_size:
            logger.warning(
                "Aborting connection from %s because the request exceeds maximum size",
                self.client,
            )
            self.transport.abortConnection()
            return
        super().handleContentChunk(data)

    def get_request_id(self) -> str:
        return "%s-%i" % (self.get_method(), self.request_seq)

    def get_redacted_uri(self) -> str:
        """Gets the redacted URI associated with the request (or placeholder if the URI
        has not yet been received).

        Note: This is necessary as the placeholder value in twisted is str
        rather than bytes, so we need to sanitise `self.uri`.

        Returns:
            The redacted URI as a string.
        """
        uri: Union[bytes, str] = self.uri
        if isinstance(uri, bytes):
            uri = uri.decode("ascii", errors="replace")
        return redact_uri(uri)

    def get_method(self) -> str:
        """Gets the method associated with the request (or placeholder if method
        has not yet been received).

        Note: This is necessary as the placeholder value in twisted is str
        rather than bytes, so we need to sanitise `self.method`.

        Returns:
            The request method as a string.
        """
        method: Union[bytes, str] = self.method
        if isinstance(method, bytes):
            return self.method.decode("ascii")
        return method

    def get_authenticated_entity(self) -> Optional[str]:
        """
        Get the "authenticated" entity of the request, which might be the user
        performing the action or the server making a federation request.

        Returns:
            The user (or server) ID, or None if the request was not authenticated.
        """
        if isinstance(self.requester, str):
            return self.requester
        elif self.requester is not None:
            return self.requester.user.to_string()

        return None

    def render(self, resrc: Resource) -> None:
        # this is called once a Resource has been found to serve the request; in our
        # case the Resource in question will normally be a JsonResource.

        self.start_time = time.time()
        self.request_metrics = RequestMetrics(self.our_server_name)

        # we start the request metrics timer here with an initial stab
        # at the servlet name. For most requests that name will be
        # JsonResource (or a subclass), and JsonResource._async_render
        # will update it once it picks a servlet.
        self.request_metrics.start(
            self.start_time, name=resrc.__class__.__name__, method=self.get_method()
        )

        self.setHeader(b"Server", self.blurhome_site.server_version_string)

        with request_context(self.get_request_id()):
            super().render(resrc)

    @contextlib.contextmanager
    def processing(self) -> Generator[None, None, None]:
        """Record the fact that we are processing this request.

        Returns a context manager; the correct way to use this is:

        async def handle_request(request):
            with request.processing():
                await really_handle_the_request()

        Once the context manager is closed, the completion of the request will be logged,
        and the various metrics will be updated.
        """
        if self._is_processing:
            raise RuntimeError("Request is already processing")
        self._is_processing = True

        try:
            with request_context(self.get_request_id()):
                yield
        except Exception:
            # this should already have been caught, and sent back to the client as a 500.
            logger.exception(
                "Asynchronous message handler raised an uncaught exception"
            )
        finally:
            # the request handler has finished its work and either sent the whole response
            # back, or handed over responsibility to a Producer.

            self._processing_finished_time = time.time()
            self._is_processing = False

            # if we've already sent the response, log it now; otherwise, we wait for the
            # response to be sent.
            if self.finish_time is not None:
                self._finished_processing()

    def finish(self) -> None:
        """Called when all response data has been written to this Request.

        Overrides twisted.web.server.Request.finish to record the finish time and do
        logging.
        """
        self.finish_time = time.time()
        Request.finish(self)
        if not self._is_processing:
            self._finished_processing()

    def connectionLost(self, reason: Union[Failure, Exception]) -> None:
        """Called when the client connection is closed before the response is written.

        Overrides twisted.web.server.Request.connectionLost to record the finish time and
        do logging.
        """
        # There is a bug in Twisted where reason is not wrapped in a Failure object
        # Detect this and wrap it manually as a workaround
        if not isinstance(reason, Failure):
            reason = Failure(reason)

        self.finish_time = time.time()
        Request.connectionLost(self, reason)

        if self.content is None:
            logger.info(
                "Connection from %s lost before request headers were read", self.client
            )
            return

        # we only get here if the connection to the client drops before we send
        # the response.
        with request_context(self.get_request_id()):
            logger.info(
                "Connection from client lost before response was sent: %s",
                reason.getErrorMessage(),
            )

        # If the request is still being processed, cancel the handler. The
        # request will be logged once processing finishes.
        if self.render_deferred is not None and not self.render_deferred.called:
            self.render_deferred.cancel()

        if not self._is_processing:
            self._finished_processing()

    def _finished_processing(self) -> None:
        """Log the completion of this request and update the metrics"""
        if self.request_metrics is None:
            # the request was never rendered, so there is nothing to report
            return

        assert self.finish_time is not None

        usage_end_time = self.finish_time
        if self._processing_finished_time is None:
            # we completed the request without anything calling processing()
            self._processing_finished_time = usage_end_time

        # the time between receiving the request and the request handler finishing
        processing_time = self._processing_finished_time - self.start_time

        # the time between the request handler finishing and the response being sent
        # to the client (nb may be negative)
        response_send_time = self.finish_time - self._processing_finished_time

        user_agent = self.get_user_agent("-")

        # some requests are processed but the client disconnected before
        # the response was finished
        code = str(self.code)
        if not self.finished:
            code += "!"

        authenticated_entity = self.get_authenticated_entity()
        if authenticated_entity is None:
            requester = "-"
        else:
            requester = authenticated_entity

        with request_context(self.get_request_id()):
            self.blurhome_site.access_logger.info(
                "%s - %s - {%s}"
                " Processed request: %.3fsec/%.3fsec"
                ' %iB %s "%s %s %s" "%s"',
                self.get_client_ip_if_available(),
                self.blurhome_site.site_tag,
                requester,
                processing_time,
                response_send_time,
                self.sentLength,
                code,
                self.get_method(),
                self.get_redacted_uri(),
                self.clientproto.decode("ascii", errors="replace"),
                user_agent,
            )

        self.request_metrics.stop(self.finish_time, self.code, self.sentLength)
        # only report each request once
        self.request_metrics = None

    def get_user_agent(self, default: str) -> str:
        """Return the last User-Agent header, or the given default."""
        user_agent = self.requestHeaders.getRawHeaders(b"User-Agent")
        if user_agent:
            return user_agent[-1].decode("ascii", "replace")
        return default

    def get_client_ip_if_available(self) -> str:
        """Logging helper. Return something useful when a client IP is not retrievable
        from a unix socket.

        In practice, this returns the socket file path on a BlurhomeRequest if using a
        unix socket and the normal IP address for TCP sockets.

        """
        # getClientAddress().host returns a proper IP address for a TCP socket. But
        # unix sockets have no concept of IP addresses or ports and return a
        # UNIXAddress containing a 'None' value. In order to get something usable for
        # logs(where this is used) get the unix socket file. getHost() returns a
        # UNIXAddress containing a value of the socket file and has an instance
        # variable of 'name' encoded as a byte string containing the path we want.
        # Decode to utf-8 so it looks nice.
        if isinstance(self.getClientAddress(), UNIXAddress):
            return self.getHost().name.decode("utf-8")
        else:
            return self.getClientAddress().host


class XForwardedForRequest(BlurhomeRequest):
    """Request object which honours proxy headers

    Extends BlurhomeRequest to replace getClientAddress() with the address
    given in X-Forwarded-For.
    """

    def getClientAddress(self) -> IAddress:
        headers = self.requestHeaders.getRawHeaders(b"x-forwarded-for")
        if headers:
            forwarded_for = headers[0].split(b",")[0].strip().decode("ascii")
            return _XForwardedForAddress(forwarded_for)
        return super().getClientAddress()


@attr.s(frozen=True, slots=True, auto_attribs=True)
class _XForwardedForAddress:
    host: str


class BlurhomeSite(Site):
    """
    Subclass of a twisted http Site that does access logging with python's
    standard logging
    """

    def __init__(
        self,
        logger_name: str,
        site_tag: str,
        config: ListenerConfig,
        resource: IResource,
        server_version_string: str,
        max_request_body_size: int,
        reactor: Any,
        our_server_name: str,
    ):
        """

        Args:
            logger_name:  The name of the logger to use for access logs.
            site_tag:  A tag to use for this site - mostly in access logs.
            config:  Configuration for the HTTP listener corresponding to this site
            resource:  The base of the resource tree to be used for serving requests on
                this site
            server_version_string: A string to present for the Server header
            max_request_body_size: Maximum request body length to allow before
                dropping the connection
            reactor: reactor to be used to manage connection timeouts
            our_server_name: the homeserver name, used to label metrics
        """
        Site.__init__(self, resource, reactor=reactor)

        self.site_tag = site_tag
        self.reactor = reactor

        assert config.http_options is not None
        proxied = config.http_options.x_forwarded
        request_class = XForwardedForRequest if proxied else BlurhomeRequest

        def request_factory(channel: HTTPChannel, queued: bool) -> Request:
            return request_class(
                channel,
                self,
                our_server_name,
                max_request_body_size=max_request_body_size,
                queued=queued,
            )

        self.requestFactory = request_factory  # type: ignore
        self.access_logger = logging.getLogger(logger_name)
        self.server_version_string = server_version_string.encode("ascii")

    def log(self, request: BlurhomeRequest) -> None:  # type: ignore[override]
        pass

