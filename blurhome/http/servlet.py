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

"""This module contains base REST classes for constructing REST servlets."""

import logging
from http import HTTPStatus
from typing import (
    Any,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
    overload,
)

from typing_extensions import Literal

from twisted.web.server import Request

from blurhome.api.errors import Codes, MatrixError
from blurhome.http.server import HttpServer
from blurhome.types import JsonDict
from blurhome.util import json_decoder

logger = logging.getLogger(__name__)


@overload
def parse_integer(request: Request, name: str, default: int) -> int: ...


@overload
def parse_integer(request: Request, name: str, *, required: Literal[True]) -> int: ...


@overload
def parse_integer(
    request: Request, name: str, default: Optional[int] = None, required: bool = False
) -> Optional[int]: ...


def parse_integer(
    request: Request,
    name: str,
    default: Optional[int] = None,
    required: bool = False,
    negative: bool = False,
) -> Optional[int]:
    """Parse an integer parameter from the request string

    Args:
        request: the twisted HTTP request.
        name: the name of the query parameter.
        default: value to use if the parameter is absent, defaults to None.
        required: whether to raise a 400 MatrixError if the parameter is absent,
            defaults to False.
        negative: whether to allow negative integers, defaults to False.

    Returns:
        An int value or the default.

    Raises:
        MatrixError: if the parameter is absent and required, if the
            parameter is present and not an integer, or if the
            parameter is illegitimately negative.
    """
    args: Mapping[bytes, Sequence[bytes]] = request.args  # type: ignore
    return parse_integer_from_args(args, name, default, required, negative)


def parse_integer_from_args(
    args: Mapping[bytes, Sequence[bytes]],
    name: str,
    default: Optional[int] = None,
    required: bool = False,
    negative: bool = False,
) -> Optional[int]:
    """Parse an integer parameter from the request string

    Args:
        args: A mapping of request args as bytes to a list of bytes (e.g. request.args).
        name: the name of the query parameter.
        default: value to use if the parameter is absent, defaults to None.
        required: whether to raise a 400 MatrixError if the parameter is absent,
            defaults to False.
        negative: whether to allow negative integers, defaults to False.

    Returns:
        An int value or the default.
    """
    name_bytes = name.encode("ascii")

    if name_bytes not in args:
        if required:
            message = "Missing integer query parameter %r" % (name,)
            raise MatrixError(
                HTTPStatus.BAD_REQUEST, message, errcode=Codes.MISSING_PARAM
            )

        return default

    # ensure the string only has ascii digits, and optionally a leading -
    value = args[name_bytes][0].decode("ascii", errors="replace")
    digits = value[1:] if value.startswith("-") else value
    if not digits.isascii() or not digits.isdigit():
        message = "Query parameter %r must be a string representing an integer." % (
            name,
        )
        raise MatrixError(
            HTTPStatus.BAD_REQUEST, message, errcode=Codes.INVALID_PARAM
        )

    integer = int(value)
    if not negative and integer < 0:
        message = "Query parameter %r must be a positive integer." % (name,)
        raise MatrixError(
            HTTPStatus.BAD_REQUEST, message, errcode=Codes.INVALID_PARAM
        )

    return integer


@overload
def parse_boolean(request: Request, name: str, default: bool) -> bool: ...


@overload
def parse_boolean(
    request: Request, name: str, default: Optional[bool] = None, required: bool = False
) -> Optional[bool]: ...


def parse_boolean(
    request: Request, name: str, default: Optional[bool] = None, required: bool = False
) -> Optional[bool]:
    """Parse a boolean parameter from the request query string

    Args:
        request: the twisted HTTP request.
        name: the name of the query parameter.
        default: value to use if the parameter is absent, defaults to None.
        required: whether to raise a 400 MatrixError if the parameter is absent,
            defaults to False.

    Returns:
        A bool value or the default.

    Raises:
        MatrixError: if the parameter is absent and required, or if the
            parameter is present and not one of "true" or "false".
    """
    args: Mapping[bytes, Sequence[bytes]] = request.args  # type: ignore
    return parse_boolean_from_args(args, name, default, required)


def parse_boolean_from_args(
    args: Mapping[bytes, Sequence[bytes]],
    name: str,
    default: Optional[bool] = None,
    required: bool = False,
) -> Optional[bool]:
    """Parse a boolean parameter from the request query string

    Args:
        args: A mapping of request args as bytes to a list of bytes (e.g. request.args).
        name: the name of the query parameter.
        default: value to use if the parameter is absent, defaults to None.
        required: whether to raise a 400 MatrixError if the parameter is absent,
            defaults to False.

    Returns:
        A bool value or the default.
    """
    name_bytes = name.encode("ascii")

    if name_bytes not in args:
        if not required:
            return default

        message = "Missing boolean query parameter %r" % (name,)
        raise MatrixError(
            HTTPStatus.BAD_REQUEST, message, errcode=Codes.MISSING_PARAM
        )

    value = args[name_bytes][0]
    if value == b"true":
        return True
    if value == b"false":
        return False

    message = "Boolean query parameter %r must be one of ['true', 'false']" % (
        name,
    )
    raise MatrixError(
        HTTPStatus.BAD_REQUEST, message, errcode=Codes.INVALID_PARAM
    )


@overload
def parse_string(
    request: Request,
    name: str,
    default: str,
    *,
    allowed_values: Optional[Iterable[str]] = None,
) -> str: ...


@overload
def parse_string(
    request: Request,
    name: str,
    *,
    required: Literal[True],
    allowed_values: Optional[Iterable[str]] = None,
) -> str: ...


@overload
def parse_string(
    request: Request,
    name: str,
    default: Optional[str] = None,
    required: bool = False,
    allowed_values: Optional[Iterable[str]] = None,
) -> Optional[str]: ...


def parse_string(
    request: Request,
    name: str,
    default: Optional[str] = None,
    required: bool = False,
    allowed_values: Optional[Iterable[str]] = None,
) -> Optional[str]:
    """
    Parse a string parameter from the request query string.

    The query parameter is decoded as UTF-8.

    Args:
        request: the twisted HTTP request.
        name: the name of the query parameter.
        default: value to use if the parameter is absent, defaults to None.
        required: whether to raise a 400 MatrixError if the
            parameter is absent, defaults to False.
        allowed_values: List of allowed values for the
            string, or None if any value is allowed, defaults to None. Must be
            the same type as name, if given.

    Returns:
        A string value or the default.

    Raises:
        MatrixError if the parameter is absent and required, or if the
            parameter is present, must be one of a list of allowed values and
            is not one of those allowed values.
    """
    args: Mapping[bytes, Sequence[bytes]] = request.args  # type: ignore
    name_bytes = name.encode("ascii")

    if name_bytes not in args:
        if not required:
            return default

        message = "Missing string query parameter %r" % (name,)
        raise MatrixError(
            HTTPStatus.BAD_REQUEST, message, errcode=Codes.MISSING_PARAM
        )

    try:
        value = args[name_bytes][0].decode("utf-8")
    except UnicodeDecodeError:
        raise MatrixError(
            HTTPStatus.BAD_REQUEST,
            "Query parameter %r must be valid UTF-8" % (name,),
            errcode=Codes.INVALID_PARAM,
        )

    if allowed_values is not None and value not in allowed_values:
        message = "Query parameter %r must be one of [%s]" % (
            name,
            ", ".join(repr(v) for v in allowed_values),
        )
        raise MatrixError(
            HTTPStatus.BAD_REQUEST, message, errcode=Codes.INVALID_PARAM
        )

    return value


def parse_json_value_from_request(
    request: Request, allow_empty_body: bool = False
) -> Any:
    """Parse a JSON value from the body of a twisted HTTP request.

    Args:
        request: the twisted HTTP request.
        allow_empty_body: if True, an empty body will be accepted and turned into None

    Returns:
        The JSON value.

    Raises:
        MatrixError if the request body couldn't be decoded as JSON.
    """
    try:
        content_bytes = request.content.read()  # type: ignore
    except Exception:
        raise MatrixError(HTTPStatus.BAD_REQUEST, "Error reading JSON content.")

    if not content_bytes and allow_empty_body:
        return None

    try:
        content = json_decoder.decode(content_bytes.decode("utf-8"))
    except Exception as e:
        logger.warning(
            "Unable to parse JSON from %s %s response: %s (%s)",
            request.method.decode("ascii", errors="replace"),
            request.uri.decode("ascii", errors="replace"),
            e,
            content_bytes,
        )
        raise MatrixError(
            HTTPStatus.BAD_REQUEST, "Content not JSON.", errcode=Codes.NOT_JSON
        )

    return content


def parse_json_object_from_request(
    request: Request, allow_empty_body: bool = False
) -> JsonDict:
    """Parse a JSON object from the body of a twisted HTTP request.

    Args:
        request: the twisted HTTP request.
        allow_empty_body: if True, an empty body will be accepted and turned into
           an empty dict.

    Raises:
        MatrixError if the request body couldn't be decoded as JSON or
            if it wasn't a JSON object.
    """
    content = parse_json_value_from_request(request, allow_empty_body=allow_empty_body)

    if allow_empty_body and content is None:
        return {}

    if not isinstance(content, dict):
        message = "Content must be a JSON object."
        raise MatrixError(
            HTTPStatus.BAD_REQUEST, message, errcode=Codes.BAD_JSON
        )

    return content


def assert_params_in_dict(body: JsonDict, required: Iterable[str]) -> None:
    absent = []
    for k in required:
        if k not in body:
            absent.append(k)

    if len(absent) > 0:
        raise MatrixError(
            HTTPStatus.BAD_REQUEST, "Missing params: %r" % absent, Codes.MISSING_PARAM
        )


class RestServlet:
    """A REST Servlet: an object that knows how to register its
    handlers onto a JsonResource.

    Subclasses should provide a class-level PATTERNS attribute: a list of
    compiled regexes, and implement one or more `on_<METHOD>` methods, such as
    `on_GET`. Each is called with the request and the named groups of the
    matching pattern, and should return a tuple of (code, json object).
    """

    PATTERNS: List = []

    def register(self, http_server: HttpServer) -> None:
        """Register this servlet with the given HTTP server."""
        patterns = getattr(self, "PATTERNS", None)
        if patterns:
            for method in ("GET", "PUT", "POST", "DELETE"):
                if hasattr(self, "on_%s" % (method,)):
                    servlet_classname = self.__class__.__name__
                    method_handler = getattr(self, "on_%s" % (method,))
                    http_server.register_paths(
                        method, patterns, method_handler, servlet_classname
                    )

        else:
            raise NotImplementedError("RestServlet must register something.")

