#
# This file is licensed under the Affero General Public License (AGPL) version 3.
#
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
#

from typing import (
    Any,
    ClassVar,
    Collection,
    Dict,
    List,
    Mapping,
    Optional,
    Tuple,
    Type,
    TypeVar,
    Union,
)

import attr

from blurhome.api.errors import Codes, MatrixError
from blurhome.util.stringutils import parse_and_validate_server_name

# JSON types. These could be made stronger, but will do for now.
# A "simple" (canonical) JSON value.
SimpleJsonValue = Optional[Union[str, int, bool]]
JsonValue = Union[List[SimpleJsonValue], Tuple[SimpleJsonValue, ...], SimpleJsonValue]
# A JSON-serialisable dict.
JsonDict = Dict[str, Any]
# A JSON-serialisable mapping; roughly speaking an immutable JSONDict.
# Useful when you have a TypedDict which isn't going to be mutated and you don't want
# to cast to JsonDict everywhere.
JsonMapping = Mapping[str, Any]

# Collection[str] that does not include str itself; str being a Sequence[str]
# is very misleading and results in bugs.
#
# Unfortunately there is no way to type this correctly, so we use a union of
# common collection types instead.
StrCollection = Union[Tuple[str, ...], List[str], Collection[str]]
StrSequence = Union[Tuple[str, ...], List[str]]


DS = TypeVar("DS", bound="DomainSpecificString")


@attr.s(slots=True, frozen=True, repr=False)
class DomainSpecificString:
    """Common base class among ID/name strings that have a local part and a
    domain name, prefixed with a sigil.

    Has the fields:

        'localpart' : The local part of the name (without the leading sigil)
        'domain' : The domain part of the name
    """

    SIGIL: ClassVar[str] = "???"

    localpart: str = attr.ib()
    domain: str = attr.ib()

    # Because this is a frozen class, it is deeply immutable.
    def __copy__(self: DS) -> DS:
        return self

    def __deepcopy__(self: DS, memo: Dict[str, object]) -> DS:
        return self

    @classmethod
    def from_string(cls: Type[DS], s: str) -> DS:
        """Parse the string given by 's' into a structure object."""
        if len(s) < 1 or s[0:1] != cls.SIGIL:
            raise MatrixError(
                400,
                "Expected %s string to start with '%s'" % (cls.__name__, cls.SIGIL),
                Codes.INVALID_PARAM,
            )

        parts = s[1:].split(":", 1)
        if len(parts) != 2:
            raise MatrixError(
                400,
                "Expected %s of the form '%slocalname:domain'"
                % (cls.__name__, cls.SIGIL),
                Codes.INVALID_PARAM,
            )

        domain = parts[1]
        # This code will need changing if we want to support multiple domain
        # names on one HS
        return cls(localpart=parts[0], domain=domain)

    def to_string(self) -> str:
        """Return a string encoding the fields of the structure object."""
        return "%s%s:%s" % (self.SIGIL, self.localpart, self.domain)

    @classmethod
    def is_valid(cls: Type[DS], s: str) -> bool:
        """Parses the input string and attempts to ensure it is valid."""
        try:
            obj = cls.from_string(s)
            if not obj.localpart:
                return False
            # Apply additional validation to the domain. This is only done
            # during  is_valid (and not part of from_string) since it is
            # possible for invalid data to exist in room-state, etc.
            parse_and_validate_server_name(obj.domain)
            return True
        except Exception:
            return False

    __repr__ = to_string


@attr.s(slots=True, frozen=True, repr=False)
class UserID(DomainSpecificString):
    """Structure representing a user ID."""

    SIGIL = "@"


@attr.s(slots=True, frozen=True, repr=False)
class RoomID(DomainSpecificString):
    """Structure representing a room id."""

    SIGIL = "!"


@attr.s(slots=True, frozen=True, auto_attribs=True)
class Requester:
    """
    Represents the user making a request

    Attributes:
        user: id of the user making the request
        access_token_id: *ID* of the access token used for this request, or
            None for appservices, guests, and tokens generated by the admin API
        is_guest: True if the user making this request is a guest user
    """

    user: UserID
    access_token_id: Optional[int]
    is_guest: bool = False


def create_requester(
    user_id: Union[str, "UserID"],
    access_token_id: Optional[int] = None,
    is_guest: bool = False,
) -> Requester:
    """
    Create a new ``Requester`` object

    Args:
        user_id: id of the user making the request
        access_token_id: *ID* of the access token used for this
            request, or None for appservices, guests, and tokens generated
            by the admin API
        is_guest: True if the user making this request is a guest user

    Returns:
        Requester
    """
    if not isinstance(user_id, UserID):
        user_id = UserID.from_string(user_id)

    return Requester(user=user_id, access_token_id=access_token_id, is_guest=is_guest)


def get_domain_from_id(string: str) -> str:
    idx = string.find(":")
    if idx == -1:
        raise MatrixError(400, "Invalid ID: %r" % (string,), Codes.INVALID_PARAM)
    return string[idx + 1 :]


def get_localpart_from_id(string: str) -> str:
    idx = string.find(":")
    if idx == -1:
        raise MatrixError(400, "Invalid ID: %r" % (string,), Codes.INVALID_PARAM)
    return string[1:idx]


__all__ = [
    "JsonDict",
    "JsonMapping",
    "JsonValue",
    "Requester",
    "RoomID",
    "StrCollection",
    "StrSequence",
    "UserID",
    "create_requester",
    "get_domain_from_id",
    "get_localpart_from_id",
]
