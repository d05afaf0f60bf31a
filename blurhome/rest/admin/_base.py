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

import re
from typing import Iterable, Pattern

from blurhome.api.auth import Auth
from blurhome.api.errors import AuthError
from blurhome.api.urls import ADMIN_PREFIX
from blurhome.http.site import BlurhomeRequest
from blurhome.types import Requester


def admin_patterns(path_regex: str, version: str = "v1") -> Iterable[Pattern]:
    """Returns the list of patterns for an admin endpoint

    Args:
        path_regex: The regex string to match. This should NOT have a ^
            as this will be prefixed.
        version: The API version of the endpoint.

    Returns:
        A list of regex patterns.
    """
    admin_prefix = "^" + ADMIN_PREFIX + "/" + version
    patterns = [re.compile(admin_prefix + path_regex)]
    return patterns


async def assert_requester_is_admin(auth: Auth, request: BlurhomeRequest) -> Requester:
    """Verify that the requester is an admin user

    Args:
        auth: Auth singleton
        request: incoming request

    Returns:
        The requester.

    Raises:
        AuthError if the requester is not a server admin
    """
    requester = await auth.get_user_by_req(request)
    if not await auth.is_server_admin(requester):
        raise AuthError(403, "You are not a server admin")
    return requester
