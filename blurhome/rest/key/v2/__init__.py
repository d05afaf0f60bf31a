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

from typing import TYPE_CHECKING

from blurhome.http.server import JsonResource
from blurhome.rest.key.v2 import local_key

if TYPE_CHECKING:
    from blurhome.server import HomeServer


class KeyResource(JsonResource):
    def __init__(self, hs: "HomeServer"):
        super().__init__(hs, canonical_json=True)
        local_key.register_servlets(hs, self)
