#
# This file is licensed under the Affero General Public License (AGPL) version 3.
#
# Copyright 2014-2016 OpenMarket Ltd
# Copyright 2018 New Vector Ltd
# Copyright 2019-2021 The Matrix.org Foundation C.I.C.
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

from .events import EventsStore
from .media_repository import MediaRepositoryStore
from .profile import ProfileWorkerStore
from .registration import RegistrationStore
from .room import RoomStore

logger = logging.getLogger(__name__)


class DataStore(
    EventsStore,
    RoomStore,
    RegistrationStore,
    ProfileWorkerStore,
    MediaRepositoryStore,
):
    pass
