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

import logging
import threading
from typing import Set

from prometheus_client import Gauge

from blurhome.metrics import SERVER_NAME_LABEL, meter

logger = logging.getLogger(__name__)


# total number of responses served, split by method/servlet
response_count = meter.create_counter(
    "blurhome_http_server_response_count",
)

requests_counter = meter.create_counter(
    "blurhome_http_server_requests_received",
)

outgoing_responses_counter = meter.create_counter(
    "blurhome_http_server_responses",
)

response_timer = meter.create_histogram(
    "blurhome_http_server_response_time_seconds",
    unit="sec",
)

# size in bytes of the response written
response_size = meter.create_counter(
    "blurhome_http_server_response_size",
)

# The set of all in flight requests.
_in_flight_requests: Set["RequestMetrics"] = set()

# Protects the _in_flight_requests set from concurrent access
_in_flight_requests_lock = threading.Lock()


class RequestMetrics:
    def __init__(self, our_server_name: str) -> None:
        """
        Args:
            our_server_name: Our homeserver name (used to label metrics) (`hs.hostname`)
        """
        self.our_server_name = our_server_name

    def start(self, time_sec: float, name: str, method: str) -> None:
        self.start_ts = time_sec
        self.name = name
        self.method = method

        requests_counter.add(
            1, {"method": method, SERVER_NAME_LABEL: self.our_server_name}
        )

        with _in_flight_requests_lock:
            _in_flight_requests.add(self)

    def stop(self, time_sec: float, response_code: int, sent_bytes: int) -> None:
        with _in_flight_requests_lock:
            _in_flight_requests.discard(self)

        response_code_str = str(response_code)

        outgoing_responses_counter.add(
            1,
            {
                "method": self.method,
                "code": response_code_str,
                SERVER_NAME_LABEL: self.our_server_name,
            },
        )

        response_base_labels = {
            "method": self.method,
            "servlet": self.name,
            SERVER_NAME_LABEL: self.our_server_name,
        }

        response_count.add(1, response_base_labels)

        response_timer.record(
            time_sec - self.start_ts,
            {
                "code": response_code_str,
                **response_base_labels,
            },
        )

        response_size.add(sent_bytes, response_base_labels)


def in_flight_request_count() -> int:
    """Returns the number of requests which have started but not yet finished."""
    with _in_flight_requests_lock:
        return len(_in_flight_requests)


in_flight_requests_gauge = Gauge(
    "blurhome_http_server_in_flight_requests",
    "Number of requests currently being processed",
)
in_flight_requests_gauge.set_function(in_flight_request_count)
