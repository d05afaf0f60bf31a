#
# This file is licensed under the Affero General Public License (AGPL) version 3.
#
# Copyright 2015, 2016 OpenMarket Ltd
# Copyright 2022 The Matrix.org Foundation C.I.C.
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
import platform

from opentelemetry import metrics
from opentelemetry.exporter.prometheus import PrometheusMetricReader
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.resources import SERVICE_NAME, Resource as OtelResource
from prometheus_client import CollectorRegistry, Gauge, generate_latest
from prometheus_client.core import REGISTRY

from twisted.python.threadpool import ThreadPool
from twisted.web.resource import Resource
from twisted.web.server import Request

from blurhome import __version__

logger = logging.getLogger(__name__)

METRICS_PREFIX = "/_blurhome/metrics"

SERVER_NAME_LABEL = "server_name"
"""
The `server_name` label is used to identify the homeserver that the metrics correspond
to. Because we support multiple homeservers running in the same process (as the tests
do) and all metrics are in a single global `REGISTRY`, we need to manually label any
metrics.

This should be set to the homeserver name (`hs.hostname`).
"""

CONTENT_TYPE_LATEST = "text/plain; version=0.0.4; charset=utf-8"
"""
Content type of the latest text format for Prometheus metrics.

Pulled directly from the prometheus_client library.
"""

# The otel meter provider exports through a prometheus reader, which registers
# itself as a collector on the global prometheus `REGISTRY`. Scraping
# `MetricsResource` therefore returns both the otel instruments below and any
# native prometheus_client metrics.
resource = OtelResource(attributes={SERVICE_NAME: "blurhome"})
reader = PrometheusMetricReader()
provider = MeterProvider(resource=resource, metric_readers=[reader])
metrics.set_meter_provider(provider)
# Global meter for registering otel metrics
meter = provider.get_meter("blurhome-otel-meter")


# Media ingestion.
media_upload_counter = meter.create_counter(
    "blurhome_media_uploads",
    description="Number of local media uploads stored",
)

blurhash_outcome_counter = meter.create_counter(
    "blurhome_media_blurhash_generated",
    description=(
        "Outcome of blurhash computation for uploads, labelled by `outcome`: "
        "generated, failed or skipped"
    ),
)

blurhash_generation_timer = meter.create_histogram(
    "blurhome_media_blurhash_generation_time",
    unit="sec",
    description="Time taken to decode an upload and compute its blurhash",
)

# Profiles.
profile_field_update_counter = meter.create_counter(
    "blurhome_profile_field_updates",
    description="Number of profile field writes, labelled by `field`",
)

# Federation.
federation_received_queries_counter = meter.create_counter(
    "blurhome_federation_received_queries",
    description=(
        "Number of inbound federation queries, labelled by `type` and `origin`. "
        "Origins outside `federation_metrics_domains` are counted as `other`"
    ),
)


# Build info of the running server.
#
# This is a process-level metric, so it does not have the `SERVER_NAME_LABEL`.
build_info = Gauge(
    "blurhome_build_info", "Build information", ["pythonversion", "version", "osversion"]
)
build_info.labels(
    " ".join([platform.python_implementation(), platform.python_version()]),
    __version__,
    " ".join([platform.system(), platform.release()]),
).set(1)

threadpool_total_threads = Gauge(
    "blurhome_threadpool_total_threads",
    "Total number of threads currently in the threadpool",
    labelnames=["name", SERVER_NAME_LABEL],
)

threadpool_total_working_threads = Gauge(
    "blurhome_threadpool_working_threads",
    "Number of threads currently working in the threadpool",
    labelnames=["name", SERVER_NAME_LABEL],
)

threadpool_total_max_threads = Gauge(
    "blurhome_threadpool_max_threads",
    "Maximum number of threads configured in the threadpool",
    labelnames=["name", SERVER_NAME_LABEL],
)


def register_threadpool(*, name: str, server_name: str, threadpool: ThreadPool) -> None:
    """
    Add metrics for the threadpool.

    Args:
        name: The name of the threadpool, used to identify it in the metrics.
        server_name: The homeserver name (used to label metrics) (this should be `hs.hostname`).
        threadpool: The threadpool to register metrics for.
    """

    threadpool_total_max_threads.labels(
        name=name, **{SERVER_NAME_LABEL: server_name}
    ).set(threadpool.max)

    threadpool_total_threads.labels(
        name=name, **{SERVER_NAME_LABEL: server_name}
    ).set_function(lambda: len(threadpool.threads))
    threadpool_total_working_threads.labels(
        name=name, **{SERVER_NAME_LABEL: server_name}
    ).set_function(lambda: len(threadpool.working))


class MetricsResource(Resource):
    """
    Twisted ``Resource`` that serves prometheus metrics.
    """

    isLeaf = True

    def __init__(self, registry: CollectorRegistry = REGISTRY):
        super().__init__()
        self.registry = registry

    def render_GET(self, request: Request) -> bytes:
        request.setHeader(b"Content-Type", CONTENT_TYPE_LATEST.encode("ascii"))
        response = generate_latest(self.registry)
        request.setHeader(b"Content-Length", str(len(response)))
        return response


__all__ = [
    "MetricsResource",
    "generate_latest",
    "meter",
    "register_threadpool",
    "SERVER_NAME_LABEL",
]
