#
# This file is licensed under the Affero General Public License (AGPL) version 3.
#
# Copyright 2018 New Vector Ltd
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
# [This file includes modifications made by New Vector Limited]
#
#
from typing import Dict

from prometheus_client import generate_latest
from prometheus_client.core import REGISTRY
from prometheus_client.parser import text_string_to_metric_families

from twisted.test.proto_helpers import MemoryReactor

from blurhome.api.constants import ProfileFields
from blurhome.metrics import MetricsResource
from blurhome.rest.client import login, media
from blurhome.server import HomeServer
from blurhome.types import UserID, create_requester
from blurhome.util import Clock

from tests import unittest
from tests.server import FakeSite, make_request
from tests.test_utils import make_png


def get_sample_value(sample_name: str, labels: Dict[str, str]) -> float:
    """Find the value of a sample in the global registry, or 0 if there is no
    sample with that name carrying all of `labels`."""
    text = generate_latest(REGISTRY).decode("utf-8")
    for family in text_string_to_metric_families(text):
        for sample in family.samples:
            if sample.name != sample_name:
                continue
            if all(sample.labels.get(k) == v for k, v in labels.items()):
                return sample.value
    return 0


class MediaMetricsTestCase(unittest.HomeserverTestCase):
    servlets = [media.register_legacy_servlets, login.register_servlets]

    def prepare(self, reactor: MemoryReactor, clock: Clock, hs: HomeServer) -> None:
        self.register_user("user", "pass")
        self.tok = self.login("user", "pass")

    def _get_outcome_count(self, outcome: str) -> float:
        return get_sample_value(
            "blurhome_media_blurhash_generated_total",
            {"outcome": outcome, "server_name": self.hs.hostname},
        )

    def test_generated(self) -> None:
        uploads_before = get_sample_value(
            "blurhome_media_uploads_total", {"server_name": self.hs.hostname}
        )
        before = self._get_outcome_count("generated")

        self.helper.upload_media(make_png(8, 8), tok=self.tok, generate_blurhash=True)

        self.assertEqual(self._get_outcome_count("generated"), before + 1)
        self.assertEqual(
            get_sample_value(
                "blurhome_media_uploads_total", {"server_name": self.hs.hostname}
            ),
            uploads_before + 1,
        )

    def test_failed(self) -> None:
        before = self._get_outcome_count("failed")

        self.helper.upload_media(
            b"definitely not a png", tok=self.tok, generate_blurhash=True
        )

        self.assertEqual(self._get_outcome_count("failed"), before + 1)

    @unittest.override_config({"blurhash": {"enabled": False}})
    def test_skipped(self) -> None:
        before = self._get_outcome_count("skipped")

        self.helper.upload_media(make_png(8, 8), tok=self.tok, generate_blurhash=True)

        self.assertEqual(self._get_outcome_count("skipped"), before + 1)

    def test_not_requested(self) -> None:
        """Uploads which do not ask for a blurhash are not counted."""
        before = {
            outcome: self._get_outcome_count(outcome)
            for outcome in ("generated", "failed", "skipped")
        }

        self.helper.upload_media(make_png(8, 8), tok=self.tok)

        for outcome, value in before.items():
            self.assertEqual(self._get_outcome_count(outcome), value)


class ProfileMetricsTestCase(unittest.HomeserverTestCase):
    def test_field_updates_counted(self) -> None:
        user_id = self.register_user("kermit", "monkey")
        user = UserID.from_string(user_id)
        labels = {"field": ProfileFields.BLURHASH, "server_name": self.hs.hostname}
        before = get_sample_value("blurhome_profile_field_updates_total", labels)

        self.get_success(
            self.hs.get_profile_handler().set_blurhash(
                user, create_requester(user), "LEHV6nWB2yk8pyo0adR*.7kCMdnj"
            )
        )

        self.assertEqual(
            get_sample_value("blurhome_profile_field_updates_total", labels),
            before + 1,
        )


class FederationMetricsTestCase(unittest.HomeserverTestCase):
    def prepare(self, reactor: MemoryReactor, clock: Clock, hs: HomeServer) -> None:
        self.user_id = self.register_user("kermit", "monkey")

    def _queries(self, origin: str) -> float:
        return get_sample_value(
            "blurhome_federation_received_queries_total",
            {"type": "profile", "origin": origin, "server_name": self.hs.hostname},
        )

    def test_unlisted_origin_is_other(self) -> None:
        before = self._queries("other")

        self.get_success(
            self.hs.get_federation_server().on_query_request(
                "profile", "remote.example.com", {"user_id": self.user_id}
            )
        )

        self.assertEqual(self._queries("other"), before + 1)

    @unittest.override_config({"federation_metrics_domains": ["remote.example.com"]})
    def test_listed_origin(self) -> None:
        before = self._queries("remote.example.com")

        self.get_success(
            self.hs.get_federation_server().on_query_request(
                "profile", "remote.example.com", {"user_id": self.user_id}
            )
        )

        self.assertEqual(self._queries("remote.example.com"), before + 1)


class MetricsResourceTestCase(unittest.HomeserverTestCase):
    def test_scrape(self) -> None:
        site = FakeSite(MetricsResource(), self.reactor)
        channel = make_request(self.reactor, site, "GET", "/_blurhome/metrics")

        self.assertEqual(channel.code, 200, channel.result)
        self.assertEqual(
            channel.headers.getRawHeaders(b"Content-Type"),
            [b"text/plain; version=0.0.4; charset=utf-8"],
        )
        body = channel.result["body"].decode("utf-8")
        self.assertIn("blurhome_build_info", body)
