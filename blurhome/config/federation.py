# Copyright 2020 The Matrix.org Foundation C.I.C.
# Copyright 2026 The Blurhome Contributors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
from typing import Any, Dict, Optional

from blurhome.config._base import Config
from blurhome.config._util import validate_config
from blurhome.types import JsonDict


class FederationConfig(Config):
    section = "federation"

    def read_config(self, config: JsonDict, **kwargs: Any) -> None:
        self.federation_domain_whitelist: Optional[dict] = None
        federation_domain_whitelist = config.get("federation_domain_whitelist", None)

        if federation_domain_whitelist is not None:
            # turn the whitelist into a hash for speed of lookup
            self.federation_domain_whitelist = {}

            for domain in federation_domain_whitelist:
                self.federation_domain_whitelist[domain] = True

        federation_metrics_domains = config.get("federation_metrics_domains") or []
        validate_config(
            _METRICS_FOR_DOMAINS_SCHEMA,
            federation_metrics_domains,
            ("federation_metrics_domains",),
        )
        self.federation_metrics_domains = set(federation_metrics_domains)

        self.allow_profile_lookup_over_federation = config.get(
            "allow_profile_lookup_over_federation", True
        )

        # Base URLs to use instead of `https://<server_name>` when talking to
        # particular servers, e.g. `{"remote.example": "http://localhost:8448"}`.
        federation_destination_base_urls = (
            config.get("federation_destination_base_urls") or {}
        )
        validate_config(
            _DESTINATION_BASE_URLS_SCHEMA,
            federation_destination_base_urls,
            ("federation_destination_base_urls",),
        )
        self.federation_destination_base_urls: Dict[str, str] = {
            server_name: base_url.rstrip("/")
            for server_name, base_url in federation_destination_base_urls.items()
        }

        # Timeout for outbound federation requests, in milliseconds.
        self.federation_request_timeout = self.parse_duration(
            config.get("federation_request_timeout", "60s")
        )
        if self.federation_request_timeout < 1000:
            self.federation_request_timeout = 1000

    def is_domain_allowed(self, server_name: str) -> bool:
        """Whether we are allowed to federate with the given server."""
        if self.federation_domain_whitelist is None:
            return True
        return server_name in self.federation_domain_whitelist


_METRICS_FOR_DOMAINS_SCHEMA = {"type": "array", "items": {"type": "string"}}

_DESTINATION_BASE_URLS_SCHEMA = {
    "type": "object",
    "additionalProperties": {"type": "string", "pattern": "^https?://"},
}
