"""Cloudflare DNS updater for the server's A record."""

from __future__ import annotations

from functools import cached_property
from typing import Any

import httpx
from loguru import logger

from dormant.config import DnsSettings
from dormant.exceptions import ConfigurationError, UpstreamError

log = logger.bind(component="dns")


class CloudflareDnsUpdater:
    """DnsUpdater that PUTs the A record through the Cloudflare v4 API."""

    def __init__(self, settings: DnsSettings, client: httpx.Client | None = None) -> None:
        self._settings = settings
        self._client = client

    @cached_property
    def client(self) -> httpx.Client:
        return self._client or httpx.Client(timeout=30)

    @property
    def domain(self) -> str | None:
        return self._settings.domain

    def _record_url(self) -> str:
        s = self._settings
        return f"{s.api_base}/zones/{s.zone_id}/dns_records/{s.record_id}"

    def update(self, ip: str) -> None:
        s = self._settings
        if not s.configured:
            missing = [
                name
                for name, value in (
                    ("zone_id", s.zone_id),
                    ("record_id", s.record_id),
                    ("domain", s.domain),
                    ("api_token", s.api_token),
                )
                if not value
            ]
            raise ConfigurationError(f"DNS update needs dns.{', dns.'.join(missing)}")

        payload: dict[str, Any] = {
            "type": "A",
            "name": s.domain,
            "content": ip,
            "ttl": s.ttl,
            "proxied": s.proxied,
        }

        log.info("Pointing {domain} at {ip}", domain=s.domain, ip=ip)
        try:
            response = self.client.put(
                self._record_url(),
                json=payload,
                headers={"Authorization": f"Bearer {s.api_token}"},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            log.error(
                "Cloudflare API error {status}: {body}",
                status=e.response.status_code,
                body=e.response.text,
            )
            raise UpstreamError(
                f"Failed to update DNS record for {s.domain}. Status: {e.response.status_code}"
            ) from e
        except httpx.RequestError as e:
            raise UpstreamError(f"Failed to reach Cloudflare API: {e}") from e

        log.info("Updated DNS record for {domain}", domain=s.domain)
