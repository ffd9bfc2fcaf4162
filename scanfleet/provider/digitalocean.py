"""
DigitalOcean droplet provider.

Talks to the DigitalOcean v2 REST API over a ``requests`` session:

    POST   /v2/droplets                 create (name, region, size, image,
                                        user_data, tags)
    GET    /v2/droplets/{id}            poll status + networks
    DELETE /v2/droplets/{id}            destroy one
    GET    /v2/droplets?tag_name=...    list by tag
    DELETE /v2/droplets?tag_name=...    destroy by tag

Rate limiting (429), server errors (5xx) and connection failures are
reported as transient :class:`ProviderError`; other 4xx responses are
permanent.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import requests

from scanfleet.bootstrap import BootstrapPayload, render_user_data
from scanfleet.errors import ProviderError
from scanfleet.provider.base import (
    FleetProvider,
    NodeHandle,
    ProviderNodeStatus,
)

log = logging.getLogger("scanfleet.provider.digitalocean")

DEFAULT_API_URL = "https://api.digitalocean.com/v2"


@dataclass
class DigitalOceanConfig:
    """Droplet settings.

    Attributes:
        api_token: Personal access token (DO_API_TOKEN)
        region: Region slug for new droplets
        size: Size slug for new droplets
        image: Image slug for new droplets
        api_url: API base URL
        timeout: Per-request timeout in seconds
    """
    api_token: str = ""
    region: str = "nyc3"
    size: str = "s-1vcpu-1gb"
    image: str = "ubuntu-20-04-x64"
    api_url: str = DEFAULT_API_URL
    timeout: float = 30.0


class DigitalOceanProvider(FleetProvider):
    """FleetProvider backed by DigitalOcean droplets."""

    def __init__(self, config: DigitalOceanConfig,
                 session: requests.Session | None = None) -> None:
        if not config.api_token:
            raise ProviderError("DigitalOcean API token is required")
        self.config = config
        self._session = session or requests.Session()
        self._session.headers.update({
            "Authorization": f"Bearer {config.api_token}",
            "Content-Type": "application/json",
        })

    # -- HTTP plumbing -----------------------------------------------------

    def _request(self, method: str, path: str, *,
                 params: dict[str, Any] | None = None,
                 json_body: dict[str, Any] | None = None,
                 allow_404: bool = False) -> dict[str, Any]:
        url = f"{self.config.api_url.rstrip('/')}{path}"
        try:
            resp = self._session.request(
                method, url, params=params, json=json_body,
                timeout=self.config.timeout,
            )
        except requests.RequestException as e:
            raise ProviderError(f"{method} {path} failed: {e}",
                                transient=True) from e

        if allow_404 and resp.status_code == 404:
            return {}

        if resp.status_code >= 400:
            transient = resp.status_code == 429 or resp.status_code >= 500
            raise ProviderError(
                f"{method} {path} returned {resp.status_code}: {resp.text[:200]}",
                transient=transient,
                status_code=resp.status_code,
            )

        if resp.status_code == 204 or not resp.content:
            return {}
        return resp.json()

    # -- FleetProvider -----------------------------------------------------

    def create(self, name: str, tags: list[str],
               payload: BootstrapPayload) -> NodeHandle:
        body = {
            "name": name,
            "region": self.config.region,
            "size": self.config.size,
            "image": self.config.image,
            "user_data": render_user_data(payload),
            "tags": list(tags),
        }
        data = self._request("POST", "/droplets", json_body=body)
        droplet = data.get("droplet") or {}
        droplet_id = droplet.get("id")
        if droplet_id is None:
            raise ProviderError(f"Create response for {name} carried no droplet id")
        log.info("Created droplet %s for %s", droplet_id, name)
        return NodeHandle(handle_id=str(droplet_id), name=droplet.get("name", name))

    def get_status(self, handle: NodeHandle) -> ProviderNodeStatus:
        data = self._request("GET", f"/droplets/{handle.handle_id}")
        droplet = data.get("droplet") or {}
        return ProviderNodeStatus(
            state=droplet.get("status", ""),
            address=public_ipv4(droplet),
        )

    def delete(self, handle: NodeHandle) -> None:
        self._request("DELETE", f"/droplets/{handle.handle_id}", allow_404=True)
        log.info("Destroyed droplet %s (%s)", handle.handle_id, handle.name)

    def delete_by_tag(self, tag: str) -> int:
        listing = self._request("GET", "/droplets", params={"tag_name": tag})
        count = len(listing.get("droplets") or [])
        if count:
            self._request("DELETE", "/droplets", params={"tag_name": tag},
                          allow_404=True)
            log.info("Destroyed %d droplet(s) tagged %s", count, tag)
        return count


def public_ipv4(droplet: dict[str, Any]) -> str:
    """Extract the public IPv4 address from a droplet document."""
    networks = droplet.get("networks") or {}
    for net in networks.get("v4") or []:
        if net.get("type") == "public" and net.get("ip_address"):
            return net["ip_address"]
    return ""
