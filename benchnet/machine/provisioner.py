from __future__ import annotations

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from benchnet.shared.errors import ProvisioningError

logger = logging.getLogger(__name__)

ACTIVE_STATUS = "active"


@dataclass
class HostSpec:
    name: str
    os: str
    plan: str
    region: str
    user_data: str = ""
    additional: Dict[str, str] = field(default_factory=dict)


@dataclass
class ProvisionedHost:
    id: str
    status: str
    ip: str = ""

    @property
    def active(self) -> bool:
        return self.status == ACTIVE_STATUS


class Provisioner(ABC):
    """External host provisioning backend."""

    @abstractmethod
    async def provision(self, spec: HostSpec) -> ProvisionedHost: ...

    @abstractmethod
    async def status(self, host_id: str) -> ProvisionedHost: ...

    @abstractmethod
    async def delete(self, host_id: str) -> None: ...

    async def close(self) -> None:
        return None


class DigitalOceanProvisioner(Provisioner):
    """
    Async client for the DigitalOcean droplets API.

    - Bearer token auth (``token`` or ``DIGITALOCEAN_TOKEN``)
    - Retries transient errors on idempotent calls (status, delete) with
      exponential backoff; creation is never retried to avoid double billing
    """

    API_URL = "https://api.digitalocean.com/v2"

    def __init__(
        self,
        *,
        token: Optional[str] = None,
        api_url: Optional[str] = None,
        timeout_seconds: float = 30.0,
        max_retries: int = 2,
        tags: Optional[List[str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.token = token or os.getenv("DIGITALOCEAN_TOKEN")
        self.max_retries = max_retries
        self.tags = list(tags) if tags is not None else ["benchnet"]
        self._client = httpx.AsyncClient(
            base_url=api_url or self.API_URL,
            timeout=timeout_seconds,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "DigitalOceanProvisioner":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Provisioner
    # ------------------------------------------------------------------
    async def provision(self, spec: HostSpec) -> ProvisionedHost:
        body: Dict[str, Any] = {
            "name": spec.name,
            "region": spec.region,
            "size": spec.plan,
            "image": spec.os,
            "tags": self.tags,
        }
        if spec.user_data:
            body["user_data"] = spec.user_data
        body.update(spec.additional)
        payload = await self._request("POST", "/droplets", json=body, retry=False)
        host = _parse_droplet(payload)
        logger.info({"provisioner": {"provisioned": spec.name, "id": host.id, "region": spec.region}})
        return host

    async def status(self, host_id: str) -> ProvisionedHost:
        payload = await self._request("GET", f"/droplets/{host_id}")
        return _parse_droplet(payload)

    async def delete(self, host_id: str) -> None:
        await self._request("DELETE", f"/droplets/{host_id}")
        logger.info({"provisioner": {"deleted": host_id}})

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        retry: bool = True,
    ) -> Any:
        if not self.token:
            raise ProvisioningError("DIGITALOCEAN_TOKEN is required to provision hosts.")
        headers = {"Authorization": f"Bearer {self.token}"}
        attempt = 0
        backoff = 0.5
        while True:
            try:
                resp = await self._client.request(method, path, json=json, headers=headers)
                resp.raise_for_status()
                if resp.status_code == 204 or not resp.content:
                    return None
                return resp.json()
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code
                if not retry or status < 500 or attempt >= self.max_retries:
                    raise ProvisioningError(
                        f"{method} {path} returned {status}: {exc.response.text[:200]}"
                    ) from exc
            except httpx.RequestError as exc:
                if not retry or attempt >= self.max_retries:
                    raise ProvisioningError(f"{method} {path} failed: {exc}") from exc
            await asyncio.sleep(backoff)
            attempt += 1
            backoff *= 2


def _parse_droplet(payload: Any) -> ProvisionedHost:
    if not isinstance(payload, dict) or not isinstance(payload.get("droplet"), dict):
        raise ProvisioningError(f"unexpected droplet payload: {str(payload)[:200]}")
    droplet = payload["droplet"]
    ip = ""
    for network in (droplet.get("networks") or {}).get("v4", []) or []:
        if network.get("type") == "public" and network.get("ip_address"):
            ip = network["ip_address"]
            break
    return ProvisionedHost(id=str(droplet.get("id", "")), status=str(droplet.get("status", "")), ip=ip)


__all__ = [
    "ACTIVE_STATUS",
    "DigitalOceanProvisioner",
    "HostSpec",
    "ProvisionedHost",
    "Provisioner",
]
