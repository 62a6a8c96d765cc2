"""Tests for machine/provisioner.py - DigitalOcean droplet client."""

from __future__ import annotations

import json

import httpx
import pytest
from unittest.mock import AsyncMock, patch

from benchnet.machine.provisioner import DigitalOceanProvisioner, HostSpec
from benchnet.shared.errors import ProvisioningError


def droplet(status="active", ip="198.51.100.7", droplet_id=101):
    networks = {"v4": [{"type": "private", "ip_address": "10.0.0.2"}]}
    if ip:
        networks["v4"].append({"type": "public", "ip_address": ip})
    return {"droplet": {"id": droplet_id, "status": status, "networks": networks}}


class Recorder:
    def __init__(self, responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture(autouse=True)
def no_backoff():
    with patch("benchnet.machine.provisioner.asyncio.sleep", new=AsyncMock()) as sleep:
        yield sleep


def make(recorder, **kwargs):
    kwargs.setdefault("token", "secret")
    return DigitalOceanProvisioner(transport=httpx.MockTransport(recorder), **kwargs)


class TestProvision:
    @pytest.mark.asyncio
    async def test_posts_droplet(self):
        recorder = Recorder([httpx.Response(202, json=droplet(status="new", ip=""))])
        provisioner = make(recorder, tags=["bench"])
        host = await provisioner.provision(
            HostSpec(name="m1", os="ubuntu", plan="s-1", region="nyc3", user_data="#!/bin/sh")
        )
        request = recorder.requests[0]
        body = json.loads(request.content)
        assert request.method == "POST"
        assert request.url.path.endswith("/droplets")
        assert request.headers["Authorization"] == "Bearer secret"
        assert body == {
            "name": "m1",
            "region": "nyc3",
            "size": "s-1",
            "image": "ubuntu",
            "tags": ["bench"],
            "user_data": "#!/bin/sh",
        }
        assert host.id == "101"
        assert not host.active
        await provisioner.close()

    @pytest.mark.asyncio
    async def test_post_never_retried(self):
        recorder = Recorder([httpx.Response(503, text="busy")])
        provisioner = make(recorder)
        with pytest.raises(ProvisioningError, match="503"):
            await provisioner.provision(HostSpec(name="m1", os="u", plan="p", region="r"))
        assert len(recorder.requests) == 1

    @pytest.mark.asyncio
    async def test_missing_token(self, monkeypatch):
        monkeypatch.delenv("DIGITALOCEAN_TOKEN", raising=False)
        recorder = Recorder([httpx.Response(200, json=droplet())])
        provisioner = DigitalOceanProvisioner(transport=httpx.MockTransport(recorder))
        with pytest.raises(ProvisioningError, match="DIGITALOCEAN_TOKEN"):
            await provisioner.provision(HostSpec(name="m1", os="u", plan="p", region="r"))
        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_token_from_env(self, monkeypatch):
        monkeypatch.setenv("DIGITALOCEAN_TOKEN", "from-env")
        recorder = Recorder([httpx.Response(200, json=droplet())])
        provisioner = DigitalOceanProvisioner(transport=httpx.MockTransport(recorder))
        await provisioner.status("101")
        assert recorder.requests[0].headers["Authorization"] == "Bearer from-env"


class TestStatus:
    @pytest.mark.asyncio
    async def test_public_ip(self):
        provisioner = make(Recorder([httpx.Response(200, json=droplet())]))
        host = await provisioner.status("101")
        assert host.active
        assert host.ip == "198.51.100.7"

    @pytest.mark.asyncio
    async def test_retries_server_errors(self, no_backoff):
        recorder = Recorder([httpx.Response(500), httpx.Response(502), httpx.Response(200, json=droplet())])
        host = await make(recorder).status("101")
        assert host.active
        assert len(recorder.requests) == 3
        assert [c.args[0] for c in no_backoff.await_args_list] == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        recorder = Recorder([httpx.Response(500)])
        with pytest.raises(ProvisioningError, match="500"):
            await make(recorder, max_retries=2).status("101")
        assert len(recorder.requests) == 3

    @pytest.mark.asyncio
    async def test_client_errors_not_retried(self):
        recorder = Recorder([httpx.Response(404, text="not found")])
        with pytest.raises(ProvisioningError, match="404"):
            await make(recorder).status("101")
        assert len(recorder.requests) == 1

    @pytest.mark.asyncio
    async def test_transport_errors_retried(self):
        recorder = Recorder([httpx.ConnectError("refused"), httpx.Response(200, json=droplet())])
        host = await make(recorder).status("101")
        assert host.ip == "198.51.100.7"

    @pytest.mark.asyncio
    async def test_read_timeouts_retried(self):
        recorder = Recorder([httpx.ReadTimeout("slow"), httpx.Response(200, json=droplet())])
        host = await make(recorder).status("101")
        assert host.ip == "198.51.100.7"
        assert len(recorder.requests) == 2

    @pytest.mark.asyncio
    async def test_unexpected_payload(self):
        with pytest.raises(ProvisioningError, match="unexpected droplet payload"):
            await make(Recorder([httpx.Response(200, json={"oops": 1})])).status("101")


class TestDelete:
    @pytest.mark.asyncio
    async def test_delete_no_content(self):
        recorder = Recorder([httpx.Response(204)])
        await make(recorder).delete("101")
        assert recorder.requests[0].method == "DELETE"
        assert recorder.requests[0].url.path.endswith("/droplets/101")
