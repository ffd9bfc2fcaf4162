"""
Tests for scanfleet.provider.digitalocean.

The requests session is replaced with a MagicMock; no network access.
"""

import unittest
from unittest.mock import MagicMock

import requests

from scanfleet.bootstrap import BootstrapPayload
from scanfleet.errors import ProviderError
from scanfleet.provider.base import NodeHandle
from scanfleet.provider.digitalocean import (
    DEFAULT_API_URL,
    DigitalOceanConfig,
    DigitalOceanProvider,
    public_ipv4,
)


def _response(status=200, body=None, text=""):
    resp = MagicMock()
    resp.status_code = status
    resp.json.return_value = body or {}
    resp.content = b"{}" if body is not None else b""
    resp.text = text
    return resp


class TestDigitalOceanProvider(unittest.TestCase):

    def setUp(self):
        self.session = MagicMock()
        self.session.headers = {}
        self.provider = DigitalOceanProvider(
            DigitalOceanConfig(api_token="tok", region="ams3"),
            session=self.session,
        )
        self.payload = BootstrapPayload(job_id="job-1", node_id="job-1-worker-0",
                                        callback_address="h:8080", items=("a",))

    def test_requires_token(self):
        with self.assertRaises(ProviderError):
            DigitalOceanProvider(DigitalOceanConfig(api_token=""))

    def test_auth_header(self):
        self.assertEqual(self.session.headers["Authorization"], "Bearer tok")

    def test_create(self):
        self.session.request.return_value = _response(
            202, {"droplet": {"id": 4242, "name": "job-1-worker-0"}})
        handle = self.provider.create("job-1-worker-0",
                                      ["nuclei-worker", "job-1"], self.payload)

        self.assertEqual(handle, NodeHandle(handle_id="4242", name="job-1-worker-0"))
        args, kwargs = self.session.request.call_args
        self.assertEqual(args, ("POST", f"{DEFAULT_API_URL}/droplets"))
        body = kwargs["json"]
        self.assertEqual(body["region"], "ams3")
        self.assertEqual(body["size"], "s-1vcpu-1gb")
        self.assertEqual(body["image"], "ubuntu-20-04-x64")
        self.assertEqual(body["tags"], ["nuclei-worker", "job-1"])
        self.assertIn("export SCAN_ID=job-1", body["user_data"])

    def test_create_without_id(self):
        self.session.request.return_value = _response(202, {"droplet": {}})
        with self.assertRaises(ProviderError):
            self.provider.create("n", [], self.payload)

    def test_create_rejected_is_permanent(self):
        self.session.request.return_value = _response(422, text="bad size")
        with self.assertRaises(ProviderError) as ctx:
            self.provider.create("n", [], self.payload)
        self.assertFalse(ctx.exception.transient)
        self.assertEqual(ctx.exception.status_code, 422)

    def test_status_ready(self):
        self.session.request.return_value = _response(200, {"droplet": {
            "status": "active",
            "networks": {"v4": [
                {"type": "private", "ip_address": "10.1.0.5"},
                {"type": "public", "ip_address": "203.0.113.9"},
            ]},
        }})
        status = self.provider.get_status(NodeHandle("4242"))
        self.assertTrue(status.is_ready)
        self.assertEqual(status.address, "203.0.113.9")

    def test_status_booting(self):
        self.session.request.return_value = _response(
            200, {"droplet": {"status": "new", "networks": {"v4": []}}})
        status = self.provider.get_status(NodeHandle("4242"))
        self.assertFalse(status.is_ready)

    def test_active_without_address_not_ready(self):
        self.session.request.return_value = _response(
            200, {"droplet": {"status": "active"}})
        self.assertFalse(self.provider.get_status(NodeHandle("1")).is_ready)

    def test_rate_limit_is_transient(self):
        self.session.request.return_value = _response(429, text="slow down")
        with self.assertRaises(ProviderError) as ctx:
            self.provider.get_status(NodeHandle("1"))
        self.assertTrue(ctx.exception.transient)

    def test_server_error_is_transient(self):
        self.session.request.return_value = _response(503)
        with self.assertRaises(ProviderError) as ctx:
            self.provider.get_status(NodeHandle("1"))
        self.assertTrue(ctx.exception.transient)

    def test_connection_error_is_transient(self):
        self.session.request.side_effect = requests.ConnectionError("reset")
        with self.assertRaises(ProviderError) as ctx:
            self.provider.get_status(NodeHandle("1"))
        self.assertTrue(ctx.exception.transient)

    def test_delete_tolerates_404(self):
        self.session.request.return_value = _response(404)
        self.provider.delete(NodeHandle("4242", "n"))
        args, _ = self.session.request.call_args
        self.assertEqual(args, ("DELETE", f"{DEFAULT_API_URL}/droplets/4242"))

    def test_delete_by_tag(self):
        self.session.request.side_effect = [
            _response(200, {"droplets": [{"id": 1}, {"id": 2}]}),
            _response(204),
        ]
        self.assertEqual(self.provider.delete_by_tag("job-1"), 2)
        last_args, last_kwargs = self.session.request.call_args
        self.assertEqual(last_args[0], "DELETE")
        self.assertEqual(last_kwargs["params"], {"tag_name": "job-1"})

    def test_delete_by_tag_nothing_to_do(self):
        self.session.request.return_value = _response(200, {"droplets": []})
        self.assertEqual(self.provider.delete_by_tag("job-1"), 0)
        self.assertEqual(self.session.request.call_count, 1)


class TestPublicIpv4:

    def test_missing_networks(self):
        assert public_ipv4({}) == ""

    def test_picks_public(self):
        droplet = {"networks": {"v4": [{"type": "public", "ip_address": "1.2.3.4"}]}}
        assert public_ipv4(droplet) == "1.2.3.4"
