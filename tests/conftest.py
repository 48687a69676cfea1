"""
Pytest configuration and fixtures for the telemetry agent tests.
"""

import logging
from unittest.mock import Mock
from urllib.parse import urlparse

import pytest

from telemetry_agent.core.config import AgentConfig


class FakeResponse:
    """Minimal stand-in for requests.Response."""

    def __init__(self, status_code=200, payload=None, headers=None):
        self.status_code = status_code
        self._payload = payload
        self.headers = headers or {}
        self.raw = None
        self.text = "" if payload is None else str(payload)

    def json(self):
        if self._payload is None:
            raise ValueError("no json body")
        return self._payload


class FakeInfluxHTTP:
    """
    In-memory InfluxDB 2.x REST surface used by SessionManager.

    Records every call in ``calls`` as (method, path, headers).
    """

    def __init__(self, setup_done=False, orgs=None, set_cookie="influxdb-oss-session=abc123; Path=/; HttpOnly"):
        self.headers = {}
        self.cookies = Mock()
        self.setup_done = setup_done
        self.setup_calls = 0
        self.orgs = list(orgs or [])
        self.authorizations = []
        self.set_cookie = set_cookie
        self.users = {"development": "development"}
        self.signed_out = 0
        self.calls = []
        self._next_id = 1

    def _new_id(self, prefix):
        value = f"{prefix}{self._next_id:04d}"
        self._next_id += 1
        return value

    def request(self, method, url, headers=None, timeout=None, verify=None, **kwargs):
        path = urlparse(url).path
        headers = headers or {}
        self.calls.append((method, path, dict(headers)))

        if path == "/ping":
            return FakeResponse(204)

        if path == "/api/v2/setup":
            if method == "GET":
                return FakeResponse(200, {"allowed": not self.setup_done})
            if self.setup_done:
                return FakeResponse(422, {"message": "onboarding has already been completed"})
            body = kwargs["json"]
            self.setup_done = True
            self.setup_calls += 1
            self.orgs.append({"id": self._new_id("org"), "name": body["org"]})
            self.users[body["username"]] = body["password"]
            return FakeResponse(201, {"org": self.orgs[-1]})

        if path == "/api/v2/signin":
            user, password = kwargs["auth"]
            if self.users.get(user) != password:
                return FakeResponse(401, {"message": "unauthorized access"})
            return FakeResponse(204, headers={"set-cookie": self.set_cookie})

        if path == "/api/v2/signout":
            self.signed_out += 1
            return FakeResponse(204)

        if "Cookie" not in headers:
            return FakeResponse(401, {"message": "unauthorized access"})

        if path == "/api/v2/orgs":
            name = kwargs.get("params", {}).get("org")
            matches = [o for o in self.orgs if o["name"] == name]
            if not matches:
                return FakeResponse(404, {"message": f"organization name \"{name}\" not found"})
            return FakeResponse(200, {"orgs": matches})

        if path == "/api/v2/authorizations":
            if method == "GET":
                return FakeResponse(200, {"authorizations": list(self.authorizations)})
            body = kwargs["json"]
            authorization = dict(body, id=self._new_id("auth"), token=self._new_id("token-"))
            self.authorizations.append(authorization)
            return FakeResponse(201, authorization)

        if path.startswith("/api/v2/authorizations/") and method == "DELETE":
            auth_id = path.rsplit("/", 1)[1]
            self.authorizations = [a for a in self.authorizations if a["id"] != auth_id]
            return FakeResponse(204)

        return FakeResponse(404, {"message": "not found"})

    def close(self):
        pass


@pytest.fixture
def config(tmp_path):
    """Default configuration isolated from the host environment."""
    cfg = AgentConfig(str(tmp_path / "missing.ini"), environ={})
    cfg.set("logging", "log_file", str(tmp_path / "agent.log"))
    cfg.set("tags", "hostname", "test-host")
    return cfg


@pytest.fixture
def logger():
    """AgentLogger stand-in returning a plain stdlib logger."""
    agent_logger = Mock()
    agent_logger.get_logger.return_value = logging.getLogger("TelemetryAgentTest")
    return agent_logger


@pytest.fixture
def fake_http():
    return FakeInfluxHTTP()


@pytest.fixture
def raw_sample():
    """Flattened sample with 2 filesystems and 1 NVIDIA controller out of 2."""
    return {
        "uuid": {"os": "abc", "hardware": "00:11:22:33:44:55", "macs": []},
        "currentLoad": {"avgLoad": 0.42, "currentLoad": 12.5},
        "mem": {
            "total": 16_000_000_000,
            "free": 4_000_000_000,
            "used": 12_000_000_000,
            "active": 2_000_000_000,
        },
        "fsSize": [
            {"fs": "/dev/sda1", "use": 41.2},
            {"fs": "/dev/sdb1", "use": 87.0},
        ],
        "graphics": {
            "controllers": [
                {
                    "vendor": "NVIDIA",
                    "model": "GeForce RTX 3080",
                    "vram": 10240,
                    "fanSpeed": 30,
                    "utilizationMemory": 5,
                    "memoryUsed": 512,
                    "memoryFree": 9728,
                    "powerDraw": 25.3,
                    "powerLimit": 320,
                    "temperatureGpu": 41,
                },
                {"vendor": "Intel", "model": "UHD Graphics 630", "vram": 128},
            ]
        },
    }
