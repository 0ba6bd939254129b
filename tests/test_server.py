import asyncio
import json
import logging
import uuid

import pytest
from fastapi.testclient import TestClient
from starlette.requests import Request

import peerhello.server as server
from peerhello.config import ServiceConfig
from peerhello.metrics import WHOIS_LATENCY_METRIC, build_metrics
from peerhello.models import Identity
from peerhello.render import PageRenderer
from peerhello.whois import WhoIsClient, WhoIsError


class _CaptureHandler(logging.Handler):
    def __init__(self) -> None:
        super().__init__()
        self.messages: list[str] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.messages.append(record.getMessage())


class _FailingWhoIs(WhoIsClient):
    async def whois(self, peer_address: str) -> Identity:
        raise WhoIsError("tailscaled not running")


class _SlowWhoIs(WhoIsClient):
    async def whois(self, peer_address: str) -> Identity:
        await asyncio.sleep(5.0)
        return Identity(login_name="late")


def _static_config(peers: dict | None = None, **server_opts) -> ServiceConfig:
    return ServiceConfig.model_validate(
        {
            "server": server_opts,
            "whois": {"backend": "static", "peers": peers or {}},
        }
    )


def _alice_config() -> ServiceConfig:
    return _static_config({"testclient": {"login_name": "alice@example.com", "display_name": "Alice Smith"}})


def test_index_greets_identified_user():
    metrics = build_metrics()
    client = TestClient(server.create_app(_alice_config(), metrics=metrics))

    response = client.get("/")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/html")
    assert "Alice Smith" in response.text
    assert metrics.registry.get_sample_value(f"{WHOIS_LATENCY_METRIC}_count") == 1.0
    assert (
        metrics.registry.get_sample_value(
            "peerhello_identity_resolutions_total", {"outcome": "accepted", "reason": ""}
        )
        == 1.0
    )


def test_index_renders_blank_page_when_lookup_fails():
    metrics = build_metrics()
    client = TestClient(server.create_app(_static_config(), whois_client=_FailingWhoIs(), metrics=metrics))

    response = client.get("/")

    assert response.status_code == 200
    assert "failed to identify remote host" not in response.text
    assert '<div class="avatar" title=""></div>' in response.text
    assert metrics.registry.get_sample_value(f"{WHOIS_LATENCY_METRIC}_count") == 1.0
    assert (
        metrics.registry.get_sample_value(
            "peerhello_identity_resolutions_total", {"outcome": "rejected", "reason": "host_unidentified"}
        )
        == 1.0
    )


def test_index_rejects_tagged_peer():
    config = _static_config({"testclient": {"login_name": "tagged-devices", "tags": ["tag:ci"]}})
    client = TestClient(server.create_app(config))

    response = client.get("/")
    assert response.status_code == 200
    assert "tagged-devices" not in response.text


def test_index_times_out_slow_lookup():
    config = ServiceConfig.model_validate({"whois": {"backend": "static", "timeout_sec": 0.01}})
    metrics = build_metrics()
    client = TestClient(server.create_app(config, whois_client=_SlowWhoIs(), metrics=metrics))

    response = client.get("/")
    assert response.status_code == 200
    assert (
        metrics.registry.get_sample_value(
            "peerhello_identity_resolutions_total", {"outcome": "rejected", "reason": "lookup_failed"}
        )
        == 1.0
    )


def test_index_survives_render_failure():
    def _broken_loader():
        raise FileNotFoundError("index.html")

    client = TestClient(server.create_app(_alice_config(), renderer=PageRenderer(_broken_loader)))
    response = client.get("/")
    assert response.status_code == 200
    assert "Hello!" in response.text


def test_uuid_endpoint_issues_identifiers():
    metrics = build_metrics()
    client = TestClient(server.create_app(_static_config(), metrics=metrics))

    first = client.get("/api/uuid")
    second = client.get("/api/uuid")

    assert first.status_code == 200
    assert first.text.endswith("\n")
    assert uuid.UUID(first.text.strip()).version == 4
    assert first.text != second.text
    assert metrics.registry.get_sample_value("peerhello_identifiers_issued_total") == 2.0


def test_metrics_endpoint_exposes_histogram():
    client = TestClient(server.create_app(_alice_config()))
    client.get("/")

    response = client.get("/metrics")
    assert response.status_code == 200
    assert f"{WHOIS_LATENCY_METRIC}_count 1.0" in response.text
    assert "peerhello_identifiers_issued_total" in response.text


def test_metrics_endpoint_disabled():
    config = ServiceConfig.model_validate({"whois": {"backend": "static"}, "metrics": {"enabled": False}})
    client = TestClient(server.create_app(config))

    assert client.get("/").status_code == 200
    response = client.get("/metrics")
    assert response.status_code == 503


def test_healthz_and_static_assets():
    client = TestClient(server.create_app(_static_config()))

    assert client.get("/healthz").json() == {"status": "ok"}
    css = client.get("/ui/style.css")
    assert css.status_code == 200
    assert ".avatar" in css.text


def test_access_log_is_json():
    handler = _CaptureHandler()
    server._ACCESS_LOGGER.addHandler(handler)
    client = TestClient(server.create_app(_alice_config()))
    try:
        response = client.get("/healthz", headers={"x-request-id": "req-1"})
    finally:
        server._ACCESS_LOGGER.removeHandler(handler)

    assert response.headers["x-request-id"] == "req-1"
    entries = [json.loads(message) for message in handler.messages]
    assert any(e["request_id"] == "req-1" and e["path"] == "/healthz" and e["status_code"] == 200 for e in entries)


def test_forwarded_headers_do_not_change_peer():
    config = _static_config({"10.0.0.5": {"login_name": "mallory", "display_name": "Mallory"}})
    client = TestClient(server.create_app(config))

    response = client.get("/", headers={"x-forwarded-for": "10.0.0.5"})
    assert "Mallory" not in response.text


@pytest.mark.parametrize(
    "client_tuple, expected",
    [
        (("100.64.0.1", 41641), "100.64.0.1:41641"),
        (("fd7a:115c:a1e0::1", 443), "[fd7a:115c:a1e0::1]:443"),
        (None, ""),
    ],
)
def test_peer_address_formatting(client_tuple, expected):
    request = Request({"type": "http", "method": "GET", "path": "/", "headers": [], "client": client_tuple})
    assert server.peer_address(request) == expected


class _ClosableWhoIs(WhoIsClient):
    def __init__(self) -> None:
        self.closed = False

    async def whois(self, peer_address: str) -> Identity:
        return Identity(login_name="alice")

    async def aclose(self) -> None:
        self.closed = True


def test_shutdown_leaves_injected_client_open():
    whois_client = _ClosableWhoIs()
    app = server.create_app(_static_config(), whois_client=whois_client)

    with TestClient(app) as client:
        assert client.get("/").status_code == 200

    assert whois_client.closed is False


def test_shutdown_closes_built_client(monkeypatch):
    built = _ClosableWhoIs()
    monkeypatch.setattr(server, "build_whois_client", lambda config: built)
    app = server.create_app(_static_config())

    with TestClient(app):
        pass

    assert built.closed is True
