from __future__ import annotations

import logging
from typing import Any, Mapping

import httpx

from .models import Identity

DEFAULT_SOCKET_PATH = "/var/run/tailscale/tailscaled.sock"
LOCALAPI_BASE_URL = "http://local-tailscaled.sock"
WHOIS_PATH = "/localapi/v0/whois"
# Transport timeout headroom over the resolver deadline, which decides the outcome.
TRANSPORT_TIMEOUT_GRACE_SEC = 1.0

_LOGGER = logging.getLogger("peerhello.whois")


class WhoIsError(RuntimeError):
    """Raised when a peer address cannot be mapped to node/user metadata."""


class WhoIsClient:
    async def whois(self, peer_address: str) -> Identity:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None


def identity_from_whois_payload(payload: Any) -> Identity:
    if not isinstance(payload, Mapping):
        raise WhoIsError("whois response must be a JSON object")
    node = payload.get("Node") or {}
    profile = payload.get("UserProfile") or {}
    if not isinstance(node, Mapping) or not isinstance(profile, Mapping):
        raise WhoIsError("whois response has malformed Node/UserProfile")
    tags = node.get("Tags") or []
    return Identity(
        login_name=str(profile.get("LoginName") or ""),
        display_name=str(profile.get("DisplayName") or ""),
        is_tagged=len(tags) > 0,
    )


class LocalAPIWhoIsClient(WhoIsClient):
    """WhoIs lookups against the local tailnet daemon over its unix socket."""

    def __init__(
        self,
        socket_path: str = DEFAULT_SOCKET_PATH,
        *,
        timeout_sec: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.socket_path = socket_path
        if client is None:
            transport = httpx.AsyncHTTPTransport(uds=socket_path)
            client = httpx.AsyncClient(
                transport=transport,
                base_url=LOCALAPI_BASE_URL,
                timeout=timeout_sec,
                headers={"Sec-Tailscale": "localapi"},
            )
        self._client = client

    async def whois(self, peer_address: str) -> Identity:
        try:
            response = await self._client.get(WHOIS_PATH, params={"addr": peer_address})
        except httpx.HTTPError as exc:
            raise WhoIsError(f"whois request failed: {exc.__class__.__name__}: {exc}") from exc
        if response.status_code != 200:
            detail = response.text.strip()[:200]
            raise WhoIsError(f"whois returned HTTP {response.status_code}: {detail}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise WhoIsError("whois returned invalid JSON") from exc
        return identity_from_whois_payload(payload)

    async def aclose(self) -> None:
        await self._client.aclose()


def _host_of(peer_address: str) -> str:
    host, sep, port = peer_address.rpartition(":")
    if not sep or not port.isdigit():
        return peer_address
    return host.strip("[]")


class StaticWhoIsClient(WhoIsClient):
    """Answers lookups from a fixed table keyed by ``host:port`` or bare host."""

    def __init__(self, peers: Mapping[str, Identity]) -> None:
        self._peers = dict(peers)

    async def whois(self, peer_address: str) -> Identity:
        identity = self._peers.get(peer_address)
        if identity is None:
            identity = self._peers.get(_host_of(peer_address))
        if identity is None:
            raise WhoIsError(f"no match for peer {peer_address!r}")
        return identity


def build_whois_client(config) -> WhoIsClient:
    if config.backend == "local":
        _LOGGER.info("Using local API whois backend at %s", config.socket_path)
        return LocalAPIWhoIsClient(
            config.socket_path,
            timeout_sec=config.timeout_sec + TRANSPORT_TIMEOUT_GRACE_SEC,
        )
    if config.backend == "static":
        _LOGGER.info("Using static whois backend with %d peers", len(config.peers))
        return StaticWhoIsClient(
            {address: peer.to_identity() for address, peer in config.peers.items()}
        )
    raise ValueError(f"Unsupported whois backend: {config.backend}")
