from __future__ import annotations

import asyncio
import logging
import time

from .metrics import LatencyRecorder
from .models import Accepted, Identity, Rejected, RejectReason, ResolutionOutcome, first_initial
from .whois import WhoIsClient, WhoIsError

_LOGGER = logging.getLogger("peerhello.resolver")


def evaluate_identity(identity: Identity, peer_address: str = "") -> ResolutionOutcome:
    """Apply identity policy to a successful lookup.

    Tagged nodes are service principals and never personalized. A profile
    without a login name is treated as unidentified.
    """
    if identity.is_tagged:
        _LOGGER.info("Tagged node %s rejected reason=%s", peer_address, RejectReason.TAGGED_NODE.value)
        return Rejected(RejectReason.TAGGED_NODE)
    if not identity.login_name:
        _LOGGER.info("Missing user profile for %s reason=%s", peer_address, RejectReason.USER_UNIDENTIFIED.value)
        return Rejected(RejectReason.USER_UNIDENTIFIED)
    initial = first_initial(identity)
    if not initial:
        return Rejected(RejectReason.USER_UNIDENTIFIED)
    _LOGGER.info("Identified %s as %s", peer_address, identity.login_name)
    return Accepted(identity=identity, first_initial=initial)


class IdentityResolver:
    def __init__(
        self,
        client: WhoIsClient,
        recorder: LatencyRecorder,
        *,
        timeout_sec: float | None = None,
    ) -> None:
        self._client = client
        self._recorder = recorder
        self._timeout_sec = timeout_sec

    async def resolve(self, peer_address: str, *, timeout_sec: float | None = None) -> ResolutionOutcome:
        timeout = self._timeout_sec if timeout_sec is None else timeout_sec
        start = time.perf_counter()
        try:
            return await self._resolve(peer_address, timeout)
        finally:
            elapsed_ms = (time.perf_counter() - start) * 1000.0
            self._recorder.observe(max(0.0, elapsed_ms))

    async def _resolve(self, peer_address: str, timeout: float | None) -> ResolutionOutcome:
        _LOGGER.debug("Resolving remote address %s", peer_address)
        try:
            if timeout is not None and timeout > 0.0:
                identity = await asyncio.wait_for(self._client.whois(peer_address), timeout=timeout)
            else:
                identity = await self._client.whois(peer_address)
        except asyncio.TimeoutError:
            _LOGGER.warning("Identity lookup for %s timed out after %.3fs", peer_address, timeout)
            return Rejected(RejectReason.LOOKUP_FAILED)
        except WhoIsError as exc:
            _LOGGER.warning("Failed to identify remote host %s: %s", peer_address, exc)
            return Rejected(RejectReason.HOST_UNIDENTIFIED)
        except Exception:
            _LOGGER.warning("Identity lookup for %s raised unexpectedly", peer_address, exc_info=True)
            return Rejected(RejectReason.HOST_UNIDENTIFIED)
        return evaluate_identity(identity, peer_address)
