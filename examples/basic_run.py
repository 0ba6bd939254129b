from __future__ import annotations

import asyncio
import sys
from pathlib import Path

_ROOT = Path(__file__).resolve().parents[1]
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

from peerhello.config import load_config, parse_config
from peerhello.metrics import build_metrics
from peerhello.render import build_renderer
from peerhello.resolver import IdentityResolver
from peerhello.whois import build_whois_client


async def main() -> None:
    cfg = parse_config(load_config(str(Path(__file__).with_name("static_demo.yaml"))))
    metrics = build_metrics(cfg.metrics.latency_buckets_ms)
    resolver = IdentityResolver(build_whois_client(cfg.whois), metrics.latency_recorder())
    renderer = build_renderer()

    for address in ("127.0.0.1:51000", "[::1]:51001", "100.64.0.7:51002", "10.0.0.9:51003"):
        outcome = await resolver.resolve(address)
        metrics.record_outcome(outcome)
        page = renderer.render(outcome)
        print(address, outcome.to_dict(), f"{len(page)} bytes")


if __name__ == "__main__":
    asyncio.run(main())
