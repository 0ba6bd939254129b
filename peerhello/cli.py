from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Iterable

from pydantic import ValidationError

from .config import ServiceConfig, config_from_env, load_config, parse_config
from .metrics import NullLatencyRecorder
from .resolver import IdentityResolver
from .whois import build_whois_client


def _load_service_config(path: str | None) -> ServiceConfig:
    if path:
        return config_from_env(parse_config(load_config(path)))
    return config_from_env()


def _run_validate(path: str) -> int:
    try:
        data = load_config(path)
    except Exception as exc:
        print(f"Config load failed: {exc}")
        return 1
    try:
        cfg = parse_config(data)
    except ValidationError as exc:
        print("Config validation failed\n")
        print(exc.json(indent=2))
        return 1
    print("Config OK")
    print(f"whois backend: {cfg.whois.backend}")
    print(f"listen: {cfg.server.host}:{cfg.server.port}")
    return 0


def _run_schema(output: str) -> int:
    schema = ServiceConfig.model_json_schema()
    out_path = Path(output)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text(json.dumps(schema, indent=2, sort_keys=True), encoding="utf-8")
    print(f"JSON Schema generated: {out_path}")
    return 0


async def _whois(cfg: ServiceConfig, address: str) -> dict:
    client = build_whois_client(cfg.whois)
    try:
        resolver = IdentityResolver(client, NullLatencyRecorder(), timeout_sec=cfg.whois.timeout_sec)
        outcome = await resolver.resolve(address)
    finally:
        await client.aclose()
    return outcome.to_dict()


def _run_whois(address: str, config_path: str | None) -> int:
    try:
        cfg = _load_service_config(config_path)
    except (ValueError, OSError) as exc:
        print(f"Config load failed: {exc}")
        return 1
    result = asyncio.run(_whois(cfg, address))
    print(json.dumps(result, indent=2, sort_keys=True))
    return 0 if result["outcome"] == "accepted" else 2


def _run_serve(args: argparse.Namespace) -> int:
    import uvicorn

    from .server import create_app

    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    try:
        cfg = _load_service_config(args.config)
    except (ValueError, OSError) as exc:
        print(f"Config load failed: {exc}")
        return 1
    updates = {}
    if args.host is not None:
        updates["host"] = args.host
    if args.port is not None:
        updates["port"] = args.port
    if args.dev:
        updates["dev"] = True
    if updates:
        cfg = cfg.model_copy(update={"server": cfg.server.model_copy(update=updates)})

    print(f"Starting server: http://localhost:{cfg.server.port}/")
    uvicorn.run(create_app(cfg), host=cfg.server.host, port=cfg.server.port, log_level=args.log_level.lower())
    return 0


def main(argv: Iterable[str] | None = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)

    parser = argparse.ArgumentParser(prog="peerhello", description="Peer identity greeting service")
    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="Run the HTTP server")
    serve.add_argument("--config", default=None, help="Path to config file (.json/.yaml)")
    serve.add_argument("--host", default=None, help="Interface to bind")
    serve.add_argument("--port", type=int, default=None, help="The port to listen on")
    serve.add_argument("--dev", action="store_true", help="Enable dev mode (reload templates from disk)")
    serve.add_argument("--log-level", default="info", choices=["debug", "info", "warning", "error"])

    validate = sub.add_parser("validate", help="Validate a config file")
    validate.add_argument("path", help="Path to config file (.json/.yaml)")

    schema = sub.add_parser("schema", help="Write the config JSON Schema")
    schema.add_argument(
        "--output",
        default="schemas/peerhello_config_v1.json",
        help="Where to write the schema",
    )

    whois = sub.add_parser("whois", help="Resolve a peer address and print the outcome")
    whois.add_argument("address", help="Peer address, host:port")
    whois.add_argument("--config", default=None, help="Path to config file (.json/.yaml)")

    args = parser.parse_args(argv)
    if args.command == "serve":
        return _run_serve(args)
    if args.command == "validate":
        return _run_validate(args.path)
    if args.command == "schema":
        return _run_schema(args.output)
    if args.command == "whois":
        return _run_whois(args.address, args.config)
    parser.print_help()
    return 2


if __name__ == "__main__":
    sys.exit(main())
