import asyncio
import logging
import os
import sys
from typing import List, Optional

from .core.bridge import APIBridge
from .core.config import DiscoverOptions, MCPOptions, load_bridge_config
from .logging_config import setup_logging


def resolve_transport(argv: List[str]) -> str:
    """Transport from --stdio/--http/--sse flags, then APIBRIDGE_TRANSPORT."""
    for flag in ("stdio", "http", "sse"):
        if f"--{flag}" in argv:
            return flag
    return os.environ.get("APIBRIDGE_TRANSPORT", "stdio").lower()


async def build_server(argv: Optional[List[str]] = None):
    """
    Build a bridge and its server from the config file or environment.

    APIBRIDGE_CONFIG points at a JSON config file. Without it,
    APIBRIDGE_OPENAPI (file or URL) is discovered and APIBRIDGE_BASE_URL,
    APIBRIDGE_HOST and APIBRIDGE_PORT set the server options.
    """
    argv = sys.argv[1:] if argv is None else argv
    transport = resolve_transport(argv)
    config_path = os.environ.get("APIBRIDGE_CONFIG")

    if config_path:
        bridge_config, discover_options, server_options, endpoints = load_bridge_config(
            config_path
        )
        bridge = APIBridge(bridge_config)
        for endpoint in endpoints:
            bridge.define_endpoint(endpoint)
        if discover_options is not None:
            await bridge.discover(discover_options)
        if any(f"--{flag}" in argv for flag in ("stdio", "http", "sse")):
            server_options.transport = transport
    else:
        openapi = os.environ.get("APIBRIDGE_OPENAPI")
        if not openapi:
            raise SystemExit("Set APIBRIDGE_CONFIG or APIBRIDGE_OPENAPI")
        bridge = APIBridge()
        await bridge.discover(DiscoverOptions(openapi=openapi))
        server_options = MCPOptions(
            transport=transport,
            host=os.environ.get("APIBRIDGE_HOST", "localhost"),
            port=int(os.environ.get("APIBRIDGE_PORT", "3000")),
            base_url=os.environ.get("APIBRIDGE_BASE_URL", "http://localhost:3000"),
        )

    return await bridge.generate_mcp_server(server_options)


async def main(argv: Optional[List[str]] = None):
    """
    The main entry point for the apibridge service.

    Builds the server, starts it on the selected transport and serves until
    cancelled (or until stdin closes in stdio mode).
    """
    argv = sys.argv[1:] if argv is None else argv
    setup_logging(stdio_mode=resolve_transport(argv) == "stdio")
    logging.info("Starting apibridge...")

    server = await build_server(argv)
    await server.start()
    logging.info(f"apibridge running ({server.options.transport}) at {server.get_address()}")

    try:
        if server.options.transport == "stdio":
            await server.transport.wait_closed()
        else:
            await asyncio.Event().wait()
    finally:
        await server.stop()


def run():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logging.info("Shutting down apibridge.")


if __name__ == "__main__":
    run()
