"""
Transports for the MCP protocol handler.

* stdio: newline-delimited JSON on stdin/stdout
* http: stateless ``POST /mcp`` served by FastAPI and uvicorn
* sse: ``GET /sse`` event stream plus ``POST /sse/messages`` side channel
"""

import asyncio
import json
import logging
import socket
import sys
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Optional, Set, TextIO

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse

from ..core.errors import ConfigurationError
from .protocol import PARSE_ERROR, MCPProtocolHandler

logger = logging.getLogger(__name__)


class BaseTransport(ABC):
    """Common lifecycle for all transports."""

    name = "base"

    def __init__(self, protocol: MCPProtocolHandler):
        self.protocol = protocol
        self._running = False

    @abstractmethod
    async def start(self) -> None:
        """Start serving."""

    @abstractmethod
    async def stop(self) -> None:
        """Stop serving and release resources."""

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def address(self) -> Optional[str]:
        return None


class StdioTransport(BaseTransport):
    """
    Newline-delimited JSON over a pair of text streams.

    Each line is handled in its own task so a slow tool call does not block
    later requests; responses are written one at a time.
    """

    name = "stdio"

    def __init__(
        self,
        protocol: MCPProtocolHandler,
        reader: Optional[TextIO] = None,
        writer: Optional[TextIO] = None,
    ):
        super().__init__(protocol)
        self.reader = reader or sys.stdin
        self.writer = writer or sys.stdout
        self._write_lock = asyncio.Lock()
        self._read_task: Optional[asyncio.Task] = None
        self._pending: Set[asyncio.Task] = set()

    async def start(self) -> None:
        if self._running:
            raise ConfigurationError("stdio transport is already running")
        self._running = True
        self._read_task = asyncio.create_task(self._read_loop())
        logger.info("stdio transport started")

    async def _read_loop(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            while self._running:
                line = await loop.run_in_executor(None, self.reader.readline)
                if not line:  # EOF
                    break
                line = line.strip()
                if not line:
                    continue
                task = asyncio.create_task(self._handle_line(line))
                self._pending.add(task)
                task.add_done_callback(self._pending.discard)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error reading from stdin: {e}")
        finally:
            logger.info("stdio input closed")

    async def _handle_line(self, line: str) -> None:
        try:
            response = await self.protocol.handle_raw(line)
        except Exception as e:
            logger.error(f"Error handling stdio message: {e}")
            return
        if response is not None:
            await self.send(response)

    async def send(self, message: Dict[str, Any]) -> None:
        async with self._write_lock:
            self.writer.write(json.dumps(message) + "\n")
            self.writer.flush()

    async def wait_closed(self) -> None:
        """Wait for EOF on the input and for in-flight calls to finish."""
        if self._read_task is not None:
            await self._read_task
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def stop(self) -> None:
        self._running = False
        if self._read_task is not None and not self._read_task.done():
            self._read_task.cancel()
            try:
                await self._read_task
            except asyncio.CancelledError:
                pass
        for task in list(self._pending):
            task.cancel()
        self._read_task = None
        logger.info("stdio transport stopped")


class _UvicornTransport(BaseTransport):
    """Runs a FastAPI application on uvicorn in a background task."""

    def __init__(
        self,
        protocol: MCPProtocolHandler,
        host: str = "localhost",
        port: int = 3000,
        cors: bool = True,
    ):
        super().__init__(protocol)
        self.host = host
        self.port = port
        self.cors = cors
        self.app = self.create_app()
        self._server: Optional[uvicorn.Server] = None
        self._serve_task: Optional[asyncio.Task] = None

    @abstractmethod
    def create_app(self) -> FastAPI:
        """Build the FastAPI application."""

    def _base_app(self, title: str) -> FastAPI:
        app = FastAPI(title=title, docs_url=None, redoc_url=None, openapi_url=None)
        if self.cors:
            app.add_middleware(
                CORSMiddleware,
                allow_origins=["*"],
                allow_methods=["GET", "POST", "OPTIONS"],
                allow_headers=["*"],
            )

        @app.get("/health")
        async def health():
            return {
                "status": "ok",
                "transport": self.name,
                "tools": len(self.protocol.tools),
            }

        return app

    @property
    def address(self) -> Optional[str]:
        return f"http://{self.host}:{self.port}"

    async def start(self) -> None:
        if self._running:
            raise ConfigurationError(f"{self.name} transport is already running")
        try:
            sock = socket.create_server((self.host, self.port))
        except OSError as e:
            raise ConfigurationError(
                f"Failed to start {self.name} transport on {self.address}: {e}"
            ) from e

        config = uvicorn.Config(
            self.app, host=self.host, port=self.port, log_level="warning"
        )
        self._server = uvicorn.Server(config)
        self._serve_task = asyncio.create_task(self._serve(sock))

        while not self._server.started:
            if self._serve_task.done():
                error = self._serve_task.exception()
                self._server = None
                self._serve_task = None
                sock.close()
                raise ConfigurationError(
                    f"Failed to start {self.name} transport on {self.address}: {error}"
                )
            await asyncio.sleep(0.05)

        self._running = True
        logger.info(f"{self.name} transport listening on {self.address}")

    async def _serve(self, sock: socket.socket) -> None:
        # uvicorn calls sys.exit when startup fails
        try:
            await self._server.serve(sockets=[sock])
        except SystemExit as e:
            raise ConfigurationError(f"uvicorn exited during startup (status {e.code})")

    async def stop(self) -> None:
        if self._server is not None:
            self._server.should_exit = True
        if self._serve_task is not None:
            try:
                await self._serve_task
            except Exception as e:
                logger.warning(f"{self.name} transport shut down with error: {e}")
        self._server = None
        self._serve_task = None
        self._running = False
        logger.info(f"{self.name} transport stopped")


class HTTPTransport(_UvicornTransport):
    """Stateless JSON-RPC over ``POST /mcp``."""

    name = "http"

    def __init__(self, protocol, host="localhost", port=3000, cors=True, path="/mcp"):
        self.path = path
        super().__init__(protocol, host=host, port=port, cors=cors)

    def create_app(self) -> FastAPI:
        app = self._base_app("apibridge MCP (HTTP)")

        @app.post(self.path)
        async def handle_mcp(request: Request):
            body = await request.body()
            response = await self.protocol.handle_raw(body)
            if response is None:
                return Response(status_code=202)
            error = response.get("error")
            if error and error.get("code") == PARSE_ERROR:
                return JSONResponse(response, status_code=400)
            return JSONResponse(response)

        return app


@dataclass
class SSESession:
    id: str
    queue: "asyncio.Queue[Optional[Dict[str, Any]]]" = field(default_factory=asyncio.Queue)


class SSETransport(_UvicornTransport):
    """
    Server-Sent Events transport.

    One session at a time: opening a new stream closes the previous one.
    Clients post requests to the message path with the session id they were
    given in the ``endpoint`` event, and responses arrive on the stream.
    """

    name = "sse"

    def __init__(
        self,
        protocol,
        host="localhost",
        port=3000,
        cors=True,
        stream_path="/sse",
        message_path="/sse/messages",
        keepalive_interval: float = 15.0,
    ):
        self.stream_path = stream_path
        self.message_path = message_path
        self.keepalive_interval = keepalive_interval
        self._session: Optional[SSESession] = None
        self._lock = asyncio.Lock()
        super().__init__(protocol, host=host, port=port, cors=cors)

    @property
    def session(self) -> Optional[SSESession]:
        return self._session

    async def open_session(self) -> SSESession:
        async with self._lock:
            previous = self._session
            self._session = SSESession(id=uuid.uuid4().hex)
            if previous is not None:
                logger.info(f"Replacing SSE session {previous.id}")
                previous.queue.put_nowait(None)
            logger.info(f"Opened SSE session {self._session.id}")
            return self._session

    async def close_session(self, session: SSESession) -> None:
        async with self._lock:
            if self._session is session:
                self._session = None
                logger.info(f"Closed SSE session {session.id}")

    async def event_stream(self, session: SSESession) -> AsyncIterator[str]:
        """Yield SSE frames for a session until it is replaced or closed."""
        try:
            yield f"event: endpoint\ndata: {self.message_path}?sessionId={session.id}\n\n"
            while True:
                try:
                    message = await asyncio.wait_for(
                        session.queue.get(), timeout=self.keepalive_interval
                    )
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                if message is None:
                    break
                yield f"event: message\ndata: {json.dumps(message)}\n\n"
        finally:
            await self.close_session(session)

    async def post_message(
        self, session_id: Optional[str], body: bytes
    ) -> "tuple[int, Dict[str, Any]]":
        """
        Handle one message posted to the side channel.

        Returns:
            (HTTP status, JSON body) for the POST itself
        """
        async with self._lock:
            session = self._session
            if session is None or not session_id or session.id != session_id:
                return 400, {"error": "No active SSE session"}

        response = await self.protocol.handle_raw(body)
        if response is not None:
            await session.queue.put(response)
        return 202, {"status": "accepted"}

    def create_app(self) -> FastAPI:
        app = self._base_app("apibridge MCP (SSE)")

        @app.get(self.stream_path)
        async def open_stream():
            session = await self.open_session()
            return StreamingResponse(
                self.event_stream(session),
                media_type="text/event-stream",
                headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
            )

        @app.post(self.message_path)
        async def post_message(request: Request):
            body = await request.body()
            status, payload = await self.post_message(
                request.query_params.get("sessionId"), body
            )
            return JSONResponse(payload, status_code=status)

        return app

    async def stop(self) -> None:
        async with self._lock:
            if self._session is not None:
                self._session.queue.put_nowait(None)
                self._session = None
        await super().stop()


TRANSPORTS = {
    "stdio": StdioTransport,
    "http": HTTPTransport,
    "sse": SSETransport,
}
