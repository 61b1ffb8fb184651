"""Application wiring and the command that runs the HTTP server."""

from __future__ import annotations

import argparse
import logging
import signal
import threading
from socketserver import ThreadingMixIn
from typing import Any, Callable
from wsgiref.simple_server import WSGIRequestHandler, WSGIServer, make_server

from .config import Config, ConfigError, load_config
from .customer_store import MongoCustomerRepository
from .database import connect
from .http_api import create_app
from .rule_store import MongoRuleRepository
from .service import AccumulatePointService

logger = logging.getLogger(__name__)

_SHUTDOWN_TIMEOUT = 30.0


class _ThreadingWSGIServer(ThreadingMixIn, WSGIServer):
    daemon_threads = True


class _LoggingRequestHandler(WSGIRequestHandler):
    def log_message(self, format: str, *args: Any) -> None:
        logger.info("%s - %s", self.address_string(), format % args)


class Application:
    """The HTTP server together with the resources it depends on."""

    def __init__(
        self,
        wsgi_app: Callable[..., Any],
        config: Config,
        cleanup: Callable[[], None] | None = None,
    ) -> None:
        self.wsgi_app = wsgi_app
        self.config = config
        self._cleanup = cleanup
        self._server: _ThreadingWSGIServer | None = None
        self._thread: threading.Thread | None = None

    @property
    def address(self) -> tuple[str, int] | None:
        """The address the server listens on, or None when it is not running."""
        if self._server is None:
            return None
        host, port = self._server.server_address[:2]
        return host, port

    def start(self) -> None:
        """Bind the configured port and serve requests in a background thread."""
        if self._server is not None:
            raise RuntimeError("server already started")
        logger.info("Starting HTTP server...")
        server = make_server(
            "",
            int(self.config.http_server_port),
            self.wsgi_app,
            server_class=_ThreadingWSGIServer,
            handler_class=_LoggingRequestHandler,
        )
        logger.info("HTTP server is listening on :%s", self.config.http_server_port)
        thread = threading.Thread(target=server.serve_forever, name="http-server", daemon=True)
        self._server = server
        self._thread = thread
        thread.start()

    def shutdown(self) -> None:
        """Stop accepting requests and wait for the server thread to finish."""
        server, thread = self._server, self._thread
        if server is None:
            return
        self._server = None
        self._thread = None
        server.shutdown()
        server.server_close()
        if thread is not None:
            thread.join(timeout=_SHUTDOWN_TIMEOUT)
            if thread.is_alive():
                raise TimeoutError("server did not stop in time")

    def close(self) -> None:
        """Release the resources the application holds; later calls do nothing."""
        cleanup, self._cleanup = self._cleanup, None
        if cleanup is not None:
            cleanup()

    def __enter__(self) -> Application:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        try:
            self.shutdown()
        finally:
            self.close()


def build_application(config: Config | None = None) -> Application:
    """Connect to the database and assemble the service and HTTP application."""
    if config is None:
        config = load_config()
    database, cleanup = connect(config)
    customer_repo = MongoCustomerRepository(database)
    rule_repo = MongoRuleRepository(database)
    service = AccumulatePointService(rule_repo, customer_repo, config)
    return Application(create_app(service, config), config, cleanup)


def main(argv: list[str] | None = None) -> int:
    """Run the HTTP server until SIGINT or SIGTERM arrives."""
    parser = argparse.ArgumentParser(description="Serve the point accrual upload API.")
    parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(message)s")

    try:
        application = build_application()
    except (ConfigError, ConnectionError) as exc:
        logger.error("Failed to initialize application: %s", exc)
        return 1

    with application:
        try:
            application.start()
        except (OSError, ValueError) as exc:
            logger.error("Failed to start servers: %s", exc)
            return 1

        stop = threading.Event()
        previous = {
            sig: signal.signal(sig, lambda *_: stop.set())
            for sig in (signal.SIGINT, signal.SIGTERM)
        }
        try:
            while not stop.wait(0.5):
                pass
        finally:
            for sig, handler in previous.items():
                signal.signal(sig, handler)

        logger.info("Shutting down servers...")
        try:
            application.shutdown()
        except TimeoutError as exc:
            logger.error("Server forced to shutdown: %s", exc)

    logger.info("Server exited")
    return 0