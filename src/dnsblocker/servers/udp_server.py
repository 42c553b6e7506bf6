import ipaddress
import logging
import socket
import socketserver
from typing import Tuple

from .handler import QueryHandler

logger = logging.getLogger("dnsblocker.server")


class DNSUDPHandler(socketserver.BaseRequestHandler):
    """
    Handles UDP DNS requests.
    This class is instantiated for each incoming datagram, on its own thread.

    Example use:
        This handler is used internally by the DNSServer and is not
        typically instantiated directly by users.
    """

    def handle(self) -> None:
        data, sock = self.request
        logger.debug("Accept request from %s:%s", *self.client_address[:2])
        try:
            response = self.server.query_handler.handle(data)
        except Exception:  # pragma: no cover
            logger.exception("Unhandled error answering %s", self.client_address[0])
            return
        if response is None:
            return
        try:
            sock.sendto(response, self.client_address)
        except OSError as e:
            logger.error("Writer error to %s: %s", self.client_address[0], e)


class ThreadingDNSUDPServer(socketserver.ThreadingUDPServer):
    """ThreadingUDPServer carrying the QueryHandler shared by request threads."""

    daemon_threads = True

    def __init__(self, server_address: Tuple[str, int], query_handler: QueryHandler):
        self.query_handler = query_handler
        host = server_address[0]
        try:
            if ipaddress.ip_address(host).version == 6:
                self.address_family = socket.AF_INET6
        except ValueError:
            pass
        super().__init__(server_address, DNSUDPHandler)


class DNSServer:
    """A basic UDP DNS server wrapper.

    Example use:
        >>> import threading
        >>> server = DNSServer("127.0.0.1", 5355, handler)
        >>> t = threading.Thread(target=server.serve_forever, daemon=True)
        >>> t.start()
        >>> server.stop()
    """

    def __init__(self, host: str, port: int, query_handler: QueryHandler) -> None:
        """Bind the UDP listener.

        Inputs:
            host: The host to listen on.
            port: The port to listen on (0 picks a free port).
            query_handler: QueryHandler invoked once per received datagram.

        Raises:
            OSError: When the address cannot be bound.
        """
        try:
            self.server = ThreadingDNSUDPServer((host, int(port)), query_handler)
        except PermissionError as e:
            logger.error(
                "Permission denied when binding to %s:%d. Try a port >1024 or run with elevated privileges. Original error: %s",
                host,
                port,
                e,
            )
            raise
        logger.debug("DNS UDP server bound to %s:%d", *self.server_address)

    @property
    def server_address(self) -> Tuple[str, int]:
        addr = self.server.server_address
        return str(addr[0]), int(addr[1])

    def serve_forever(self) -> None:
        """Start the UDP server loop and listen for requests.

        Inputs:
          - None
        Outputs:
          - None; runs until stop() is called or KeyboardInterrupt occurs.
        """
        try:
            self.server.serve_forever()
        except KeyboardInterrupt:
            pass

    def stop(self) -> None:
        """Request graceful shutdown and close the underlying UDP socket.

        Inputs:
          - None
        Outputs:
          - None; best-effort shutdown suitable for use from signal handlers.
        """
        try:
            self.server.shutdown()
        except Exception:  # pragma: no cover - log-only path
            logger.exception("Error while shutting down UDP server")
        try:
            self.server.server_close()
        except Exception:  # pragma: no cover - log-only path
            logger.exception("Error while closing UDP server socket")
