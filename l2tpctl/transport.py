"""
Connected UDP transport.

Satisfies the transport interface the handshake expects:
send(bytes) -> int and recv() -> bytes, both raising OSError.
"""
import socket

import structlog

from l2tpctl.constants import L2TP_PORT

log = structlog.get_logger()


class UdpTransport:
    """A UDP socket bound locally and connected to one peer."""

    def __init__(self, remote, local=("0.0.0.0", 0), bufsize=4096, timeout=None):
        if isinstance(remote, str):
            remote = (remote, L2TP_PORT)
        self.bufsize = bufsize
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            self.sock.settimeout(timeout)
            self.sock.bind(local)
            self.sock.connect(remote)
        except OSError:
            self.sock.close()
            raise
        log.debug("udp_transport_connected",
                  local=self.sock.getsockname(), remote=remote)

    def send(self, data):
        return self.sock.send(data)

    def recv(self):
        # Datagrams larger than bufsize are truncated and fail to decode
        return self.sock.recv(self.bufsize)

    def close(self):
        self.sock.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()
