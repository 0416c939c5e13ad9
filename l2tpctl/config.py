"""
Handshake configuration.

Everything the orchestrator needs from its caller is passed in explicitly;
the core has no built-in host name, tunnel id or secret.
"""
import os
from dataclasses import dataclass

from l2tpctl.constants import MAX_AVP_VALUE_SIZE


class ConfigError(ValueError):
    """Raised when the handshake configuration is invalid."""
    pass


@dataclass(frozen=True)
class HandshakeConfig:
    """Configuration for one control connection handshake."""

    host_name: bytes
    local_tunnel_id: int
    secret: bytes

    # Framing capabilities advertised in SCCRQ
    async_framing: bool = True
    sync_framing: bool = True

    # Strictness policy for validating SCCRP
    require_protocol_version: bool = False
    reject_unknown_mandatory: bool = False

    # Send our own challenge and require the peer to answer it in SCCRP
    authenticate_peer: bool = False

    def __post_init__(self):
        if not isinstance(self.host_name, bytes) or not self.host_name:
            raise ConfigError("host_name must be non-empty bytes")
        if len(self.host_name) > MAX_AVP_VALUE_SIZE:
            raise ConfigError(
                f"host_name must be at most {MAX_AVP_VALUE_SIZE} bytes, "
                f"got {len(self.host_name)}"
            )
        if not isinstance(self.secret, bytes):
            raise ConfigError("secret must be bytes")
        if not isinstance(self.local_tunnel_id, int) or \
                isinstance(self.local_tunnel_id, bool) or \
                not 0 < self.local_tunnel_id <= 0xFFFF:
            raise ConfigError(
                f"local_tunnel_id must be 1-65535, got {self.local_tunnel_id!r}"
            )

    @classmethod
    def from_env(cls, environ=None, **overrides):
        """
        Build a configuration from environment variables.

        Reads L2TP_HOST_NAME, L2TP_TUNNEL_ID and L2TP_SECRET; keyword
        arguments override or extend the result.

        Raises:
            ConfigError: If a variable is missing or malformed
        """
        environ = os.environ if environ is None else environ

        def require(name):
            value = environ.get(name)
            if value is None:
                raise ConfigError(f"Required environment variable {name} is not set")
            return value

        tunnel_id = require("L2TP_TUNNEL_ID")
        try:
            tunnel_id = int(tunnel_id)
        except ValueError:
            raise ConfigError(f"L2TP_TUNNEL_ID must be an integer, got {tunnel_id!r}")

        values = {
            "host_name": require("L2TP_HOST_NAME").encode(),
            "local_tunnel_id": tunnel_id,
            "secret": require("L2TP_SECRET").encode(),
        }
        values.update(overrides)
        return cls(**values)
