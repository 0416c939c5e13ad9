"""Shared fixtures: a scripted transport and SCCRP builders."""
import pytest

from l2tpctl.avp import (
    AssignedTunnelIdAvp,
    ChallengeAvp,
    HostNameAvp,
    MessageTypeAvp,
    ProtocolVersionAvp,
)
from l2tpctl.config import HandshakeConfig
from l2tpctl.constants import MessageType
from l2tpctl.protocol import ControlMessage, encode_message

SECRET = b'shared-secret'
LOCAL_TUNNEL_ID = 6


class ScriptedTransport:
    """Records sent datagrams and replays queued replies."""

    def __init__(self, replies=(), short_by=0):
        self.replies = list(replies)
        self.sent = []
        self.short_by = short_by

    def send(self, data):
        self.sent.append(data)
        return len(data) - self.short_by

    def recv(self):
        if not self.replies:
            raise TimeoutError("no scripted reply left")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


def build_sccrp(tunnel_id=LOCAL_TUNNEL_ID, assigned_tunnel_id=42,
                challenge=b'\x01\x02\x03', extra_avps=(), ns=0, nr=1):
    """Encode an SCCRP; pass None to leave out the tunnel id or challenge."""
    avps = [
        MessageTypeAvp(MessageType.START_CONTROL_CONNECTION_REPLY),
        ProtocolVersionAvp(1, 0),
        HostNameAvp(b'lns'),
    ]
    if assigned_tunnel_id is not None:
        avps.append(AssignedTunnelIdAvp(assigned_tunnel_id))
    if challenge is not None:
        avps.append(ChallengeAvp(challenge))
    avps.extend(extra_avps)
    return encode_message(ControlMessage(tunnel_id=tunnel_id, ns=ns, nr=nr, avps=avps))


@pytest.fixture
def config():
    return HandshakeConfig(
        host_name=b'RUGGEDv0',
        local_tunnel_id=LOCAL_TUNNEL_ID,
        secret=SECRET,
    )
