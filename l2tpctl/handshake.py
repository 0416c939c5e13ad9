"""
Control connection handshake (initiator side).

Drives the three-message exchange over an injected transport:

    Idle --SCCRQ--> RequestSent --SCCRP--> ResponseValidated --SCCCN--> Established

Any violation moves the handshake to Failed(reason) and raises the matching
HandshakeError. Nothing is retried: a caller that wants another attempt
creates a new Handshake.
"""

import enum
from dataclasses import dataclass

import structlog

from l2tpctl.avp import (
    AssignedTunnelIdAvp,
    ChallengeAvp,
    ChallengeResponseAvp,
    FramingCapabilitiesAvp,
    HostNameAvp,
    MessageTypeAvp,
    ProtocolVersionAvp,
    UnknownAvp,
)
from l2tpctl.constants import PROTOCOL_REVISION, PROTOCOL_VERSION, MessageType
from l2tpctl.crypto import compute_response, generate_challenge, verify_response
from l2tpctl.protocol import (
    ControlMessage,
    DataMessage,
    DecodeError,
    decode_message,
    encode_message,
)

log = structlog.get_logger()


class FailureReason(enum.Enum):
    PARTIAL_SEND = "partial_send"
    INVALID_RESPONSE = "invalid_response"
    PREMATURE_DATA = "premature_data"
    TUNNEL_ID_MISMATCH = "tunnel_id_mismatch"
    UNEXPECTED_MESSAGE_TYPE = "unexpected_message_type"
    MISSING_TUNNEL_ID = "missing_tunnel_id"
    MISSING_CHALLENGE = "missing_challenge"
    UNSUPPORTED_VERSION = "unsupported_version"
    UNKNOWN_MANDATORY_AVP = "unknown_mandatory_avp"
    MISSING_CHALLENGE_RESPONSE = "missing_challenge_response"
    PEER_AUTHENTICATION_FAILED = "peer_authentication_failed"
    IO_ERROR = "io_error"


class HandshakeError(Exception):
    """Base class for handshake failures; `reason` names the failure."""
    reason = None


class PartialSend(HandshakeError):
    reason = FailureReason.PARTIAL_SEND


class InvalidResponse(HandshakeError):
    reason = FailureReason.INVALID_RESPONSE


class PrematureData(HandshakeError):
    reason = FailureReason.PREMATURE_DATA


class TunnelIdMismatch(HandshakeError):
    reason = FailureReason.TUNNEL_ID_MISMATCH


class UnexpectedMessageType(HandshakeError):
    reason = FailureReason.UNEXPECTED_MESSAGE_TYPE


class MissingTunnelId(HandshakeError):
    reason = FailureReason.MISSING_TUNNEL_ID


class MissingChallenge(HandshakeError):
    reason = FailureReason.MISSING_CHALLENGE


class UnsupportedVersion(HandshakeError):
    reason = FailureReason.UNSUPPORTED_VERSION


class UnknownMandatoryAvp(HandshakeError):
    reason = FailureReason.UNKNOWN_MANDATORY_AVP


class MissingChallengeResponse(HandshakeError):
    reason = FailureReason.MISSING_CHALLENGE_RESPONSE


class PeerAuthenticationFailed(HandshakeError):
    reason = FailureReason.PEER_AUTHENTICATION_FAILED


class HandshakeStateError(RuntimeError):
    """A handshake step was called in the wrong state."""
    pass


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class RequestSent:
    requested_tunnel_id: int


@dataclass(frozen=True)
class ResponseValidated:
    assigned_tunnel_id: int
    challenge: bytes


@dataclass(frozen=True)
class Established:
    assigned_tunnel_id: int


@dataclass(frozen=True)
class Failed:
    reason: FailureReason


class Handshake:
    """
    One attempt at establishing a control connection.

    Owns its transport exclusively for the duration of the attempt.
    The transport needs send(bytes) -> int and recv() -> bytes; both
    may raise OSError, which is propagated after moving to Failed(IO_ERROR).
    """

    def __init__(self, transport, config):
        self.transport = transport
        self.config = config
        self.state = Idle()
        self._our_challenge = None
        self._next_nr = 0
        self.log = log.bind(local_tunnel_id=config.local_tunnel_id)

    def run(self):
        """Perform all three steps and return the Established state."""
        self.send_request()
        self.receive_reply()
        return self.send_connected()

    def send_request(self):
        """Send SCCRQ advertising our tunnel id."""
        self._expect(Idle)
        config = self.config
        avps = [
            MessageTypeAvp(MessageType.START_CONTROL_CONNECTION_REQUEST),
            ProtocolVersionAvp(PROTOCOL_VERSION, PROTOCOL_REVISION),
            HostNameAvp(config.host_name),
            FramingCapabilitiesAvp(config.async_framing, config.sync_framing),
            AssignedTunnelIdAvp(config.local_tunnel_id),
        ]
        if config.authenticate_peer:
            self._our_challenge = generate_challenge()
            avps.append(ChallengeAvp(self._our_challenge))

        self._send(ControlMessage(tunnel_id=0, avps=avps))
        self.state = RequestSent(config.local_tunnel_id)
        self.log.info("sccrq_sent", host_name=config.host_name)
        return self.state

    def receive_reply(self):
        """Receive SCCRP and extract the assigned tunnel id and challenge."""
        state = self._expect(RequestSent)
        data = self._recv()

        try:
            message = decode_message(data)
        except DecodeError as e:
            raise self._fail(InvalidResponse(f"Invalid response received: {e}")) from e

        if isinstance(message, DataMessage):
            raise self._fail(PrematureData(
                "Received data before the control channel was established"
            ))
        if message.tunnel_id != state.requested_tunnel_id:
            raise self._fail(TunnelIdMismatch(
                f"Reply addressed to tunnel {message.tunnel_id}, "
                f"expected {state.requested_tunnel_id}"
            ))

        first = message.avps[0] if message.avps else None
        if not isinstance(first, MessageTypeAvp):
            raise self._fail(UnexpectedMessageType("First AVP is not a MessageType"))
        if first.value != MessageType.START_CONTROL_CONNECTION_REPLY:
            raise self._fail(UnexpectedMessageType(
                f"First AVP has unexpected message type {first.value.name}"
            ))

        self.log.info("sccrp_received", avps=len(message.avps), ns=message.ns)

        assigned_tunnel_id = None
        challenge = None
        version = None
        peer_response = None
        for avp in message.avps[1:]:
            if isinstance(avp, AssignedTunnelIdAvp):
                assigned_tunnel_id = avp.value
            elif isinstance(avp, ChallengeAvp):
                challenge = avp.value
            elif isinstance(avp, ProtocolVersionAvp):
                version = avp
            elif isinstance(avp, ChallengeResponseAvp):
                peer_response = avp.value
            elif isinstance(avp, UnknownAvp) and avp.mandatory \
                    and self.config.reject_unknown_mandatory:
                raise self._fail(UnknownMandatoryAvp(
                    f"Unrecognized mandatory AVP type {avp.attr_type} "
                    f"(vendor {avp.vendor_id})"
                ))
            else:
                self.log.info("unhandled_avp", avp=repr(avp))

        if assigned_tunnel_id is None:
            raise self._fail(MissingTunnelId("No tunnel ID assigned by remote"))
        if challenge is None:
            raise self._fail(MissingChallenge("No challenge received from remote"))
        self._check_version(version)
        self._check_peer_response(peer_response)

        self._next_nr = (message.ns + 1) & 0xFFFF
        self.state = ResponseValidated(assigned_tunnel_id, challenge)
        self.log.info("sccrp_validated", assigned_tunnel_id=assigned_tunnel_id)
        return self.state

    def send_connected(self):
        """Answer the challenge with SCCCN; the tunnel is then established."""
        state = self._expect(ResponseValidated)
        response = compute_response(
            state.assigned_tunnel_id, self.config.secret, state.challenge
        )
        scccn = ControlMessage(
            tunnel_id=state.assigned_tunnel_id,
            ns=1,
            nr=self._next_nr,
            avps=[
                MessageTypeAvp(MessageType.START_CONTROL_CONNECTION_CONNECTED),
                ChallengeResponseAvp(response),
            ],
        )
        self._send(scccn)
        self.state = Established(state.assigned_tunnel_id)
        self.log.info("tunnel_established", assigned_tunnel_id=state.assigned_tunnel_id)
        return self.state

    def _check_version(self, version):
        if not self.config.require_protocol_version:
            return
        expected = ProtocolVersionAvp(PROTOCOL_VERSION, PROTOCOL_REVISION)
        if version != expected:
            raise self._fail(UnsupportedVersion(
                f"Peer protocol version {version} is not "
                f"{PROTOCOL_VERSION}.{PROTOCOL_REVISION}"
            ))

    def _check_peer_response(self, peer_response):
        if self._our_challenge is None:
            return
        if peer_response is None:
            raise self._fail(MissingChallengeResponse(
                "Peer did not answer our challenge"
            ))
        if not verify_response(self.config.local_tunnel_id, self.config.secret,
                               self._our_challenge, peer_response):
            raise self._fail(PeerAuthenticationFailed(
                "Peer challenge response does not match"
            ))

    def _expect(self, state_type):
        if not isinstance(self.state, state_type):
            raise HandshakeStateError(
                f"Cannot perform this step in state {self.state!r}, "
                f"expected {state_type.__name__}"
            )
        return self.state

    def _fail(self, error):
        self.state = Failed(error.reason)
        self.log.warning("handshake_failed", reason=error.reason.value, error=str(error))
        return error

    def _send(self, message):
        data = encode_message(message)
        try:
            sent = self.transport.send(data)
        except OSError as e:
            self._io_failed(e)
            raise
        if sent < len(data):
            raise self._fail(PartialSend(f"Sent {sent} of {len(data)} bytes"))

    def _recv(self):
        try:
            return self.transport.recv()
        except OSError as e:
            self._io_failed(e)
            raise

    def _io_failed(self, error):
        self.state = Failed(FailureReason.IO_ERROR)
        self.log.warning("handshake_failed", reason=FailureReason.IO_ERROR.value,
                         error=str(error))
