"""Tests for control/data message serialization and parsing."""
import struct

import pytest

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
from l2tpctl.constants import CONTROL_HEADER_SIZE, MessageType
from l2tpctl.protocol import (
    ControlMessage,
    DataMessage,
    DecodeError,
    InvalidAvp,
    TruncatedMessage,
    UnknownMessageKind,
    decode_message,
    encode_message,
    write_message,
)


def sccrq():
    return ControlMessage(
        tunnel_id=0,
        session_id=0,
        ns=0,
        nr=0,
        avps=[
            MessageTypeAvp(MessageType.START_CONTROL_CONNECTION_REQUEST),
            ProtocolVersionAvp(1, 0),
            HostNameAvp(b'RUGGEDv0'),
            FramingCapabilitiesAvp(True, True),
            AssignedTunnelIdAvp(6),
        ],
    )


def test_control_message_roundtrip():
    """Header fields and AVPs should survive encode/decode."""
    message = ControlMessage(
        tunnel_id=42,
        session_id=7,
        ns=3,
        nr=9,
        avps=[
            MessageTypeAvp(MessageType.START_CONTROL_CONNECTION_CONNECTED),
            ChallengeResponseAvp(b'\xaa' * 16),
        ],
    )

    decoded = decode_message(encode_message(message))

    assert decoded == message
    assert decoded.tunnel_id == 42
    assert decoded.session_id == 7
    assert decoded.ns == 3
    assert decoded.nr == 9
    assert decoded.avps == message.avps


def test_zero_avp_control_message_roundtrip():
    """A control message without AVPs (ZLB) is valid."""
    message = ControlMessage(tunnel_id=5, ns=1, nr=2)
    packet = encode_message(message)

    assert len(packet) == CONTROL_HEADER_SIZE
    assert decode_message(packet) == message


def test_length_field_is_recomputed():
    """A stale length on the message object must not reach the wire."""
    message = sccrq()
    message.length = 9999

    packet = encode_message(message)
    (length,) = struct.unpack_from('!H', packet, 2)

    assert length == len(packet)
    assert decode_message(packet).length == len(packet)


def test_control_header_flags():
    """Control messages set T, L, S and version 2."""
    packet = encode_message(sccrq())
    assert packet[:2] == b'\xc8\x02'


def test_write_message_appends_to_sink():
    """write_message should extend the sink and report the byte count."""
    sink = bytearray(b'prefix')
    written = write_message(sccrq(), sink)

    assert written == len(encode_message(sccrq()))
    assert bytes(sink[6:]) == encode_message(sccrq())


def test_message_type_property():
    """message_type returns the leading MessageType value or None."""
    assert sccrq().message_type == MessageType.START_CONTROL_CONNECTION_REQUEST
    assert ControlMessage(tunnel_id=1).message_type is None
    assert ControlMessage(tunnel_id=1, avps=[HostNameAvp(b'x')]).message_type is None


def test_trailing_bytes_are_ignored():
    """Decoding stops at the declared length."""
    packet = encode_message(sccrq())
    decoded = decode_message(packet + b'\x00\x00\x00\x00padding')

    assert decoded == sccrq()


def test_every_prefix_is_truncated():
    """Any prefix shorter than the declared length fails cleanly."""
    packet = encode_message(sccrq())

    for size in range(len(packet)):
        with pytest.raises(TruncatedMessage):
            decode_message(packet[:size])


def test_declared_length_below_header():
    """A control length shorter than the header is a truncation."""
    packet = bytearray(encode_message(sccrq()))
    struct.pack_into('!H', packet, 2, 8)

    with pytest.raises(TruncatedMessage):
        decode_message(bytes(packet))


def test_wrong_version_is_unknown_kind():
    """Only L2TPv2 headers are recognised."""
    packet = bytearray(encode_message(sccrq()))
    packet[1] = 0x03  # L2TPv3

    with pytest.raises(UnknownMessageKind):
        decode_message(bytes(packet))


@pytest.mark.parametrize('flags', [0x8802, 0xC002, 0xCA02, 0xC902])
def test_bad_control_flags_are_unknown_kind(flags):
    """Control messages without L/S or with O/P set are rejected."""
    packet = bytearray(encode_message(sccrq()))
    struct.pack_into('!H', packet, 0, flags)

    with pytest.raises(UnknownMessageKind):
        decode_message(bytes(packet))


def test_malformed_avp_is_invalid_avp():
    """AVP failures propagate as InvalidAvp with the cause attached."""
    message = ControlMessage(tunnel_id=1, avps=[ChallengeAvp(b'\x00' * 16)])
    packet = bytearray(encode_message(message))
    # Rewrite the attribute type from Challenge (11) to ChallengeResponse (13)
    # and shrink the value by one byte so it fails the 16-byte check.
    struct.pack_into('!HHH', packet, CONTROL_HEADER_SIZE, 0x8000 | 21, 0, 13)
    struct.pack_into('!H', packet, 2, len(packet) - 1)

    with pytest.raises(InvalidAvp) as excinfo:
        decode_message(bytes(packet[:-1]))

    assert excinfo.value.__cause__ is not None


def test_avp_overrunning_message_is_invalid_avp():
    """An AVP whose length runs past the message end is rejected."""
    packet = bytearray(encode_message(ControlMessage(tunnel_id=1, avps=[HostNameAvp(b'abcd')])))
    struct.pack_into('!H', packet, CONTROL_HEADER_SIZE, 0x8000 | 40)

    with pytest.raises(InvalidAvp):
        decode_message(bytes(packet))


def test_decode_errors_share_base_class():
    """Callers can catch every envelope failure with DecodeError."""
    assert issubclass(TruncatedMessage, DecodeError)
    assert issubclass(UnknownMessageKind, DecodeError)
    assert issubclass(InvalidAvp, DecodeError)

    with pytest.raises(DecodeError):
        decode_message(b'')


def test_unknown_avps_survive_envelope():
    """Unknown AVPs are passed through to the caller."""
    message = ControlMessage(tunnel_id=3, avps=[
        MessageTypeAvp(MessageType.START_CONTROL_CONNECTION_REPLY),
        UnknownAvp(attr_type=99, value=b'\x01', mandatory=False),
    ])

    assert decode_message(encode_message(message)).avps == message.avps


def test_data_message_roundtrip():
    """Data messages carry ids and an opaque payload."""
    message = DataMessage(tunnel_id=42, session_id=3, payload=b'\xff\x03\xc0\x21')
    packet = encode_message(message)

    assert packet[0] & 0x80 == 0
    assert decode_message(packet) == message


def test_data_message_with_sequence_roundtrip():
    """ns/nr are carried when the S bit is set."""
    message = DataMessage(tunnel_id=1, session_id=2, payload=b'ppp', ns=10, nr=0)

    assert decode_message(encode_message(message)) == message


def test_minimal_data_message_without_length():
    """A data header with no optional fields is flags + ids only."""
    packet = struct.pack('!HHH', 0x0002, 42, 3) + b'payload'
    decoded = decode_message(packet)

    assert decoded == DataMessage(tunnel_id=42, session_id=3, payload=b'payload')


def test_data_message_offset_padding_is_skipped():
    """Offset padding is not part of the payload."""
    packet = struct.pack('!HHHH', 0x0202, 1, 2, 3) + b'\x00\x00\x00' + b'ppp'
    decoded = decode_message(packet)

    assert decoded.payload == b'ppp'


def test_data_message_offset_past_end_is_truncated():
    """An offset size pointing past the message is a truncation."""
    packet = struct.pack('!HHHH', 0x0202, 1, 2, 50) + b'ppp'

    with pytest.raises(TruncatedMessage):
        decode_message(packet)


def test_data_message_truncated_prefixes():
    """Data message prefixes shorter than the declared length fail."""
    packet = encode_message(DataMessage(tunnel_id=1, session_id=2, payload=b'abc', ns=1, nr=1))

    for size in range(len(packet)):
        with pytest.raises(TruncatedMessage):
            decode_message(packet[:size])


def test_encode_rejects_oversized_message():
    """Messages must fit the 16-bit length field."""
    with pytest.raises(ValueError):
        encode_message(DataMessage(tunnel_id=1, session_id=1, payload=b'x' * 70000))


def test_encode_rejects_other_objects():
    """Only ControlMessage and DataMessage can be encoded."""
    with pytest.raises(TypeError):
        encode_message(b'raw bytes')
