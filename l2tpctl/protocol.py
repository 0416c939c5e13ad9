"""
Protocol layer for the L2TP control channel.

Handles message serialization (Python -> bytes) and
deserialization (bytes -> Python) for control and data messages.

Header format (RFC 2661 section 3.1):
┌─┬─┬─┬─┬─┬─┬─┬─┬───────┬──────┬─────────────┬───────────┬────────────┐
│T│L│x│x│S│x│O│P│ x x x │ Ver  │ Length (L)  │ Tunnel ID │ Session ID │
├─┴─┴─┴─┴─┴─┴─┴─┴───────┴──────┼─────────────┼───────────┴────────────┘
│    Ns (S)     │    Nr (S)    │ Offset Size (O) + Offset Pad (O)     │
└───────────────┴──────────────┴──────────────────────────────────────┘

Control messages always set T, L and S and carry AVPs after the 12-byte
header. Data messages carry an opaque payload.
"""

import struct
from dataclasses import dataclass, field
from typing import List, Optional

from l2tpctl.avp import MalformedAvp, MessageTypeAvp, decode_avp, encode_avp
from l2tpctl.constants import (
    CONTROL_FLAGS,
    CONTROL_HEADER_SIZE,
    FLAG_LENGTH,
    FLAG_OFFSET,
    FLAG_PRIORITY,
    FLAG_SEQUENCE,
    FLAG_TYPE,
    FLAGS_SIZE,
    L2TP_VERSION,
    MAX_MESSAGE_SIZE,
    VERSION_MASK,
)


class DecodeError(ValueError):
    """Raised when a message cannot be decoded."""
    pass


class TruncatedMessage(DecodeError):
    """Fewer bytes are present than the header requires or declares."""
    pass


class UnknownMessageKind(DecodeError):
    """The header flags or version do not describe a known message kind."""
    pass


class InvalidAvp(DecodeError):
    """An AVP inside the message failed to decode."""
    pass


@dataclass
class ControlMessage:
    """
    A control message: header identifiers plus an ordered list of AVPs.

    The first AVP is a MessageTypeAvp by convention. `length` is filled
    in when a message is decoded and ignored when one is encoded.
    """

    tunnel_id: int
    session_id: int = 0
    ns: int = 0
    nr: int = 0
    avps: List = field(default_factory=list)
    length: int = field(default=0, compare=False)

    @property
    def message_type(self):
        """Value of the leading MessageTypeAvp, or None."""
        if self.avps and isinstance(self.avps[0], MessageTypeAvp):
            return self.avps[0].value
        return None


@dataclass
class DataMessage:
    """A data message carrying an opaque (PPP) payload."""

    tunnel_id: int
    session_id: int
    payload: bytes = b''
    ns: Optional[int] = None
    nr: Optional[int] = None


def encode_message(message):
    """
    Serialize a control or data message.

    The length field is computed from the encoded size, never taken
    from the message object.

    Args:
        message: ControlMessage or DataMessage

    Returns:
        bytes: Serialized message

    Raises:
        ValueError: If the encoded message exceeds the 16-bit length field
    """
    if isinstance(message, ControlMessage):
        body = b''.join(encode_avp(avp) for avp in message.avps)
        header = bytearray(struct.pack(
            '!HHHHHH',
            CONTROL_FLAGS,
            0,  # length, backpatched below
            message.tunnel_id,
            message.session_id,
            message.ns,
            message.nr,
        ))
    elif isinstance(message, DataMessage):
        body = message.payload
        flags = FLAG_LENGTH | L2TP_VERSION
        if message.ns is not None:
            flags |= FLAG_SEQUENCE
        header = bytearray(struct.pack(
            '!HHHH', flags, 0, message.tunnel_id, message.session_id
        ))
        if message.ns is not None:
            header += struct.pack('!HH', message.ns, message.nr or 0)
    else:
        raise TypeError(f"Cannot encode {type(message).__name__}")

    total = len(header) + len(body)
    if total > MAX_MESSAGE_SIZE:
        raise ValueError(
            f"Message too large: {total} bytes (max {MAX_MESSAGE_SIZE})"
        )
    struct.pack_into('!H', header, FLAGS_SIZE, total)
    return bytes(header) + body


def write_message(message, sink):
    """
    Serialize a message and append it to a writable buffer.

    Args:
        message: ControlMessage or DataMessage
        sink (bytearray): Buffer the encoded bytes are appended to

    Returns:
        int: Number of bytes written
    """
    data = encode_message(message)
    sink.extend(data)
    return len(data)


def decode_message(data):
    """
    Parse a received datagram into a ControlMessage or DataMessage.

    Bytes beyond the declared length are ignored.

    Args:
        data (bytes): Raw datagram

    Returns:
        ControlMessage or DataMessage

    Raises:
        TruncatedMessage: If the buffer is shorter than the header needs
        UnknownMessageKind: If the flags or version are not recognised
        InvalidAvp: If an AVP inside the message is malformed
    """
    if len(data) < FLAGS_SIZE:
        raise TruncatedMessage(
            f"Message needs at least {FLAGS_SIZE} bytes, got {len(data)}"
        )

    (flags,) = struct.unpack_from('!H', data)
    version = flags & VERSION_MASK
    if version != L2TP_VERSION:
        raise UnknownMessageKind(
            f"Unsupported L2TP version: {version} (expected {L2TP_VERSION})"
        )

    if flags & FLAG_TYPE:
        return _decode_control(data, flags)
    return _decode_data(data, flags)


def _decode_control(data, flags):
    if not (flags & FLAG_LENGTH and flags & FLAG_SEQUENCE):
        raise UnknownMessageKind(
            f"Control message must set L and S bits, flags=0x{flags:04x}"
        )
    if flags & (FLAG_OFFSET | FLAG_PRIORITY):
        raise UnknownMessageKind(
            f"Control message must not set O or P bits, flags=0x{flags:04x}"
        )
    if len(data) < CONTROL_HEADER_SIZE:
        raise TruncatedMessage(
            f"Control header needs {CONTROL_HEADER_SIZE} bytes, "
            f"got {len(data)}"
        )

    _, length, tunnel_id, session_id, ns, nr = struct.unpack_from(
        '!HHHHHH', data
    )
    if length < CONTROL_HEADER_SIZE:
        raise TruncatedMessage(
            f"Declared length {length} is shorter than the control header"
        )
    if length > len(data):
        raise TruncatedMessage(
            f"Declared length {length} exceeds received {len(data)} bytes"
        )

    avps = []
    offset = CONTROL_HEADER_SIZE
    body = data[:length]
    while offset < length:
        try:
            avp, consumed = decode_avp(body, offset)
        except MalformedAvp as e:
            raise InvalidAvp(f"AVP at offset {offset}: {e}") from e
        avps.append(avp)
        offset += consumed

    return ControlMessage(
        tunnel_id=tunnel_id,
        session_id=session_id,
        ns=ns,
        nr=nr,
        avps=avps,
        length=length,
    )


def _decode_data(data, flags):
    offset = FLAGS_SIZE
    end = len(data)

    if flags & FLAG_LENGTH:
        if len(data) < offset + 2:
            raise TruncatedMessage("Data message ends inside the length field")
        (end,) = struct.unpack_from('!H', data, offset)
        offset += 2
        if end > len(data):
            raise TruncatedMessage(
                f"Declared length {end} exceeds received {len(data)} bytes"
            )

    if end < offset + 4:
        raise TruncatedMessage("Data message ends inside the tunnel/session ids")
    tunnel_id, session_id = struct.unpack_from('!HH', data, offset)
    offset += 4

    ns = nr = None
    if flags & FLAG_SEQUENCE:
        if end < offset + 4:
            raise TruncatedMessage("Data message ends inside ns/nr")
        ns, nr = struct.unpack_from('!HH', data, offset)
        offset += 4

    if flags & FLAG_OFFSET:
        if end < offset + 2:
            raise TruncatedMessage("Data message ends inside the offset size")
        (offset_size,) = struct.unpack_from('!H', data, offset)
        offset += 2 + offset_size
        if offset > end:
            raise TruncatedMessage(
                f"Offset size {offset_size} points past the end of the message"
            )

    return DataMessage(
        tunnel_id=tunnel_id,
        session_id=session_id,
        payload=bytes(data[offset:end]),
        ns=ns,
        nr=nr,
    )
