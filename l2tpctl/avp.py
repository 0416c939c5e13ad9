"""
AVP codec for L2TP control messages.

Encodes and decodes single Attribute-Value Pairs (RFC 2661 section 4.1).

Format:
┌─┬─┬──────┬─────────────┬─────────────┬────────────────┬─────────────┐
│M│H│ rsvd │   Length    │  Vendor ID  │ Attribute Type │  Value ...  │
│1│1│  4   │  (10 bits)  │  (2 bytes)  │   (2 bytes)    │  (N bytes)  │
└─┴─┴──────┴─────────────┴─────────────┴────────────────┴─────────────┘

Length covers the 6-byte header plus the value. Attribute types the codec
does not know, vendor-specific AVPs and hidden AVPs decode to UnknownAvp
so the caller can decide what to do with them.
"""

import struct
from dataclasses import dataclass
from typing import ClassVar, Optional

from l2tpctl.constants import (
    AVP_FLAG_HIDDEN,
    AVP_FLAG_MANDATORY,
    AVP_HEADER_SIZE,
    AVP_LENGTH_MASK,
    BEARER_ANALOG,
    BEARER_DIGITAL,
    CHALLENGE_RESPONSE_SIZE,
    FRAMING_ASYNC,
    FRAMING_SYNC,
    IETF_VENDOR_ID,
    MAX_AVP_VALUE_SIZE,
    TIE_BREAKER_SIZE,
    AttributeType,
    MessageType,
)


class MalformedAvp(ValueError):
    """Raised when an AVP record cannot be decoded."""
    pass


# attr_type -> Avp subclass, filled by _register
_AVP_TYPES = {}


def _register(cls):
    _AVP_TYPES[cls.attr_type] = cls
    return cls


def _expect_size(name, value, size):
    if len(value) != size:
        raise MalformedAvp(
            f"{name} value must be {size} bytes, got {len(value)}"
        )


@dataclass(frozen=True)
class Avp:
    """Base class of every typed AVP."""

    attr_type: ClassVar[int]
    mandatory: ClassVar[bool] = True

    def encode_value(self):
        raise NotImplementedError

    @classmethod
    def decode_value(cls, value):
        raise NotImplementedError


class _U16Avp(Avp):
    """AVP whose value is a single 16-bit integer."""

    def encode_value(self):
        return struct.pack('!H', self.value)

    @classmethod
    def decode_value(cls, value):
        _expect_size(cls.__name__, value, 2)
        (number,) = struct.unpack('!H', value)
        return cls(number)


@_register
@dataclass(frozen=True)
class MessageTypeAvp(Avp):
    attr_type: ClassVar[int] = AttributeType.MESSAGE_TYPE

    value: MessageType

    def encode_value(self):
        return struct.pack('!H', self.value)

    @classmethod
    def decode_value(cls, value):
        _expect_size(cls.__name__, value, 2)
        (number,) = struct.unpack('!H', value)
        try:
            return cls(MessageType(number))
        except ValueError:
            raise MalformedAvp(f"Unknown control message type: {number}")


@_register
@dataclass(frozen=True)
class ResultCodeAvp(Avp):
    """Result code with optional error code and error message."""

    attr_type: ClassVar[int] = AttributeType.RESULT_CODE

    result: int
    error: Optional[int] = None
    message: bytes = b''

    def __post_init__(self):
        if self.message and self.error is None:
            raise ValueError("ResultCodeAvp message requires an error code")

    def encode_value(self):
        value = struct.pack('!H', self.result)
        if self.error is not None or self.message:
            value += struct.pack('!H', self.error or 0) + self.message
        return value

    @classmethod
    def decode_value(cls, value):
        if len(value) < 2 or len(value) == 3:
            raise MalformedAvp(
                f"ResultCodeAvp value must be 2 or at least 4 bytes, "
                f"got {len(value)}"
            )
        (result,) = struct.unpack_from('!H', value)
        if len(value) == 2:
            return cls(result)
        (error,) = struct.unpack_from('!H', value, 2)
        return cls(result, error, bytes(value[4:]))


@_register
@dataclass(frozen=True)
class ProtocolVersionAvp(Avp):
    attr_type: ClassVar[int] = AttributeType.PROTOCOL_VERSION

    version: int
    revision: int

    def encode_value(self):
        return struct.pack('!BB', self.version, self.revision)

    @classmethod
    def decode_value(cls, value):
        _expect_size(cls.__name__, value, 2)
        return cls(*struct.unpack('!BB', value))


@_register
@dataclass(frozen=True)
class FramingCapabilitiesAvp(Avp):
    attr_type: ClassVar[int] = AttributeType.FRAMING_CAPABILITIES

    async_framing: bool
    sync_framing: bool

    def encode_value(self):
        bits = 0
        if self.async_framing:
            bits |= FRAMING_ASYNC
        if self.sync_framing:
            bits |= FRAMING_SYNC
        return struct.pack('!I', bits)

    @classmethod
    def decode_value(cls, value):
        _expect_size(cls.__name__, value, 4)
        (bits,) = struct.unpack('!I', value)
        return cls(bool(bits & FRAMING_ASYNC), bool(bits & FRAMING_SYNC))


@_register
@dataclass(frozen=True)
class BearerCapabilitiesAvp(Avp):
    attr_type: ClassVar[int] = AttributeType.BEARER_CAPABILITIES

    analog: bool
    digital: bool

    def encode_value(self):
        bits = 0
        if self.analog:
            bits |= BEARER_ANALOG
        if self.digital:
            bits |= BEARER_DIGITAL
        return struct.pack('!I', bits)

    @classmethod
    def decode_value(cls, value):
        _expect_size(cls.__name__, value, 4)
        (bits,) = struct.unpack('!I', value)
        return cls(bool(bits & BEARER_ANALOG), bool(bits & BEARER_DIGITAL))


@_register
@dataclass(frozen=True)
class TieBreakerAvp(Avp):
    attr_type: ClassVar[int] = AttributeType.TIE_BREAKER

    value: bytes

    def __post_init__(self):
        if len(self.value) != TIE_BREAKER_SIZE:
            raise ValueError(
                f"TieBreakerAvp value must be {TIE_BREAKER_SIZE} bytes, "
                f"got {len(self.value)}"
            )

    def encode_value(self):
        return self.value

    @classmethod
    def decode_value(cls, value):
        _expect_size(cls.__name__, value, TIE_BREAKER_SIZE)
        return cls(bytes(value))


@_register
@dataclass(frozen=True)
class FirmwareRevisionAvp(_U16Avp):
    attr_type: ClassVar[int] = AttributeType.FIRMWARE_REVISION
    mandatory: ClassVar[bool] = False

    value: int


@_register
@dataclass(frozen=True)
class HostNameAvp(Avp):
    attr_type: ClassVar[int] = AttributeType.HOST_NAME

    value: bytes

    def __post_init__(self):
        if not self.value:
            raise ValueError("HostNameAvp value must not be empty")

    def encode_value(self):
        return self.value

    @classmethod
    def decode_value(cls, value):
        if not value:
            raise MalformedAvp("HostNameAvp value must not be empty")
        return cls(bytes(value))


@_register
@dataclass(frozen=True)
class VendorNameAvp(Avp):
    attr_type: ClassVar[int] = AttributeType.VENDOR_NAME
    mandatory: ClassVar[bool] = False

    value: bytes

    def encode_value(self):
        return self.value

    @classmethod
    def decode_value(cls, value):
        return cls(bytes(value))


@_register
@dataclass(frozen=True)
class AssignedTunnelIdAvp(_U16Avp):
    attr_type: ClassVar[int] = AttributeType.ASSIGNED_TUNNEL_ID

    value: int


@_register
@dataclass(frozen=True)
class ReceiveWindowSizeAvp(_U16Avp):
    attr_type: ClassVar[int] = AttributeType.RECEIVE_WINDOW_SIZE

    value: int


@_register
@dataclass(frozen=True)
class ChallengeAvp(Avp):
    attr_type: ClassVar[int] = AttributeType.CHALLENGE

    value: bytes

    def encode_value(self):
        return self.value

    @classmethod
    def decode_value(cls, value):
        return cls(bytes(value))


@_register
@dataclass(frozen=True)
class ChallengeResponseAvp(Avp):
    attr_type: ClassVar[int] = AttributeType.CHALLENGE_RESPONSE

    value: bytes

    def __post_init__(self):
        if len(self.value) != CHALLENGE_RESPONSE_SIZE:
            raise ValueError(
                f"ChallengeResponseAvp value must be "
                f"{CHALLENGE_RESPONSE_SIZE} bytes, got {len(self.value)}"
            )

    def encode_value(self):
        return self.value

    @classmethod
    def decode_value(cls, value):
        _expect_size(cls.__name__, value, CHALLENGE_RESPONSE_SIZE)
        return cls(bytes(value))


@dataclass(frozen=True)
class UnknownAvp:
    """An AVP this codec does not interpret, kept verbatim."""

    attr_type: int
    value: bytes
    vendor_id: int = IETF_VENDOR_ID
    mandatory: bool = False
    hidden: bool = False


def encode_avp(avp):
    """
    Encode a single AVP.

    Args:
        avp: An Avp subclass instance or an UnknownAvp

    Returns:
        bytes: Header followed by the value

    Raises:
        ValueError: If the value does not fit the 10-bit length field
    """
    if isinstance(avp, UnknownAvp):
        value = avp.value
        vendor_id = avp.vendor_id
        flags = AVP_FLAG_MANDATORY if avp.mandatory else 0
        if avp.hidden:
            flags |= AVP_FLAG_HIDDEN
    else:
        value = avp.encode_value()
        vendor_id = IETF_VENDOR_ID
        flags = AVP_FLAG_MANDATORY if avp.mandatory else 0

    if len(value) > MAX_AVP_VALUE_SIZE:
        raise ValueError(
            f"AVP value too large: {len(value)} bytes "
            f"(max {MAX_AVP_VALUE_SIZE})"
        )

    header = struct.pack(
        '!HHH',
        flags | (AVP_HEADER_SIZE + len(value)),
        vendor_id,
        avp.attr_type,
    )
    return header + value


def decode_avp(data, offset=0):
    """
    Decode one AVP starting at offset.

    Args:
        data (bytes): Buffer holding one or more AVPs
        offset (int): Position of the AVP header within data

    Returns:
        tuple: (avp, bytes_consumed)

    Raises:
        MalformedAvp: If the header or value violates the AVP format
    """
    remaining = len(data) - offset
    if remaining < AVP_HEADER_SIZE:
        raise MalformedAvp(
            f"AVP header needs {AVP_HEADER_SIZE} bytes, got {remaining}"
        )

    flags_length, vendor_id, attr_type = struct.unpack_from('!HHH', data, offset)
    length = flags_length & AVP_LENGTH_MASK
    mandatory = bool(flags_length & AVP_FLAG_MANDATORY)
    hidden = bool(flags_length & AVP_FLAG_HIDDEN)

    if length < AVP_HEADER_SIZE:
        raise MalformedAvp(f"AVP length {length} is shorter than its header")
    if length > remaining:
        raise MalformedAvp(
            f"AVP length {length} exceeds remaining {remaining} bytes"
        )

    value = bytes(data[offset + AVP_HEADER_SIZE:offset + length])
    cls = _AVP_TYPES.get(attr_type)
    if cls is None or vendor_id != IETF_VENDOR_ID or hidden:
        avp = UnknownAvp(attr_type, value, vendor_id, mandatory, hidden)
    else:
        avp = cls.decode_value(value)
    return avp, length


def decode_avps(data):
    """Decode a back-to-back sequence of AVPs filling the whole buffer."""
    avps = []
    offset = 0
    while offset < len(data):
        avp, consumed = decode_avp(data, offset)
        avps.append(avp)
        offset += consumed
    return avps
