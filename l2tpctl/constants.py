"""
Protocol constants for the L2TP control channel.

Defines header bits, AVP attribute types, message types and sizes.
All multi-byte integers use big-endian (network byte order).
"""
import enum

# Protocol version carried in the header Ver field (L2TPv2, RFC 2661)
L2TP_VERSION = 2

# Protocol Version AVP advertised in SCCRQ
PROTOCOL_VERSION = 1
PROTOCOL_REVISION = 0

# Default UDP port
L2TP_PORT = 1701

# Header flag bits (first 16-bit word)
FLAG_TYPE = 0x8000      # T: 1 = control, 0 = data
FLAG_LENGTH = 0x4000    # L: length field present
FLAG_SEQUENCE = 0x0800  # S: ns/nr present
FLAG_OFFSET = 0x0200    # O: offset size present
FLAG_PRIORITY = 0x0100  # P: data priority
VERSION_MASK = 0x000F

# Control messages always carry T, L and S
CONTROL_FLAGS = FLAG_TYPE | FLAG_LENGTH | FLAG_SEQUENCE | L2TP_VERSION

# Field sizes (in bytes)
FLAGS_SIZE = 2
CONTROL_HEADER_SIZE = 12  # flags + length + tunnel + session + ns + nr
AVP_HEADER_SIZE = 6       # flags/length + vendor id + attribute type
CHALLENGE_RESPONSE_SIZE = 16  # MD5 output
TIE_BREAKER_SIZE = 8
DEFAULT_CHALLENGE_SIZE = 16

# AVP header bits
AVP_FLAG_MANDATORY = 0x8000
AVP_FLAG_HIDDEN = 0x4000
AVP_LENGTH_MASK = 0x03FF
MAX_AVP_LENGTH = AVP_LENGTH_MASK
MAX_AVP_VALUE_SIZE = MAX_AVP_LENGTH - AVP_HEADER_SIZE

IETF_VENDOR_ID = 0

# Framing / bearer capability bits
FRAMING_SYNC = 0x00000001
FRAMING_ASYNC = 0x00000002
BEARER_DIGITAL = 0x00000001
BEARER_ANALOG = 0x00000002

# Maximum message size (16-bit length field)
MAX_MESSAGE_SIZE = 0xFFFF


class AttributeType(enum.IntEnum):
    """IETF AVP attribute types understood by the codec."""
    MESSAGE_TYPE = 0
    RESULT_CODE = 1
    PROTOCOL_VERSION = 2
    FRAMING_CAPABILITIES = 3
    BEARER_CAPABILITIES = 4
    TIE_BREAKER = 5
    FIRMWARE_REVISION = 6
    HOST_NAME = 7
    VENDOR_NAME = 8
    ASSIGNED_TUNNEL_ID = 9
    RECEIVE_WINDOW_SIZE = 10
    CHALLENGE = 11
    CHALLENGE_RESPONSE = 13


class MessageType(enum.IntEnum):
    """Control message types (value of the Message Type AVP)."""
    START_CONTROL_CONNECTION_REQUEST = 1    # SCCRQ
    START_CONTROL_CONNECTION_REPLY = 2      # SCCRP
    START_CONTROL_CONNECTION_CONNECTED = 3  # SCCCN
    STOP_CONTROL_CONNECTION_NOTIFICATION = 4
    HELLO = 6
    OUTGOING_CALL_REQUEST = 7
    OUTGOING_CALL_REPLY = 8
    OUTGOING_CALL_CONNECTED = 9
    INCOMING_CALL_REQUEST = 10
    INCOMING_CALL_REPLY = 11
    INCOMING_CALL_CONNECTED = 12
    CALL_DISCONNECT_NOTIFY = 14
    WAN_ERROR_NOTIFY = 15
    SET_LINK_INFO = 16
