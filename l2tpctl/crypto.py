"""
Challenge/response authentication for the L2TP control channel.

The response is the CHAP-style digest MD5(tunnel_id || secret || challenge),
computed with the `cryptography` hash primitives. PyNaCl (libsodium)
supplies random challenge bytes.
"""
import struct

from cryptography.hazmat.primitives import constant_time, hashes
from nacl.utils import random

from l2tpctl.constants import CHALLENGE_RESPONSE_SIZE, DEFAULT_CHALLENGE_SIZE


def compute_response(tunnel_id, secret, challenge):
    """
    Compute the challenge response for a tunnel.

    Both peers must compute this bit for bit identically, otherwise the
    peer rejects the connection.

    Args:
        tunnel_id (int): Tunnel id, packed as a big-endian 16-bit integer
        secret (bytes): Shared secret
        challenge (bytes): Challenge received from the peer (may be empty)

    Returns:
        bytes: 16-byte MD5 digest

    Example:
        >>> len(compute_response(42, b'secret', b'\\x01\\x02\\x03'))
        16
    """
    digest = hashes.Hash(hashes.MD5())
    digest.update(struct.pack('!H', tunnel_id))
    digest.update(secret)
    digest.update(challenge)
    return digest.finalize()


def generate_challenge(size=DEFAULT_CHALLENGE_SIZE):
    """
    Generate random challenge bytes.

    Returns:
        bytes: `size` random bytes
    """
    if size < 1:
        raise ValueError(f"Challenge size must be positive, got {size}")
    return random(size)


def verify_response(tunnel_id, secret, challenge, response):
    """Check a peer's response in constant time."""
    if len(response) != CHALLENGE_RESPONSE_SIZE:
        return False
    expected = compute_response(tunnel_id, secret, challenge)
    return constant_time.bytes_eq(expected, response)
