"""
Memcached binary protocol framing.

Only the pieces needed by the probe are implemented: request encoding for
SET and GET, and response header validation/parsing.

Header layout (24 bytes, big-endian)::

    magic(1) opcode(1) key_length(2) extra_length(1) data_type(1)
    vbucket_or_status(2) total_body_length(4) opaque(4) cas(8)
"""

import struct
from dataclasses import dataclass

REQUEST_MAGIC = 0x80
RESPONSE_MAGIC = 0x81
HEADER_SIZE = 24

GET_OPCODE = 0x00
SET_OPCODE = 0x01

STATUS_NO_ERROR = 0x0000
STATUS_KEY_NOT_FOUND = 0x0001

SET_EXTRA_LENGTH = 8

_HEADER = struct.Struct(">BBHBBHIIQ")


class IncompleteFrame(Exception):
    """Not enough bytes buffered to decode a full frame."""


class InvalidFrame(Exception):
    """Bytes do not form a memcached binary response."""


def encode_request_header(
    opcode: int,
    key_length: int,
    extra_length: int,
    value_length: int,
    opaque: int = 0,
    cas: int = 0,
) -> bytes:
    total_body_length = extra_length + key_length + value_length
    return _HEADER.pack(
        REQUEST_MAGIC, opcode, key_length, extra_length, 0, 0,
        total_body_length, opaque, cas
    )


def encode_set(key: bytes, value: bytes, ttl: int, flags: int = 0) -> bytes:
    """
    Encode a SET request.

    Args:
        key: Item key
        value: Item value
        ttl: Expiration in seconds (0 means never)
        flags: Opaque client flags stored with the item

    Returns:
        bytes: Full request frame
    """
    extras = struct.pack(">II", flags, ttl)
    header = encode_request_header(SET_OPCODE, len(key), SET_EXTRA_LENGTH, len(value))
    return header + extras + key + value


def encode_get(key: bytes) -> bytes:
    """Encode a GET request."""
    return encode_request_header(GET_OPCODE, len(key), 0, 0) + key


@dataclass
class ResponseHeader:
    magic: int
    opcode: int
    key_length: int
    extra_length: int
    data_type: int
    status: int
    total_body_length: int
    opaque: int
    cas: int

    @classmethod
    def parse(cls, data: bytes) -> "ResponseHeader":
        if len(data) < HEADER_SIZE:
            raise IncompleteFrame(f"need {HEADER_SIZE} header bytes, got {len(data)}")
        return cls(*_HEADER.unpack_from(data))

    @staticmethod
    def check(data: bytes) -> int:
        """
        Validate the start of a response buffer.

        Returns:
            int: Total frame length (header plus body)

        Raises:
            IncompleteFrame: Fewer than 24 bytes available
            InvalidFrame: Magic byte is not a response magic
        """
        if len(data) < HEADER_SIZE:
            raise IncompleteFrame(f"need {HEADER_SIZE} header bytes, got {len(data)}")
        if data[0] != RESPONSE_MAGIC:
            raise InvalidFrame(f"bad response magic 0x{data[0]:02x}")
        (total_body_length,) = struct.unpack_from(">I", data, 8)
        return HEADER_SIZE + total_body_length


@dataclass
class Response:
    header: ResponseHeader
    extra: bytes
    key: bytes
    value: bytes

    @staticmethod
    def check(data: bytes) -> int:
        """Return the frame length if ``data`` holds a complete frame."""
        total_len = ResponseHeader.check(data)
        if len(data) < total_len:
            raise IncompleteFrame(f"need {total_len} bytes, got {len(data)}")
        return total_len

    @classmethod
    def parse(cls, data: bytes) -> "Response":
        header = ResponseHeader.parse(data)
        body = data[HEADER_SIZE:HEADER_SIZE + header.total_body_length]
        key_start = header.extra_length
        value_start = key_start + header.key_length
        return cls(
            header=header,
            extra=body[:key_start],
            key=body[key_start:value_start],
            value=body[value_start:],
        )

    @property
    def status(self) -> int:
        return self.header.status
