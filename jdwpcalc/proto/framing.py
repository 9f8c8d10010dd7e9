"""Length-prefixed JDWP packet framing and the handshake literal."""

import struct
from dataclasses import dataclass

from .types import REPLY_FLAG, Command

HANDSHAKE = b"JDWP-Handshake"

# length(4) + id(4) + flags(1) + command set/command or error code(2)
HEADER_SIZE = 11

_HEADER = struct.Struct(">IIB")


class FramingError(RuntimeError):
    """Raised when a packet cannot be framed or deframed."""


@dataclass(frozen=True, slots=True)
class Packet:
    """One framed JDWP packet, either a command or a reply."""

    id: int
    flags: int = 0
    command_set: int = 0
    command: int = 0
    error_code: int = 0
    payload: bytes = b""

    @property
    def is_reply(self) -> bool:
        return bool(self.flags & REPLY_FLAG)

    @classmethod
    def request(cls, packet_id: int, command: Command, payload: bytes = b"") -> "Packet":
        return cls(
            id=packet_id,
            command_set=command.command_set,
            command=command.command,
            payload=payload,
        )

    @classmethod
    def reply(cls, packet_id: int, payload: bytes = b"", error_code: int = 0) -> "Packet":
        return cls(id=packet_id, flags=REPLY_FLAG, error_code=error_code, payload=payload)


def encode(packet: Packet) -> bytes:
    """Encode a packet to its wire representation."""
    length = HEADER_SIZE + len(packet.payload)
    if length > 0xFFFFFFFF:
        raise FramingError(f"packet {packet.id} too large ({length} bytes)")
    header = _HEADER.pack(length, packet.id, packet.flags)
    if packet.is_reply:
        tail = struct.pack(">H", packet.error_code)
    else:
        tail = struct.pack(">BB", packet.command_set, packet.command)
    return header + tail + packet.payload


def decode(data: bytes) -> Packet:
    """Decode exactly one packet; the declared length must match len(data)."""
    if len(data) < HEADER_SIZE:
        raise FramingError(f"packet shorter than header ({len(data)} bytes)")

    length, packet_id, flags = _HEADER.unpack_from(data)
    if length != len(data):
        raise FramingError(f"declared length {length} does not match {len(data)} bytes available")

    payload = bytes(data[HEADER_SIZE:])
    if flags & REPLY_FLAG:
        (error_code,) = struct.unpack_from(">H", data, 9)
        return Packet.reply(packet_id, payload, error_code)

    command_set, command = struct.unpack_from(">BB", data, 9)
    return Packet(
        id=packet_id,
        flags=flags,
        command_set=command_set,
        command=command,
        payload=payload,
    )


class Framer:
    """Accumulates stream bytes and cuts them into packets."""

    def __init__(self) -> None:
        self._buffer = bytearray()

    def append_buffer(self, data: bytes) -> None:
        """Append data to the receive buffer."""
        self._buffer.extend(data)

    def clear_buffer(self) -> None:
        self._buffer.clear()

    def decode_frame(self) -> Packet | None:
        """Return the next complete packet, or None if more bytes are needed."""
        if len(self._buffer) < 4:
            return None

        (length,) = struct.unpack_from(">I", self._buffer)
        if length < HEADER_SIZE:
            raise FramingError(f"declared length {length} is shorter than a packet header")
        if len(self._buffer) < length:
            return None

        frame = bytes(self._buffer[:length])
        del self._buffer[:length]
        return decode(frame)
