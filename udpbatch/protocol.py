"""Wire formats for the datagrams exchanged between client and server."""

from __future__ import annotations

import struct
from dataclasses import dataclass

BUFFER_SIZE = 512
WINDOW_SIZE = 5
DEFAULT_PORT = 12345
UINT32_MAX = 0xFFFFFFFF

_PACKET = struct.Struct(f"<II{BUFFER_SIZE}s")
_ACK = struct.Struct("<IIQ")
_NUMBERED = struct.Struct(f"<I{BUFFER_SIZE}s")
_WINDOW_ACK = struct.Struct("<I4xQ")

PACKET_SIZE = _PACKET.size
ACK_SIZE = _ACK.size
NUMBERED_SIZE = _NUMBERED.size
WINDOW_ACK_SIZE = _WINDOW_ACK.size


class ProtocolError(ValueError):
    """A datagram or field does not fit the wire format."""


def _check_uint32(name: str, value: int) -> None:
    if not 0 <= value <= UINT32_MAX:
        raise ProtocolError(f"{name} {value} does not fit in 32 bits")


def _check_mask(mask: int) -> None:
    if not 0 <= mask < 1 << 64:
        raise ProtocolError(f"mask {mask} does not fit in 64 bits")


def _pack_text(text: str) -> bytes:
    # Leave room for the terminating NUL, as a C string buffer would.
    return text.encode("utf-8")[: BUFFER_SIZE - 1]


def _unpack_text(raw: bytes) -> str:
    return raw.split(b"\0", 1)[0].decode("utf-8", errors="replace")


def _unpack(layout: struct.Struct, raw: bytes, kind: str) -> tuple:
    if len(raw) != layout.size:
        raise ProtocolError(f"{kind} must be {layout.size} bytes, got {len(raw)}")
    return layout.unpack(raw)


def _ids_from_mask(first_id: int, mask: int) -> list[int]:
    return [
        (first_id + offset) & UINT32_MAX
        for offset in range(mask.bit_length())
        if mask >> offset & 1
    ]


def format_mask(mask: int, width: int = WINDOW_SIZE) -> str:
    """Render the low ``width`` bits of ``mask``, highest bit first."""
    if width < 0:
        raise ValueError("width must not be negative")
    return "".join("1" if mask >> bit & 1 else "0" for bit in reversed(range(width)))


def message_text(packet_id: int) -> str:
    """The payload text the clients send for a given packet number."""
    return f"Сообщение #{packet_id}"


@dataclass(frozen=True)
class Packet:
    """A data packet tagged with the sender's session."""

    session_id: int
    packet_id: int
    data: str = ""

    def encode(self) -> bytes:
        _check_uint32("session_id", self.session_id)
        _check_uint32("packet_id", self.packet_id)
        return _PACKET.pack(self.session_id, self.packet_id, _pack_text(self.data))

    @classmethod
    def decode(cls, raw: bytes) -> Packet:
        session_id, packet_id, data = _unpack(_PACKET, raw, "packet")
        return cls(session_id, packet_id, _unpack_text(data))


@dataclass(frozen=True)
class AckPacket:
    """A batch acknowledgement: bit i of ``mask`` confirms ``first_id + i``."""

    session_id: int
    first_id: int
    mask: int = 0

    def encode(self) -> bytes:
        _check_uint32("session_id", self.session_id)
        _check_uint32("first_id", self.first_id)
        _check_mask(self.mask)
        return _ACK.pack(self.session_id, self.first_id, self.mask)

    @classmethod
    def decode(cls, raw: bytes) -> AckPacket:
        session_id, first_id, mask = _unpack(_ACK, raw, "ack")
        return cls(session_id, first_id, mask)

    def acked_ids(self) -> list[int]:
        return _ids_from_mask(self.first_id, self.mask)


@dataclass(frozen=True)
class NumberedPacket:
    """A data packet carrying only a sequence number."""

    packet_id: int
    data: str = ""

    def encode(self) -> bytes:
        _check_uint32("packet_id", self.packet_id)
        return _NUMBERED.pack(self.packet_id, _pack_text(self.data))

    @classmethod
    def decode(cls, raw: bytes) -> NumberedPacket:
        packet_id, data = _unpack(_NUMBERED, raw, "numbered packet")
        return cls(packet_id, _unpack_text(data))


@dataclass(frozen=True)
class WindowAck:
    """A batch acknowledgement without a session."""

    first_id: int
    mask: int = 0

    def encode(self) -> bytes:
        _check_uint32("first_id", self.first_id)
        _check_mask(self.mask)
        return _WINDOW_ACK.pack(self.first_id, self.mask)

    @classmethod
    def decode(cls, raw: bytes) -> WindowAck:
        first_id, mask = _unpack(_WINDOW_ACK, raw, "window ack")
        return cls(first_id, mask)

    def acked_ids(self) -> list[int]:
        return _ids_from_mask(self.first_id, self.mask)