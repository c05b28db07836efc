"""Stop-and-wait UDP exchanges: a plain text ACK and per-packet numbered ACKs."""

from __future__ import annotations

import argparse
import socket
import struct
import sys
import time

from udpbatch.protocol import (
    DEFAULT_PORT,
    NUMBERED_SIZE,
    NumberedPacket,
    ProtocolError,
    message_text,
)

TEXT_BUFFER_SIZE = 1024
MAX_RETRIES = 3
ACK_TIMEOUT = 1.0
ACK_TEXT = "ACK"
GREETING = "Привет, сервер!"
NUMBERED_COUNT = 5
NUMBERED_PAUSE = 1.0

_ACK_ID = struct.Struct("<I")


class DuplicateFilter:
    """Remembers packet ids and tells whether one is seen for the first time."""

    def __init__(self) -> None:
        self._seen: set[int] = set()

    def accept(self, packet_id: int) -> bool:
        """Return True and remember ``packet_id`` unless it was seen before."""
        if packet_id in self._seen:
            return False
        self._seen.add(packet_id)
        return True

    def __len__(self) -> int:
        return len(self._seen)

    def __contains__(self, packet_id: object) -> bool:
        return packet_id in self._seen


def _recv(sock: socket.socket, size: int) -> tuple[bytes, tuple] | None:
    try:
        return sock.recvfrom(size)
    except (TimeoutError, BlockingIOError, ConnectionError):
        return None


def _check_retries(retries: int) -> None:
    if retries < 1:
        raise ValueError("retries must be at least 1")


def send_with_ack(
    sock: socket.socket,
    address: tuple,
    message: str = GREETING,
    retries: int = MAX_RETRIES,
) -> str | None:
    """Send ``message`` until any reply arrives; return the reply text or None."""
    _check_retries(retries)
    payload = message.encode("utf-8")
    for attempt in range(1, retries + 1):
        sock.sendto(payload, address)
        print(f"Отправлено: {message} (попытка {attempt})")
        reply = _recv(sock, TEXT_BUFFER_SIZE)
        if reply is not None and reply[0]:
            text = reply[0].decode("utf-8", errors="replace")
            print(f"Получен ACK: {text}")
            return text
        print("ACK не получен, повторная отправка...")
    return None


def serve_ack(sock: socket.socket, limit: int | None = None) -> list[str]:
    """Answer every datagram with a text ACK; stop after ``limit`` datagrams."""
    messages: list[str] = []
    while limit is None or len(messages) < limit:
        reply = _recv(sock, TEXT_BUFFER_SIZE - 1)
        if reply is None or not reply[0]:
            continue
        raw, sender = reply
        text = raw.decode("utf-8", errors="replace")
        print(f"Получено: {text}")
        sock.sendto(ACK_TEXT.encode("ascii"), sender)
        messages.append(text)
    return messages


def send_numbered(
    sock: socket.socket,
    address: tuple,
    count: int = NUMBERED_COUNT,
    retries: int = MAX_RETRIES,
    pause: float = NUMBERED_PAUSE,
) -> list[int]:
    """Send packets 1..count, each until its own id is acked; return acked ids."""
    _check_retries(retries)
    if count < 0:
        raise ValueError("count must not be negative")
    acked: list[int] = []
    for packet_id in range(1, count + 1):
        packet = NumberedPacket(packet_id, message_text(packet_id))
        encoded = packet.encode()
        for attempt in range(1, retries + 1):
            sock.sendto(encoded, address)
            print(f"Отправлено [{packet_id}]: {packet.data} (попытка {attempt})")
            reply = _recv(sock, _ACK_ID.size)
            if reply is not None and len(reply[0]) == _ACK_ID.size:
                (ack_id,) = _ACK_ID.unpack(reply[0])
                if ack_id == packet_id:
                    print(f"Получен ACK для пакета [{ack_id}]")
                    acked.append(packet_id)
                    break
            print("ACK не получен, повторная отправка...")
        if pause > 0:
            time.sleep(pause)
    return acked


def serve_numbered(sock: socket.socket, limit: int | None = None) -> list[int]:
    """Ack each new packet id and ignore duplicates; return the accepted ids.

    ``limit`` counts every datagram handled, duplicates included.
    """
    seen = DuplicateFilter()
    accepted: list[int] = []
    handled = 0
    while limit is None or handled < limit:
        reply = _recv(sock, NUMBERED_SIZE)
        if reply is None or not reply[0]:
            continue
        handled += 1
        raw, sender = reply
        try:
            packet = NumberedPacket.decode(raw)
        except ProtocolError:
            continue
        print(f"Получено [{packet.packet_id}]: {packet.data}")
        if not seen.accept(packet.packet_id):
            print(f"Дубликат пакета [{packet.packet_id}], игнорируем.")
            continue
        accepted.append(packet.packet_id)
        sock.sendto(_ACK_ID.pack(packet.packet_id), sender)
    return accepted


def _bind(port: int) -> socket.socket | None:
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        sock.bind(("0.0.0.0", port))
    except OSError:
        sock.close()
        print("Ошибка при привязке сокета", file=sys.stderr)
        return None
    print(f"UDP сервер запущен на порту {port}")
    return sock


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Stop-and-wait UDP exchanges")
    modes = parser.add_subparsers(dest="mode", required=True)

    ack_client = modes.add_parser("ack-client")
    ack_client.add_argument("--host", default="127.0.0.1")
    ack_client.add_argument("--port", type=int, default=DEFAULT_PORT)
    ack_client.add_argument("--retries", type=int, default=MAX_RETRIES)
    ack_client.add_argument("--message", default=GREETING)

    ack_server = modes.add_parser("ack-server")
    ack_server.add_argument("--port", type=int, default=DEFAULT_PORT)

    numbered_client = modes.add_parser("numbered-client")
    numbered_client.add_argument("--host", default="127.0.0.1")
    numbered_client.add_argument("--port", type=int, default=DEFAULT_PORT)
    numbered_client.add_argument("--count", type=int, default=NUMBERED_COUNT)
    numbered_client.add_argument("--retries", type=int, default=MAX_RETRIES)
    numbered_client.add_argument("--pause", type=float, default=NUMBERED_PAUSE)

    numbered_server = modes.add_parser("numbered-server")
    numbered_server.add_argument("--port", type=int, default=DEFAULT_PORT)

    args = parser.parse_args(argv)

    if args.mode in ("ack-server", "numbered-server"):
        sock = _bind(args.port)
        if sock is None:
            return 1
        with sock:
            try:
                if args.mode == "ack-server":
                    serve_ack(sock)
                else:
                    serve_numbered(sock)
            except KeyboardInterrupt:
                pass
        return 0

    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    except OSError:
        print("Ошибка при создании сокета", file=sys.stderr)
        return 1
    with sock:
        sock.settimeout(ACK_TIMEOUT)
        address = (args.host, args.port)
        if args.mode == "ack-client":
            send_with_ack(sock, address, args.message, args.retries)
        else:
            send_numbered(sock, address, args.count, args.retries, args.pause)
    return 0