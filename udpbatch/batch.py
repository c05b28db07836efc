"""Windowed UDP sending with batch acknowledgements sent on a fixed tick."""

from __future__ import annotations

import argparse
import select
import socket
import sys
import time

from udpbatch.protocol import (
    DEFAULT_PORT,
    NUMBERED_SIZE,
    UINT32_MAX,
    WINDOW_ACK_SIZE,
    WINDOW_SIZE,
    NumberedPacket,
    ProtocolError,
    WindowAck,
    format_mask,
    message_text,
)

ACK_TIMEOUT = 0.5
TICK_ACK_TIMEOUT = 0.1
TICK_RATE = 60
CLIENT_TIMEOUT = 0.2
MESSAGES_TO_SEND = 10

_RED = "\033[31m"
_RESET = "\033[0m"


class WindowAckServer:
    """Collects received ids and emits one window ack at a time.

    After each ack the window moves forward by its full size, whether or not
    every packet in it arrived.
    """

    def __init__(
        self,
        window_size: int = WINDOW_SIZE,
        ack_timeout: float = ACK_TIMEOUT,
        now: float | None = None,
    ):
        if not 1 <= window_size <= 64:
            raise ValueError("window_size must be between 1 and 64")
        if ack_timeout < 0:
            raise ValueError("ack_timeout must not be negative")
        self.window_size = window_size
        self.ack_timeout = ack_timeout
        self.last_acked = 0
        self._received: set[int] = set()
        self._last_packet_time = time.monotonic() if now is None else now
        self._new_packet = False

    @property
    def pending(self) -> frozenset[int]:
        return frozenset(self._received)

    def receive(self, packet_id: int, now: float) -> None:
        self._received.add(packet_id)
        self._last_packet_time = now
        self._new_packet = True

    def poll(self, now: float) -> WindowAck | None:
        """Return the ack due at ``now``, if any, and move the window on."""
        if not self._new_packet:
            return None
        window_full = len(self._received) >= self.window_size
        timed_out = now - self._last_packet_time >= self.ack_timeout
        if not (window_full or timed_out):
            return None
        first_id = (self.last_acked + 1) & UINT32_MAX
        mask = sum(
            1 << offset
            for offset in range(self.window_size)
            if (first_id + offset) & UINT32_MAX in self._received
        )
        self.last_acked = (self.last_acked + self.window_size) & UINT32_MAX
        self._received.clear()
        self._last_packet_time = now
        self._new_packet = False
        return WindowAck(first_id, mask)


def _read_window_ack(sock: socket.socket) -> WindowAck | None:
    try:
        raw, _ = sock.recvfrom(WINDOW_ACK_SIZE)
    except (TimeoutError, BlockingIOError, ConnectionError):
        return None
    try:
        return WindowAck.decode(raw)
    except ProtocolError:
        return None


def send_batch(
    sock: socket.socket,
    address: tuple,
    count: int = MESSAGES_TO_SEND,
    window_size: int = WINDOW_SIZE,
) -> list[int]:
    """Send packets 1..count, waiting for a window ack after each full window.

    Returns the ids that no ack confirmed, in ascending order.
    """
    if not 1 <= window_size <= 64:
        raise ValueError("window_size must be between 1 and 64")
    if count < 0:
        raise ValueError("count must not be negative")
    window_bits = (1 << window_size) - 1
    pending: dict[int, NumberedPacket] = {}
    for packet_id in range(1, count + 1):
        packet = NumberedPacket(packet_id, message_text(packet_id))
        pending[packet_id] = packet
        sock.sendto(packet.encode(), address)
        print(f"Отправлено [{packet_id}]: {packet.data}")
        if packet_id % window_size:
            continue
        ack = _read_window_ack(sock)
        if ack is None:
            expected = packet_id - window_size + 1
            print(f"{_RED}Batch ACK '{expected}' не был получен{_RESET}", file=sys.stderr)
            continue
        print(f"Получен Batch ACK c ID {ack.first_id}")
        for acked_id in WindowAck(ack.first_id, ack.mask & window_bits).acked_ids():
            pending.pop(acked_id, None)
    return sorted(pending)


def serve_batch(
    sock: socket.socket,
    tick_rate: int = TICK_RATE,
    ack_timeout: float = TICK_ACK_TIMEOUT,
    limit: int | None = None,
) -> list[WindowAck]:
    """Receive at most one packet per tick and send window acks when due.

    Returns after ``limit`` acks have been sent; runs forever when it is None.
    """
    if tick_rate <= 0:
        raise ValueError("tick_rate must be positive")
    tick_duration = (1000 // tick_rate) / 1000
    server = WindowAckServer(WINDOW_SIZE, ack_timeout, time.monotonic())
    client: tuple | None = None
    sent: list[WindowAck] = []

    while limit is None or len(sent) < limit:
        tick_start = time.monotonic()
        readable, _, _ = select.select([sock], [], [], 0)
        if readable:
            try:
                raw, sender = sock.recvfrom(NUMBERED_SIZE)
            except (BlockingIOError, TimeoutError, ConnectionError):
                raw = b""
            if raw:
                try:
                    packet = NumberedPacket.decode(raw)
                except ProtocolError:
                    packet = None
                if packet is not None:
                    client = sender
                    server.receive(packet.packet_id, tick_start)
                    print(f"Получено [{packet.packet_id}]: {packet.data}")

        ack = server.poll(time.monotonic())
        if ack is not None and client is not None:
            sock.sendto(ack.encode(), client)
            print(
                f"Отправлен Batch ACK (ID {ack.first_id}, "
                f"mask: {format_mask(ack.mask, server.window_size)})"
            )
            sent.append(ack)

        remaining = tick_duration - (time.monotonic() - tick_start)
        if remaining > 0:
            time.sleep(remaining)
    return sent


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Windowed UDP sending with batch acks")
    modes = parser.add_subparsers(dest="mode", required=True)

    client = modes.add_parser("client")
    client.add_argument("--host", default="127.0.0.1")
    client.add_argument("--port", type=int, default=DEFAULT_PORT)
    client.add_argument("--count", type=int, default=MESSAGES_TO_SEND)
    client.add_argument("--window-size", type=int, default=WINDOW_SIZE)
    client.add_argument("--timeout", type=int, default=int(CLIENT_TIMEOUT * 1000), help="ms")

    server = modes.add_parser("server")
    server.add_argument("--port", type=int, default=DEFAULT_PORT)
    server.add_argument("--tick-rate", type=int, default=TICK_RATE)
    server.add_argument("--ack-timeout", type=int, default=int(TICK_ACK_TIMEOUT * 1000), help="ms")

    args = parser.parse_args(argv)

    if args.mode == "server":
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.bind(("0.0.0.0", args.port))
        except OSError:
            sock.close()
            print("Ошибка при привязке сокета", file=sys.stderr)
            return 1
        print(f"UDP сервер запущен на порту {args.port}")
        with sock:
            try:
                serve_batch(sock, args.tick_rate, args.ack_timeout / 1000)
            except KeyboardInterrupt:
                pass
        return 0

    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    except OSError:
        print("Ошибка при создании сокета", file=sys.stderr)
        return 1
    with sock:
        sock.settimeout(args.timeout / 1000)
        send_batch(sock, (args.host, args.port), args.count, args.window_size)
    return 0