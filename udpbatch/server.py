"""Tick-driven UDP server that confirms packets with per-session batch acks."""

from __future__ import annotations

import argparse
import select
import socket
import sys
import threading
import time
from dataclasses import dataclass, field

from udpbatch.protocol import (
    DEFAULT_PORT,
    PACKET_SIZE,
    UINT32_MAX,
    WINDOW_SIZE,
    AckPacket,
    Packet,
    ProtocolError,
    format_mask,
)

ACK_TIMEOUT = 0.1
TICK_RATE = 5


@dataclass
class _Session:
    received: set[int] = field(default_factory=set)
    last_acked: int = 0
    last_packet_time: float = 0.0
    new_packet: bool = False


class AckScheduler:
    """Decides when each session gets a batch ack and what it confirms."""

    def __init__(self, window_size: int = WINDOW_SIZE, ack_timeout: float = ACK_TIMEOUT):
        if not 1 <= window_size <= 64:
            raise ValueError("window_size must be between 1 and 64")
        if ack_timeout < 0:
            raise ValueError("ack_timeout must not be negative")
        self.window_size = window_size
        self.ack_timeout = ack_timeout
        self._sessions: dict[int, _Session] = {}

    def receive(self, packet: Packet, now: float) -> None:
        session = self._sessions.setdefault(packet.session_id, _Session())
        session.received.add(packet.packet_id)
        session.last_packet_time = now
        session.new_packet = True

    def due_acks(self, now: float) -> list[AckPacket]:
        """Build the acks that are due at ``now`` and advance session state."""
        acks = []
        for session_id, session in self._sessions.items():
            if not session.new_packet:
                continue
            window_full = len(session.received) >= self.window_size
            timed_out = now - session.last_packet_time >= self.ack_timeout
            if not (window_full or timed_out):
                continue

            first_id = (session.last_acked + 1) & UINT32_MAX
            window = [(first_id + offset) & UINT32_MAX for offset in range(self.window_size)]
            hits = [packet_id in session.received for packet_id in window]
            mask = sum(1 << offset for offset, hit in enumerate(hits) if hit)

            # Only a contiguous run from the window start moves the cursor.
            for packet_id, hit in zip(window, hits):
                if not hit:
                    break
                session.last_acked = packet_id

            session.received.difference_update(
                packet_id for packet_id, hit in zip(window, hits) if hit
            )
            session.last_packet_time = now
            session.new_packet = False
            acks.append(AckPacket(session_id, first_id, mask))
        return acks

    def last_acked(self, session_id: int) -> int:
        session = self._sessions.get(session_id)
        return session.last_acked if session else 0

    def pending(self, session_id: int) -> frozenset[int]:
        session = self._sessions.get(session_id)
        return frozenset(session.received) if session else frozenset()


class UdpServer:
    """Receives one packet per tick and sends the batch acks that are due."""

    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int = DEFAULT_PORT,
        tick_rate: int = TICK_RATE,
        ack_timeout: float = ACK_TIMEOUT,
        window_size: int = WINDOW_SIZE,
    ):
        if tick_rate <= 0:
            raise ValueError("tick_rate must be positive")
        self.tick_duration = (1000 // tick_rate) / 1000
        self.scheduler = AckScheduler(window_size, ack_timeout)
        self._addresses: dict[int, tuple] = {}
        self._stopped = threading.Event()
        self._sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            self._sock.bind((host, port))
            self._sock.setblocking(False)
        except OSError:
            self._sock.close()
            raise

    @property
    def address(self) -> tuple:
        return self._sock.getsockname()

    def _receive_one(self, now: float) -> None:
        readable, _, _ = select.select([self._sock], [], [], 0)
        if not readable:
            return
        try:
            raw, sender = self._sock.recvfrom(PACKET_SIZE)
        except (BlockingIOError, ConnectionError):
            return
        try:
            packet = Packet.decode(raw)
        except ProtocolError:
            return
        self.scheduler.receive(packet, now)
        self._addresses[packet.session_id] = sender
        print(f"Получено [SID {packet.session_id}, {packet.packet_id}]: {packet.data}")

    def tick(self) -> list[AckPacket]:
        """Run one tick without sleeping; return the acks that were sent."""
        self._receive_one(time.monotonic())
        acks = self.scheduler.due_acks(time.monotonic())
        for ack in acks:
            self._sock.sendto(ack.encode(), self._addresses[ack.session_id])
            print(
                f"Отправлен Batch ACK (Session: {ack.session_id}, ID {ack.first_id}, "
                f"mask: {format_mask(ack.mask, self.scheduler.window_size)})"
            )
        return acks

    def serve_forever(self) -> None:
        while not self._stopped.is_set():
            tick_start = time.monotonic()
            try:
                self.tick()
            except (OSError, ValueError):
                if self._stopped.is_set():
                    break
                raise
            remaining = self.tick_duration - (time.monotonic() - tick_start)
            if remaining > 0:
                self._stopped.wait(remaining)

    def close(self) -> None:
        self._stopped.set()
        self._sock.close()

    def __enter__(self) -> UdpServer:
        return self

    def __exit__(self, *args) -> None:
        self.close()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="UDP server with batch acknowledgements")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT)
    parser.add_argument("--tick-rate", type=int, default=TICK_RATE)
    parser.add_argument("--ack-timeout", type=int, default=int(ACK_TIMEOUT * 1000), help="ms")
    parser.add_argument("--window-size", type=int, default=WINDOW_SIZE)
    args = parser.parse_args(argv)

    try:
        server = UdpServer(
            args.host, args.port, args.tick_rate, args.ack_timeout / 1000, args.window_size
        )
    except OSError:
        print("Ошибка при привязке сокета", file=sys.stderr)
        return 1

    with server:
        print(f"UDP сервер запущен на порту {server.address[1]}")
        try:
            server.serve_forever()
        except KeyboardInterrupt:
            pass
    return 0