"""UDP client that sends numbered messages and retransmits until acked."""

from __future__ import annotations

import argparse
import random
import socket
import sys
import time
from dataclasses import dataclass, field
from typing import NamedTuple

from udpbatch.protocol import (
    ACK_SIZE,
    DEFAULT_PORT,
    UINT32_MAX,
    WINDOW_SIZE,
    AckPacket,
    Packet,
    ProtocolError,
    format_mask,
    message_text,
)

BASE_TIMEOUT = 0.2
EXTENDED_TIMEOUT = 0.5
MAX_RETRIES = 5
MESSAGES_TO_SEND = 10
EXTENDED_AFTER_RETRIES = 3
POLL_PAUSE = 0.01

_RED = "\033[31m"
_YELLOW = "\033[33m"
_GREEN = "\033[32m"
_RESET = "\033[0m"


@dataclass
class _Entry:
    packet: Packet
    last_sent: float
    retries: int = 0


@dataclass(frozen=True)
class Retransmission:
    """A packet that must be sent again, with its attempt number."""

    packet: Packet
    attempt: int
    timeout: float


class DueResult(NamedTuple):
    resend: list
    dropped: list


class RetryTracker:
    """Keeps unacknowledged packets and decides when to resend or give up."""

    def __init__(
        self,
        window_size: int = WINDOW_SIZE,
        base_timeout: float = BASE_TIMEOUT,
        extended_timeout: float = EXTENDED_TIMEOUT,
        max_retries: int = MAX_RETRIES,
    ):
        if window_size < 1:
            raise ValueError("window_size must be positive")
        if max_retries < 0:
            raise ValueError("max_retries must not be negative")
        self.window_size = window_size
        self.base_timeout = base_timeout
        self.extended_timeout = extended_timeout
        self.max_retries = max_retries
        self._entries: dict[int, _Entry] = {}

    def track(self, packet: Packet, now: float) -> None:
        self._entries[packet.packet_id] = _Entry(packet, now)

    def acknowledge(self, ack: AckPacket) -> list[int]:
        """Forget the packets the ack confirms; return the ids that were pending."""
        confirmed = (
            (ack.first_id + offset) & UINT32_MAX
            for offset in range(self.window_size)
            if ack.mask >> offset & 1
        )
        return [packet_id for packet_id in confirmed if self._entries.pop(packet_id, None)]

    def due(self, now: float) -> DueResult:
        """Collect packets whose timeout expired; drop those out of retries."""
        resend: list[Retransmission] = []
        dropped: list[int] = []
        for packet_id, entry in list(self._entries.items()):
            timeout = (
                self.base_timeout
                if entry.retries < EXTENDED_AFTER_RETRIES
                else self.extended_timeout
            )
            if now - entry.last_sent < timeout:
                continue
            if entry.retries >= self.max_retries:
                del self._entries[packet_id]
                dropped.append(packet_id)
            else:
                entry.last_sent = now
                entry.retries += 1
                resend.append(Retransmission(entry.packet, entry.retries, timeout))
        return DueResult(resend, dropped)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, packet_id: object) -> bool:
        return packet_id in self._entries


@dataclass
class ClientReport:
    """What happened to the packets of one client run."""

    session_id: int
    acknowledged: list[int] = field(default_factory=list)
    dropped: list[int] = field(default_factory=list)


def make_messages(session_id: int, count: int = MESSAGES_TO_SEND) -> list[Packet]:
    """The numbered packets a client session sends, ids starting at 1."""
    return [Packet(session_id, packet_id, message_text(packet_id)) for packet_id in range(1, count + 1)]


def _read_ack(sock: socket.socket) -> AckPacket | None:
    try:
        raw, _ = sock.recvfrom(ACK_SIZE)
    except (TimeoutError, ConnectionError):
        return None
    try:
        return AckPacket.decode(raw)
    except ProtocolError:
        return None


def run_client(
    host: str = "127.0.0.1",
    port: int = DEFAULT_PORT,
    count: int = MESSAGES_TO_SEND,
    session_id: int | None = None,
) -> ClientReport:
    """Send ``count`` messages and retransmit until each is acked or dropped."""
    if session_id is None:
        session_id = random.randrange(1 << 31)
    report = ClientReport(session_id)
    tracker = RetryTracker()
    address = (host, port)

    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        sock.settimeout(tracker.base_timeout)

        for packet in make_messages(session_id, count):
            tracker.track(packet, time.monotonic())
            sock.sendto(packet.encode(), address)
            print(f"Отправлено [{packet.packet_id}]: {packet.data}")

        while tracker:
            ack = _read_ack(sock)
            if ack is not None:
                if ack.session_id != session_id:
                    print(f"{_RED}Пропущен ACK от другой сессии (ID: {ack.session_id}){_RESET}")
                    continue
                print(
                    f"Получен Batch ACK c ID {ack.first_id}, "
                    f"mask: {format_mask(ack.mask, tracker.window_size)}"
                )
                report.acknowledged.extend(tracker.acknowledge(ack))

            result = tracker.due(time.monotonic())
            for retry in result.resend:
                sock.sendto(retry.packet.encode(), address)
                print(
                    f"{_YELLOW}Повторная отправка [{retry.packet.packet_id}], попытка {retry.attempt}, "
                    f"таймаут: {round(retry.timeout * 1000)} мс{_RESET}"
                )
            for packet_id in result.dropped:
                print(
                    f"{_RED}Пакет {packet_id} не был подтверждён после "
                    f"{tracker.max_retries} попыток{_RESET}",
                    file=sys.stderr,
                )
            report.dropped.extend(result.dropped)

            time.sleep(POLL_PAUSE)

    print(f"{_GREEN}Все пакеты подтверждены или отбраковались после ретраев{_RESET}")
    return report


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="UDP client with retransmission")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT)
    parser.add_argument("--count", type=int, default=MESSAGES_TO_SEND)
    parser.add_argument("--session-id", type=int, default=None)
    args = parser.parse_args(argv)
    try:
        run_client(args.host, args.port, args.count, args.session_id)
    except OSError:
        print("Ошибка при создании сокета", file=sys.stderr)
        return 1
    return 0