import socket
import struct
import threading

import pytest

from udpbatch.protocol import NumberedPacket
from udpbatch.simple import (
    ACK_TEXT,
    DuplicateFilter,
    send_numbered,
    send_with_ack,
    serve_ack,
    serve_numbered,
)


@pytest.fixture
def udp_pair():
    server = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    server.bind(("127.0.0.1", 0))
    server.settimeout(0.5)
    client = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    client.settimeout(2.0)
    yield server, client
    server.close()
    client.close()


def _run(target, *args):
    result = []
    thread = threading.Thread(target=lambda: result.append(target(*args)), daemon=True)
    thread.start()
    return thread, result


def test_duplicate_filter_accepts_each_id_once():
    seen = DuplicateFilter()
    assert seen.accept(1) is True
    assert seen.accept(1) is False
    assert seen.accept(2) is True
    assert 2 in seen
    assert len(seen) == 2


def test_send_with_ack_gets_reply(udp_pair):
    server, client = udp_pair
    thread, result = _run(serve_ack, server, 1)
    reply = send_with_ack(client, server.getsockname(), "hello", 3)
    thread.join(5)
    assert not thread.is_alive()
    assert reply == ACK_TEXT
    assert result == [["hello"]]


def test_send_with_ack_unicode_message(udp_pair):
    server, client = udp_pair
    thread, result = _run(serve_ack, server, 1)
    reply = send_with_ack(client, server.getsockname(), "Привет", 1)
    thread.join(5)
    assert reply == ACK_TEXT
    assert result == [["Привет"]]


def test_send_with_ack_gives_up_after_retries(udp_pair):
    server, client = udp_pair
    client.settimeout(0.05)
    reply = send_with_ack(client, server.getsockname(), "ping", 2)
    assert reply is None
    received = [server.recvfrom(1024)[0] for _ in range(2)]
    assert received == [b"ping", b"ping"]


def test_send_with_ack_rejects_zero_retries(udp_pair):
    server, client = udp_pair
    with pytest.raises(ValueError):
        send_with_ack(client, server.getsockname(), "ping", 0)


def test_send_numbered_round_trip(udp_pair):
    server, client = udp_pair
    thread, result = _run(serve_numbered, server, 3)
    acked = send_numbered(client, server.getsockname(), 3, 3, 0)
    thread.join(5)
    assert not thread.is_alive()
    assert acked == [1, 2, 3]
    assert result == [[1, 2, 3]]


def test_send_numbered_without_server_acks_nothing(udp_pair):
    server, client = udp_pair
    client.settimeout(0.05)
    acked = send_numbered(client, server.getsockname(), 2, 1, 0)
    assert acked == []
    ids = [NumberedPacket.decode(server.recvfrom(2048)[0]).packet_id for _ in range(2)]
    assert ids == [1, 2]


def test_send_numbered_rejects_negative_count(udp_pair):
    server, client = udp_pair
    with pytest.raises(ValueError):
        send_numbered(client, server.getsockname(), -1, 3, 0)


def test_serve_numbered_ignores_duplicates(udp_pair):
    server, client = udp_pair
    thread, result = _run(serve_numbered, server, 3)
    address = server.getsockname()
    client.sendto(NumberedPacket(1, "a").encode(), address)
    client.sendto(NumberedPacket(1, "a").encode(), address)
    client.sendto(NumberedPacket(2, "b").encode(), address)
    thread.join(5)
    assert not thread.is_alive()
    assert result == [[1, 2]]
    acks = [struct.unpack("<I", client.recvfrom(16)[0])[0] for _ in range(2)]
    assert acks == [1, 2]
    client.settimeout(0.1)
    with pytest.raises(TimeoutError):
        client.recvfrom(16)


def test_serve_numbered_skips_malformed_datagram(udp_pair):
    server, client = udp_pair
    address = server.getsockname()
    client.sendto(b"junk", address)
    client.sendto(NumberedPacket(4, "x").encode(), address)
    accepted = serve_numbered(server, 2)
    assert accepted == [4]
    ack = struct.unpack("<I", client.recvfrom(16)[0])[0]
    assert ack == 4
    client.settimeout(0.1)
    with pytest.raises(TimeoutError):
        client.recvfrom(16)