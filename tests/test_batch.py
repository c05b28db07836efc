import socket
import threading

import pytest

from udpbatch.batch import WindowAckServer, send_batch, serve_batch
from udpbatch.protocol import WINDOW_SIZE, NumberedPacket, WindowAck


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


def test_full_window_is_acked_at_once():
    server = WindowAckServer(5, 0.5, 0.0)
    for packet_id in range(1, 6):
        server.receive(packet_id, 0.0)
    ack = server.poll(0.0)
    assert ack == WindowAck(1, 0b11111)
    assert server.last_acked == 5
    assert server.pending == frozenset()


def test_partial_window_waits_for_timeout():
    server = WindowAckServer(5, 0.5, 0.0)
    server.receive(1, 1.0)
    server.receive(3, 1.0)
    assert server.poll(1.2) is None
    ack = server.poll(1.5)
    assert ack is not None
    assert ack.first_id == 1
    assert ack.acked_ids() == [1, 3]


def test_window_moves_forward_even_with_gaps():
    server = WindowAckServer(5, 0.5, 0.0)
    server.receive(2, 0.0)
    first = server.poll(1.0)
    assert first.acked_ids() == [2]
    assert server.last_acked == 5
    server.receive(6, 2.0)
    second = server.poll(3.0)
    assert second.first_id == 6
    assert second.acked_ids() == [6]


def test_no_ack_without_new_packets():
    server = WindowAckServer(5, 0.5, 0.0)
    assert server.poll(100.0) is None
    server.receive(1, 0.0)
    assert server.poll(1.0) is not None
    assert server.poll(10.0) is None


def test_ack_round_trips_on_the_wire():
    server = WindowAckServer(WINDOW_SIZE, 0.5, 0.0)
    for packet_id in (1, 2, 4):
        server.receive(packet_id, 0.0)
    ack = server.poll(1.0)
    assert WindowAck.decode(ack.encode()) == ack
    assert ack.acked_ids() == [1, 2, 4]


@pytest.mark.parametrize("window_size", [0, 65])
def test_rejects_bad_window_size(window_size):
    with pytest.raises(ValueError):
        WindowAckServer(window_size, 0.5, 0.0)


def test_rejects_negative_timeout():
    with pytest.raises(ValueError):
        WindowAckServer(5, -1, 0.0)


def test_send_batch_against_serve_batch(udp_pair):
    server, client = udp_pair
    result = []
    thread = threading.Thread(
        target=lambda: result.append(serve_batch(server, 200, 1.0, 2)), daemon=True
    )
    thread.start()
    pending = send_batch(client, server.getsockname(), 10, 5)
    thread.join(10)
    assert not thread.is_alive()
    assert pending == []
    acks = result[0]
    assert [ack.first_id for ack in acks] == [1, 6]
    assert [ack.acked_ids() for ack in acks] == [[1, 2, 3, 4, 5], [6, 7, 8, 9, 10]]


def test_send_batch_without_server_keeps_everything_pending(udp_pair):
    server, client = udp_pair
    client.settimeout(0.05)
    pending = send_batch(client, server.getsockname(), 5, 5)
    assert pending == [1, 2, 3, 4, 5]
    ids = [NumberedPacket.decode(server.recvfrom(2048)[0]).packet_id for _ in range(5)]
    assert ids == [1, 2, 3, 4, 5]


def test_send_batch_rejects_bad_window(udp_pair):
    server, client = udp_pair
    with pytest.raises(ValueError):
        send_batch(client, server.getsockname(), 5, 0)


def test_serve_batch_rejects_bad_tick_rate(udp_pair):
    server, _ = udp_pair
    with pytest.raises(ValueError):
        serve_batch(server, 0, 0.1, 1)