# udpbatch

This package delivers messages reliably on top of UDP. A client numbers its
packets and tags each one with a session id. A server answers with *batch
acknowledgements*. Each batch acknowledgement holds a starting packet id and a
bit mask over a window of five packets. The client resends any packet that is
still unacknowledged when its timeout expires. The timeout is 200 ms for the
first three retries and 500 ms after that. After five retries the client drops
the packet.

## Install

```
pip install .
```

## Running

Start the server. By default it listens on UDP port 12345 on all interfaces
and runs at 5 ticks per second. An acknowledgement goes out once a session has
five packets waiting, or once 100 ms have passed since the session's last
packet:

```
udpbatch-server
```

Options: `--host`, `--port`, `--tick-rate`, `--ack-timeout` (milliseconds) and
`--window-size`.

In another terminal, run the client. It sends ten messages to
`127.0.0.1:12345` and keeps retrying until each message is acknowledged or
dropped:

```
udpbatch-client
```

Options: `--host`, `--port`, `--count` and `--session-id`. If you give no
session id, the client picks a random one.

### Simpler variants

`udpbatch-simple` runs stop-and-wait exchanges. Choose one of four modes:

- `ack-server` replies `ACK` to every datagram. `ack-client` sends a greeting
  and waits up to one second for any reply, with up to three attempts in all.
- `numbered-server` acknowledges each new packet id and ignores duplicates.
  `numbered-client` sends packets 1 to 5. It retries each packet until that
  packet's own id comes back, and pauses between packets.

`udpbatch-batch` uses window acknowledgements without sessions. It has two
modes:

- `server` runs at 60 ticks per second and reads at most one packet per tick.
  After each acknowledgement it moves its window forward by the full window
  size.
- `client` sends packets and waits for one acknowledgement after every full
  window. It does not resend anything.

Use `--help` with any command or mode to see its options.

## Library use

The scheduling and retry logic has no dependency on sockets:

```python
from udpbatch.protocol import Packet, message_text
from udpbatch.server import AckScheduler
from udpbatch.client import RetryTracker

scheduler = AckScheduler(window_size=5, ack_timeout=0.1)
scheduler.receive(Packet(session_id=7, packet_id=1, data=message_text(1)), now=0.0)
acks = scheduler.due_acks(now=0.2)   # list of AckPacket
print(acks[0].acked_ids())           # [1]

tracker = RetryTracker()
tracker.track(Packet(7, 2, message_text(2)), now=0.0)
result = tracker.due(now=0.25)       # result.resend, result.dropped
```

The module `udpbatch.protocol` defines these wire formats:

- `Packet` and `AckPacket` carry a session id.
- `NumberedPacket` and `WindowAck` carry no session id.

Call `encode()` on an instance to get bytes, and `decode(raw)` on the class to
read them back. A datagram of the wrong size raises `ProtocolError`.

`UdpServer` is a context manager around the server socket. `tick()` runs one
tick, and `serve_forever()` loops until `close()` is called. `run_client()`
returns a `ClientReport` that lists the acknowledged and the dropped packet
ids.

## Limits

- The clients send only fixed, numbered text messages. No command reads
  arbitrary input to send.
- Nothing is stored: the server keeps all session state in memory, and it does
  not pass the received messages on to anything else.
- Traffic is neither authenticated nor encrypted.

## Tests

```
pip install .[test]
pytest
```