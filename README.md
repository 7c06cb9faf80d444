# modbridge

Modbus serial framing helpers and a Modbus bridge that forwards requests
to other servers under alias server IDs. Pure Python, no dependencies.

## Installation

    pip install .

For running the tests:

    pip install ".[test]"
    pytest

## Serial framing (`modbridge.rtu`)

- `calc_crc(data)` computes the Modbus CRC16 of a byte sequence.
- `valid_crc(data, crc=None)` checks `data` against `crc`; without `crc`,
  the last two bytes of `data` are taken as the CRC (low byte first).
- `add_crc(data)` returns the data with its CRC appended, low byte first.
- `calculate_interval(baud_rate)` gives the minimal silent gap between
  frames in microseconds: 3.5 character times, but at least 1750 µs.
  A baud rate of zero or less raises `ValueError`.
- `encode_ascii(data)` builds a Modbus ASCII frame: `:`, upper-case hex
  digits, the LRC byte and CR LF.
- `rts_auto(level)` is a do-nothing RTS callback for boards that switch
  half-duplex direction on their own.

`RTUChannel(serial, interval, rts=rts_auto, ascii_mode=False)` sends and
receives complete frames over a serial-like object that offers
`in_waiting`, `read(size)`, `write(data)` and `flush()` (for example a
non-blocking pyserial port):

```python
from modbridge.rtu import RTUChannel, calculate_interval, rts_auto

channel = RTUChannel(port, calculate_interval(19200), rts_auto, False)
channel.send(bytes([0x01, 0x03, 0x00, 0x10, 0x00, 0x01]))
reply = channel.receive(2000, False)
```

`send` clears pending input, adds the CRC (RTU) or the ASCII framing and
LRC, waits out the inter-frame interval in RTU mode and calls `rts(True)`
before and `rts(False)` after writing.

`receive(timeout, skip_leading_zero_bytes=False)` waits up to `timeout`
milliseconds for a frame and returns it without CRC or LRC. In RTU mode a
frame ends after a gap of `interval` microseconds; leading zero bytes can
be skipped. Failures are raised as `ModbusError`: `TIMEOUT`,
`PACKET_LENGTH_ERROR` (frame too short or 512 bytes and more),
`CRC_ERROR`, and in ASCII mode `ASCII_INVALID_CHAR`, `ASCII_FRAME_ERR`
and `ASCII_CRC_ERR`.

## Errors (`modbridge.errors`)

`Error` is an `IntEnum` of the Modbus exception codes and this package's
own codes (`TIMEOUT` = 0xE0, `INVALID_SERVER` = 0xE1, `CRC_ERROR` = 0xE2
and so on).

`ModbusError(code)` is the exception raised for them. It keeps the raw
`code`, the matching `Error` member as `error` (or `None` for a code
outside the enum), and a readable `message`; `int()` of it gives the
code. Codes outside 0..255 raise `ValueError`.

`error_response(server_id, function_code, error)` builds a three-byte
error response: server ID, function code with bit 7 set, error code.

## Bridge (`modbridge.bridge`)

`ModbusBridge` answers requests for alias server IDs by forwarding them
to real servers through client objects:

```python
from modbridge.bridge import ModbusBridge

bridge = ModbusBridge()
bridge.attach_server(3, 1, 0x03, tcp_client, "192.0.2.10", 502)
bridge.attach_server(2, 1, 0x03, rtu_client)
bridge.add_function_code(3, 0x04)
bridge.deny_function_code(3, 0x06)

response = bridge.local_request(bytes([3, 0x03, 0, 3, 0, 2]))
```

- `attach_server(alias_id, server_id, function_code, client, host, port)`
  records the server under `alias_id`; a non-zero `port` makes it a
  `ServerType.TCP_SERVER` at `host`, otherwise a
  `ServerType.RTU_SERVER`. An alias already attached keeps its server and
  only gains the function code. Function code `ANY_FUNCTION_CODE` (0x00)
  covers every code that has no worker of its own.
- `add_function_code` forwards another function code; `deny_function_code`
  answers it with `ILLEGAL_FUNCTION`. Both raise `KeyError` for an alias
  that is not attached.
- `register_worker(server_id, function_code, worker)` installs any
  callable that takes the request bytes and returns the response bytes.
- `local_request(message)` processes a request: unknown server IDs get an
  `INVALID_SERVER` error response, unknown function codes an
  `ILLEGAL_FUNCTION` one; a message shorter than two bytes raises
  `ModbusError(EMPTY_MESSAGE)`.

A forwarded request has its server ID replaced by the real one and is
passed to `client.sync_request(request, token)` for serial servers or
`client.sync_request(request, token, host=..., port=...)` for TCP
servers. The response gets the alias ID back; a `ModbusError` raised by
the client becomes an error response with its code, and an empty
response an `EMPTY_MESSAGE` error response. `ServerData` holds what is
stored per alias.

## What this package does not do

It contains no Modbus clients and no network or serial listener: the
bridge is driven through `local_request`, and the client objects it
forwards to must be supplied by the caller. There are no helpers for
building request messages beyond the CRC and ASCII framing above.