import pytest

from modbridge.errors import Error, ModbusError
from modbridge.rtu import (
    RTUChannel,
    add_crc,
    calc_crc,
    calculate_interval,
    encode_ascii,
    rts_auto,
    valid_crc,
)


class FakeSerial:
    def __init__(self, incoming=b""):
        self.rx = bytearray(incoming)
        self.written = bytearray()
        self.flushes = 0

    @property
    def in_waiting(self):
        return len(self.rx)

    def read(self, size=1):
        chunk = bytes(self.rx[:size])
        del self.rx[:size]
        return chunk

    def write(self, data):
        self.written.extend(data)
        return len(data)

    def flush(self):
        self.flushes += 1


PAYLOAD = bytes.fromhex("01 03 02 1E 1F")


def test_crc_initial_value_for_empty_data():
    assert calc_crc(b"") == 0xFFFF


def test_crc_known_frame():
    assert calc_crc(bytes.fromhex("01 03 00 00 00 01")) == 0x0A84


def test_add_crc_appends_low_byte_first():
    framed = add_crc(PAYLOAD)
    crc = calc_crc(PAYLOAD)
    assert framed[:-2] == PAYLOAD
    assert framed[-2] == crc & 0xFF
    assert framed[-1] == crc >> 8


def test_valid_crc_round_trip_and_corruption():
    framed = add_crc(PAYLOAD)
    assert valid_crc(framed)
    assert valid_crc(PAYLOAD, calc_crc(PAYLOAD))
    corrupted = bytearray(framed)
    corrupted[1] ^= 0x01
    assert not valid_crc(corrupted)
    assert not valid_crc(PAYLOAD, calc_crc(PAYLOAD) ^ 1)


def test_valid_crc_too_short():
    assert valid_crc(b"\x01") is False


def test_calculate_interval_lower_limit():
    assert calculate_interval(5000000) == 1750


def test_calculate_interval_grows_for_slow_links():
    assert calculate_interval(1200) > calculate_interval(9600) > 1750


def test_calculate_interval_rejects_zero():
    with pytest.raises(ValueError):
        calculate_interval(0)


def test_encode_ascii_frame():
    assert encode_ascii(b"\x01\x03") == b":0103FC\r\n"


def test_encode_ascii_shape():
    frame = encode_ascii(PAYLOAD)
    assert frame.startswith(b":")
    assert frame.endswith(b"\r\n")
    body = bytes.fromhex(frame[1:-2].decode())
    assert body[:-1] == PAYLOAD
    assert sum(body) & 0xFF == 0


def test_rts_auto_does_nothing():
    assert rts_auto(True) is None


def test_send_rtu_writes_crc_and_toggles_rts():
    levels = []
    port = FakeSerial(b"stale")
    channel = RTUChannel(port, 1750, levels.append)
    channel.send(PAYLOAD)
    assert bytes(port.written) == add_crc(PAYLOAD)
    assert levels == [True, False]
    assert port.rx == bytearray()
    assert port.flushes == 1


def test_send_ascii_writes_ascii_frame():
    levels = []
    port = FakeSerial()
    channel = RTUChannel(port, 1750, levels.append, ascii_mode=True)
    channel.send(PAYLOAD)
    assert bytes(port.written) == encode_ascii(PAYLOAD)
    assert levels == [True, False]


@pytest.mark.parametrize("ascii_mode", [False, True])
def test_send_receive_round_trip(ascii_mode):
    sender_port = FakeSerial()
    RTUChannel(sender_port, 1750, ascii_mode=ascii_mode).send(PAYLOAD)
    receiver = RTUChannel(FakeSerial(sender_port.written), 1750, ascii_mode=ascii_mode)
    assert receiver.receive(500) == PAYLOAD


def test_two_sends_respect_interval():
    port = FakeSerial()
    channel = RTUChannel(port, 1750)
    channel.send(PAYLOAD)
    channel.send(PAYLOAD)
    assert bytes(port.written) == add_crc(PAYLOAD) * 2


def test_receive_rtu_timeout():
    channel = RTUChannel(FakeSerial(), 1750)
    with pytest.raises(ModbusError) as info:
        channel.receive(20)
    assert info.value.error is Error.TIMEOUT


def test_receive_rtu_crc_error():
    framed = bytearray(add_crc(PAYLOAD))
    framed[-1] ^= 0xFF
    channel = RTUChannel(FakeSerial(framed), 1750)
    with pytest.raises(ModbusError) as info:
        channel.receive(500)
    assert info.value.error is Error.CRC_ERROR


def test_receive_rtu_too_short():
    channel = RTUChannel(FakeSerial(b"\x01\x03\x05"), 1750)
    with pytest.raises(ModbusError) as info:
        channel.receive(500)
    assert info.value.error is Error.PACKET_LENGTH_ERROR


def test_receive_rtu_oversize():
    channel = RTUChannel(FakeSerial(b"\x01" * 600), 1750)
    with pytest.raises(ModbusError) as info:
        channel.receive(500)
    assert info.value.error is Error.PACKET_LENGTH_ERROR


def test_receive_rtu_skips_leading_zero_bytes():
    channel = RTUChannel(FakeSerial(b"\x00\x00" + add_crc(PAYLOAD)), 1750)
    assert channel.receive(500, skip_leading_zero_bytes=True) == PAYLOAD


def test_receive_rtu_keeps_leading_zero_bytes_by_default():
    channel = RTUChannel(FakeSerial(b"\x00" + add_crc(PAYLOAD)), 1750)
    with pytest.raises(ModbusError) as info:
        channel.receive(500)
    assert info.value.error is Error.CRC_ERROR


def test_receive_ascii_ignores_data_before_lead_in():
    channel = RTUChannel(FakeSerial(b"0A" + encode_ascii(PAYLOAD)), 1750, ascii_mode=True)
    assert channel.receive(500) == PAYLOAD


def test_receive_ascii_accepts_lower_case():
    frame = encode_ascii(bytes.fromhex("01 03 BE EF")).lower()
    channel = RTUChannel(FakeSerial(frame), 1750, ascii_mode=True)
    assert channel.receive(500) == bytes.fromhex("01 03 BE EF")


@pytest.mark.parametrize(
    "frame, error",
    [
        (b":01G3\r\n", Error.ASCII_INVALID_CHAR),
        (b":0103FD\r\n", Error.ASCII_CRC_ERR),
        (b":0103FC\r0", Error.ASCII_FRAME_ERR),
        (b":0103F\r\n", Error.PACKET_LENGTH_ERROR),
        (b":01FF\r\n", Error.PACKET_LENGTH_ERROR),
        (b":01:03FC\r\n", Error.ASCII_INVALID_CHAR),
    ],
)
def test_receive_ascii_errors(frame, error):
    channel = RTUChannel(FakeSerial(frame), 1750, ascii_mode=True)
    with pytest.raises(ModbusError) as info:
        channel.receive(500)
    assert info.value.error is error


def test_receive_ascii_timeout():
    channel = RTUChannel(FakeSerial(b":01"), 1750, ascii_mode=True)
    with pytest.raises(ModbusError) as info:
        channel.receive(20)
    assert info.value.error is Error.TIMEOUT