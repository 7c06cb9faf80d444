"""Modbus RTU and ASCII framing: CRC, LRC and serial send/receive."""

from __future__ import annotations

import time
from enum import Enum, auto
from typing import Callable

from .errors import Error, ModbusError

BUFFER_SIZE = 512
MIN_INTERVAL_US = 1750

_HEX_DIGITS = b"0123456789ABCDEF"

_LEAD_IN = 0xF0
_CR = 0xF1
_LF = 0xF2


def _build_ascii_table() -> dict[int, int]:
    table = {ord(c): int(c, 16) for c in "0123456789abcdefABCDEF"}
    table[ord(":")] = _LEAD_IN
    table[ord("\r")] = _CR
    table[ord("\n")] = _LF
    return table


_ASCII_READ = _build_ascii_table()


def _build_crc_table() -> tuple[int, ...]:
    table = []
    for value in range(256):
        crc = value
        for _ in range(8):
            crc = (crc >> 1) ^ 0xA001 if crc & 1 else crc >> 1
        table.append(crc)
    return tuple(table)


_CRC_TABLE = _build_crc_table()


def calc_crc(data) -> int:
    """Modbus CRC16 of a block of data; the low byte goes on the wire first."""
    crc = 0xFFFF
    for byte in bytes(data):
        crc = (crc >> 8) ^ _CRC_TABLE[(crc ^ byte) & 0xFF]
    return crc


def valid_crc(data, crc=None) -> bool:
    """Check a CRC: against ``crc`` if given, else against the data's last two bytes."""
    data = bytes(data)
    if crc is None:
        if len(data) < 2:
            return False
        crc = data[-2] | (data[-1] << 8)
        data = data[:-2]
    return calc_crc(data) == crc


def add_crc(data) -> bytes:
    """Return the data with its CRC appended, low byte first."""
    data = bytes(data)
    return data + calc_crc(data).to_bytes(2, "little")


def calculate_interval(baud_rate) -> int:
    """Minimal silent gap between RTU frames in microseconds (3.5 characters)."""
    if baud_rate <= 0:
        raise ValueError(f"invalid baud rate: {baud_rate}")
    return max(35_000_000 // baud_rate, MIN_INTERVAL_US)


def encode_ascii(data) -> bytes:
    """Frame data for Modbus ASCII: lead-in, hex digits, LRC and CR LF."""
    data = bytes(data)
    lrc = (-sum(data)) & 0xFF
    body = bytearray(b":")
    for byte in (*data, lrc):
        body.append(_HEX_DIGITS[byte >> 4])
        body.append(_HEX_DIGITS[byte & 0x0F])
    body.extend(b"\r\n")
    return bytes(body)


def rts_auto(level) -> None:
    """RTS callback for boards that switch RS485 direction on their own."""
    return None


def _micros() -> int:
    return time.monotonic_ns() // 1000


class _AsciiState(Enum):
    WAIT_DATA = auto()
    DATA = auto()
    WAIT_LEAD_OUT = auto()


class RTUChannel:
    """Sends and receives Modbus frames over a serial port.

    ``serial`` must offer ``in_waiting``, ``read(size)``, ``write(data)`` and
    ``flush()``, as a non-blocking pyserial port does. ``interval`` is the
    minimal gap between frames in microseconds.
    """

    def __init__(
        self,
        serial,
        interval,
        rts: Callable[[bool], None] = rts_auto,
        ascii_mode: bool = False,
    ):
        self.serial = serial
        self.interval = interval
        self.rts = rts
        self.ascii_mode = ascii_mode
        self._last_micros: int | None = None

    def _clear_input(self) -> None:
        while self.serial.in_waiting:
            if not self.serial.read(self.serial.in_waiting):
                break

    def _read_byte(self) -> int | None:
        if not self.serial.in_waiting:
            return None
        chunk = self.serial.read(1)
        return chunk[0] if chunk else None

    def send(self, data) -> None:
        """Send one frame, adding the CRC (RTU) or LRC and framing (ASCII)."""
        data = bytes(data)
        self._clear_input()
        if self.ascii_mode:
            self.rts(True)
            self.serial.write(encode_ascii(data))
            self.serial.flush()
            self.rts(False)
        else:
            frame = add_crc(data)
            if self._last_micros is not None:
                elapsed = _micros() - self._last_micros
                if elapsed < self.interval:
                    time.sleep((self.interval - elapsed) / 1_000_000)
            self.rts(True)
            self.serial.write(frame)
            self.serial.flush()
            self.rts(False)
        self._last_micros = _micros()

    def receive(self, timeout, skip_leading_zero_bytes: bool = False) -> bytes:
        """Receive one frame within ``timeout`` milliseconds; return it without CRC/LRC.

        Raises ModbusError on timeout, bad length, bad checksum or bad framing.
        """
        if self.ascii_mode:
            return self._receive_ascii(timeout)
        return self._receive_rtu(timeout, skip_leading_zero_bytes)

    def _receive_rtu(self, timeout, skip_leading_zero_bytes) -> bytes:
        buffer = bytearray()
        start = time.monotonic()
        self._last_micros = _micros()

        while True:
            byte = self._read_byte()
            if byte is not None:
                self._last_micros = _micros()
                if byte > 0 or not skip_leading_zero_bytes:
                    buffer.append(byte)
                    break
            else:
                if (time.monotonic() - start) * 1000 >= timeout:
                    raise ModbusError(Error.TIMEOUT)
                time.sleep(0.001)

        while True:
            while self.serial.in_waiting:
                chunk = self.serial.read(1)
                if not chunk:
                    break
                buffer.extend(chunk)
                self._last_micros = _micros()
                if len(buffer) >= BUFFER_SIZE:
                    raise ModbusError(Error.PACKET_LENGTH_ERROR)
            if _micros() - self._last_micros >= self.interval:
                break
            time.sleep(0)

        if len(buffer) < 4:
            raise ModbusError(Error.PACKET_LENGTH_ERROR)
        if not valid_crc(buffer):
            raise ModbusError(Error.CRC_ERROR)
        return bytes(buffer[:-2])

    def _receive_ascii(self, timeout) -> bytes:
        state = _AsciiState.WAIT_DATA
        buffer = bytearray()
        high_nibble: int | None = None
        lrc = 0
        start = time.monotonic()

        while True:
            if (time.monotonic() - start) * 1000 >= timeout:
                raise ModbusError(Error.TIMEOUT)
            raw = self._read_byte()
            if raw is None:
                time.sleep(0.001)
                continue
            start = time.monotonic()
            value = _ASCII_READ.get(raw)
            if value is None:
                raise ModbusError(Error.ASCII_INVALID_CHAR)

            if state is _AsciiState.WAIT_DATA:
                if value == _LEAD_IN:
                    state = _AsciiState.DATA
            elif state is _AsciiState.DATA:
                if value == _CR:
                    if high_nibble is not None:
                        raise ModbusError(Error.PACKET_LENGTH_ERROR)
                    state = _AsciiState.WAIT_LEAD_OUT
                elif value < _LEAD_IN:
                    if high_nibble is None:
                        high_nibble = value
                    else:
                        byte = (high_nibble << 4) | value
                        high_nibble = None
                        buffer.append(byte)
                        lrc = (lrc + byte) & 0xFF
                        if len(buffer) >= BUFFER_SIZE:
                            raise ModbusError(Error.PACKET_LENGTH_ERROR)
                else:
                    raise ModbusError(Error.ASCII_INVALID_CHAR)
            else:
                if value != _LF:
                    raise ModbusError(Error.ASCII_FRAME_ERR)
                if len(buffer) < 3:
                    raise ModbusError(Error.PACKET_LENGTH_ERROR)
                if lrc != 0:
                    raise ModbusError(Error.ASCII_CRC_ERR)
                return bytes(buffer[:-1])