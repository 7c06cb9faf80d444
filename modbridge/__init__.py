"""Modbus RTU/ASCII framing, Modbus error codes and a request-forwarding Modbus bridge."""

__version__ = "0.1.0"
__all__ = ["bridge", "errors", "rtu"]