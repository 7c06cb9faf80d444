"""A Modbus bridge: local server IDs forwarded to servers reached through clients."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import IntEnum
from ipaddress import IPv4Address
from typing import Any, Callable

from .errors import Error, ModbusError, error_response

ANY_FUNCTION_CODE = 0x00

Worker = Callable[[bytes], bytes]


class ServerType(IntEnum):
    """How an attached server is reached."""

    TCP_SERVER = 0
    RTU_SERVER = 1


@dataclass(frozen=True)
class ServerData:
    """Everything needed to address one external server."""

    server_id: int
    client: Any
    server_type: ServerType = ServerType.RTU_SERVER
    host: IPv4Address = field(default_factory=lambda: IPv4Address("0.0.0.0"))
    port: int = 0


def _token() -> int:
    return int(time.monotonic() * 1000) & 0xFFFFFFFF


class ModbusBridge:
    """A Modbus server whose server IDs are aliases for external servers.

    A client must offer ``sync_request(message, token)`` for serial servers
    and ``sync_request(message, token, host=..., port=...)`` for TCP servers,
    returning the response message as bytes or raising ModbusError.
    """

    def __init__(self):
        self.servers: dict[int, ServerData] = {}
        self._workers: dict[int, dict[int, Worker]] = {}

    def register_worker(self, server_id, function_code, worker) -> None:
        """Have ``worker`` answer requests for this server ID and function code."""
        self._workers.setdefault(server_id, {})[function_code] = worker

    def local_request(self, message) -> bytes:
        """Process a request message as if it had arrived from outside."""
        message = bytes(message)
        if len(message) < 2:
            raise ModbusError(Error.EMPTY_MESSAGE)
        server_id, function_code = message[0], message[1]
        workers = self._workers.get(server_id)
        if workers is None:
            return error_response(server_id, function_code, Error.INVALID_SERVER)
        worker = workers.get(function_code) or workers.get(ANY_FUNCTION_CODE)
        if worker is None:
            return error_response(server_id, function_code, Error.ILLEGAL_FUNCTION)
        return bytes(worker(message))

    def attach_server(
        self,
        alias_id,
        server_id,
        function_code,
        client,
        host=IPv4Address("0.0.0.0"),
        port=0,
    ) -> None:
        """Make the external server reachable under ``alias_id``.

        A non-zero port marks a TCP server at ``host``. An alias already
        attached keeps its server; only the function code is added.
        """
        if alias_id not in self.servers:
            if port:
                self.servers[alias_id] = ServerData(
                    server_id, client, ServerType.TCP_SERVER, IPv4Address(host), port
                )
            else:
                self.servers[alias_id] = ServerData(server_id, client)
        self.add_function_code(alias_id, function_code)

    def add_function_code(self, alias_id, function_code) -> None:
        """Forward another function code for an attached alias."""
        self._require_attached(alias_id)
        self.register_worker(alias_id, function_code, self._bridge_worker)

    def deny_function_code(self, alias_id, function_code) -> None:
        """Answer a function code for an attached alias with ILLEGAL_FUNCTION."""
        self._require_attached(alias_id)
        self.register_worker(alias_id, function_code, self._deny_worker)

    def _require_attached(self, alias_id) -> None:
        if alias_id not in self.servers:
            raise KeyError(f"server {alias_id} not attached to bridge")

    def _bridge_worker(self, message: bytes) -> bytes:
        alias_id, function_code = message[0], message[1]
        data = self.servers.get(alias_id)
        if data is None:
            return error_response(alias_id, function_code, Error.INVALID_SERVER)
        request = bytes((data.server_id,)) + message[1:]
        try:
            if data.server_type is ServerType.TCP_SERVER:
                response = data.client.sync_request(
                    request, _token(), host=data.host, port=data.port
                )
            else:
                response = data.client.sync_request(request, _token())
        except ModbusError as exc:
            return error_response(alias_id, function_code, exc.code)
        response = bytes(response)
        if not response:
            return error_response(alias_id, function_code, Error.EMPTY_MESSAGE)
        return bytes((alias_id,)) + response[1:]

    def _deny_worker(self, message: bytes) -> bytes:
        return error_response(message[0], message[1], Error.ILLEGAL_FUNCTION)