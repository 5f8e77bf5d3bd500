"""Memcached probe client speaking the binary protocol over asyncio streams."""

import asyncio
import logging
import time
from typing import Dict

from ..errors import ProbeError
from ..utils.status import FailureReason
from .base import ProbeClient, RoundTrip, split_address
from .protocol import (
    HEADER_SIZE,
    STATUS_NO_ERROR,
    InvalidFrame,
    Response,
    ResponseHeader,
    encode_get,
    encode_set,
)


class MemcachedProbeClient(ProbeClient):
    """
    Probe a memcached endpoint with a SET followed by a GET of a probe key.

    A fresh connection is opened for every probe so address changes take
    effect immediately and a broken connection never outlives one probe.
    """

    def __init__(self, logger: logging.Logger, key: str = "mempoke", ttl: int = 60):
        """
        Initialize memcached probe client.

        Args:
            logger: Logger instance
            key: Key written and read back by each probe
            ttl: Expiration of the probe key in seconds
        """
        super().__init__(logger)
        self.key = key.encode()
        self.ttl = ttl

    async def probe(self, address: str, timeout: float) -> RoundTrip:
        start_time = time.perf_counter()

        try:
            commands = await asyncio.wait_for(self._round_trip(address), timeout=timeout)

        except asyncio.TimeoutError:
            raise ProbeError(FailureReason.TIMEOUT, f"no answer from {address} within {timeout}s")

        except ValueError as e:
            # Address that cannot be dialled at all
            raise ProbeError(FailureReason.PROTOCOL_ERROR, str(e))

        except ConnectionRefusedError as e:
            raise ProbeError(FailureReason.CONNECTION_REFUSED, f"{address}: {e}")

        except (InvalidFrame, asyncio.IncompleteReadError) as e:
            raise ProbeError(FailureReason.PROTOCOL_ERROR, f"{address}: {e}")

        except OSError as e:
            # Unreachable host, reset by peer, DNS failure
            raise ProbeError(FailureReason.CONNECTION_REFUSED, f"{address}: {e}")

        return RoundTrip(time.perf_counter() - start_time, commands)

    async def _round_trip(self, address: str) -> Dict[str, float]:
        """SET then GET the probe key; returns seconds spent per command."""
        host, port = split_address(address)
        reader, writer = await asyncio.open_connection(host, port)

        commands = {}
        try:
            value = str(time.time_ns()).encode()
            commands["set"] = await self._command(
                reader, writer, "SET", encode_set(self.key, value, self.ttl)
            )
            commands["get"] = await self._command(reader, writer, "GET", encode_get(self.key))
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError as e:
                self.logger.debug(f"Error closing connection to {address}: {e}")

        return commands

    async def _command(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        name: str,
        frame: bytes
    ) -> float:
        start_time = time.perf_counter()
        writer.write(frame)
        await writer.drain()
        self._expect_success(name, await self._read_response(reader))
        return time.perf_counter() - start_time

    @staticmethod
    async def _read_response(reader: asyncio.StreamReader) -> Response:
        header_bytes = await reader.readexactly(HEADER_SIZE)
        total_len = ResponseHeader.check(header_bytes)
        body = await reader.readexactly(total_len - HEADER_SIZE)
        return Response.parse(header_bytes + body)

    @staticmethod
    def _expect_success(command: str, response: Response) -> None:
        if response.status != STATUS_NO_ERROR:
            raise InvalidFrame(
                f"{command} returned status 0x{response.status:04x}: "
                f"{response.value.decode(errors='replace')}"
            )
