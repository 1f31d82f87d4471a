#!/usr/bin/env python3
"""
Live Room relay — broadcasts every well-formed JSON message from any client
to all connected clients, the sender included.
Usage: python3 liveroom.py [port]   (default port: 8765)

New clients get a one-off welcome from "System". Frames that are not valid
JSON are dropped and the sender stays connected.
"""
import asyncio
import json
import logging
import os
import sys
import threading
from dataclasses import dataclass
from typing import Any, Optional

import websockets
from websockets.protocol import State

logger = logging.getLogger(__name__)

WS_PORT = 8765
SYSTEM_NAME = 'System'
WELCOME_TEXT = 'Welcome to the Live Room! You are now connected.'


# ── Events ───────────────────────────────────────────────────
@dataclass(frozen=True)
class Connect:
    connection: Any


@dataclass(frozen=True)
class Message:
    connection: Any
    payload: Any


@dataclass(frozen=True)
class Close:
    connection: Any


@dataclass(frozen=True)
class Error:
    connection: Any
    error: BaseException


def _reject_constant(name):
    raise ValueError(f'{name} is not valid JSON')


def decode(raw):
    return json.loads(raw, parse_constant=_reject_constant)


def encode(data):
    return json.dumps(data, ensure_ascii=False, allow_nan=False, separators=(',', ':'))


def welcome_message():
    return encode({'name': SYSTEM_NAME, 'text': WELCOME_TEXT})


def _addr(connection):
    return getattr(connection, 'remote_address', None) or id(connection)


# ── Relay ────────────────────────────────────────────────────
class Relay:
    """Owns the active set of live-room connections and fans messages out.

    Membership changes and the fan-out snapshot hold ``_lock``; it is never
    held across an await, so the HTTP thread can read ``active_count()``
    while the loop runs.

    ``send_timeout`` is an opt-in limit: a target whose send takes longer is
    skipped like a failed one. ``None`` waits as long as the transport does.
    """

    def __init__(self, send_timeout: Optional[float] = None):
        self.send_timeout = send_timeout
        self._clients = set()
        self._lock = threading.Lock()

    def active_count(self) -> int:
        with self._lock:
            return len(self._clients)

    async def dispatch(self, event):
        if isinstance(event, Connect):
            await self.on_connect(event.connection)
        elif isinstance(event, Message):
            await self.on_message(event.connection, event.payload)
        elif isinstance(event, Close):
            self.on_disconnect(event.connection)
        elif isinstance(event, Error):
            self.on_transport_error(event.connection, event.error)
        else:
            raise TypeError(f'unknown relay event: {event!r}')

    async def on_connect(self, connection):
        with self._lock:
            self._clients.add(connection)
            count = len(self._clients)
        logger.info('+%s  (%d connected)', _addr(connection), count)
        # no await between the add and this send, so the welcome is the
        # first frame queued on the connection
        await self._send(connection, welcome_message())

    async def on_message(self, connection, raw_payload) -> int:
        """Forward one inbound payload to every open connection.

        Returns how many targets the message was delivered to.
        """
        try:
            data = decode(raw_payload)
        except (TypeError, ValueError) as e:
            logger.warning('Dropping malformed message from %s: %s', _addr(connection), e)
            return 0
        logger.debug('Received message from %s: %r', _addr(connection), data)

        with self._lock:
            targets = [c for c in self._clients if _is_open(c)]
        if not targets:
            return 0

        message = encode(data)
        results = await asyncio.gather(*[self._send(c, message) for c in targets])
        return sum(results)

    def on_disconnect(self, connection):
        with self._lock:
            if connection not in self._clients:
                return
            self._clients.discard(connection)
            count = len(self._clients)
        logger.info('-%s  (%d connected)', _addr(connection), count)

    def on_transport_error(self, connection, error):
        logger.warning('Transport error on %s: %s', _addr(connection), error)
        self.on_disconnect(connection)

    def close(self):
        with self._lock:
            self._clients.clear()

    async def _send(self, connection, message) -> bool:
        try:
            if self.send_timeout is None:
                await connection.send(message)
            else:
                await asyncio.wait_for(connection.send(message), self.send_timeout)
        except asyncio.TimeoutError:
            logger.warning('Send to %s timed out after %ss', _addr(connection), self.send_timeout)
            return False
        except Exception as e:
            logger.warning('Send to %s failed: %s', _addr(connection), e)
            return False
        return True

    # ── websockets transport ──
    async def handler(self, ws):
        await self.dispatch(Connect(ws))
        try:
            async for message in ws:
                await self.dispatch(Message(ws, message))
        except websockets.ConnectionClosedError as e:
            await self.dispatch(Error(ws, e))
        else:
            await self.dispatch(Close(ws))
        finally:
            self.on_disconnect(ws)


def _is_open(connection):
    return getattr(connection, 'state', None) is State.OPEN


def serve(relay, host='0.0.0.0', port=WS_PORT):
    return websockets.serve(relay.handler, host, port)


def send_timeout_from_env():
    value = os.environ.get('RELAY_SEND_TIMEOUT')
    return float(value) if value else None


async def main(port=WS_PORT):
    relay = Relay(send_timeout=send_timeout_from_env())
    print(f'Live Room relay listening on ws://0.0.0.0:{port}')
    try:
        async with serve(relay, '0.0.0.0', port):
            await asyncio.Future()
    finally:
        relay.close()


if __name__ == '__main__':
    logging.basicConfig(
        level=os.environ.get('LOG_LEVEL', 'INFO'),
        format='%(asctime)s %(levelname)s [WS] %(message)s',
    )
    port = int(sys.argv[1]) if len(sys.argv) > 1 else WS_PORT
    try:
        asyncio.run(main(port))
    except KeyboardInterrupt:
        pass
