"""
Shared pytest fixtures for the Live Room tests.

Provides:
- FakeConnection: an in-memory stand-in for a websocket connection
- relay fixture: a fresh Relay per test
"""

import json

import pytest
from websockets.protocol import State

import liveroom


class FakeConnection:
    """Records what the relay sends; can be told to fail or go closed."""

    def __init__(self, name, fail_send=False):
        self.remote_address = (name, 0)
        self.state = State.OPEN
        self.fail_send = fail_send
        self.sent = []

    async def send(self, message):
        if self.fail_send:
            raise ConnectionResetError(f"{self.remote_address[0]} is gone")
        self.sent.append(message)

    @property
    def received(self):
        return [json.loads(m) for m in self.sent]


@pytest.fixture
def relay():
    return liveroom.Relay()


@pytest.fixture
def make_connection():
    return FakeConnection
