import socket

import pytest

from clamav_gateway import app


class FakeClamdSocket:
    """Socket stub capturing writes and replaying a canned clamd reply."""

    def __init__(self, reply=b"", fail_on_send=False, fail_on_recv=False):
        self.reply = reply
        self.fail_on_send = fail_on_send
        self.fail_on_recv = fail_on_recv
        self.writes = []
        self.closed = False
        self.timeouts = []

    @property
    def sent(self):
        return b"".join(self.writes)

    def settimeout(self, timeout):
        self.timeouts.append(timeout)

    def sendall(self, data):
        if self.fail_on_send:
            raise BrokenPipeError("Broken pipe")
        self.writes.append(bytes(data))

    def recv(self, bufsize):
        if self.fail_on_recv:
            raise ConnectionResetError("Connection reset by peer")
        data, self.reply = self.reply[:bufsize], self.reply[bufsize:]
        return data

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


class FakeClamd:
    """Replaces socket.create_connection, one fake socket per call."""

    def __init__(self):
        self.sockets = []
        self.addresses = []
        self.replies = []
        self.error = None

    def reply(self, data, **kwargs):
        self.replies.append((data, kwargs))

    def __call__(self, address, timeout=None):
        self.addresses.append((address, timeout))
        if self.error is not None:
            raise self.error
        data, kwargs = self.replies.pop(0) if self.replies else (b"", {})
        sock = FakeClamdSocket(data, **kwargs)
        self.sockets.append(sock)
        return sock

    @property
    def last(self):
        return self.sockets[-1]


@pytest.fixture()
def fake_clamd(monkeypatch):
    fake = FakeClamd()
    monkeypatch.setattr(socket, "create_connection", fake)
    return fake


@pytest.fixture()
def test_app():
    app.config.update({
        "TESTING": True,
        "CLAMD_HOST": "127.0.0.1",
        "CLAMD_PORT": 3310,
        "CLAMD_TIMEOUT": 5,
        "INCLUDE_RAW_DATA": False,
        "ENABLE_PATH_SCAN": False,
    })

    yield app


@pytest.fixture()
def client(test_app):
    return test_app.test_client()
