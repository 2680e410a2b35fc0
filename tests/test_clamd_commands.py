import io
import struct

import pytest

from clamav_gateway.clamd import commands
from clamav_gateway.clamd.types import MalformedResponseError, \
    OversizedChunkError


class HugeBlock:
    """Stands for a block larger than a chunk can describe."""

    def __len__(self):
        return 2 ** 32


class HugeStream:
    def read(self, size):
        return HugeBlock()


class TrickleStream:
    """Returns short reads before its end."""

    def __init__(self, data, step):
        self.data = data
        self.step = step

    def read(self, size):
        chunk = self.data[:min(size, self.step)]
        self.data = self.data[len(chunk):]
        return chunk


def chunk_lengths(chunks):
    return [struct.unpack("!L", c[:4])[0] for c in chunks]


@pytest.mark.parametrize("command,expected", [
    ("PING", b"zPING\x00"),
    ("VERSION", b"zVERSION\x00"),
    ("RELOAD", b"zRELOAD\x00"),
    ("STATS", b"zSTATS\x00"),
    ("SHUTDOWN", b"zSHUTDOWN\x00"),
])
def test_encode_simple(command, expected):
    assert commands.encode_simple(command) == expected


def test_encode_simple_refuses_path_commands():
    with pytest.raises(ValueError):
        commands.encode_simple("SCAN")


@pytest.mark.parametrize("command,expected", [
    ("SCAN", b"zSCAN /tmp/some file.txt\x00"),
    ("CONTSCAN", b"zCONTSCAN /tmp/some file.txt\x00"),
    ("MULTISCAN", b"zMULTISCAN /tmp/some file.txt\x00"),
])
def test_encode_path_scan_verbatim(command, expected):
    assert commands.encode_path_scan(command, "/tmp/some file.txt") \
        == expected


def test_encode_instream():
    assert commands.encode_instream() == b"zINSTREAM\x00"


def test_encode_chunk():
    assert commands.encode_chunk(b"abc") == b"\x00\x00\x00\x03abc"
    assert commands.encode_chunk(b"") == commands.STREAM_TERMINATOR


def test_encode_chunk_oversized():
    with pytest.raises(OversizedChunkError) as exc_info:
        commands.encode_chunk(HugeBlock())

    assert exc_info.value.length == 2 ** 32


def test_iter_chunks_oversized_read():
    with pytest.raises(OversizedChunkError):
        list(commands.iter_chunks(HugeStream()))


def test_iter_chunks_10000_bytes():
    data = bytes(range(256)) * 39 + b"x" * 16
    assert len(data) == 10000

    chunks = list(commands.iter_chunks(io.BytesIO(data)))

    assert chunk_lengths(chunks) == [4096, 4096, 1808, 0]
    assert chunks[-1] == b"\x00\x00\x00\x00"
    assert commands.decode_chunks(b"".join(chunks)) == data


def test_iter_chunks_exact_multiple_terminates():
    data = b"\xab" * 8192

    chunks = list(commands.iter_chunks(io.BytesIO(data)))

    assert chunk_lengths(chunks) == [4096, 4096, 0]
    assert commands.decode_chunks(b"".join(chunks)) == data


def test_iter_chunks_empty_stream():
    chunks = list(commands.iter_chunks(io.BytesIO(b"")))

    assert chunks == [commands.STREAM_TERMINATOR]


def test_iter_chunks_short_reads_do_not_end_stream():
    data = b"0123456789" * 100
    chunks = list(commands.iter_chunks(TrickleStream(data, 300)))

    assert chunk_lengths(chunks) == [300, 300, 300, 100, 0]
    assert commands.decode_chunks(b"".join(chunks)) == data


def test_decode_chunks_missing_terminator():
    with pytest.raises(MalformedResponseError):
        commands.decode_chunks(commands.encode_chunk(b"abc"))


def test_decode_chunks_truncated():
    with pytest.raises(MalformedResponseError):
        commands.decode_chunks(b"\x00\x00\x00\x05ab")


def test_decode_chunks_trailing_data():
    with pytest.raises(MalformedResponseError):
        commands.decode_chunks(commands.STREAM_TERMINATOR + b"junk")
