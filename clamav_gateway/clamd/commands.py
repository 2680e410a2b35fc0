"""Wire encoding of clamd commands.

Commands are sent in the NUL terminated form: prefixed by 'z' and
terminated by '\\0'.  Read more in man clamd(8).

"""
import struct
import typing as t

from .types import MalformedResponseError, OversizedChunkError

CMD_SPECIFIER = b'z'
CMD_TERMINATOR = b'\x00'

# INSTREAM data is read and sent in blocks of this size
CHUNK_SIZE = 4096
MAX_CHUNK_LENGTH = 0xFFFFFFFF

CHUNK_HEADER = struct.Struct('!L')
STREAM_TERMINATOR = CHUNK_HEADER.pack(0)

SIMPLE_COMMANDS = ("PING", "VERSION", "RELOAD", "STATS", "SHUTDOWN")
PATH_COMMANDS = ("SCAN", "CONTSCAN", "MULTISCAN")


def encode_command(command: str, argument: str | None = None) -> bytes:
    """Build the wire bytes of a clamd command.

    :param command: Command name, e.g. "PING" or "SCAN"
    :param argument: Optional argument (a path), sent verbatim
    :return: NUL terminated command
    """
    if argument is not None:
        command = f"{command} {argument}"
    return b''.join([
        CMD_SPECIFIER,
        command.encode(),
        CMD_TERMINATOR,
    ])


def encode_simple(command: str) -> bytes:
    """Encode a command without arguments.
    """
    if command not in SIMPLE_COMMANDS:
        raise ValueError(f"Not a simple clamd command: {command}")
    return encode_command(command)


def encode_path_scan(command: str, path: str) -> bytes:
    """Encode a SCAN, CONTSCAN or MULTISCAN command.

    The daemon, not the client, checks that the path exists.
    """
    if command not in PATH_COMMANDS:
        raise ValueError(f"Not a path scanning clamd command: {command}")
    return encode_command(command, path)


def encode_instream() -> bytes:
    """Encode the INSTREAM command, chunks are sent separately.
    """
    return encode_command("INSTREAM")


def encode_chunk(data: bytes) -> bytes:
    """Pack data as an INSTREAM chunk.

    The chunk is the data length as 4-byte unsigned integer in network
    byte order, followed by the data itself.
    """
    length = len(data)
    if length > MAX_CHUNK_LENGTH:
        raise OversizedChunkError(length)
    return CHUNK_HEADER.pack(length) + bytes(data)


def iter_chunks(input_stream: t.IO[bytes],
                chunk_size: int = CHUNK_SIZE) -> t.Iterator[bytes]:
    """Encode an input stream as a sequence of INSTREAM chunks.

    The last item yielded is always the zero-length terminator chunk.

    Only an empty read ends the stream: a short read is sent as is and
    reading goes on, since some sources return less than requested
    before their end.

    :param input_stream: Binary stream to send
    :param chunk_size: Size of the blocks read from the stream
    """
    buf = input_stream.read(chunk_size)
    while buf:
        yield encode_chunk(buf)
        buf = input_stream.read(chunk_size)

    # an empty chunk signals that we are finished
    yield STREAM_TERMINATOR


def decode_chunks(data: bytes) -> bytes:
    """Rebuild the payload of an INSTREAM chunk sequence.

    :param data: Chunk sequence, terminator included
    :return: Concatenated chunk payloads
    """
    payload = bytearray()
    offset = 0
    while True:
        if offset + CHUNK_HEADER.size > len(data):
            raise MalformedResponseError("Missing INSTREAM terminator",
                                         repr(data[offset:]))
        (length,) = CHUNK_HEADER.unpack_from(data, offset)
        offset += CHUNK_HEADER.size
        if length == 0:
            break
        if offset + length > len(data):
            raise MalformedResponseError("Truncated INSTREAM chunk",
                                         repr(data[offset:]))
        payload.extend(data[offset:offset + length])
        offset += length

    if offset != len(data):
        raise MalformedResponseError("Data after INSTREAM terminator",
                                     repr(data[offset:]))
    return bytes(payload)
