"""Client for clamd.

It comes in two shapes:
 - ClamdTCPSocket for clamav daemon on the network
 - ClamdUnixSocket for clamav daemon running locally

Once connection is established, the behaviour is the same: every
command opens its own connection, sends the command, reads the reply
until clamd closes the connection and then parses it.

"""
import abc
import ipaddress
import logging
import re
import socket
import typing as t

from . import commands
from .parser import parse_response, \
    parse_scan_outcomes, \
    parse_single_outcome, \
    parse_stats, \
    parse_version
from .types import ClamdConnectionError, \
    ClamdCmdResponse, \
    ClamdScanResult, \
    ClamdStats, \
    ClamdVersion, \
    CommandError, \
    InvalidAddressError

hostname_label_pattern = re.compile(r"(?!-)[A-Za-z0-9-]{1,63}(?<!-)")


def is_valid_host(host: str) -> bool:
    """Tell whether host is an IP address or a well formed hostname.
    """
    try:
        ipaddress.ip_address(host)
        return True
    except ValueError:
        pass

    if not host or len(host) > 253:
        return False
    labels = host.removesuffix(".").split(".")
    # all-digit top label means a dotted IP address, refused above
    if labels[-1].isdigit():
        return False
    return all(hostname_label_pattern.fullmatch(label) for label in labels)


class Clamd(abc.ABC):
    """Abstract client for clamd daemon.
    """
    def __init__(self, buffer_size: int = 4096):
        self.buffer_size = buffer_size

    def ping(self) -> bool:
        """Execute clamd PING command.

        Check the server's state.

        :return: True if clamd replied with "PONG"
        """
        resp = self._simple_command("PING")
        return resp.message == "PONG"

    def version(self) -> ClamdVersion:
        """Execute clamd VERSION command.

        Print program and database versions.
        """
        recd_raw = self._exchange(commands.encode_simple("VERSION"))
        return parse_version(recd_raw)

    def reload(self) -> ClamdCmdResponse:
        """Execute clamd RELOAD command.

        Reload the virus databases.  clamd replies with "RELOADING".
        """
        return self._simple_command("RELOAD")

    def stats(self) -> ClamdStats:
        """Execute clamd STATS command.

        Replies with statistics about the scan queue, contents of scan
        queue, and memory usage.
        """
        recd_raw = self._exchange(commands.encode_simple("STATS"))
        return parse_stats(recd_raw)

    def shutdown(self) -> ClamdCmdResponse:
        """Execute clamd SHUTDOWN command.

        Perform a clean exit of clamd.  Commands sent afterwards fail
        to connect.
        """
        return self._simple_command("SHUTDOWN")

    def scan(self, filepath: str) -> list[ClamdScanResult]:
        """Execute clamd SCAN command.

        Scan a file or a directory (recursively) with archive support
        enabled (if not disabled in clamd.conf). A full path is
        required.  Scanning stops at the first virus found.

        :param filepath: Path of the file to scan, as seen by clamd
        :return: Result of the scanning, one item per reported file
        """
        return self._path_scan("SCAN", filepath)

    def contscan(self, filepath: str) -> list[ClamdScanResult]:
        """Execute clamd CONTSCAN command.

        Like SCAN, but don't stop the scanning when a virus is found.
        """
        return self._path_scan("CONTSCAN", filepath)

    def multiscan(self, filepath: str) -> list[ClamdScanResult]:
        """Execute clamd MULTISCAN command.

        Scan a directory in parallel using multiple clamd threads, don't
        stop when a virus is found.
        """
        return self._path_scan("MULTISCAN", filepath)

    def scan_path(self,
                  filepath: str,
                  continue_on_virus: bool = False) -> list[ClamdScanResult]:
        """Scan a path, going on after a virus is found if asked to.
        """
        if continue_on_virus:
            return self.contscan(filepath)
        return self.scan(filepath)

    def instream(self, input_stream: t.IO[bytes]) -> ClamdScanResult:
        """Execute clamd INSTREAM command.

        Scan a stream of data. The stream is sent to clamd in chunks,
        after INSTREAM, on the same socket on which the command was
        sent.

        :param input_stream: Input stream to analyze
        :return: Result of the scanning as ClamdScanResult instance
        :raise OversizedChunkError: a block read does not fit a chunk
        :raise MalformedResponseError: clamd did not reply with exactly
            one result
        """
        recd_raw = self._exchange(
            commands.encode_instream(),
            commands.iter_chunks(input_stream, commands.CHUNK_SIZE),
        )
        return parse_single_outcome(recd_raw)

    @abc.abstractmethod
    def _get_connection(self) -> socket.socket:
        """Get connection to clamd as socket.

        :return: Socket connected to clamd
        """

    def _simple_command(self, command: str) -> ClamdCmdResponse:
        """Send simple command to clamd and wait for response.

        :param command: Command to execute, possible values in man clamd(8)
        :return: clamd command response
        """
        recd_raw = self._exchange(commands.encode_simple(command))
        return parse_response(recd_raw)

    def _path_scan(self, command: str, filepath: str) -> list[ClamdScanResult]:
        recd_raw = self._exchange(commands.encode_path_scan(command, filepath))
        return parse_scan_outcomes(recd_raw)

    def _exchange(self,
                  full_cmd: bytes,
                  payload: t.Iterable[bytes] = ()) -> str:
        """Run a whole request/response exchange on a new connection.

        :param full_cmd: Encoded command
        :param payload: Data to send after the command, if any
        :return: Raw data received (UTF-8)
        """
        sock = self._get_connection()
        with sock:
            logging.debug("Sending command: %s", full_cmd)
            try:
                sock.sendall(full_cmd)
                for chunk in payload:
                    sock.sendall(chunk)
            except OSError as e:
                raise CommandError(f"Unable to send {full_cmd!r} to clamd: "
                                   f"{e}") from e

            try:
                recd_data = self._recv(sock)
            except OSError as e:
                raise CommandError(f"Unable to read clamd reply to "
                                   f"{full_cmd!r}: {e}") from e

        return recd_data.decode(errors="replace")

    def _recv(self, sock: socket.socket) -> bytes:
        """Receive response from clamd socket.

        :return: Raw data received
        """
        # block until we receive everything from daemon
        recd_data = bytearray()
        recd_buf = sock.recv(self.buffer_size)
        while recd_buf:
            recd_data.extend(recd_buf)
            recd_buf = sock.recv(self.buffer_size)

        return bytes(recd_data)


class ClamdTCPSocket(Clamd):
    """Client for clamd daemon over TCP socket.

    This is the recommended (only) option when clamd is running on
    other host in the network.

    When using this option, clamd should be running with 'TCPSocket <port>'
    configuration option in clamd.conf (see man clamd.conf(5)).
    """
    def __init__(self,
                 host: str,
                 port: int,
                 timeout: float | None = None,  # seconds
                 buffer_size: int = 4096):
        """Create clamd client instance for TCP socket.

        :param host: IP address or hostname
        :param port: TCP port
        :param timeout: Timeout of the connection attempt, None to wait
            indefinitely
        :param buffer_size: Size of the buffer to read from clamd
        """
        super().__init__(buffer_size=buffer_size)
        if not isinstance(host, str) or not is_valid_host(host):
            raise InvalidAddressError(f"Invalid clamd host: {host!r}")
        if isinstance(port, bool) or not isinstance(port, int) \
                or not 0 < port < 65536:
            raise InvalidAddressError(f"Invalid clamd port: {port!r}")
        self.host = host
        self.port = port
        self.timeout = timeout

    def _get_connection(self) -> socket.socket:
        try:
            sock = socket.create_connection((self.host, self.port),
                                            timeout=self.timeout)
        except OSError as e:
            raise ClamdConnectionError(
                f"Unable to connect to clamd at {self.host}:{self.port}: "
                f"{e}") from e
        # timeout only bounds the connection attempt
        sock.settimeout(None)
        return sock


class ClamdUnixSocket(Clamd):
    """Client for clamd daemon over UNIX domain socket.

    This is the recommended option when clamd is running on the same host.

    When using this option, clamd should be running with 'LocalSocket <path>'
    configuration option in clamd.conf (see man clamd.conf(5)).
    """
    def __init__(self,
                 socket_path: str,
                 timeout: float | None = None,  # seconds
                 buffer_size: int = 4096):
        """Create clamd client instance for UNIX domain socket.

        :param socket_path: Path of the clamd daemon socket
        :param timeout: Timeout of the connection attempt
        :param buffer_size: Size of the buffer to read from clamd
        """
        super().__init__(buffer_size=buffer_size)
        if not socket_path:
            raise InvalidAddressError("Empty clamd socket path")
        self.socket_path = socket_path
        self.timeout = timeout

    def _get_connection(self) -> socket.socket:
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        sock.settimeout(self.timeout)
        try:
            sock.connect(self.socket_path)
        except FileNotFoundError as e:
            sock.close()
            raise ClamdConnectionError("clamd unix socket not found at " +
                                       self.socket_path +
                                       ". Is the clamd daemon running?") from e
        except OSError as e:
            sock.close()
            raise ClamdConnectionError(
                f"Unable to connect to clamd at {self.socket_path}: {e}") \
                from e
        sock.settimeout(None)
        return sock
