"""Python bindings for clamd daemon on TCP or Unix socket.

For details about commands, see man clamd(8).

Usage:
.. code-block:: python

    clamd = ClamdTCPSocket("127.0.0.1", 3310, timeout=10)
    for result in clamd.contscan("/my/dir"):
        if result.status == ClamdScanStatus.FOUND:
            print(result.location, result.signature)

Each command opens and closes its own connection, so a client instance
can be kept and reused, also from several threads.

NOTE: clamd sessions are not implemented.

"""

from .types import ClamdScanStatus, ClamdScanResult, ClamdCmdResponse, \
    ClamdVersion, ClamdStats  # noqa
from .types import ClamdException, InvalidAddressError, \
    ClamdConnectionError, CommandError, MalformedResponseError, \
    IntegerParseError, DateParseError, OversizedChunkError  # noqa
from .client import Clamd, ClamdUnixSocket, ClamdTCPSocket  # noqa
