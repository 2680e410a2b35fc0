"""Types for clamd communication.

"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class ClamdException(Exception):
    """Raised when error occurred communicating with the clamd daemon.
    """


class InvalidAddressError(ClamdException):
    """Raised when the clamd address is malformed.

    Detected when the client is built, before any connection attempt.
    """


class ClamdConnectionError(ClamdException):
    """Raised when the connection to clamd cannot be established.
    """


class CommandError(ClamdException):
    """Raised when writing a command or reading its reply fails.
    """


class MalformedResponseError(ClamdException):
    """Raised when a clamd reply does not have the expected shape.

    The raw reply is kept in ``raw_data`` for diagnostics.
    """
    def __init__(self, message: str, raw_data: str):
        super().__init__(message)
        self.raw_data = raw_data


class IntegerParseError(MalformedResponseError):
    """Raised when a numeric field of a clamd reply is not an integer.
    """


class DateParseError(MalformedResponseError):
    """Raised when a date field of a clamd reply cannot be parsed.
    """


class OversizedChunkError(ClamdException):
    """Raised when a block read for INSTREAM does not fit a chunk.

    Chunk length is a 32 bits unsigned integer on the wire.
    """
    def __init__(self, length: int):
        super().__init__(f"Chunk of {length} bytes exceeds the "
                         "INSTREAM chunk length limit")
        self.length = length


class ClamdScanStatus(Enum):
    """Status of clamd scanning.
    """
    OK = "OK"
    FOUND = "FOUND"
    ERROR = "ERROR"


@dataclass(frozen=True)
class ClamdCmdResponse():
    """Response of a clamd command.
    """
    raw_data: str
    message: str
    details: list[str]

    def __str__(self):
        return self.raw_data


@dataclass(frozen=True)
class ClamdScanResult():
    """Outcome of a clamd scanning for a single path.

    Only infected results carry ``location`` and ``signature``, only
    errors carry ``err_msg``.
    """
    status: ClamdScanStatus
    location: str | None = None
    signature: str | None = None
    err_msg: str | None = None
    raw_data: str = field(default="", compare=False)

    @classmethod
    def clean(cls, raw_data: str = "") -> "ClamdScanResult":
        return cls(status=ClamdScanStatus.OK, raw_data=raw_data)

    @classmethod
    def infected(cls,
                 location: str,
                 signature: str,
                 raw_data: str = "") -> "ClamdScanResult":
        return cls(status=ClamdScanStatus.FOUND,
                   location=location,
                   signature=signature,
                   raw_data=raw_data)

    @classmethod
    def error(cls, message: str) -> "ClamdScanResult":
        return cls(status=ClamdScanStatus.ERROR,
                   err_msg=message,
                   raw_data=message)

    @property
    def is_clean(self) -> bool:
        return self.status == ClamdScanStatus.OK


@dataclass(frozen=True)
class ClamdVersion():
    """Program and database versions reported by clamd.
    """
    tag: str
    build_number: int
    release_date: datetime
    raw_data: str = field(default="", compare=False)


@dataclass(frozen=True)
class ClamdStats():
    """Statistics reported by clamd STATS command.

    Memory figures are kept as reported by clamd (e.g. "9.082M") since
    the unit suffix is up to the daemon.
    """
    pools: int
    state: str
    threads_live: int
    threads_idle: int
    threads_max: int
    threads_idle_timeout_secs: int
    queue: int
    mem_heap: str
    mem_mmap: str
    mem_used: str
    mem_free: str
    mem_releasable: str
    pools_used: str
    pools_total: str
    raw_data: str = field(default="", compare=False)
