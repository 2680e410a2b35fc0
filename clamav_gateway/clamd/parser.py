"""Parsers for clamd replies.

clamd replies are not self-describing: each parser is meant for the
reply of a specific command.

"""
import re
import typing as t
from datetime import datetime, timezone
from itertools import takewhile

from .types import ClamdCmdResponse, \
    ClamdScanResult, \
    ClamdStats, \
    ClamdVersion, \
    DateParseError, \
    IntegerParseError, \
    MalformedResponseError

REPLY_TERMINATOR = "\x00"

# clamd prints dates in the C locale, e.g. "Wed Aug  1 08:43:37 2018";
# day and month names are matched here so the local LC_TIME is ignored
weekday_names = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
month_names = ("Jan", "Feb", "Mar", "Apr", "May", "Jun",
               "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")
version_date_format = "%Y %m %d %H:%M:%S"

u64_pattern = re.compile(r"[0-9]+")
U64_MAX = 2 ** 64 - 1


def parse_u64(value: str) -> int:
    """Parse an unsigned 64 bits integer.

    Signs, blanks and digit separators accepted by int() are refused.
    """
    if not u64_pattern.fullmatch(value):
        raise ValueError(f"invalid unsigned integer: {value!r}")
    number = int(value)
    if number > U64_MAX:
        raise ValueError(f"unsigned integer out of range: {value!r}")
    return number


def split_segments(raw_resp: str) -> list[str]:
    """Split a reply on NUL terminators, dropping empty segments.
    """
    return [s for s in raw_resp.split(REPLY_TERMINATOR) if s]


def parse_response(raw_resp: str) -> ClamdCmdResponse:
    """Parse a generic clamd response to a command.

    :param raw_resp: Raw clamd response string
    :return: Structured response object
    """
    raw_resp_lines = raw_resp.split(REPLY_TERMINATOR)
    message = raw_resp_lines[0]
    # remove ''
    additional_lines = [al for al in raw_resp_lines[1:] if al]

    return ClamdCmdResponse(
        raw_data=raw_resp,
        message=message,
        details=additional_lines,
    )


def parse_scan_segment(segment: str) -> ClamdScanResult:
    """Classify a single line of a scanning reply.

    The OK suffix is checked before looking for FOUND, anything else is
    an error reported by clamd.
    """
    if segment.rstrip().endswith("OK"):
        return ClamdScanResult.clean(raw_data=segment)

    if "FOUND" in segment:
        tokens = segment.split()
        location = tokens[0].rstrip(":")
        signature = "".join(
            takewhile(lambda tok: not tok.startswith("FOUND"), tokens[1:]))
        return ClamdScanResult.infected(location, signature, raw_data=segment)

    return ClamdScanResult.error(segment)


def parse_scan_outcomes(raw_resp: str) -> list[ClamdScanResult]:
    """Parse a scanning command response.

    A directory scan reports one line per file, so the result is a list
    in the order lines were received.

    :param raw_resp: Raw clamd response string
    :return: Structured scan results
    """
    return [parse_scan_segment(s) for s in split_segments(raw_resp)]


def parse_single_outcome(raw_resp: str) -> ClamdScanResult:
    """Parse the response of a stream scanning.

    clamd replies with exactly one line to INSTREAM.
    """
    outcomes = parse_scan_outcomes(raw_resp)
    if len(outcomes) != 1:
        raise MalformedResponseError(
            f"Expected one scan result, got {len(outcomes)}", raw_resp)
    return outcomes[0]


def parse_release_date(raw_date: str) -> datetime:
    """Parse a clamd date as "<weekday> <month> <day> <time> <year>" UTC.
    """
    fields = raw_date.split()
    if len(fields) != 5:
        raise ValueError(f"invalid date: {raw_date!r}")
    weekday, month, day, time_of_day, year = fields
    if weekday not in weekday_names:
        raise ValueError(f"invalid weekday: {weekday!r}")
    if month not in month_names:
        raise ValueError(f"invalid month: {month!r}")

    numeric = f"{year} {month_names.index(month) + 1} {day} {time_of_day}"
    parsed = datetime.strptime(numeric, version_date_format)
    return parsed.replace(tzinfo=timezone.utc)


def parse_version(raw_resp: str) -> ClamdVersion:
    """Parse the response of VERSION command.

    The format is "<tag>/<build number>/<release date>", for example
    "ClamAV 0.100.0/24802/Wed Aug  1 08:43:37 2018".

    :param raw_resp: Raw clamd response string
    :return: Version metadata
    """
    text = raw_resp.removesuffix(REPLY_TERMINATOR)
    parts = text.split("/")
    if len(parts) != 3:
        raise MalformedResponseError(
            f"Expected 3 '/' separated fields, got {len(parts)}", raw_resp)
    tag, raw_build, raw_date = parts

    try:
        build_number = parse_u64(raw_build)
    except ValueError as e:
        raise IntegerParseError(str(e), raw_resp) from e

    try:
        release_date = parse_release_date(raw_date)
    except ValueError as e:
        raise DateParseError(str(e), raw_resp) from e

    return ClamdVersion(
        tag=tag,
        build_number=build_number,
        release_date=release_date,
        raw_data=raw_resp,
    )


# STATS reply layout as of clamd 0.100, one step per field: the value
# is everything up to the terminator label, which is consumed.  Steps
# without a field only skip ahead past their label.  The final step
# does not consume its terminator.
StatsStep = tuple[str | None, str, t.Callable[[str], t.Any] | None]

stats_layout: tuple[StatsStep, ...] = (
    (None, "POOLS: ", None),
    ("pools", "\n\nSTATE: ", parse_u64),
    ("state", "\nTHREADS: live ", str),
    ("threads_live", "  idle ", parse_u64),
    ("threads_idle", " max ", parse_u64),
    ("threads_max", " idle-timeout ", parse_u64),
    ("threads_idle_timeout_secs", "\nQUEUE: ", parse_u64),
    ("queue", " items\n", parse_u64),
    (None, "heap ", None),
    ("mem_heap", " mmap ", str),
    ("mem_mmap", " used ", str),
    ("mem_used", " free ", str),
    ("mem_free", " releasable ", str),
    ("mem_releasable", " pools ", str),
    (None, "pools_used ", None),
    ("pools_used", " pools_total ", str),
    ("pools_total", "\n", str),
)


def parse_stats(raw_resp: str) -> ClamdStats:
    """Parse the response of STATS command.

    The stats format changes across clamd versions: when the reply does
    not match, the whole raw reply is reported in the error.

    :param raw_resp: Raw clamd response string
    :return: Daemon statistics
    """
    values = {}
    pos = 0
    last = len(stats_layout) - 1
    for i, (name, terminator, converter) in enumerate(stats_layout):
        end = raw_resp.find(terminator, pos)
        if end < 0:
            raise MalformedResponseError(
                f"Unable to parse clamd stats: {terminator!r} not found",
                raw_resp)
        if name is not None:
            try:
                values[name] = converter(raw_resp[pos:end])
            except ValueError as e:
                raise MalformedResponseError(
                    f"Unable to parse clamd stats field {name}: {e}",
                    raw_resp) from e
        pos = end if i == last else end + len(terminator)

    return ClamdStats(raw_data=raw_resp, **values)
