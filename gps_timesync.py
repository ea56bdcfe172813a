# SPDX-FileCopyrightText: 2017 Tony DiCola for Adafruit Industries
# SPDX-FileCopyrightText: 2021 James Carr
# SPDX-FileCopyrightText: 2026 gps_timesync contributors
#
# SPDX-License-Identifier: MIT

"""
`gps_timesync`
====================================================

GPS time synchronization module.  Decodes the UTC date and time carried by
NMEA GPRMC sentences and decides when the system clock should be stepped to
it, as a fallback when no network time source is available.  The time zone
follows the position reported by the receiver.

The core (`decode_gprmc_time`, `reconcile`, `NmeaSentenceBuffer` and
`AcquisitionController`) never touches the operating system.  Everything it
needs from the host comes through a duck-typed *host* object; `LinuxHost`
and `SerialNMEAFeed` are the implementations for a Linux machine with a
serial GPS receiver.

Implementation Notes
--------------------

**Software and Dependencies:**

* pyserial, used by `SerialNMEAFeed.connect`:
  https://pypi.org/project/pyserial/
* timezonefinder, used by `LinuxHost.resolve_time_zone`:
  https://pypi.org/project/timezonefinder/

"""
import dataclasses
import datetime
import logging
import math
import os
import re
import subprocess
import threading
import time
from typing import Any, Callable, List, NamedTuple, Optional, Tuple, Union

__version__ = "1.0.0"

_LOGGER = logging.getLogger(__name__)

DEFAULT_REFERENCE_YEAR = 2000
DEFAULT_RETRY_DELAY_MS = 10000
DEFAULT_FIX_MIN_TIME_MS = 10000
DEFAULT_FIX_MIN_DISTANCE_M = 0.0

# NMEA constants http://www.gpsinformation.org/dale/nmea.htm
_GPRMC = "GPRMC"
_NMEA_TIME = 1
_NMEA_DATE = 9
_NMEA_MIN_VALID_FIELDS = 10

_TIME_PATTERN = re.compile(r"([0-9]{2})([0-9]{2})([0-9]{2})(?:\.([0-9]+))?")
_DATE_PATTERN = re.compile(r"([0-9]{2})([0-9]{2})([0-9]{2})")

_INT32_MAX = 2**31 - 1
_EPOCH = datetime.datetime(1970, 1, 1, tzinfo=datetime.timezone.utc)
_ONE_MS = datetime.timedelta(milliseconds=1)
_EARTH_RADIUS_M = 6371008.8

# Parse failure reasons
NOT_GPRMC = "NotGprmc"
TOO_FEW_FIELDS = "TooFewFields"
MALFORMED_DATE_TIME = "MalformedDateTime"
NO_DATA_YET = "NoDataYet"
OVERFLOW = "Overflow"

# Reconciliation actions
APPLY = "Apply"
SKIP_ALREADY_ALIGNED = "SkipAlreadyAligned"
DEFER_NO_DATA = "DeferNoData"
DEFER_PARSE_ERROR = "DeferParseError"

# Controller states
IDLE = "Idle"
AWAITING_FIX = "AwaitingFix"
DECIDING = "Deciding"
APPLIED = "Applied"
SKIPPED = "Skipped"
DEFERRED = "Deferred"

_OUTCOME_STATES = {APPLY: APPLIED, SKIP_ALREADY_ALIGNED: SKIPPED}


class Fix(NamedTuple):
    """A position report from the receiver, in signed decimal degrees."""

    latitude: float
    longitude: float


class ParseFailure(NamedTuple):
    """Why a sentence could not be decoded.  ``field`` holds the offending
    token for `MALFORMED_DATE_TIME`."""

    reason: str
    field: Optional[str] = None


class Decision(NamedTuple):
    """Outcome of one acquisition attempt.

    ``epoch_ms`` is only set for `APPLY`, ``reason`` only for the deferrals.
    """

    action: str
    epoch_ms: Optional[int] = None
    reason: Optional[str] = None


def _env_bool(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclasses.dataclass(frozen=True)
class TimeSyncConfig:
    """Runtime configuration.

    Parameters
    ----------
    port : str
        Serial device of the GPS receiver.
    baudrate : int
        Serial speed.
    timeout : float
        Serial read timeout in seconds.
    retry_delay_ms : int
        Delay before retrying when positioning is disabled.
    reference_year : int
        Anchor for two-digit year expansion, see `decode_gprmc_time`.
    fix_min_time_ms : int
        Minimum time between two published fixes.
    fix_min_distance_m : float
        Minimum movement between two published fixes.
    auto_time : bool
        Allow stepping the system clock from GPS time.
    auto_time_zone : bool
        Allow setting the system time zone from the GPS position.
    debug : bool
        Print every valid sentence read from the receiver.
    """

    port: str = "/dev/ttyUSB0"
    baudrate: int = 9600
    timeout: float = 3.0
    retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS
    reference_year: int = DEFAULT_REFERENCE_YEAR
    fix_min_time_ms: int = DEFAULT_FIX_MIN_TIME_MS
    fix_min_distance_m: float = DEFAULT_FIX_MIN_DISTANCE_M
    auto_time: bool = True
    auto_time_zone: bool = True
    debug: bool = False

    def __post_init__(self) -> None:
        if self.baudrate <= 0:
            raise ValueError(f"baudrate must be positive, got {self.baudrate}")
        for name in ("timeout", "retry_delay_ms", "fix_min_time_ms", "fix_min_distance_m"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must not be negative")

    @classmethod
    def from_env(cls, **overrides: Any) -> "TimeSyncConfig":
        """Create configuration from ``GPS_TIMESYNC_*`` environment variables.

        Explicit keyword arguments take precedence over environment values.
        """
        env = os.environ
        converters = {
            "port": str,
            "baudrate": int,
            "timeout": float,
            "retry_delay_ms": int,
            "reference_year": int,
            "fix_min_time_ms": int,
            "fix_min_distance_m": float,
        }
        config_kwargs = {}
        for field_name, convert in converters.items():
            val = env.get("GPS_TIMESYNC_" + field_name.upper())
            if val is not None:
                config_kwargs[field_name] = convert(val)

        defaults = cls()
        for field_name in ("auto_time", "auto_time_zone", "debug"):
            config_kwargs[field_name] = _env_bool(
                env.get("GPS_TIMESYNC_" + field_name.upper()),
                getattr(defaults, field_name),
            )

        config_kwargs.update(overrides)
        return cls(**config_kwargs)


# Internal helper parsing functions.
# These handle input that might be none or null and return none instead of
# throwing errors.
def _parse_degrees(nmea_data: str) -> Optional[int]:
    # Parse a NMEA lat/long data pair 'dddmm.mmmm' into a pure degrees value.
    # Where ddd is the degrees, mm.mmmm is the minutes.
    if nmea_data is None or len(nmea_data) < 3:
        return None
    # To avoid losing precision handle degrees and minutes separately
    # Return the final value as an integer of millionths of a degree.
    raw = nmea_data.split(".")
    degrees = int(raw[0]) // 100 * 1000000  # the ddd
    minutes = int(raw[0]) % 100  # the mm.
    if len(raw) > 1:
        minutes += int(f"{raw[1][:4]:0<4}") / 10000
    minutes = int(minutes / 60 * 1000000)
    return degrees + minutes


def _parse_int(nmea_data: str) -> Optional[int]:
    if nmea_data is None or nmea_data == "":
        return None
    return int(nmea_data)


def _read_degrees(data: List[str], index: int, neg: str) -> Optional[float]:
    value = _parse_degrees(data[index])
    if value is None:
        return None
    degrees = value / 1000000
    if data[index + 1].lower() == neg:
        degrees *= -1.0
    return degrees


def _parse_talker(data_type: str) -> Tuple[str, str]:
    # Split the data_type into talker and sentence_type
    if data_type[:1] == "P":  # Proprietary codes
        return (data_type[:1], data_type[1:])

    return (data_type[:2], data_type[2:])


def _strip_checksum(sentence: str) -> str:
    if len(sentence) > 3 and sentence[-3] == "*":
        return sentence[:-3]
    return sentence


def _nmea_checksum(data: str) -> int:
    checksum = 0
    for char in data:
        checksum ^= ord(char)
    return checksum


def _expand_year(two_digit_year: int, reference_year: int) -> int:
    # Pick the century that puts the year nearest to the reference year,
    # the later one on a tie: with 2000, 00-50 are 20xx and 51-99 are 19xx.
    century = reference_year - reference_year % 100
    best = None
    for candidate in (
        century - 100 + two_digit_year,
        century + two_digit_year,
        century + 100 + two_digit_year,
    ):
        if best is None or abs(candidate - reference_year) <= abs(best - reference_year):
            best = candidate
    return best


def _parse_fraction(digits: Optional[str]) -> int:
    # Decimal fraction of a second as microseconds, extra digits truncated
    if not digits:
        return 0
    return int(f"{digits[:6]:0<6}")


def decode_gprmc_time(
    sentence: str, reference_year: int = DEFAULT_REFERENCE_YEAR
) -> Union[datetime.datetime, ParseFailure]:
    """Decode the UTC date and time of a GPRMC sentence.

    Field 1 carries the time as ``HHMMSS`` with optional fractional seconds,
    field 9 the date as ``DDMMYY``.  The two-digit year is expanded to the
    century closest to ``reference_year`` (the later one on a tie), so with
    the default of 2000 ``94`` is 1994 and ``26`` is 2026.

    Returns a timezone-aware UTC `datetime.datetime`, or a `ParseFailure`.
    Never raises for malformed input and has no side effects.
    """
    if _GPRMC not in sentence:
        return ParseFailure(NOT_GPRMC)

    fields = _strip_checksum(sentence.strip()).split(",")
    if len(fields) < _NMEA_MIN_VALID_FIELDS:
        return ParseFailure(TOO_FEW_FIELDS)

    time_token = fields[_NMEA_TIME]
    date_token = fields[_NMEA_DATE]
    time_match = _TIME_PATTERN.fullmatch(time_token)
    if time_match is None:
        return ParseFailure(MALFORMED_DATE_TIME, time_token)
    date_match = _DATE_PATTERN.fullmatch(date_token)
    if date_match is None:
        return ParseFailure(MALFORMED_DATE_TIME, date_token)

    hours, mins, secs = (int(value) for value in time_match.group(1, 2, 3))
    day, month, year = (int(value) for value in date_match.groups())
    try:
        utc_date = datetime.date(_expand_year(year, reference_year), month, day)
    except ValueError:
        return ParseFailure(MALFORMED_DATE_TIME, date_token)
    try:
        utc_time = datetime.time(
            hours, mins, secs, _parse_fraction(time_match.group(4))
        )
    except ValueError:
        return ParseFailure(MALFORMED_DATE_TIME, time_token)

    return datetime.datetime.combine(
        utc_date, utc_time, tzinfo=datetime.timezone.utc
    )


def reconcile(
    decoded: Optional[datetime.datetime], local_now: datetime.datetime
) -> Decision:
    """Decide whether the decoded GPS time should be applied to the clock.

    Only the seconds field of ``decoded`` and ``local_now`` is compared, so
    sub-second drift never causes a resync.  A matching seconds field is
    treated as aligned even when the date or hour differs.

    An instant past the signed 32-bit epoch-seconds range is never applied.
    """
    if decoded is None:
        return Decision(DEFER_NO_DATA, reason=NO_DATA_YET)
    if decoded.tzinfo is None:
        decoded = decoded.replace(tzinfo=datetime.timezone.utc)

    epoch_ms = (decoded - _EPOCH) // _ONE_MS
    if epoch_ms // 1000 > _INT32_MAX:
        return Decision(DEFER_PARSE_ERROR, reason=OVERFLOW)

    if decoded.second == local_now.second:
        return Decision(SKIP_ALREADY_ALIGNED)

    return Decision(APPLY, epoch_ms=epoch_ms)


class NmeaSentenceBuffer:
    """Holds the most recent GPRMC sentence.

    One thread may call `observe` while another calls `latest`; the slot is
    replaced by rebinding a reference, so neither side ever blocks and a
    reader sees either the old or the new sentence, never a mix.
    """

    def __init__(self) -> None:
        self._sentence = None

    def observe(self, sentence: str) -> bool:
        """Keep ``sentence`` if it is a GPRMC sentence.  Returns True if
        the slot was overwritten."""
        if _GPRMC not in sentence:
            return False
        self._sentence = sentence
        return True

    def latest(self) -> Optional[str]:
        """The last GPRMC sentence seen, or None.  Does not clear the slot."""
        return self._sentence


def _utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


# pylint: disable-msg=too-many-instance-attributes
class AcquisitionController:
    """Sets the system clock and time zone from GPS fixes.

    ``host`` supplies the platform hooks: ``is_positioning_enabled``,
    ``is_network_time_provider_enabled``, ``is_auto_time_enabled``,
    ``is_auto_time_zone_enabled``, ``subscribe_to_fixes``,
    ``subscribe_to_raw_sentences``, ``resolve_time_zone``,
    ``set_system_clock``, ``set_system_time_zone`` and
    ``schedule_one_shot``.  See `LinuxHost`.

    ``restart`` is what the retry runs when positioning is disabled at
    `start`; by default a fresh controller for the same host is built and
    started.  ``clock`` returns the current UTC time.
    """

    def __init__(
        self,
        host: Any,
        *,
        retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS,
        reference_year: int = DEFAULT_REFERENCE_YEAR,
        restart: Optional[Callable[[], None]] = None,
        clock: Optional[Callable[[], datetime.datetime]] = None,
    ) -> None:
        if retry_delay_ms < 0:
            raise ValueError(f"retry_delay_ms must not be negative, got {retry_delay_ms}")
        self._host = host
        self._restart = restart
        self._clock = clock if clock is not None else _utc_now
        self._lock = threading.Lock()
        self._started = False
        self.retry_delay_ms = retry_delay_ms
        self.reference_year = reference_year
        self.buffer = NmeaSentenceBuffer()
        self.state = IDLE
        """Current state, one of the controller state constants"""
        self.retry_pending = False
        """True once a retry has been scheduled and has not run yet"""
        self.last_decision = None
        """Decision of the last fix that reached the deciding step"""
        self.last_outcome = None
        """State the last decision passed through: Applied, Skipped or Deferred"""

    @classmethod
    def from_config(
        cls, host: Any, config: TimeSyncConfig, **kwargs: Any
    ) -> "AcquisitionController":
        """Build a controller using the delays of ``config``."""
        return cls(
            host,
            retry_delay_ms=config.retry_delay_ms,
            reference_year=config.reference_year,
            **kwargs,
        )

    def start(self) -> bool:
        """Subscribe to the positioning feed, or schedule a single retry if
        positioning is disabled.  Returns True if subscribed.  Only the
        first call has any effect."""
        if self._started:
            _LOGGER.warning("Acquisition already started, ignoring")
            return False
        self._started = True
        self.state = AWAITING_FIX

        if not self._host.is_positioning_enabled():
            _LOGGER.info(
                "GPS is disabled, verifying again in %d ms", self.retry_delay_ms
            )
            self.state = DEFERRED
            self.retry_pending = True
            self._host.schedule_one_shot(self.retry_delay_ms, self._retry)
            return False

        _LOGGER.debug("GPS is enabled")
        self._host.subscribe_to_raw_sentences(self.buffer.observe)
        self._host.subscribe_to_fixes(self.on_fix)
        return True

    def _retry(self) -> None:
        self.retry_pending = False
        if self._restart is not None:
            self._restart()
            return
        fresh = type(self)(
            self._host,
            retry_delay_ms=self.retry_delay_ms,
            reference_year=self.reference_year,
            clock=self._clock,
        )
        fresh.start()

    def on_fix(self, fix: Fix) -> Optional[Decision]:
        """Handle one position fix.

        Updates the time zone when auto time zone is enabled, then, unless a
        network time source is available, decides on the GPS time and sets
        the clock if needed.  Returns the decision, or None when no decision
        was taken.
        """
        with self._lock:
            if self.state != AWAITING_FIX:
                _LOGGER.debug("Ignoring fix while %s", self.state)
                return None

            self._update_time_zone(fix)

            if self._host.is_network_time_provider_enabled():
                _LOGGER.debug("Using network time provider")
                return None

            self.state = DECIDING
            try:
                decision = self._decide()
                self.last_decision = decision
                self.last_outcome = _OUTCOME_STATES.get(decision.action, DEFERRED)
                self.state = self.last_outcome
                _LOGGER.debug("Fix handled: %s", self.last_outcome)
                if decision.action == APPLY:
                    self._host.set_system_clock(decision.epoch_ms)
            finally:
                self.state = AWAITING_FIX
            return decision

    def _update_time_zone(self, fix: Fix) -> None:
        if not self._host.is_auto_time_zone_enabled():
            _LOGGER.debug("Auto time zone is disabled")
            return
        time_zone = self._host.resolve_time_zone(fix.latitude, fix.longitude)
        _LOGGER.debug(
            "Time zone %s for latitude %s and longitude %s",
            time_zone,
            fix.latitude,
            fix.longitude,
        )
        self._host.set_system_time_zone(time_zone)

    def _decide(self) -> Decision:
        if not self._host.is_auto_time_enabled():
            _LOGGER.debug("Auto time is disabled")
            return reconcile(None, self._clock())

        sentence = self.buffer.latest()
        if sentence is None:
            _LOGGER.debug("No GPS data received yet")
            return reconcile(None, self._clock())

        decoded = decode_gprmc_time(sentence, self.reference_year)
        if isinstance(decoded, ParseFailure):
            _LOGGER.debug(
                "Cannot decode %r: %s %s", sentence, decoded.reason, decoded.field or ""
            )
            return Decision(DEFER_PARSE_ERROR, reason=decoded.reason)

        decision = reconcile(decoded, self._clock())
        _LOGGER.debug("GPS UTC time %s: %s", decoded.isoformat(), decision.action)
        return decision


def _distance_m(first: Fix, second: Fix) -> float:
    # Haversine distance
    lat1 = math.radians(first.latitude)
    lat2 = math.radians(second.latitude)
    dlat = lat2 - lat1
    dlon = math.radians(second.longitude - first.longitude)
    h = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    )
    return 2 * _EARTH_RADIUS_M * math.asin(math.sqrt(h))


# pylint: disable-msg=too-many-instance-attributes
class SerialNMEAFeed:
    """Reads NMEA sentences from a serial GPS receiver and hands them out to
    subscribers: every valid sentence to the raw sentence subscribers, and
    position fixes from RMC and GGA sentences to the fix subscribers.

    Fixes are throttled: after the first one, a fix is only published once
    ``min_time_ms`` have passed and the position moved ``min_distance_m``.
    """

    def __init__(
        self,
        uart: Any = None,
        *,
        port: Optional[str] = None,
        baudrate: int = 9600,
        timeout: float = 3.0,
        min_time_ms: int = DEFAULT_FIX_MIN_TIME_MS,
        min_distance_m: float = DEFAULT_FIX_MIN_DISTANCE_M,
        debug: bool = False,
    ) -> None:
        self._uart = uart
        self.port = port
        self.baudrate = baudrate
        self.timeout = timeout
        self.min_time_ms = min_time_ms
        self.min_distance_m = min_distance_m
        self._fix_callbacks = []
        self._sentence_callbacks = []
        self._last_fix_time = None
        self.last_fix = None
        """Last fix handed to the fix subscribers"""
        self.debug = debug
        """Toggles debug mode. When True, prints the incoming data sentence to the console"""

    @classmethod
    def from_config(cls, config: TimeSyncConfig) -> "SerialNMEAFeed":
        """Build an unconnected feed for the serial port of ``config``."""
        return cls(
            port=config.port,
            baudrate=config.baudrate,
            timeout=config.timeout,
            min_time_ms=config.fix_min_time_ms,
            min_distance_m=config.fix_min_distance_m,
            debug=config.debug,
        )

    @property
    def is_open(self) -> bool:
        """True if the receiver connection is usable."""
        return self._uart is not None and bool(getattr(self._uart, "is_open", True))

    def connect(self) -> bool:
        """Open the serial port if it is not open yet.  Returns `is_open`."""
        if self.is_open:
            return True
        if self.port is None:
            return False
        import serial  # pylint: disable=import-outside-toplevel

        try:
            self._uart = serial.Serial(
                self.port, baudrate=self.baudrate, timeout=self.timeout
            )
        except serial.SerialException as err:
            _LOGGER.error("Cannot open GPS on %s: %s", self.port, err)
            return False
        _LOGGER.info("Connected to GPS on %s at %d baud", self.port, self.baudrate)
        return True

    def subscribe_to_fixes(self, callback: Callable[[Fix], Any]) -> None:
        """Call ``callback`` with every published `Fix`."""
        self._fix_callbacks.append(callback)

    def subscribe_to_raw_sentences(self, callback: Callable[[str], Any]) -> None:
        """Call ``callback`` with every sentence that passed validation."""
        self._sentence_callbacks.append(callback)

    def update(self) -> bool:
        """Read and dispatch one sentence from the receiver.  Returns True if
        a valid sentence was processed, and False if nothing new was
        received.
        """
        if not self.is_open:
            return False
        try:
            sentence = self._read_sentence()
        except UnicodeError:
            return False
        if sentence is None:
            return False
        if self.debug:
            print(sentence)

        for callback in list(self._sentence_callbacks):
            callback(sentence)

        fix = self._parse_fix(sentence)
        if fix is not None and self._should_publish(fix):
            for callback in list(self._fix_callbacks):
                callback(fix)
        return True

    def send_command(self, command: bytes, add_checksum: bool = True) -> None:
        """Send a command string to the GPS.  If add_checksum is True (the
        default) a NMEA checksum will automatically be computed and added.
        Note you should NOT add the leading $ and trailing * to the command
        as they will automatically be added!
        """
        self.write(b"$")
        self.write(command)
        if add_checksum:
            checksum = 0
            for char in command:
                checksum ^= char
            self.write(b"*")
            self.write(bytes("{:02x}".format(checksum).upper(), "ascii"))
        self.write(b"\r\n")

    def write(self, bytestr: bytes) -> Optional[int]:
        """Write a bytestring data to the GPS directly, without parsing
        or checksums"""
        return self._uart.write(bytestr)

    @property
    def in_waiting(self) -> int:
        """Returns number of bytes available in UART read buffer"""
        return self._uart.in_waiting

    def readline(self) -> Optional[bytes]:
        """Returns a newline terminated bytestring, must have timeout set for
        the underlying UART or this will block forever!"""
        return self._uart.readline()

    def _read_sentence(self) -> Optional[str]:
        # Only continue if we have at least 11 bytes in the input buffer
        if self.in_waiting < 11:
            return None

        sentence = self.readline()
        if not sentence:
            return None
        sentence = str(sentence, "ascii").strip()
        # Look for a checksum and validate it if present.
        if len(sentence) > 7 and sentence[-3] == "*":
            # Get included checksum, then calculate it and compare.
            try:
                expected = int(sentence[-2:], 16)
            except ValueError:
                return None
            if _nmea_checksum(sentence[1:-3]) != expected:
                _LOGGER.debug("Checksum mismatch: %r", sentence)
                return None
            return sentence
        # At this point we don't have a valid sentence
        return None

    def _parse_fix(self, sentence: str) -> Optional[Fix]:
        # Position of an RMC with valid status or a GGA with a fix
        sentence = _strip_checksum(sentence)
        delimiter = sentence.find(",")
        if delimiter == -1:
            return None
        talker, sentence_type = _parse_talker(sentence[1:delimiter].upper())
        if talker not in ("GA", "GB", "GI", "GL", "GP", "GQ", "GN"):
            return None
        data = sentence[delimiter + 1 :].split(",")
        try:
            if sentence_type == "RMC" and len(data) >= 9:
                if data[1].upper() != "A":
                    return None
                latitude = _read_degrees(data, 2, "s")
                longitude = _read_degrees(data, 4, "w")
            elif sentence_type == "GGA" and len(data) >= 6:
                quality = _parse_int(data[5])
                if quality is None or quality < 1:
                    return None
                latitude = _read_degrees(data, 1, "s")
                longitude = _read_degrees(data, 3, "w")
            else:
                return None
        except ValueError:
            # Something didn't parse, abort
            return None
        if latitude is None or longitude is None:
            return None
        if abs(latitude) > 90 or abs(longitude) > 180:
            return None
        return Fix(latitude, longitude)

    def _should_publish(self, fix: Fix) -> bool:
        now = time.monotonic()
        if self.last_fix is not None:
            if (now - self._last_fix_time) * 1000 < self.min_time_ms:
                return False
            if _distance_m(self.last_fix, fix) < self.min_distance_m:
                return False
        self.last_fix = fix
        self._last_fix_time = now
        return True


class LinuxHost:
    """Platform hooks for `AcquisitionController` on a Linux machine.

    Positioning is the serial ``feed``; network time is whatever
    ``systemd-timesyncd`` (or another NTP client) reports through
    ``timedatectl``.  Setting the clock and the time zone needs root.
    """

    def __init__(
        self, feed: SerialNMEAFeed, *, auto_time: bool = True, auto_time_zone: bool = True
    ) -> None:
        self._feed = feed
        self._finder = None
        self.auto_time = auto_time
        self.auto_time_zone = auto_time_zone

    @classmethod
    def from_config(cls, feed: SerialNMEAFeed, config: TimeSyncConfig) -> "LinuxHost":
        """Build a host with the auto time flags of ``config``."""
        return cls(feed, auto_time=config.auto_time, auto_time_zone=config.auto_time_zone)

    def is_positioning_enabled(self) -> bool:
        return self._feed.connect()

    def is_network_time_provider_enabled(self) -> bool:
        try:
            result = subprocess.run(
                ["timedatectl", "show", "--property=NTPSynchronized", "--value"],
                capture_output=True,
                text=True,
                check=True,
            )
        except (OSError, subprocess.CalledProcessError) as err:
            _LOGGER.debug("Cannot query network time state: %s", err)
            return False
        return result.stdout.strip() == "yes"

    def is_auto_time_enabled(self) -> bool:
        return self.auto_time

    def is_auto_time_zone_enabled(self) -> bool:
        return self.auto_time_zone

    def subscribe_to_fixes(self, callback: Callable[[Fix], Any]) -> None:
        self._feed.subscribe_to_fixes(callback)

    def subscribe_to_raw_sentences(self, callback: Callable[[str], Any]) -> None:
        self._feed.subscribe_to_raw_sentences(callback)

    def resolve_time_zone(self, latitude: float, longitude: float) -> Optional[str]:
        """IANA time zone name at the position, None over open sea."""
        if self._finder is None:
            from timezonefinder import (  # pylint: disable=import-outside-toplevel
                TimezoneFinder,
            )

            self._finder = TimezoneFinder()
        try:
            return self._finder.timezone_at(lng=longitude, lat=latitude)
        except ValueError as err:
            _LOGGER.error("Cannot resolve time zone: %s", err)
            return None

    def set_system_clock(self, epoch_ms: int) -> None:
        try:
            time.clock_settime(time.CLOCK_REALTIME, epoch_ms / 1000)
        except OSError as err:
            _LOGGER.error("Failed to set system clock: %s", err)
            return
        _LOGGER.info(
            "Date & time updated from GPS: %s",
            (_EPOCH + epoch_ms * _ONE_MS).isoformat(),
        )

    def set_system_time_zone(self, time_zone: Optional[str]) -> None:
        if not time_zone:
            _LOGGER.warning("No time zone for this position, keeping the current one")
            return
        try:
            subprocess.run(
                ["timedatectl", "set-timezone", time_zone],
                capture_output=True,
                text=True,
                check=True,
            )
        except (OSError, subprocess.CalledProcessError) as err:
            _LOGGER.error("Failed to set time zone %s: %s", time_zone, err)
            return
        _LOGGER.info("New time zone: %s", time_zone)

    def schedule_one_shot(
        self, delay_ms: int, action: Callable[[], None]
    ) -> threading.Timer:
        timer = threading.Timer(delay_ms / 1000, action)
        timer.daemon = True
        timer.start()
        return timer
