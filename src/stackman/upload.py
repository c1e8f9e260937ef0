"""
Streaming upload of large payloads (disk images) with progress telemetry.

The payload is read through a :class:`CountingReader` whose byte counter
is the only state shared with the :class:`ProgressReporter` thread. The
reporter smooths the throughput with an exponential moving average and
hands :class:`UploadProgress` snapshots to a callback once per tick.
"""

import copy
import sys
import threading
import time
from dataclasses import dataclass, field
from typing import BinaryIO, Callable, Iterator, Optional

import requests

from stackman import log
from stackman.exceptions import EmptySourceError, UploadError

#: int: the size of the blocks read from the source
CHUNK_SIZE = 16 * 1024 * 1024

MB = 1024 * 1024


def speed_to_string(bps: float) -> str:
    """
    Convert a throughput in bytes per second to a human readable string
    (without the ``/s`` suffix).
    """
    if bps < 1024:
        return f"{bps:.0f} B"
    if bps < MB:
        return f"{bps / 1024:.1f} KB"
    return f"{bps / MB:.1f} MB"


def format_duration(seconds: float) -> str:
    """Format a duration in seconds as HH:MM:SS."""
    seconds = int(max(seconds, 0))
    hours, rest = divmod(seconds, 3600)
    minutes, seconds = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


class CountingReader:
    """
    File-like wrapper that counts the bytes read from *source*.

    ``len()`` reports the announced size so that the http layer sends it as
    the content length.
    """
    def __init__(self, source: BinaryIO, size: int, chunk_size: int = CHUNK_SIZE):
        #: BinaryIO: the wrapped stream
        self.source = source

        #: int: the announced size of the payload
        self.size = size

        #: int: the size of the blocks yielded when iterating
        self.chunk_size = chunk_size

        #: int: the number of bytes read so far, only ever increases
        self.bytes_read = 0

    def read(self, size: int = -1) -> bytes:
        data = self.source.read(size)
        self.bytes_read += len(data)
        return data

    def __len__(self) -> int:
        return self.size

    def __iter__(self) -> Iterator[bytes]:
        while True:
            chunk = self.read(self.chunk_size)
            if not chunk:
                return
            yield chunk


@dataclass
class UploadProgress:
    """
    Counters of one upload call.

    ``speed`` is the smoothed throughput in bytes per second, the first
    sample seeds the average.
    """

    total: int
    started_at: float
    smoothing: float = 0.5
    bytes_sent: int = 0
    elapsed: float = 0.0
    speed: float = 0.0
    eta: Optional[float] = None
    samples: int = 0
    _last_bytes: int = field(default=0, repr=False)
    _last_time: Optional[float] = field(default=None, repr=False)

    @property
    def percent(self) -> float:
        if self.total <= 0:
            return 0.0
        return self.bytes_sent * 100.0 / self.total

    @property
    def done(self) -> bool:
        return self.bytes_sent >= self.total

    def update(self, bytes_sent: int, now: float) -> 'UploadProgress':
        """
        Fold a new counter reading into the averages.

        Args:
            bytes_sent: the current value of the byte counter
            now: the current time (same clock as ``started_at``)
        """
        last_time = self._last_time if self._last_time is not None else self.started_at
        delta = now - last_time
        if delta <= 0:
            return self

        instant = (bytes_sent - self._last_bytes) / delta
        if self.samples == 0:
            self.speed = instant
        else:
            self.speed = self.smoothing * instant + (1 - self.smoothing) * self.speed
        self.samples += 1

        self.bytes_sent = bytes_sent
        self.elapsed = now - self.started_at
        self.eta = (self.total - bytes_sent) / self.speed if self.speed > 0 else None

        self._last_bytes = bytes_sent
        self._last_time = now
        return self


def format_progress(progress: UploadProgress) -> str:
    eta = format_duration(progress.eta) if progress.eta is not None else "N/A"
    return (
        f"Elapsed: {format_duration(progress.elapsed)} "
        f"Uploaded: {progress.percent:.1f}% "
        f"Speed: {speed_to_string(progress.speed)}/s "
        f"ETA: {eta} "
        f"({progress.bytes_sent // MB}/{progress.total // MB} MB)"
    )


def print_progress(progress: UploadProgress, stream=None):
    """
    Rewrite the current terminal line with the progress of an upload.
    """
    stream = stream or sys.stderr
    stream.write(f"\r\033[K{format_progress(progress)}")
    if progress.done:
        stream.write("\n")
    stream.flush()


class ProgressReporter(threading.Thread):
    """
    Background thread that samples the byte counter every *interval*
    seconds until the payload is complete or :meth:`stop` is called.
    """
    def __init__(self,
                 reader: CountingReader,
                 progress: UploadProgress,
                 callback: Optional[Callable[[UploadProgress], None]],
                 interval: float = 1.0,
                 clock: Callable[[], float] = time.monotonic):
        super().__init__(name='stackman-upload-progress', daemon=True)
        self.reader = reader
        self.progress = progress
        self.callback = callback
        self.interval = interval
        self.clock = clock
        self._stopped = threading.Event()

    def tick(self) -> UploadProgress:
        """Take one sample and hand a snapshot to the callback."""
        self.progress.update(self.reader.bytes_read, self.clock())
        snapshot = copy.copy(self.progress)
        if self.callback:
            self.callback(snapshot)
        return snapshot

    def run(self):
        while not self._stopped.wait(self.interval):
            if self.tick().done:
                return

    def stop(self):
        self._stopped.set()


@dataclass(frozen=True)
class UploadAck:
    """The acknowledgement of a completed upload."""

    status_code: int
    bytes_sent: int
    elapsed: float


class UploadChannel:
    """
    Streams a payload to a storage endpoint with an http PUT.

    There is no read timeout (large images take a long time) and no
    resume: a failed upload has to be started over.
    """
    def __init__(self,
                 session: Optional[requests.Session] = None,
                 progress_interval: float = 1.0,
                 smoothing: float = 0.5,
                 progress_callback: Optional[Callable[[UploadProgress], None]] = print_progress,
                 connect_timeout: float = 30.0,
                 verify: bool = True,
                 clock: Callable[[], float] = time.monotonic):
        """
        Args:
            session: the http session, a new one by default
            progress_interval: seconds between two progress reports
            smoothing: the weight of the newest throughput sample
            progress_callback: receives an :class:`UploadProgress` snapshot
              on every tick, None disables reporting
            connect_timeout: the connect timeout in seconds
            verify: verify the tls certificate of the endpoint
            clock: the monotonic clock used for the telemetry
        """
        #: requests.Session: the http session used for the upload
        self.session = session or requests.Session()

        #: float: seconds between two progress reports
        self.progress_interval = progress_interval

        #: float: the smoothing factor of the throughput average
        self.smoothing = smoothing

        #: callable: the progress callback
        self.progress_callback = progress_callback

        #: float: the connect timeout in seconds
        self.connect_timeout = connect_timeout

        #: bool: verify the tls certificate of the endpoint
        self.verify = verify

        #: callable: the clock of the telemetry
        self.clock = clock

        #: logging.Logger: Logger instance
        self.logger = log

    def upload(self,
               url: str,
               token: str,
               source: BinaryIO,
               known_size: int) -> UploadAck:
        """
        Stream *source* to *url*.

        Args:
            url: the destination url
            token: the auth token
            source: a binary stream positioned at the start of the payload
            known_size: the number of bytes that will be sent

        Returns:
            the upload acknowledgement

        Raises:
            EmptySourceError: when *known_size* is zero, before any network
              activity
            UploadError: on a transport failure or a non 2xx answer, with
              the full error body
        """
        if not known_size or known_size <= 0:
            raise EmptySourceError(f"refusing to upload empty source (size={known_size})")

        reader = CountingReader(source, known_size)
        started_at = self.clock()
        progress = UploadProgress(
            total=known_size, started_at=started_at, smoothing=self.smoothing)
        reporter = ProgressReporter(
            reader, progress, self.progress_callback,
            interval=self.progress_interval, clock=self.clock)

        headers = {
            'Content-Type': 'application/octet-stream',
            'Content-Length': str(known_size),
            'X-Auth-Token': token,
        }

        self.logger.debug(f"starting upload of {known_size} bytes to {url}")
        reporter.start()
        try:
            response = self.session.put(
                url,
                data=reader,
                headers=headers,
                timeout=(self.connect_timeout, None),
                verify=self.verify)
        except requests.RequestException as exc:
            raise UploadError(f"upload to {url} failed: {exc}") from exc
        finally:
            reporter.stop()
            reporter.join()

        if not 200 <= response.status_code < 300:
            body = response.text
            raise UploadError(
                f"upload failed with status {response.status_code}: {body}",
                status_code=response.status_code,
                body=body)

        if self.progress_callback and not progress.done:
            # the upload ended before the reporter sampled the last bytes
            reporter.tick()

        elapsed = self.clock() - started_at
        self.logger.info(
            f"uploaded {reader.bytes_read // MB} MB in {format_duration(elapsed)}")
        return UploadAck(
            status_code=response.status_code,
            bytes_sent=reader.bytes_read,
            elapsed=elapsed)
