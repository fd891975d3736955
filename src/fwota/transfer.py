from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Iterator, Optional, Tuple, Union

from .constants import APP_FW_MAX_SIZE, DEFAULT_TIMEOUT_MS, MAX_PAYLOAD, MAX_SEQUENCE
from .errors import OtaError, SizeError, TransferAborted, TransferTimeout, UnexpectedStatus
from .handshake import BytesLike, exchange
from .packet import (
    RESPONSE_FRAME_SIZE,
    Command,
    FileInfo,
    Verdict,
    encode_command,
    encode_data_frame,
    encode_header,
)
from .transport import Transport

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, int], None]
Frame = Union[BytesLike, Tuple[BytesLike, BytesLike, BytesLike]]


class TransferState(enum.Enum):
    IDLE = "idle"
    START_SENT = "start_sent"
    HEADER_SENT = "header_sent"
    SENDING = "sending"
    END_SENT = "end_sent"
    DONE = "done"
    ABORTED = "aborted"


class StepKind(enum.Enum):
    START = "Start"
    HEADER = "Header"
    DATA = "Data"
    END = "End"


@dataclass(frozen=True, slots=True)
class Step:
    kind: StepKind
    sequence: Optional[int] = None

    def __str__(self) -> str:
        if self.kind is StepKind.DATA:
            return f"Data[{self.sequence}]"
        return self.kind.value


@dataclass(frozen=True, slots=True)
class TransferConfig:
    max_payload: int = MAX_PAYLOAD
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    max_image_size: int = APP_FW_MAX_SIZE
    deadline_s: Optional[float] = None  # overall, checked between packets

    def __post_init__(self) -> None:
        if not 1 <= self.max_payload <= MAX_PAYLOAD:
            raise ValueError(f"max_payload must be 1..{MAX_PAYLOAD}, got {self.max_payload}")
        if self.timeout_ms <= 0:
            raise ValueError("timeout_ms must be positive")

    @property
    def timeout_s(self) -> float:
        return self.timeout_ms / 1000.0


@dataclass(frozen=True, slots=True)
class TransferReport:
    packets_sent: int
    data_packets: int
    bytes_sent: int
    duration_s: float


def count_chunks(size: int, max_payload: int = MAX_PAYLOAD) -> int:
    """Number of data packets for an image; an exact multiple gets no empty tail."""
    return -(-size // max_payload)


def chunk_spans(size: int, max_payload: int = MAX_PAYLOAD) -> Iterator[Tuple[int, int]]:
    """Yield (offset, length) for each data packet, in order."""
    offset = 0
    remaining = size
    while remaining > 0:
        length = min(remaining, max_payload)
        yield offset, length
        offset += length
        remaining -= length


@dataclass(slots=True)
class FirmwareUpdater:
    """Drives one Start, Header, Data..., End sequence over a transport.

    Single use: a finished or aborted updater cannot be run again, the caller
    owns (and must close) the transport either way.
    """

    transport: Transport
    image: Union[bytes, bytearray, memoryview]
    config: TransferConfig = field(default_factory=TransferConfig)
    on_progress: Optional[ProgressCallback] = None
    state: TransferState = TransferState.IDLE
    sequence: int = 0
    packets_sent: int = 0
    bytes_sent: int = 0
    _started_at: float = 0.0

    def run(self) -> TransferReport:
        if self.state is not TransferState.IDLE:
            raise RuntimeError(f"updater already used (state={self.state.value})")

        size = len(self.image)
        # data packet sequence numbers must fit the 16-bit field
        limit = min(self.config.max_image_size, MAX_SEQUENCE * self.config.max_payload)
        if size > limit:
            self.state = TransferState.ABORTED
            logger.error("firmware image is %d bytes, limit is %d", size, limit)
            raise SizeError(size, limit)

        file_info = FileInfo.for_image(self.image)
        total = count_chunks(size, self.config.max_payload)
        view = memoryview(self.image)
        self._started_at = time.monotonic()
        logger.info("starting OTA update; size=%d bytes, data packets=%d", size, total)

        self._step(Step(StepKind.START), lambda: encode_command(Command.START))
        self.state = TransferState.START_SENT

        self._step(Step(StepKind.HEADER), lambda: encode_header(file_info))
        self.state = TransferState.HEADER_SENT

        self.state = TransferState.SENDING
        for seq, (offset, length) in enumerate(chunk_spans(size, self.config.max_payload), start=1):
            self.sequence = seq
            chunk = view[offset : offset + length]
            self._step(
                Step(StepKind.DATA, seq),
                lambda: encode_data_frame(seq, chunk, self.config.max_payload),
            )
            self.bytes_sent += length
            logger.debug("data packet %d/%d acknowledged (%d bytes)", seq, total, length)
            if self.on_progress is not None:
                self.on_progress(seq, total, self.bytes_sent)

        self._step(Step(StepKind.END), lambda: encode_command(Command.END))
        self.state = TransferState.END_SENT

        self.state = TransferState.DONE
        duration = time.monotonic() - self._started_at
        logger.info("OTA update complete; %d bytes in %.2fs", self.bytes_sent, duration)
        return TransferReport(
            packets_sent=self.packets_sent,
            data_packets=total,
            bytes_sent=self.bytes_sent,
            duration_s=duration,
        )

    def _step(self, step: Step, build: Callable[[], Frame]) -> None:
        try:
            self._check_deadline()
            frame = build()
            logger.debug("sending %s", step)
            result = exchange(
                self.transport,
                frame,
                expected_response_size=RESPONSE_FRAME_SIZE,
                timeout=self.config.timeout_s,
            )
            if result.verdict is not Verdict.ACK:
                raise UnexpectedStatus(result.verdict, result.response.status)
        except (OtaError, ValueError) as e:
            self.state = TransferState.ABORTED
            logger.error("aborting OTA update at %s: %s", step, e)
            raise TransferAborted(step, e) from e
        self.packets_sent += 1

    def _check_deadline(self) -> None:
        if self.config.deadline_s is None:
            return
        elapsed = time.monotonic() - self._started_at
        if elapsed > self.config.deadline_s:
            raise TransferTimeout(elapsed, self.config.deadline_s)


def send_firmware(
    transport: Transport,
    image: Union[bytes, bytearray, memoryview],
    config: Optional[TransferConfig] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> TransferReport:
    updater = FirmwareUpdater(transport, image, config or TransferConfig(), on_progress)
    return updater.run()
