from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import BinaryIO, Optional, Set

from .constants import APP_FW_MAX_SIZE, MAX_PAYLOAD
from .errors import FormatError
from .packet import (
    HEAD,
    Command,
    CommandPacket,
    DataPacket,
    HeaderPacket,
    Status,
    decode_frame,
    encode_response,
    frame_size,
    parse_head,
)
from .transport import Transport

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DeviceMetrics:
    frames_received: int = 0
    bytes_received: int = 0
    nacks_sent: int = 0
    completed: bool = False
    aborted: bool = False
    desynced: bool = False
    start_ts: float = field(default_factory=time.monotonic)
    end_ts: Optional[float] = None

    @property
    def duration_s(self) -> float:
        if self.end_ts is None:
            return 0.0
        return max(0.0, self.end_ts - self.start_ts)


@dataclass(slots=True)
class DeviceEmulator:
    """Bootloader stand-in: checks packet order, stores the image, answers Ack/Nack.

    `nack_steps` holds step names ("Start", "Header", "Data[3]", "End") to
    reject, for fault injection.
    """

    transport: Transport
    out: BinaryIO
    max_payload: int = MAX_PAYLOAD
    max_image_size: int = APP_FW_MAX_SIZE
    idle_timeout: float = 30.0
    nack_steps: Set[str] = field(default_factory=set)

    def run(self) -> DeviceMetrics:
        metrics = DeviceMetrics()
        started = False
        expected_size: Optional[int] = None
        expected_seq = 1

        while not (metrics.completed or metrics.aborted):
            try:
                raw = self._read_frame()
            except FormatError as e:
                # frame boundaries are lost; nothing after this can be trusted
                logger.warning("bad frame head, stopping: %s", e)
                metrics.frames_received += 1
                metrics.desynced = True
                self._reply(Status.NACK, metrics)
                break
            if raw is None:
                logger.info("no more frames from host; stopping")
                break
            metrics.frames_received += 1

            try:
                packet = decode_frame(raw, self.max_payload)
            except FormatError as e:
                logger.warning("rejecting malformed frame: %s", e)
                self._reply(Status.NACK, metrics)
                continue

            ok = False
            step = ""
            if isinstance(packet, CommandPacket):
                step = packet.command.name.title()
                if packet.command == Command.START:
                    ok = True
                    started = True
                    expected_size = None
                    expected_seq = 1
                elif packet.command == Command.END:
                    ok = (
                        started
                        and expected_size is not None
                        and metrics.bytes_received == expected_size
                    )
                    metrics.completed = ok
                else:
                    ok = True
                    metrics.aborted = True
            elif isinstance(packet, HeaderPacket):
                step = "Header"
                size = packet.file_info.size
                ok = started and expected_size is None and size <= self.max_image_size
                if ok:
                    expected_size = size
            elif isinstance(packet, DataPacket):
                step = f"Data[{packet.sequence}]"
                ok = (
                    expected_size is not None
                    and packet.sequence == expected_seq
                    and metrics.bytes_received + len(packet.payload) <= expected_size
                )
                if ok:
                    self.out.write(packet.payload)
                    metrics.bytes_received += len(packet.payload)
                    expected_seq += 1

            if step in self.nack_steps:
                ok = False
                metrics.completed = False
            logger.debug("%s -> %s", step or "response", "ACK" if ok else "NACK")
            self._reply(Status.ACK if ok else Status.NACK, metrics)

        self.out.flush()
        metrics.end_ts = time.monotonic()
        return metrics

    def _read_frame(self) -> Optional[bytes]:
        head = self.transport.read_exact(HEAD.size, self.idle_timeout)
        if len(head) < HEAD.size:
            return None
        _kind, _seq, payload_len = parse_head(head)
        rest_len = frame_size(payload_len) - HEAD.size
        rest = self.transport.read_exact(rest_len, self.idle_timeout)
        if len(rest) < rest_len:
            return None
        return head + rest

    def _reply(self, status: Status, metrics: DeviceMetrics) -> None:
        if status == Status.NACK:
            metrics.nacks_sent += 1
        self.transport.write_all(encode_response(status), self.idle_timeout)
