from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Sequence, Union

from .constants import DEFAULT_TIMEOUT_MS
from .errors import Phase, TransportError
from .packet import RESPONSE_FRAME_SIZE, ResponsePacket, Verdict, classify, decode_response
from .transport import Transport

logger = logging.getLogger(__name__)

BytesLike = Union[bytes, bytearray, memoryview]


@dataclass(frozen=True, slots=True)
class Exchange:
    verdict: Verdict
    response: ResponsePacket


def exchange(
    transport: Transport,
    frame: Union[BytesLike, Sequence[BytesLike]],
    expected_response_size: int = RESPONSE_FRAME_SIZE,
    timeout: float = DEFAULT_TIMEOUT_MS / 1000.0,
) -> Exchange:
    """Write one frame, then read exactly one response frame.

    `frame` is either a complete frame or its segments in wire order. Each of
    the write and the read gets its own `timeout`. Nothing is retried: a short
    write or short read raises TransportError, a wrongly sized response raises
    FormatError.
    """
    segments = [frame] if isinstance(frame, (bytes, bytearray, memoryview)) else list(frame)
    total = sum(len(s) for s in segments)

    deadline = time.monotonic() + timeout
    sent = 0
    for segment in segments:
        remaining = max(0.0, deadline - time.monotonic())
        n = transport.write_all(segment, remaining)
        sent += n
        if n != len(segment):
            raise TransportError(Phase.WRITE, sent, total)

    raw = transport.read_exact(expected_response_size, timeout)
    if len(raw) < expected_response_size:
        raise TransportError(Phase.READ, len(raw), expected_response_size)

    response = decode_response(raw)
    verdict = classify(response)
    logger.debug("sent %d bytes, device replied %s (status=0x%02x)", sent, verdict.name, response.status)
    return Exchange(verdict=verdict, response=response)
