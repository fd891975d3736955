from __future__ import annotations

import enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .packet import Verdict
    from .transfer import Step


class OtaError(Exception):
    """Base class for every failure raised by fwota."""


class Phase(str, enum.Enum):
    WRITE = "write"
    READ = "read"


class TransportError(OtaError):
    """Partial I/O or timeout at the byte level."""

    def __init__(self, phase: Phase, bytes_transferred: int, expected: int):
        self.phase = phase
        self.bytes_transferred = bytes_transferred
        self.expected = expected
        super().__init__(
            f"{phase.value} timed out, {bytes_transferred}/{expected} bytes transferred"
        )


class ConnectionSetupError(OtaError):
    """Opening or configuring the serial line or socket failed."""


class ProtocolError(OtaError):
    pass


class FormatError(ProtocolError):
    pass


class UnexpectedStatus(ProtocolError):
    def __init__(self, verdict: Verdict, status: int):
        self.verdict = verdict
        self.status = status
        super().__init__(f"device replied {verdict.name} (status=0x{status:02x})")


class SizeError(OtaError):
    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(f"firmware image is {size} bytes, maximum allowed is {limit} bytes")


class TransferTimeout(OtaError):
    def __init__(self, elapsed: float, limit: float):
        self.elapsed = elapsed
        self.limit = limit
        super().__init__(f"transfer deadline of {limit:.1f}s exceeded after {elapsed:.1f}s")


class TransferAborted(OtaError):
    """Terminal failure of a transfer; `step` names where it stopped."""

    def __init__(self, step: Step, cause: Exception):
        self.step = step
        self.cause = cause
        super().__init__(f"transfer aborted at {step}: {cause}")
