"""Firmware-over-the-air updater.

Layered the same way as the bootloader protocol it talks to:
- packet framing (codec + response classification)
- a single stop-and-wait handshake over an abstract transport
- the transfer state machine that chunks an image into data packets

Serial (pyserial) and TCP transports are interchangeable.
"""

from .errors import (
    ConnectionSetupError,
    FormatError,
    OtaError,
    ProtocolError,
    SizeError,
    TransferAborted,
    TransferTimeout,
    TransportError,
    UnexpectedStatus,
)
from .transfer import FirmwareUpdater, TransferConfig, TransferReport, TransferState, send_firmware
from .transport import SerialTransport, SocketTransport, Transport

__all__ = [
    "ConnectionSetupError",
    "FirmwareUpdater",
    "FormatError",
    "OtaError",
    "ProtocolError",
    "SerialTransport",
    "SizeError",
    "SocketTransport",
    "TransferAborted",
    "TransferConfig",
    "TransferReport",
    "TransferState",
    "TransferTimeout",
    "Transport",
    "TransportError",
    "UnexpectedStatus",
    "send_firmware",
]
