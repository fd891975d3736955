from __future__ import annotations

import enum
import struct
from dataclasses import dataclass
from typing import Tuple, Union

from .constants import (
    FILE_INFO_FORMAT,
    FOOT_FORMAT,
    HEAD_FORMAT,
    MAX_PAYLOAD,
    MAX_SEQUENCE,
    PACKET_ACK,
    PACKET_EOF,
    PACKET_NACK,
    PACKET_OVERHEAD,
    PACKET_SOF,
)
from .errors import FormatError

HEAD = struct.Struct(HEAD_FORMAT)
FOOT = struct.Struct(FOOT_FORMAT)
FILE_INFO = struct.Struct(FILE_INFO_FORMAT)

# The checksum field is reserved on the wire but never computed or verified.
CHECKSUM_UNIMPLEMENTED = 0


class PacketKind(enum.IntEnum):
    COMMAND = 0
    HEADER = 1
    DATA = 2
    RESPONSE = 3


class Command(enum.IntEnum):
    START = 0
    END = 1
    ABORT = 2


class Status(enum.IntEnum):
    ACK = PACKET_ACK
    NACK = PACKET_NACK


class Verdict(enum.Enum):
    ACK = "ack"
    NACK = "nack"
    MALFORMED = "malformed"


def frame_size(payload_len: int) -> int:
    return PACKET_OVERHEAD + payload_len


COMMAND_FRAME_SIZE = frame_size(1)
HEADER_FRAME_SIZE = frame_size(FILE_INFO.size)
RESPONSE_FRAME_SIZE = frame_size(1)


@dataclass(frozen=True, slots=True)
class FileInfo:
    size: int
    checksum: int = CHECKSUM_UNIMPLEMENTED

    @classmethod
    def for_image(cls, image: bytes) -> "FileInfo":
        return cls(size=len(image))

    def to_bytes(self) -> bytes:
        return FILE_INFO.pack(self.size, self.checksum)


@dataclass(frozen=True, slots=True)
class CommandPacket:
    command: Command
    sequence: int = 0

    @property
    def checksum_verified(self) -> bool:
        return False


@dataclass(frozen=True, slots=True)
class HeaderPacket:
    file_info: FileInfo
    sequence: int = 0

    @property
    def checksum_verified(self) -> bool:
        return False


@dataclass(frozen=True, slots=True)
class DataPacket:
    sequence: int
    payload: bytes

    @property
    def checksum_verified(self) -> bool:
        return False


@dataclass(frozen=True, slots=True)
class ResponsePacket:
    """A decoded reply. Framing bytes are kept as observed, not validated."""

    status: int
    sequence: int = 0
    start_marker: int = PACKET_SOF
    kind: int = PacketKind.RESPONSE
    end_marker: int = PACKET_EOF

    @property
    def checksum_verified(self) -> bool:
        return False


Packet = Union[CommandPacket, HeaderPacket, DataPacket, ResponsePacket]


def _head(kind: PacketKind, sequence: int, payload_len: int) -> bytes:
    return HEAD.pack(PACKET_SOF, int(kind), sequence, payload_len)


def _foot() -> bytes:
    return FOOT.pack(CHECKSUM_UNIMPLEMENTED, PACKET_EOF)


def encode_command(cmd: Command) -> bytes:
    return _head(PacketKind.COMMAND, 0, 1) + bytes([int(cmd)]) + _foot()


def encode_header(file_info: FileInfo) -> bytes:
    payload = file_info.to_bytes()
    return _head(PacketKind.HEADER, 0, len(payload)) + payload + _foot()


def encode_response(status: int) -> bytes:
    return _head(PacketKind.RESPONSE, 0, 1) + bytes([int(status)]) + _foot()


def encode_data_frame(
    sequence: int,
    payload: Union[bytes, memoryview],
    max_payload: int = MAX_PAYLOAD,
) -> Tuple[bytes, Union[bytes, memoryview], bytes]:
    """Build a data frame as (head, payload, foot).

    The payload is returned as given so it can be streamed straight from the
    image buffer.
    """
    if not 1 <= sequence <= MAX_SEQUENCE:
        raise ValueError(f"sequence out of range: {sequence}")
    if not 1 <= len(payload) <= max_payload:
        raise ValueError(f"data payload must be 1..{max_payload} bytes, got {len(payload)}")
    return _head(PacketKind.DATA, sequence, len(payload)), payload, _foot()


def decode_response(raw: bytes) -> ResponsePacket:
    if len(raw) != RESPONSE_FRAME_SIZE:
        raise FormatError(
            f"response frame must be {RESPONSE_FRAME_SIZE} bytes, got {len(raw)}"
        )
    sof, kind, sequence, _payload_len = HEAD.unpack_from(raw)
    status = raw[HEAD.size]
    _checksum, eof = FOOT.unpack_from(raw, HEAD.size + 1)
    return ResponsePacket(
        status=status,
        sequence=sequence,
        start_marker=sof,
        kind=kind,
        end_marker=eof,
    )


def classify(response: ResponsePacket) -> Verdict:
    if (
        response.start_marker != PACKET_SOF
        or response.end_marker != PACKET_EOF
        or response.kind != PacketKind.RESPONSE
    ):
        return Verdict.MALFORMED
    if response.status == PACKET_ACK:
        return Verdict.ACK
    if response.status == PACKET_NACK:
        return Verdict.NACK
    return Verdict.MALFORMED


# Device-side decoding. These are strict about framing since the device
# has no other way to tell a torn frame from a valid one.


def parse_head(raw: bytes) -> Tuple[PacketKind, int, int]:
    """Validate the 6-byte head and return (kind, sequence, payload_len)."""
    if len(raw) < HEAD.size:
        raise FormatError("frame too small to hold a header")
    sof, kind, sequence, payload_len = HEAD.unpack_from(raw)
    if sof != PACKET_SOF:
        raise FormatError(f"bad start marker 0x{sof:02x}")
    try:
        packet_kind = PacketKind(kind)
    except ValueError:
        raise FormatError(f"unknown packet kind {kind}") from None
    return packet_kind, sequence, payload_len


def _unpack(raw: bytes, expected: PacketKind) -> Tuple[int, bytes]:
    kind, sequence, payload_len = parse_head(raw)
    if kind != expected:
        raise FormatError(f"expected {expected.name} frame, got {kind.name}")
    if len(raw) != frame_size(payload_len):
        raise FormatError(
            f"frame length {len(raw)} does not match payload length {payload_len}"
        )
    payload = bytes(raw[HEAD.size : HEAD.size + payload_len])
    _checksum, eof = FOOT.unpack_from(raw, HEAD.size + payload_len)
    if eof != PACKET_EOF:
        raise FormatError(f"bad end marker 0x{eof:02x}")
    return sequence, payload


def decode_command(raw: bytes) -> CommandPacket:
    sequence, payload = _unpack(raw, PacketKind.COMMAND)
    if len(payload) != 1:
        raise FormatError(f"command payload must be 1 byte, got {len(payload)}")
    try:
        cmd = Command(payload[0])
    except ValueError:
        raise FormatError(f"unknown command code {payload[0]}") from None
    return CommandPacket(command=cmd, sequence=sequence)


def decode_header(raw: bytes) -> HeaderPacket:
    sequence, payload = _unpack(raw, PacketKind.HEADER)
    if len(payload) != FILE_INFO.size:
        raise FormatError(f"header payload must be {FILE_INFO.size} bytes, got {len(payload)}")
    size, checksum = FILE_INFO.unpack(payload)
    return HeaderPacket(file_info=FileInfo(size=size, checksum=checksum), sequence=sequence)


def decode_data(raw: bytes, max_payload: int = MAX_PAYLOAD) -> DataPacket:
    sequence, payload = _unpack(raw, PacketKind.DATA)
    if not 1 <= len(payload) <= max_payload:
        raise FormatError(f"data payload must be 1..{max_payload} bytes, got {len(payload)}")
    return DataPacket(sequence=sequence, payload=payload)


def decode_frame(raw: bytes, max_payload: int = MAX_PAYLOAD) -> Packet:
    kind, _sequence, _payload_len = parse_head(raw)
    if kind == PacketKind.COMMAND:
        return decode_command(raw)
    if kind == PacketKind.HEADER:
        return decode_header(raw)
    if kind == PacketKind.DATA:
        return decode_data(raw, max_payload)
    if len(raw) != RESPONSE_FRAME_SIZE:
        raise FormatError(f"response frame must be {RESPONSE_FRAME_SIZE} bytes, got {len(raw)}")
    return decode_response(raw)
