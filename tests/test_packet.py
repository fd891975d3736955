from __future__ import annotations

import struct

import pytest

from fwota.errors import FormatError
from fwota.packet import (
    COMMAND_FRAME_SIZE,
    HEADER_FRAME_SIZE,
    RESPONSE_FRAME_SIZE,
    Command,
    CommandPacket,
    DataPacket,
    FileInfo,
    HeaderPacket,
    ResponsePacket,
    Status,
    Verdict,
    classify,
    decode_command,
    decode_data,
    decode_frame,
    decode_header,
    decode_response,
    encode_command,
    encode_data_frame,
    encode_header,
    encode_response,
)


def test_command_frame_layout():
    raw = encode_command(Command.START)
    assert raw == bytes([0x02, 0x00, 0x00, 0x00, 0x01, 0x00, 0x00, 0x00, 0x00, 0x00, 0x00, 0x03])
    assert len(raw) == COMMAND_FRAME_SIZE == 12


def test_header_frame_layout():
    raw = encode_header(FileInfo(size=600))
    assert len(raw) == HEADER_FRAME_SIZE == 19
    assert raw[:6] == bytes([0x02, 0x01, 0x00, 0x00, 0x08, 0x00])
    assert struct.unpack_from("<II", raw, 6) == (600, 0)
    assert raw[-5:] == b"\x00\x00\x00\x00\x03"


def test_data_frame_segments():
    head, payload, foot = encode_data_frame(0x0102, b"abc")
    assert head == bytes([0x02, 0x02, 0x02, 0x01, 0x03, 0x00])
    assert payload == b"abc"
    assert foot == b"\x00\x00\x00\x00\x03"


def test_data_frame_payload_is_not_copied():
    image = bytearray(b"x" * 300)
    view = memoryview(image)[10:20]
    _, payload, _ = encode_data_frame(1, view)
    assert payload is view


@pytest.mark.parametrize("cmd", list(Command))
def test_roundtrip_command(cmd):
    assert decode_command(encode_command(cmd)) == CommandPacket(command=cmd)


def test_roundtrip_header():
    info = FileInfo(size=491519)
    assert decode_header(encode_header(info)) == HeaderPacket(file_info=info)


@pytest.mark.parametrize("length", [1, 256])
def test_roundtrip_data_boundaries(length):
    payload = bytes(range(256))[:length]
    raw = b"".join(encode_data_frame(7, payload))
    assert decode_data(raw) == DataPacket(sequence=7, payload=payload)
    assert decode_frame(raw) == DataPacket(sequence=7, payload=payload)


def test_data_payload_over_max_rejected():
    with pytest.raises(ValueError):
        encode_data_frame(1, b"\x00" * 257)


def test_empty_data_payload_rejected():
    with pytest.raises(ValueError):
        encode_data_frame(1, b"")


@pytest.mark.parametrize("seq", [0, 0x10000])
def test_sequence_out_of_range_rejected(seq):
    with pytest.raises(ValueError):
        encode_data_frame(seq, b"x")


def test_roundtrip_response():
    assert decode_response(encode_response(Status.ACK)) == ResponsePacket(status=0)
    assert decode_response(encode_response(Status.NACK)) == ResponsePacket(status=1)
    assert decode_frame(encode_response(Status.NACK)) == ResponsePacket(status=1)


@pytest.mark.parametrize("size", [0, 11, 13])
def test_decode_response_wrong_size(size):
    with pytest.raises(FormatError):
        decode_response(b"\x00" * size)


def test_decode_response_does_not_check_checksum():
    raw = bytearray(encode_response(Status.ACK))
    raw[7:11] = b"\xde\xad\xbe\xef"
    resp = decode_response(bytes(raw))
    assert classify(resp) is Verdict.ACK
    assert resp.checksum_verified is False


def test_classify():
    assert classify(ResponsePacket(status=0)) is Verdict.ACK
    assert classify(ResponsePacket(status=1)) is Verdict.NACK
    assert classify(ResponsePacket(status=0x7F)) is Verdict.MALFORMED


def test_classify_bad_framing_is_malformed():
    raw = bytearray(encode_response(Status.ACK))
    raw[-1] = 0xFF
    assert classify(decode_response(bytes(raw))) is Verdict.MALFORMED


def test_device_decoders_reject_bad_markers():
    raw = bytearray(encode_command(Command.END))
    raw[0] = 0x55
    with pytest.raises(FormatError):
        decode_command(bytes(raw))
    raw = bytearray(encode_command(Command.END))
    raw[-1] = 0x55
    with pytest.raises(FormatError):
        decode_frame(bytes(raw))


def test_device_decoders_reject_length_mismatch():
    raw = b"".join(encode_data_frame(1, b"abcd"))
    with pytest.raises(FormatError):
        decode_data(raw[:-1])


def test_decode_command_wrong_kind():
    with pytest.raises(FormatError):
        decode_command(encode_header(FileInfo(size=1)))


def test_file_info_for_image():
    info = FileInfo.for_image(b"\x00" * 600)
    assert info == FileInfo(size=600, checksum=0)
    assert RESPONSE_FRAME_SIZE == 12
