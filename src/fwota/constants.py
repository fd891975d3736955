from __future__ import annotations

PACKET_SOF = 0x02  # start of frame
PACKET_EOF = 0x03  # end of frame
PACKET_ACK = 0x00
PACKET_NACK = 0x01

MAX_PAYLOAD = 256
PACKET_OVERHEAD = 11  # every field except the payload
PACKET_MAX_SIZE = MAX_PAYLOAD + PACKET_OVERHEAD

HEAD_FORMAT = "<BBHH"  # sof, kind, sequence, payload_len
FOOT_FORMAT = "<IB"  # checksum, eof
FILE_INFO_FORMAT = "<II"  # size, checksum

MAX_SEQUENCE = 0xFFFF

# sector 2 start .. sector 7 end
APP_FW_MAX_SIZE = 0x0807FFFF - 0x08008000

DEFAULT_TIMEOUT_MS = 10_000
DEFAULT_TCP_PORT = 8080
DEFAULT_BAUDRATE = 115200
