from __future__ import annotations

from typing import List, Optional

from fwota.packet import Status, encode_response
from fwota.transport import Transport


class ScriptedTransport(Transport):
    """Records every write and answers reads from a list of canned replies.

    `short_write_at` makes the n-th write_all call (0-based) send one byte
    less than asked. Reads past the end of `replies` come back empty.
    """

    def __init__(self, replies: Optional[List[bytes]] = None, short_write_at: Optional[int] = None):
        self.replies = list(replies or [])
        self.short_write_at = short_write_at
        self.writes: List[bytes] = []
        self.reads = 0
        self.closed = False

    def write_all(self, data: bytes, timeout: float) -> int:
        idx = len(self.writes)
        data = bytes(data)
        if self.short_write_at == idx:
            data = data[:-1]
        self.writes.append(data)
        return len(data)

    def read_exact(self, size: int, timeout: float) -> bytes:
        self.reads += 1
        if not self.replies:
            return b""
        return self.replies.pop(0)

    def close(self) -> None:
        self.closed = True

    @property
    def stream(self) -> bytes:
        return b"".join(self.writes)


ACK = encode_response(Status.ACK)
NACK = encode_response(Status.NACK)
