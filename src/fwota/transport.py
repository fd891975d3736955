from __future__ import annotations

import logging
import socket
import time
from abc import ABC, abstractmethod
from typing import Optional

import serial

from .constants import DEFAULT_BAUDRATE
from .errors import ConnectionSetupError

logger = logging.getLogger(__name__)


class Transport(ABC):
    """Duplex byte stream owned by one transfer at a time."""

    @abstractmethod
    def write_all(self, data: bytes, timeout: float) -> int:
        """Send all of `data` within `timeout` seconds; return bytes actually sent."""
        raise NotImplementedError

    @abstractmethod
    def read_exact(self, size: int, timeout: float) -> bytes:
        """Read `size` bytes within `timeout` seconds. A short result means timeout."""
        raise NotImplementedError

    @abstractmethod
    def close(self) -> None:
        raise NotImplementedError

    def __enter__(self) -> "Transport":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class SerialTransport(Transport):
    def __init__(self, port: serial.Serial):
        self.port = port

    @classmethod
    def open(cls, name: str, baudrate: int = DEFAULT_BAUDRATE) -> "SerialTransport":
        logger.info(
            "opening %s at %d baud, 8 data bits, no parity, 1 stop bit, no flow control",
            name,
            baudrate,
        )
        try:
            port = serial.Serial(
                port=name,
                baudrate=baudrate,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                xonxoff=False,
                rtscts=False,
                dsrdtr=False,
            )
        except (serial.SerialException, ValueError) as e:
            raise ConnectionSetupError(f"cannot open serial port {name}: {e}") from e
        return cls(port)

    def write_all(self, data: bytes, timeout: float) -> int:
        view = memoryview(data)
        deadline = time.monotonic() + timeout
        sent = 0
        while sent < len(view):
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            self.port.write_timeout = remaining
            try:
                n = self.port.write(view[sent:])
            except serial.SerialTimeoutException:
                break
            sent += n or 0
        logger.debug("serial wrote %d/%d bytes", sent, len(view))
        return sent

    def read_exact(self, size: int, timeout: float) -> bytes:
        # pyserial blocks until `size` bytes arrive or the timeout expires
        self.port.timeout = timeout
        data = self.port.read(size)
        logger.debug("serial read %d/%d bytes", len(data), size)
        return bytes(data)

    def close(self) -> None:
        if self.port.is_open:
            self.port.close()


class SocketTransport(Transport):
    def __init__(self, sock: socket.socket):
        self.sock = sock

    @classmethod
    def connect(cls, host: str, port: int, timeout_s: Optional[float] = None) -> "SocketTransport":
        logger.info("connecting to %s:%d", host, port)
        try:
            sock = socket.create_connection((host, port), timeout=timeout_s)
        except OSError as e:
            raise ConnectionSetupError(f"cannot connect to {host}:{port}: {e}") from e
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        return cls(sock)

    def write_all(self, data: bytes, timeout: float) -> int:
        view = memoryview(data)
        deadline = time.monotonic() + timeout
        sent = 0
        while sent < len(view):
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            self.sock.settimeout(remaining)
            try:
                n = self.sock.send(view[sent:])
            except socket.timeout:
                break
            if n == 0:
                break
            sent += n
        logger.debug("socket wrote %d/%d bytes", sent, len(view))
        return sent

    def read_exact(self, size: int, timeout: float) -> bytes:
        buf = bytearray()
        deadline = time.monotonic() + timeout
        while len(buf) < size:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            self.sock.settimeout(remaining)
            try:
                chunk = self.sock.recv(size - len(buf))
            except socket.timeout:
                break
            if not chunk:
                # peer closed
                break
            buf += chunk
        logger.debug("socket read %d/%d bytes", len(buf), size)
        return bytes(buf)

    def close(self) -> None:
        self.sock.close()
