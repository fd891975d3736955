from __future__ import annotations

import argparse
import json
import logging
import socket
from typing import Optional

from .constants import APP_FW_MAX_SIZE, DEFAULT_BAUDRATE, DEFAULT_TCP_PORT, DEFAULT_TIMEOUT_MS, MAX_PAYLOAD
from .device import DeviceEmulator
from .errors import ConnectionSetupError, SizeError, TransferAborted
from .transfer import TransferConfig, send_firmware
from .transport import SerialTransport, SocketTransport, Transport

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_SETUP = 2


def load_image(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()


def _config(args: argparse.Namespace) -> TransferConfig:
    return TransferConfig(
        max_payload=args.max_payload,
        timeout_ms=args.timeout_ms,
        max_image_size=APP_FW_MAX_SIZE,
        deadline_s=args.deadline_s,
    )


def _flash(args: argparse.Namespace, transport: Transport) -> int:
    try:
        image = load_image(args.file)
    except OSError as e:
        logger.error("cannot read firmware image %s: %s", args.file, e)
        transport.close()
        return EXIT_SETUP
    logger.info("opened firmware image %s; size=%d bytes", args.file, len(image))

    def progress(seq: int, total: int, sent: int) -> None:
        logger.info("sent OTA data packet %d (%d/%d)", seq, seq, total)

    with transport:
        try:
            report = send_firmware(transport, image, _config(args), on_progress=progress)
        except (SizeError, TransferAborted) as e:
            logger.error("%s", e)
            payload = {"role": "host", "ok": False, "error": str(e)}
            print(json.dumps(payload, indent=2) if args.json else payload)
            return EXIT_FAILED

    payload = {
        "role": "host",
        "ok": True,
        "bytes": report.bytes_sent,
        "packets": report.packets_sent,
        "data_packets": report.data_packets,
        "seconds": report.duration_s,
    }
    print(json.dumps(payload, indent=2) if args.json else payload)
    return EXIT_OK


def cmd_serial(args: argparse.Namespace) -> int:
    try:
        transport = SerialTransport.open(args.port, args.baudrate)
    except ConnectionSetupError as e:
        logger.error("%s", e)
        return EXIT_SETUP
    return _flash(args, transport)


def cmd_tcp(args: argparse.Namespace) -> int:
    try:
        transport = SocketTransport.connect(args.host, args.port, args.timeout_ms / 1000.0)
    except ConnectionSetupError as e:
        logger.error("%s", e)
        return EXIT_SETUP
    return _flash(args, transport)


def cmd_emulate(args: argparse.Namespace) -> int:
    srv = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    srv.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    try:
        srv.bind((args.listen_host, args.listen_port))
        srv.listen(1)
        logger.info("emulated device listening on %s:%d", args.listen_host, args.listen_port)
        conn, addr = srv.accept()
    except OSError as e:
        logger.error("cannot listen on %s:%d: %s", args.listen_host, args.listen_port, e)
        srv.close()
        return EXIT_SETUP
    srv.close()
    logger.info("host connected from %s:%d", *addr)

    with SocketTransport(conn) as transport, open(args.out, "wb") as out:
        metrics = DeviceEmulator(
            transport,
            out,
            max_payload=args.max_payload,
            idle_timeout=args.timeout_ms / 1000.0,
            nack_steps=set(args.nack or []),
        ).run()

    payload = {
        "role": "device",
        "ok": metrics.completed,
        "bytes": metrics.bytes_received,
        "frames": metrics.frames_received,
        "nacks": metrics.nacks_sent,
        "seconds": metrics.duration_s,
    }
    print(json.dumps(payload, indent=2) if args.json else payload)
    return EXIT_OK if metrics.completed else EXIT_FAILED


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="fwota", description="Firmware-over-the-air updater (stop-and-wait).")
    p.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    sub = p.add_subparsers(dest="cmd", required=True)

    def add_common(x: argparse.ArgumentParser) -> None:
        x.add_argument("--timeout-ms", type=int, default=DEFAULT_TIMEOUT_MS)
        x.add_argument("--max-payload", type=int, default=MAX_PAYLOAD)
        x.add_argument("--json", action="store_true")

    def add_flash(x: argparse.ArgumentParser) -> None:
        add_common(x)
        x.add_argument("--file", required=True, help="firmware image (.bin)")
        x.add_argument("--deadline-s", type=float, default=None, help="overall transfer deadline")

    ser = sub.add_parser("serial", help="flash over a serial line")
    add_flash(ser)
    ser.add_argument("--port", required=True, help="e.g. /dev/ttyACM0 or COM3")
    ser.add_argument("--baudrate", type=int, default=DEFAULT_BAUDRATE)
    ser.set_defaults(func=cmd_serial)

    tcp = sub.add_parser("tcp", help="flash over a TCP connection")
    add_flash(tcp)
    tcp.add_argument("--host", required=True)
    tcp.add_argument("--port", type=int, default=DEFAULT_TCP_PORT)
    tcp.set_defaults(func=cmd_tcp)

    emu = sub.add_parser("emulate", help="run an emulated device on TCP and store what it receives")
    add_common(emu)
    emu.add_argument("--listen-host", default="0.0.0.0")
    emu.add_argument("--listen-port", type=int, default=DEFAULT_TCP_PORT)
    emu.add_argument("--out", required=True)
    emu.add_argument("--nack", action="append", metavar="STEP", help="reject a step, e.g. Data[2]")
    emu.set_defaults(func=cmd_emulate)

    return p


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(asctime)s [%(levelname)s] %(message)s")
    try:
        return int(args.func(args))
    except ValueError as e:
        logger.error("%s", e)
        return EXIT_SETUP


if __name__ == "__main__":
    raise SystemExit(main())
