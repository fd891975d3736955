from __future__ import annotations

import io
import json
import socket
import threading

from fwota.cli import EXIT_FAILED, EXIT_OK, EXIT_SETUP, build_parser, main
from fwota.device import DeviceEmulator
from fwota.transport import SocketTransport


def serve_once(srv: socket.socket, out: io.BytesIO, **kwargs):
    def run():
        conn, _ = srv.accept()
        with SocketTransport(conn) as t:
            DeviceEmulator(t, out, idle_timeout=2.0, **kwargs).run()
        srv.close()

    th = threading.Thread(target=run, daemon=True)
    th.start()
    return th


def listening():
    srv = socket.socket()
    srv.bind(("127.0.0.1", 0))
    srv.listen(1)
    return srv, srv.getsockname()[1]


def test_parser_defaults():
    args = build_parser().parse_args(["tcp", "--host", "10.0.0.2", "--file", "fw.bin"])
    assert args.port == 8080
    assert args.max_payload == 256
    assert args.timeout_ms == 10_000
    assert args.deadline_s is None


def test_tcp_flash(tmp_path, capsys):
    image = bytes(range(256)) * 3 + b"tail"
    fw = tmp_path / "fw.bin"
    fw.write_bytes(image)
    srv, port = listening()
    out = io.BytesIO()
    th = serve_once(srv, out)

    rc = main(["tcp", "--host", "127.0.0.1", "--port", str(port), "--file", str(fw), "--json"])
    th.join(timeout=5.0)

    assert rc == EXIT_OK
    assert out.getvalue() == image
    summary = json.loads(capsys.readouterr().out)
    assert summary["ok"] is True
    assert summary["data_packets"] == 4


def test_tcp_flash_nacked(tmp_path, capsys):
    fw = tmp_path / "fw.bin"
    fw.write_bytes(b"\x00" * 100)
    srv, port = listening()
    th = serve_once(srv, io.BytesIO(), nack_steps={"Header"})

    rc = main(["tcp", "--host", "127.0.0.1", "--port", str(port), "--file", str(fw), "--json"])
    th.join(timeout=5.0)

    assert rc == EXIT_FAILED
    summary = json.loads(capsys.readouterr().out)
    assert summary["ok"] is False
    assert "Header" in summary["error"]


def test_tcp_connection_refused(tmp_path):
    fw = tmp_path / "fw.bin"
    fw.write_bytes(b"\x00")
    srv, port = listening()
    srv.close()
    assert main(["tcp", "--host", "127.0.0.1", "--port", str(port), "--file", str(fw)]) == EXIT_SETUP


def test_missing_image(tmp_path):
    srv, port = listening()
    th = serve_once(srv, io.BytesIO())
    rc = main(["tcp", "--host", "127.0.0.1", "--port", str(port), "--file", str(tmp_path / "nope.bin")])
    th.join(timeout=5.0)
    assert rc == EXIT_SETUP


def test_bad_max_payload(tmp_path):
    fw = tmp_path / "fw.bin"
    fw.write_bytes(b"\x00")
    srv, port = listening()
    th = serve_once(srv, io.BytesIO())
    rc = main(["tcp", "--host", "127.0.0.1", "--port", str(port), "--file", str(fw), "--max-payload", "300"])
    th.join(timeout=5.0)
    assert rc == EXIT_SETUP
