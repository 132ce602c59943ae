import argparse
import io
import socket

import pytest

from chat_protocol import (
    MAX_LINE_BYTES,
    LineTooLong,
    anon_message,
    list_message,
    port_from_env,
    port_number,
    prompt_port,
    read_line,
    recv_lines,
    send_message,
    user_message,
    whisper_message,
    write_line,
)


def test_read_line_strips_terminators():
    rfile = io.BytesIO(b"hello\nworld\r\nlast")
    assert read_line(rfile) == "hello"
    assert read_line(rfile) == "world"
    assert read_line(rfile) == "last"
    assert read_line(rfile) is None


def test_read_line_empty_line_is_not_eof():
    rfile = io.BytesIO(b"\n")
    assert read_line(rfile) == ""
    assert read_line(rfile) is None


def test_read_line_accepts_line_at_limit():
    payload = b"a" * MAX_LINE_BYTES
    assert read_line(io.BytesIO(payload + b"\n")) == "a" * MAX_LINE_BYTES


def test_read_line_rejects_oversized_line():
    rfile = io.BytesIO(b"a" * (MAX_LINE_BYTES + 10) + b"\n")
    with pytest.raises(LineTooLong):
        read_line(rfile)


def test_read_line_custom_limit():
    with pytest.raises(LineTooLong):
        read_line(io.BytesIO(b"abcdef\n"), limit=3)
    assert read_line(io.BytesIO(b"abc\n"), limit=3) == "abc"


def test_read_line_replaces_invalid_utf8():
    assert read_line(io.BytesIO(b"ol\xff\n")) == "ol\ufffd"


def test_read_line_decodes_utf8():
    assert read_line(io.BytesIO("olá, você\n".encode("utf-8"))) == "olá, você"


def test_write_line_appends_single_newline():
    wfile = io.BytesIO()
    write_line(wfile, "oi")
    write_line(wfile, "ação")
    assert wfile.getvalue() == "oi\nação\n".encode("utf-8")


def test_send_message_and_recv_lines_over_socketpair():
    a, b = socket.socketpair()
    try:
        send_message(a, "primeira")
        send_message(a, "segunda")
        a.shutdown(socket.SHUT_WR)
        assert list(recv_lines(b)) == ["primeira", "segunda"]
    finally:
        a.close()
        b.close()


def test_formatters():
    assert user_message("Client-1", "hello world") == "Client-1: hello world"
    assert whisper_message("Client-1", "psst") == "@Client-1: psst"
    assert anon_message("surprise") == "~surprise"
    assert list_message(["alice", "Client-2"]) == [
        "List of connected clients:",
        "alice",
        "Client-2",
    ]
    assert list_message([]) == ["List of connected clients:"]


@pytest.mark.parametrize("value,expected", [("1", 1), ("8099", 8099), ("65535", 65535), (" 42 ", 42)])
def test_port_number_accepts_valid(value, expected):
    assert port_number(value) == expected


@pytest.mark.parametrize("value", ["0", "65536", "-1", "abc", ""])
def test_port_number_rejects_invalid(value):
    with pytest.raises(argparse.ArgumentTypeError):
        port_number(value)


def test_port_from_env():
    assert port_from_env({}) is None
    assert port_from_env({"CHAT_PORT": ""}) is None
    assert port_from_env({"CHAT_PORT": "9000"}) == 9000
    with pytest.raises(ValueError):
        port_from_env({"CHAT_PORT": "nope"})


def test_prompt_port():
    assert prompt_port("porta: ", input_fn=lambda _: "1234\n") == 1234
    with pytest.raises(ValueError):
        prompt_port("porta: ", input_fn=lambda _: "x")
