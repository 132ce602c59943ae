#!/usr/bin/env python3
"""
Protocolo de linhas para o chat via TCP.
- read_line(rfile): lê uma linha (bytes) e devolve texto sem o \n; None no fim do fluxo.
- write_line(wfile, text): escreve texto + \n e faz flush.
- send_message(sock, text) / recv_lines(sock): atalhos usados pelo cliente.
- user_message, whisper_message, anon_message, list_message: formatos de saída.

Comandos do cliente (convenção do servidor):
  /whisper <nome> <texto>
  /anon <texto>
  /user <novo_nome>
  /list
  /quit
"""
import argparse
import os
import socket
from typing import BinaryIO, Callable, Iterator, List, Mapping, Optional

ENCODING = "utf-8"
MAX_LINE_BYTES = 4096  # sem contar o terminador
DEFAULT_PORT = 8099
PORT_ENV = "CHAT_PORT"

# Respostas fixas do servidor
UNKNOWN_COMMAND = "Unknown command."
NAME_IN_USE = "Name already in use."
NO_SUCH_CLIENT = "Message not sent. The client does not exist."
LIST_HEADER = "List of connected clients:"


class LineTooLong(ValueError):
    """Linha recebida maior que MAX_LINE_BYTES."""


def _strip_terminator(data: bytes) -> bytes:
    if data.endswith(b"\n"):
        data = data[:-1]
        if data.endswith(b"\r"):
            data = data[:-1]
    return data


def read_line(rfile: BinaryIO, limit: int = MAX_LINE_BYTES) -> Optional[str]:
    """
    Lê uma linha de um arquivo binário (sock.makefile('rb')).

    Retorna None no fim do fluxo. Levanta LineTooLong se a linha passar de
    `limit` bytes; o restante da linha não é consumido.
    """
    data = rfile.readline(limit + 1)
    if not data:
        return None
    if len(data) > limit and not data.endswith(b"\n"):
        raise LineTooLong(f"linha com mais de {limit} bytes")
    return _strip_terminator(data).decode(ENCODING, errors="replace")


def write_line(wfile: BinaryIO, text: str) -> None:
    wfile.write((text + "\n").encode(ENCODING))
    wfile.flush()


def send_message(sock: socket.socket, text: str) -> None:
    data = (text + "\n").encode(ENCODING)
    sock.sendall(data)


def recv_lines(sock: socket.socket) -> Iterator[str]:
    f = sock.makefile('rb')
    try:
        while True:
            line = read_line(f)
            if line is None:
                return
            yield line
    finally:
        f.close()


def port_number(value) -> int:
    """Tipo do argparse para portas TCP (1-65535)."""
    try:
        porta = int(value)
    except (TypeError, ValueError):
        raise argparse.ArgumentTypeError(f"porta inválida: {value!r}")
    if not 1 <= porta <= 65535:
        raise argparse.ArgumentTypeError(f"porta fora do intervalo 1-65535: {porta}")
    return porta


def port_from_env(environ: Optional[Mapping[str, str]] = None) -> Optional[int]:
    """Porta de $CHAT_PORT, ou None se não definida. Valor inválido levanta ValueError."""
    environ = os.environ if environ is None else environ
    value = environ.get(PORT_ENV, "").strip()
    if not value:
        return None
    try:
        return port_number(value)
    except argparse.ArgumentTypeError as e:
        raise ValueError(f"{PORT_ENV}: {e}")


def prompt_port(prompt: str, input_fn: Optional[Callable[[str], str]] = None) -> int:
    """Pergunta a porta no terminal. EOFError/ValueError sobem para quem chamou."""
    input_fn = input_fn or input
    try:
        return port_number(input_fn(prompt).strip())
    except argparse.ArgumentTypeError as e:
        raise ValueError(str(e))


def user_message(name: str, text: str) -> str:
    return f"{name}: {text}"


def whisper_message(sender: str, text: str) -> str:
    return f"@{sender}: {text}"


def anon_message(text: str) -> str:
    # nunca inclui o nome do remetente
    return f"~{text}"


def list_message(names: List[str]) -> List[str]:
    return [LIST_HEADER] + list(names)
