#!/usr/bin/env python3
# Servidor de chat em grupo:
# - Cada conexão recebe um nome padrão (Client-1, Client-2, ...)
# - Linhas comuns vão para todos os outros clientes
# - /whisper, /anon, /user, /list e /quit são tratados pelo Router
# - Uma thread por conexão lê as linhas; qualquer thread pode escrever numa sessão
import argparse
import errno
import queue
import socket
import sys
import threading
from enum import Enum
from typing import Optional, Tuple

from chat_commands import Command, Tag, parse_command
from chat_protocol import (
    DEFAULT_PORT,
    NAME_IN_USE,
    NO_SUCH_CLIENT,
    UNKNOWN_COMMAND,
    LineTooLong,
    anon_message,
    list_message,
    port_from_env,
    port_number,
    prompt_port,
    read_line,
    user_message,
    whisper_message,
    write_line,
)
from chat_roster import NameTaken, Roster

DEFAULT_NAME_PREFIX = "Client-"
ACCEPT_POLL_SECONDS = 0.5
OUTBOX_LIMIT = 256  # envios pendentes por cliente antes de desconectá-lo
FLUSH_TIMEOUT = 2.0

# Erros de accept que não derrubam o servidor
TRANSIENT_ACCEPT_ERRORS = frozenset({
    errno.ECONNABORTED,
    errno.ECONNRESET,
    errno.EINTR,
    errno.EAGAIN,
    errno.EMFILE,
    errno.ENFILE,
    errno.ENOBUFS,
    errno.ENOMEM,
    errno.EPROTO,
    errno.EPERM,
})


def log(msg: str) -> None:
    print(f"[Servidor] {msg}", flush=True)


class SessionState(Enum):
    CONNECTED = "connected"
    CLOSING = "closing"
    CLOSED = "closed"


class ClientSession:
    """
    Uma conexão de cliente.

    A thread de `run` é a única que lê do socket. `send` pode ser chamado de
    qualquer thread: só coloca as linhas na fila de saída, que é esvaziada
    pela thread escritora da própria sessão. Fila cheia (cliente que não lê)
    conta como falha de escrita e derruba só esta sessão.
    """

    def __init__(self, sock: socket.socket, addr, name: str, router: "Router"):
        self.sock = sock
        self.addr = addr
        self.name = name
        self.state = SessionState.CONNECTED
        self._router = router
        self._rfile = sock.makefile('rb')
        self._wfile = sock.makefile('wb')
        self._outbox: "queue.Queue[Optional[Tuple[str, ...]]]" = queue.Queue(maxsize=OUTBOX_LIMIT)
        self._state_lock = threading.Lock()
        self._writer = threading.Thread(target=self._drain, name=f"{name}-writer", daemon=True)
        self._writer.start()

    def __repr__(self) -> str:
        return f"<ClientSession {self.name} {self.addr} {self.state.value}>"

    @property
    def connected(self) -> bool:
        return self.state is SessionState.CONNECTED

    def rename(self, new_name: str) -> None:
        # chamado pelo Roster depois de aceitar a nova chave
        self.name = new_name

    def send(self, *lines: str) -> bool:
        """
        Enfileira uma ou mais linhas; elas saem juntas, sem intercalar.

        Nunca bloqueia. Sessão fechada: descarta em silêncio. Fila cheia:
        registra, fecha só esta sessão e devolve False.
        """
        if not self.connected:
            return False
        try:
            self._outbox.put_nowait(lines)
        except queue.Full:
            log(f"Fila de saída cheia para {self.name}; desconectando.")
            self.close()
            return False
        return True

    def _drain(self) -> None:
        try:
            while True:
                lines = self._outbox.get()
                if lines is None:
                    break
                for line in lines:
                    write_line(self._wfile, line)
        except (OSError, ValueError) as e:
            if self.connected:
                log(f"Falha ao enviar para {self.name}: {e}")
            self.close()
        finally:
            try:
                self._wfile.close()
            except (OSError, ValueError):
                pass

    def run(self) -> None:
        try:
            while self.connected:
                try:
                    line = read_line(self._rfile)
                except LineTooLong:
                    log(f"Linha grande demais de {self.name}; desconectando.")
                    self.send(UNKNOWN_COMMAND)
                    break
                if line is None:
                    break
                if not line.strip():
                    continue
                self._router.dispatch(self, parse_command(line))
        except (OSError, ValueError) as e:
            if self.connected:
                log(f"Erro com {self.name} ({self.addr}): {e}")
        finally:
            self.close(flush=True)
            try:
                self._rfile.close()
            except (OSError, ValueError):
                pass

    def close(self, flush: bool = False) -> None:
        """
        Tira a sessão do roster e só depois libera o socket. Idempotente.

        Com `flush`, espera até FLUSH_TIMEOUT a fila de saída esvaziar antes
        de derrubar a conexão.
        """
        with self._state_lock:
            if self.state is not SessionState.CONNECTED:
                return
            self.state = SessionState.CLOSING

        self._router.roster.remove(self)
        log(f"Closing connection with {self.name}")

        try:
            self._outbox.put_nowait(None)
        except queue.Full:
            flush = False
        if flush and self._writer is not threading.current_thread():
            self._writer.join(FLUSH_TIMEOUT)

        # acorda leituras/escritas bloqueadas nesta conexão
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        try:
            self.sock.close()
        except OSError:
            pass
        self.state = SessionState.CLOSED


class Router:
    """Executa um Command vindo de `sender` sobre o roster."""

    def __init__(self, roster: Roster):
        self.roster = roster

    def dispatch(self, sender: ClientSession, command: Command) -> None:
        tag = command.tag
        if tag is Tag.BROADCAST:
            self.broadcast(sender, command.text)

        elif tag is Tag.WHISPER:
            self.whisper(sender, command.target, command.text)

        elif tag is Tag.ANON:
            self.anon(sender, command.text)

        elif tag is Tag.RENAME:
            self.rename(sender, command.target)

        elif tag is Tag.LIST:
            log(f"{sender.name} pediu a lista de clientes.")
            sender.send(*list_message(self.roster.snapshot()))

        elif tag is Tag.QUIT:
            sender.close(flush=True)

        else:
            sender.send(UNKNOWN_COMMAND)

    def broadcast(self, sender: ClientSession, text: str) -> None:
        line = user_message(sender.name, text)
        log(line)
        for session in self.roster.sessions():
            if session is not sender:
                session.send(line)

    def whisper(self, sender: ClientSession, target: str, text: str) -> None:
        log(f"{sender.name} quer enviar uma mensagem privada.")
        dest = self.roster.get(target)
        if dest is None:
            sender.send(NO_SUCH_CLIENT)
            return
        dest.send(whisper_message(sender.name, text))

    def anon(self, sender: ClientSession, text: str) -> None:
        log(f"{sender.name} quer enviar uma mensagem anônima.")
        self.roster.for_each(lambda session: session.send(anon_message(text)))

    def rename(self, sender: ClientSession, new_name: str) -> None:
        old_name = sender.name
        try:
            changed = self.roster.rename(sender, new_name)
        except NameTaken:
            sender.send(NAME_IN_USE)
            return
        if changed:
            log(f"{old_name} agora é {new_name}. Conectados: {', '.join(self.roster.snapshot())}")


class ChatServer:
    """
    Aceita conexões e cria uma ClientSession (com thread própria) para cada uma.

    O contador de nomes padrão só é usado pela thread do accept.
    """

    def __init__(self, host: str = "0.0.0.0", port: int = DEFAULT_PORT):
        self.host = host
        self.port = port
        self.roster = Roster()
        self.router = Router(self.roster)
        self._counter = 0
        self._listener: Optional[socket.socket] = None
        self._closing = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def address(self) -> Tuple[str, int]:
        if self._listener is None:
            return (self.host, self.port)
        return self._listener.getsockname()[:2]

    def bind(self) -> None:
        servidor = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        servidor.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            servidor.bind((self.host, self.port))
            servidor.listen()
            # o accept acorda de tempos em tempos para ver se é hora de parar
            servidor.settimeout(ACCEPT_POLL_SECONDS)
        except OSError:
            servidor.close()
            raise
        self._listener = servidor

    def _next_name(self) -> str:
        self._counter += 1
        return f"{DEFAULT_NAME_PREFIX}{self._counter}"

    def _register(self, conn: socket.socket, addr) -> ClientSession:
        conn.settimeout(None)
        session = ClientSession(conn, addr, self._next_name(), self.router)
        while True:
            try:
                self.roster.add(session.name, session)
                break
            except NameTaken:
                # alguém já escolheu esse nome com /user; pula para o próximo
                session.rename(self._next_name())
        log(f"Connection accepted with {session.name}, at {addr}.")
        t = threading.Thread(target=session.run, name=session.name, daemon=True)
        t.start()
        return session

    def serve_forever(self) -> None:
        if self._listener is None:
            self.bind()
        log(f"Central ouvindo em {self.address[0]}:{self.address[1]}")
        while not self._closing.is_set():
            try:
                conn, addr = self._listener.accept()
            except socket.timeout:
                continue
            except OSError as e:
                if self._closing.is_set():
                    break
                if e.errno in TRANSIENT_ACCEPT_ERRORS:
                    log(f"Erro no accept (ignorado): {e}")
                    continue
                raise
            if self._closing.is_set():
                conn.close()
                break
            self._register(conn, addr)

    def start(self) -> "ChatServer":
        """Faz o bind e atende em uma thread de fundo."""
        if self._listener is None:
            self.bind()
        self._thread = threading.Thread(target=self.serve_forever, name="acceptor", daemon=True)
        self._thread.start()
        return self

    def shutdown(self) -> None:
        if self._closing.is_set():
            return
        self._closing.set()
        if self._listener is not None:
            try:
                # no Linux isso acorda o accept bloqueado
                self._listener.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            self._listener.close()
        # o accept para antes de as sessões serem fechadas
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=5)
        for session in self.roster.sessions():
            session.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Servidor de chat (broadcast, /whisper, /anon, /user, /list, /quit).')
    parser.add_argument('porta', type=port_number, nargs='?', default=None,
                        help=f'Porta para escutar (padrão: $CHAT_PORT ou pergunta; {DEFAULT_PORT} se falhar)')
    parser.add_argument('--host', default='0.0.0.0', help='Endereço para escutar (padrão: 0.0.0.0)')
    return parser


def resolve_port(porta: Optional[int]) -> int:
    if porta is not None:
        return porta
    env = port_from_env()
    if env is not None:
        return env
    try:
        return prompt_port("Please, insert the port number: ")
    except (EOFError, ValueError):
        log("Failure to read port number")
        log(f"Default port number: {DEFAULT_PORT}")
        return DEFAULT_PORT


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    try:
        porta = resolve_port(args.porta)
    except ValueError as e:
        log(f"Porta inválida: {e}")
        return 2

    server = ChatServer(args.host, porta)
    try:
        server.bind()
    except OSError as e:
        log(f"ERROR: Could not initiate Server on {args.host}:{porta}: {e}")
        return 1

    try:
        server.serve_forever()
    except KeyboardInterrupt:
        print("\n[Servidor] Interrompido.")
    except OSError as e:
        log(f"Erro fatal no accept: {e}")
        return 1
    finally:
        server.shutdown()
        log("Encerrado.")
    return 0


def run() -> None:
    sys.exit(main())


if __name__ == '__main__':
    run()
