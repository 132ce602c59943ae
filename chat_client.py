#!/usr/bin/env python3
# Cliente de chat simples (terminal)
# - linhas da entrada padrão vão para o servidor sem alteração
# - linhas do servidor vão para a saída padrão
# - depois de /quit, espera o servidor fechar a conexão
import argparse
import socket
import sys
import threading
from typing import Optional, TextIO

from chat_commands import QUIT
from chat_protocol import port_from_env, port_number, prompt_port, recv_lines, send_message


def leitor(sock: socket.socket, saida: Optional[TextIO] = None) -> None:
    saida = saida or sys.stdout
    try:
        for line in recv_lines(sock):
            saida.write(line + "\n")
            saida.flush()
    except (OSError, ValueError) as e:
        print(f"[Cliente] Conexão perdida: {e}", file=sys.stderr)
    finally:
        try:
            sock.close()
        except OSError:
            pass


def escritor(sock: socket.socket, entrada: Optional[TextIO] = None) -> None:
    entrada = entrada or sys.stdin
    try:
        for line in entrada:
            msg = line.rstrip('\n')
            send_message(sock, msg)
            if msg == QUIT:
                # o servidor fecha a conexão; o leitor termina sozinho
                return
        # fim da entrada: fecha só a escrita, o servidor trata como /quit
        sock.shutdown(socket.SHUT_WR)
    except OSError:
        pass


def main(host: str, porta: int) -> int:
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.connect((host, porta))
    except OSError as e:
        print(f"[Cliente] Não foi possível conectar a {host}:{porta}: {e}", file=sys.stderr)
        sock.close()
        return 1

    print(f"[Cliente] Conectado a {host}:{porta}.")
    print("Comandos: /whisper <nome> <texto>, /anon <texto>, /user <nome>, /list, /quit")

    t_r = threading.Thread(target=leitor, args=(sock,), daemon=True)
    t_w = threading.Thread(target=escritor, args=(sock,), daemon=True)
    t_r.start()
    t_w.start()

    # o escritor pode ficar preso no stdin; quem manda é o leitor
    t_r.join()
    print("[Cliente] Encerrado.")
    return 0


def resolve_port(porta: Optional[int]) -> int:
    if porta is not None:
        return porta
    env = port_from_env()
    if env is not None:
        return env
    return prompt_port("Please insert the server's port number: ")


def run(argv=None) -> None:
    parser = argparse.ArgumentParser(description='Cliente de chat simples (terminal).')
    parser.add_argument('porta', type=port_number, nargs='?', default=None,
                        help='Porta do servidor (padrão: $CHAT_PORT ou pergunta)')
    parser.add_argument('--host', default='localhost', help='Servidor (padrão: localhost)')
    args = parser.parse_args(argv)
    try:
        porta = resolve_port(args.porta)
    except (EOFError, ValueError) as e:
        print(f"[Cliente] Failure to read port number: {e}", file=sys.stderr)
        sys.exit(1)
    try:
        sys.exit(main(args.host, porta))
    except KeyboardInterrupt:
        print('\n[Cliente] Interrompido.')


if __name__ == '__main__':
    run()
