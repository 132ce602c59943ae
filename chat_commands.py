#!/usr/bin/env python3
# Classificação das linhas recebidas pelo servidor.
# parse_command é pura: não conhece o roster nem as sessões.
from dataclasses import dataclass
from enum import Enum
from typing import Optional

QUIT = "/quit"
LIST = "/list"
WHISPER = "/whisper"
ANON = "/anon"
USER = "/user"

RESERVED_TOKENS = frozenset({QUIT, LIST, WHISPER, ANON, USER})
MAX_NAME_LENGTH = 32


class Tag(Enum):
    BROADCAST = "broadcast"
    WHISPER = "whisper"
    ANON = "anon"
    RENAME = "rename"
    LIST = "list"
    QUIT = "quit"
    MALFORMED = "malformed"


@dataclass(frozen=True)
class Command:
    """
    Resultado do parser para uma linha.

    - BROADCAST / ANON: `text`
    - WHISPER: `target` e `text`
    - RENAME: `target` (o novo nome)
    - MALFORMED: `text` guarda a linha original
    """
    tag: Tag
    text: str = ""
    target: Optional[str] = None


def is_valid_name(name: str) -> bool:
    """Nome de exibição: 1 a 32 caracteres, sem espaços, sem '/' inicial."""
    if not name or len(name) > MAX_NAME_LENGTH:
        return False
    if any(ch.isspace() for ch in name):
        return False
    if name.startswith("/"):
        return False
    return name not in RESERVED_TOKENS


def parse_command(line: str) -> Command:
    """Toda linha gera exatamente um Command."""
    tokens = line.split()
    if not tokens:
        # só espaços ainda é uma linha não vazia sem '/'
        return Command(Tag.BROADCAST if line else Tag.MALFORMED, text=line)

    first = tokens[0]
    if not first.startswith("/"):
        return Command(Tag.BROADCAST, text=line)

    if first == QUIT or first == LIST:
        if len(tokens) != 1:
            return Command(Tag.MALFORMED, text=line)
        return Command(Tag.QUIT if first == QUIT else Tag.LIST)

    if first == WHISPER:
        partes = line.split(None, 2)
        if len(partes) < 3:
            return Command(Tag.MALFORMED, text=line)
        return Command(Tag.WHISPER, text=partes[2], target=partes[1])

    if first == ANON:
        partes = line.split(None, 1)
        if len(partes) < 2:
            return Command(Tag.MALFORMED, text=line)
        return Command(Tag.ANON, text=partes[1])

    if first == USER:
        if len(tokens) != 2 or not is_valid_name(tokens[1]):
            return Command(Tag.MALFORMED, text=line)
        return Command(Tag.RENAME, target=tokens[1])

    return Command(Tag.MALFORMED, text=line)
