#!/usr/bin/env python3
# Roster: mapa nome -> sessão, único estado mutável compartilhado do servidor.
# Todas as operações seguram o mesmo lock; ninguém escreve em socket com ele preso.
import threading
from typing import Any, Callable, Dict, List, Optional


class NameTaken(Exception):
    """O nome já pertence a outra sessão."""

    def __init__(self, name: str):
        super().__init__(name)
        self.name = name


class Roster:
    """
    Mapa ordenado (ordem de entrada) de nome de exibição para sessão.

    As sessões só precisam de um atributo `name`; o rename atualiza a chave
    e o nome da sessão dentro do mesmo lock, então os dois nunca divergem.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, Any] = {}
        self._lock = threading.Lock()

    def add(self, name: str, session: Any) -> None:
        with self._lock:
            if name in self._entries:
                raise NameTaken(name)
            self._entries[name] = session

    def remove(self, session: Any) -> bool:
        """Remove a entrada cujo valor é `session`. Devolve False se já não estava."""
        with self._lock:
            for name, s in self._entries.items():
                if s is session:
                    del self._entries[name]
                    return True
            return False

    def rename(self, session: Any, new_name: str) -> bool:
        """
        Troca a chave de `session` por `new_name`, mantendo a posição.

        Devolve False se nada mudou (mesmo nome ou sessão ausente) e levanta
        NameTaken se o nome pertence a outra sessão.
        """
        with self._lock:
            old_name = self._name_of(session)
            if old_name is None or old_name == new_name:
                return False
            if new_name in self._entries:
                raise NameTaken(new_name)
            self._entries = {
                (new_name if k == old_name else k): v
                for k, v in self._entries.items()
            }
            session.rename(new_name)
            return True

    def get(self, name: str) -> Optional[Any]:
        with self._lock:
            return self._entries.get(name)

    def snapshot(self) -> List[str]:
        """Nomes na ordem de entrada (renomeados mantêm o lugar)."""
        with self._lock:
            return list(self._entries)

    def sessions(self) -> List[Any]:
        with self._lock:
            return list(self._entries.values())

    def for_each(self, fn: Callable[[Any], None]) -> None:
        # itera uma cópia: add/remove concorrentes não afetam o laço
        for session in self.sessions():
            fn(session)

    def _name_of(self, session: Any) -> Optional[str]:
        for name, s in self._entries.items():
            if s is session:
                return name
        return None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._entries
