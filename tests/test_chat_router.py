import pytest

from chat_commands import parse_command
from chat_roster import Roster
from chat_server import Router
from fakes import FakeSession


@pytest.fixture
def chat():
    roster = Roster()
    router = Router(roster)
    c1, c2, c3 = FakeSession("Client-1"), FakeSession("Client-2"), FakeSession("Client-3")
    for s in (c1, c2, c3):
        s.roster = roster
        roster.add(s.name, s)

    def say(session, line):
        router.dispatch(session, parse_command(line))

    return roster, say, (c1, c2, c3)


def test_broadcast_skips_sender(chat):
    roster, say, (c1, c2, c3) = chat
    say(c1, "hello world")
    assert c1.sent == []
    assert c2.sent == ["Client-1: hello world"]
    assert c3.sent == ["Client-1: hello world"]


def test_whisper_hit(chat):
    roster, say, (c1, c2, c3) = chat
    say(c1, "/whisper Client-2 psst")
    assert c2.sent == ["@Client-1: psst"]
    assert c1.sent == []
    assert c3.sent == []


def test_whisper_miss(chat):
    roster, say, (c1, c2, c3) = chat
    say(c1, "/whisper Nobody hi")
    assert c1.sent == ["Message not sent. The client does not exist."]
    assert c2.sent == c3.sent == []


def test_whisper_to_self(chat):
    roster, say, (c1, c2, c3) = chat
    say(c1, "/whisper Client-1 nota")
    assert c1.sent == ["@Client-1: nota"]


def test_anon_reaches_everyone_without_name(chat):
    roster, say, (c1, c2, c3) = chat
    say(c1, "/anon surprise")
    for s in (c1, c2, c3):
        assert s.sent == ["~surprise"]
        assert "Client-1" not in s.sent[0]


def test_rename_is_silent_and_applies_to_next_message(chat):
    roster, say, (c1, c2, c3) = chat
    say(c1, "/user alice")
    assert c1.sent == c2.sent == c3.sent == []
    say(c1, "hi")
    assert c2.sent == ["alice: hi"]
    assert roster.snapshot() == ["alice", "Client-2", "Client-3"]


def test_rename_to_same_name_is_noop(chat):
    roster, say, (c1, c2, c3) = chat
    say(c1, "/user Client-1")
    assert c1.sent == []
    assert roster.snapshot() == ["Client-1", "Client-2", "Client-3"]


def test_rename_to_taken_name(chat):
    roster, say, (c1, c2, c3) = chat
    say(c1, "/user Client-2")
    assert c1.sent == ["Name already in use."]
    assert c1.name == "Client-1"
    assert roster.get("Client-2") is c2


def test_list_goes_to_requester_only(chat):
    roster, say, (c1, c2, c3) = chat
    say(c2, "/list")
    assert c2.sent == ["List of connected clients:", "Client-1", "Client-2", "Client-3"]
    assert c1.sent == c3.sent == []


def test_quit_removes_sender(chat):
    roster, say, (c1, c2, c3) = chat
    say(c1, "/quit")
    assert c1.closed
    assert c1.sent == []
    assert roster.snapshot() == ["Client-2", "Client-3"]
    say(c2, "depois")
    assert c1.sent == []


@pytest.mark.parametrize("line", ["/dance", "/user", "/whisper bob", "/list now"])
def test_malformed_replies_unknown_command(chat, line):
    roster, say, (c1, c2, c3) = chat
    say(c1, line)
    assert c1.sent == ["Unknown command."]
    assert c2.sent == c3.sent == []


def test_closed_recipient_does_not_block_others(chat):
    roster, say, (c1, c2, c3) = chat
    c2.closed = True
    say(c1, "ainda aqui")
    assert c2.sent == []
    assert c3.sent == ["Client-1: ainda aqui"]
