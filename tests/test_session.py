"""Tests for JSONL session persistence."""

import json

import pytest

from nanobot.context import ContextBuilder
from nanobot.llm.anthropic_adapter import to_anthropic_messages
from nanobot.session import Session, SessionManager, _safe_filename


class TestSession:
    def test_history_is_bounded_and_ordered(self):
        session = Session("cli:direct")
        for i in range(6):
            session.add_message("user" if i % 2 == 0 else "assistant", f"m{i}")

        history = session.get_history(4)
        assert [m.text for m in history] == ["m2", "m3", "m4", "m5"]
        assert [m.role for m in history] == ["user", "assistant", "user", "assistant"]

    def test_odd_limit_window_opens_on_user(self):
        session = Session("cli:direct")
        for text in ("q1", "a1", "q2", "a2"):
            session.add_message("user" if text.startswith("q") else "assistant", text)

        history = session.get_history(3)

        assert [(m.role, m.text) for m in history] == [("user", "q2"), ("assistant", "a2")]

    def test_odd_limit_history_encodes_for_anthropic(self, workspace):
        session = Session("cli:direct")
        for text in ("q1", "a1", "q2", "a2"):
            session.add_message("user" if text.startswith("q") else "assistant", text)
        messages = ContextBuilder(workspace).build_messages(session.get_history(3), "q3")

        system, wire = to_anthropic_messages(messages)

        assert system
        assert [m["role"] for m in wire] == ["user", "assistant", "user"]

    def test_zero_limit_returns_nothing(self):
        session = Session("k")
        session.add_message("user", "hi")
        assert session.get_history(0) == []

    def test_clear(self):
        session = Session("k")
        session.add_message("user", "hi")
        session.clear()
        assert len(session) == 0


class TestSessionManager:
    def test_get_or_create_caches(self, sessions):
        assert sessions.get_or_create("cli:direct") is sessions.get_or_create("cli:direct")

    def test_save_and_reload(self, tmp_path):
        first = SessionManager(tmp_path / "s")
        session = first.get_or_create("feishu:chat/1")
        session.add_message("user", "hello")
        session.add_message("assistant", "hi!")
        session.metadata["topic"] = "greeting"
        path = first.save(session)

        assert path.name == "feishu_chat_1.jsonl"
        header = json.loads(path.read_text(encoding="utf-8").splitlines()[0])
        assert header["_type"] == "metadata"
        assert header["key"] == "feishu:chat/1"

        reloaded = SessionManager(tmp_path / "s").get_or_create("feishu:chat/1")
        assert [(m["role"], m["content"]) for m in reloaded.messages] == [
            ("user", "hello"),
            ("assistant", "hi!"),
        ]
        assert reloaded.metadata == {"topic": "greeting"}
        assert reloaded.created_at == session.created_at

    def test_corrupt_file_starts_fresh(self, sessions):
        sessions._path("cli:broken").write_text("{not json\n", encoding="utf-8")
        session = sessions.get_or_create("cli:broken")
        assert len(session) == 0

    def test_save_failure_raises(self, sessions):
        session = sessions.get_or_create("cli:direct")
        sessions._path("cli:direct").mkdir()
        with pytest.raises(OSError):
            sessions.save(session)

    def test_delete(self, sessions):
        session = sessions.get_or_create("cli:gone")
        sessions.save(session)
        assert sessions.delete("cli:gone") is True
        assert sessions.delete("cli:gone") is False
        assert not sessions._path("cli:gone").exists()

    def test_list_sessions_newest_first(self, sessions):
        older = sessions.get_or_create("cli:old")
        older.add_message("user", "a")
        sessions.save(older)
        newer = sessions.get_or_create("cli:new")
        newer.add_message("user", "b")
        sessions.save(newer)

        listed = sessions.list_sessions()
        assert [s["key"] for s in listed] == ["cli:new", "cli:old"]

    def test_default_dir_under_data_dir(self, tmp_path):
        manager = SessionManager()
        assert manager.base_dir == (tmp_path / "data").resolve() / "sessions"


def test_safe_filename():
    assert _safe_filename('a:b/c\\d*e?f"g<h>i|j') == "a_b_c_d_e_f_g_h_i_j"
