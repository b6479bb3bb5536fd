"""Tests for the save-on-exit controller."""

from __future__ import annotations

import asyncio
import atexit
import json
import re
import signal
import sys

import pytest

from chatkeep.autosave import AutosaveController
from chatkeep.session import SessionStore


class TestFlushAndClose:
    def test_disabled_does_nothing(self, session_store: SessionStore, save_dir):
        session_store.add_message("user", "hello")
        controller = AutosaveController(session_store, enabled=False)

        assert asyncio.run(controller.flush_and_close()) is False
        assert not save_dir.exists()

    def test_empty_history_does_nothing(self, session_store: SessionStore, save_dir):
        controller = AutosaveController(session_store, enabled=True)
        assert asyncio.run(controller.flush_and_close()) is False
        assert not save_dir.exists()

    def test_unnamed_session_gets_auto_save_name(self, session_store: SessionStore, save_dir):
        session_store.add_message("user", "hello")
        controller = AutosaveController(session_store, enabled=True)

        assert asyncio.run(controller.flush_and_close()) is True

        assert re.fullmatch(r"auto_save_\d+", session_store.session_name)
        saved = save_dir / f"{session_store.session_name}.json"
        data = json.loads(saved.read_text(encoding="utf-8"))
        assert len(data["conversationHistory"]) == 1
        assert not session_store.has_unsaved_changes

    def test_reuses_existing_session_name(self, session_store: SessionStore, save_dir):
        session_store.add_message("user", "hello")
        asyncio.run(session_store.save("named"))
        session_store.add_message("assistant", "hi")
        controller = AutosaveController(session_store, enabled=True)

        assert asyncio.run(controller.flush_and_close()) is True
        data = json.loads((save_dir / "named.json").read_text(encoding="utf-8"))
        assert len(data["conversationHistory"]) == 2
        assert [p.name for p in save_dir.glob("*.json")] == ["named.json"]

    def test_clean_saved_session_is_not_rewritten(self, session_store: SessionStore):
        session_store.add_message("user", "hello")
        asyncio.run(session_store.save("named"))
        controller = AutosaveController(session_store, enabled=True)

        assert controller.needs_save() is False
        assert asyncio.run(controller.flush_and_close()) is False

    def test_only_one_exit_save_runs(self, session_store: SessionStore, monkeypatch):
        session_store.add_message("user", "hello")
        controller = AutosaveController(session_store, enabled=True)

        calls: list[str] = []
        real_save = session_store.save

        async def counting_save(name):
            calls.append(name)
            return await real_save(name)

        monkeypatch.setattr(session_store, "save", counting_save)

        async def fire_twice():
            return await asyncio.gather(
                controller.flush_and_close(), controller.flush_and_close()
            )

        results = asyncio.run(fire_twice())
        assert sorted(results) == [False, True]
        assert len(calls) == 1

        # A later signal is also ignored.
        assert asyncio.run(controller.flush_and_close()) is False
        assert len(calls) == 1
        assert controller.closed

    def test_save_failure_returns_false(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x")
        store = SessionStore(save_dir=blocker)
        store.add_message("user", "hello")
        controller = AutosaveController(store, enabled=True)

        assert asyncio.run(controller.flush_and_close()) is False
        assert store.has_unsaved_changes


class TestStartup:
    def test_load_last_if_enabled(self, session_store: SessionStore, settings):
        session_store.add_message("user", "from last time")
        asyncio.run(session_store.save("previous"))

        fresh = SessionStore(settings)
        assert asyncio.run(AutosaveController(fresh).load_last_if_enabled()) is False
        assert fresh.messages == ()

        assert asyncio.run(AutosaveController(fresh, enabled=True).load_last_if_enabled()) is True
        assert [m.content for m in fresh.messages] == ["from last time"]

    def test_set_enabled(self, session_store: SessionStore):
        controller = AutosaveController(session_store)
        controller.set_enabled(True)
        assert controller.enabled


class TestExitHooks:
    @pytest.fixture()
    def recorded(self, monkeypatch):
        hooks: dict[str, list] = {"atexit": [], "signal": []}
        monkeypatch.setattr(atexit, "register", lambda fn: hooks["atexit"].append(fn))
        monkeypatch.setattr(
            signal, "signal", lambda signum, handler: hooks["signal"].append((signum, handler))
        )
        return hooks

    def test_install_registers_once(self, session_store: SessionStore, recorded):
        controller = AutosaveController(session_store, enabled=True)
        controller.install_exit_hooks()
        controller.install_exit_hooks()

        assert len(recorded["atexit"]) == 1
        assert [s for s, _ in recorded["signal"]] == [signal.SIGINT]

    def test_sigint_saves_then_interrupts(self, session_store: SessionStore, recorded, save_dir):
        session_store.add_message("user", "interrupted")
        controller = AutosaveController(session_store, enabled=True)
        controller.install_exit_hooks()
        _, handler = recorded["signal"][0]

        with pytest.raises(KeyboardInterrupt):
            handler(signal.SIGINT, None)

        assert (save_dir / f"{session_store.session_name}.json").exists()
        # The atexit hook that runs afterwards must not save again.
        recorded["atexit"][0]()
        assert len(list(save_dir.glob("*.json"))) == 1


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX signal delivery")
class TestExitHooksInRunningLoop:
    @pytest.fixture()
    def exit_hooks(self, monkeypatch):
        hooks: list = []
        monkeypatch.setattr(atexit, "register", hooks.append)
        return hooks

    @pytest.mark.parametrize("pass_loop", [False, True])
    def test_sigint_saves_then_interrupts_host(
        self, session_store: SessionStore, save_dir, exit_hooks, pass_loop
    ):
        session_store.add_message("user", "still typing")
        controller = AutosaveController(session_store, enabled=True)

        async def host():
            controller.install_exit_hooks(asyncio.get_running_loop() if pass_loop else None)
            signal.raise_signal(signal.SIGINT)
            await asyncio.sleep(5)

        with pytest.raises(KeyboardInterrupt):
            asyncio.run(host())

        assert controller.closed
        saved = save_dir / f"{session_store.session_name}.json"
        data = json.loads(saved.read_text(encoding="utf-8"))
        assert data["conversationHistory"][0]["content"] == "still typing"

        # The atexit hook that runs afterwards must not save again.
        exit_hooks[0]()
        assert len(list(save_dir.glob("*.json"))) == 1

    def test_fallback_handler_saves_inside_running_loop(
        self, session_store: SessionStore, save_dir, monkeypatch
    ):
        installed: list = []
        monkeypatch.setattr(atexit, "register", lambda fn: None)
        monkeypatch.setattr(signal, "signal", lambda signum, handler: installed.append(handler))
        session_store.add_message("user", "no signal support here")
        controller = AutosaveController(session_store, enabled=True)

        def unsupported(*args):
            raise NotImplementedError

        async def host():
            monkeypatch.setattr(asyncio.get_running_loop(), "add_signal_handler", unsupported)
            controller.install_exit_hooks()
            handler = installed[-1]
            handler(signal.SIGINT, None)

        with pytest.raises(KeyboardInterrupt):
            asyncio.run(host())

        assert (save_dir / f"{session_store.session_name}.json").exists()
