"""
Save-on-exit lifecycle around a SessionStore.

The host process calls :meth:`AutosaveController.install_exit_hooks` once;
SIGINT and interpreter exit both end up in :meth:`flush_and_close`, which
saves at most once no matter how many times it is triggered.
"""

from __future__ import annotations

import asyncio
import atexit
import logging
import signal
import threading

from .errors import ChatkeepError
from .helpers import unix_time
from .models import SaveState
from .session import SessionStore

logger = logging.getLogger(__name__)


def _consume_result(task: asyncio.Task) -> None:
    # The KeyboardInterrupt has already propagated out of the loop.
    if not task.cancelled():
        task.exception()


class AutosaveController:
    """
    Tracks whether save-on-exit is enabled and performs the exit save.

    Parameters
    ----------
    store:
        The session store to persist.
    enabled:
        Initial value of the save-on-exit flag.
    """

    def __init__(self, store: SessionStore, enabled: bool = False) -> None:
        self._store = store
        self._enabled = enabled
        self._closing = False
        self._hooks_installed = False
        self._exit_task: asyncio.Task | None = None

    @property
    def store(self) -> SessionStore:
        return self._store

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def dirty(self) -> bool:
        return self._store.state is SaveState.DIRTY

    @property
    def closed(self) -> bool:
        return self._closing

    def set_enabled(self, enabled: bool) -> None:
        self._enabled = enabled
        logger.info("Auto-save on exit %s", "enabled" if enabled else "disabled")

    def needs_save(self) -> bool:
        """True when an exit save would write something."""
        if not self._enabled or not self._store.messages:
            return False
        return self.dirty or self._store.session_name is None

    async def load_last_if_enabled(self) -> bool:
        """Restore the newest saved session at startup when autosave is on."""
        if not self._enabled:
            return False
        return await self._store.load_last_session()

    async def flush_and_close(self) -> bool:
        """
        Save the session if it needs it, then refuse any further exit saves.

        Returns ``True`` only for the call that actually wrote the file.
        """
        if self._closing:
            return False
        # Set before the first await so overlapping triggers see it.
        self._closing = True

        if not self.needs_save():
            if self._enabled and not self._store.messages:
                logger.debug("No conversation to save on exit")
            return False

        name = self._store.session_name or f"auto_save_{unix_time()}"
        logger.info("Auto-saving session on exit as %r", name)
        try:
            await self._store.save(name)
        except ChatkeepError as exc:
            logger.error("Error saving on exit: %s", exc)
            return False
        return True

    # ------------------------------------------------------------------
    # Exit hooks
    # ------------------------------------------------------------------

    def install_exit_hooks(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """
        Route SIGINT and interpreter exit to :meth:`flush_and_close`.

        *loop* defaults to the running event loop, if any. With a loop the
        SIGINT handler saves on it and then raises ``KeyboardInterrupt`` from
        a task, which ends ``asyncio.run`` the way an unhandled Ctrl-C does.
        Without one (or where the loop cannot take signal handlers) a plain
        ``signal.signal`` handler saves synchronously and then raises
        ``KeyboardInterrupt``.
        """
        if self._hooks_installed:
            return
        self._hooks_installed = True
        atexit.register(self._flush_sync)

        if loop is None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                loop = None

        if loop is not None:
            try:
                loop.add_signal_handler(signal.SIGINT, self._on_sigint_async, loop)
                return
            except (NotImplementedError, RuntimeError):
                # Windows event loops have no add_signal_handler.
                pass
        signal.signal(signal.SIGINT, self._on_sigint_sync)

    def _flush_sync(self) -> None:
        if self._closing:
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            asyncio.run(self.flush_and_close())
            return
        # asyncio.run cannot nest inside the running loop on this thread.
        worker = threading.Thread(
            target=asyncio.run, args=(self.flush_and_close(),), name="chatkeep-exit-save"
        )
        worker.start()
        worker.join()

    def _on_sigint_async(self, loop: asyncio.AbstractEventLoop) -> None:
        if self._exit_task is None:
            self._exit_task = loop.create_task(self._save_then_interrupt())
            self._exit_task.add_done_callback(_consume_result)

    async def _save_then_interrupt(self) -> None:
        try:
            await self.flush_and_close()
        except Exception:
            logger.exception("Unexpected error saving on exit")
        raise KeyboardInterrupt

    def _on_sigint_sync(self, signum, frame) -> None:
        self._flush_sync()
        raise KeyboardInterrupt
