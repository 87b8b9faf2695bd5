"""
Single-owner-per-thread guard for unsynchronised, mutable objects.

Cells and graphs carry no locks.  They are safe to hand to a worker thread
only because nothing else touches them while the worker runs, so that rule
is enforced here rather than assumed: the first mutating call claims the
object for the calling thread, later calls from any other thread raise
``OwnershipError``, and ``release()`` hands the object over explicitly.

A thread that exits while still holding an object gives it up implicitly.
Pool workers outlive their tasks, so work submitted to an executor should
run inside ``held()``, which releases the object when the task finishes.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator, Optional

from errors import OwnershipError


class ThreadOwner:
    """Records which thread currently owns a mutable object."""

    __slots__ = ("_label", "_thread", "_claim_lock")

    def __init__(self, label: str) -> None:
        self._label = label
        self._thread: Optional[threading.Thread] = None
        self._claim_lock = threading.Lock()

    def _live_owner(self) -> Optional[threading.Thread]:
        thread = self._thread
        if thread is not None and not thread.is_alive():
            return None
        return thread

    @property
    def owner(self) -> Optional[int]:
        """Ident of the owning thread, or None when unowned."""
        thread = self._live_owner()
        return thread.ident if thread is not None else None

    def claim(self) -> None:
        """Claim for the current thread, or confirm the current thread owns it."""
        me = threading.current_thread()
        if self._thread is me:
            return
        with self._claim_lock:
            owner = self._live_owner()
            if owner is None:
                self._thread = me
                return
        raise OwnershipError(
            f"{self._label} is owned by thread {owner.name!r} ({owner.ident}), "
            f"not {me.name!r} ({me.ident}); release() it before handing it over"
        )

    def release(self) -> None:
        """Drop ownership so another thread may claim the object."""
        me = threading.current_thread()
        with self._claim_lock:
            owner = self._live_owner()
            if owner is not None and owner is not me:
                raise OwnershipError(
                    f"{self._label} can only be released by its owner thread "
                    f"{owner.name!r} ({owner.ident})"
                )
            self._thread = None

    @contextmanager
    def held(self) -> Iterator[None]:
        """Own the object for the duration of the block, then release it."""
        self.claim()
        try:
            yield
        finally:
            self.release()
