from __future__ import annotations

from collections import deque

from dictate.core.jobs import AutoJob, HotkeyJob, Job, JobKind


class JobQueue:
    """Serializes hotkey and auto jobs onto the single recognition backend.

    At most one job is active at a time. A pending hotkey job always runs
    before queued auto jobs, and no auto job is promoted while a hotkey
    session is open, even before its recording is ready.
    """

    def __init__(self) -> None:
        self._hotkey_session_active = False
        self._pending_hotkey: HotkeyJob | None = None
        self._auto_queue: deque[AutoJob] = deque()
        self._active: JobKind | None = None

    def begin_hotkey_session(self) -> bool:
        if self._hotkey_session_active:
            return False
        self._hotkey_session_active = True
        return True

    def cancel_hotkey_session(self) -> None:
        self._hotkey_session_active = False
        self._pending_hotkey = None
        if self._active == JobKind.HOTKEY:
            self._active = None

    def hotkey_session_active(self) -> bool:
        return self._hotkey_session_active

    def enqueue_hotkey(self, job: HotkeyJob) -> bool:
        if self._pending_hotkey is not None:
            return False
        self._pending_hotkey = job
        return True

    def enqueue_auto(self, job: AutoJob) -> None:
        self._auto_queue.append(job)

    def next_job(self) -> Job | None:
        if self._active is not None:
            return None
        if self._pending_hotkey is not None:
            job = self._pending_hotkey
            self._pending_hotkey = None
            self._active = JobKind.HOTKEY
            return job
        if self._hotkey_session_active:
            return None
        if self._auto_queue:
            self._active = JobKind.AUTO
            return self._auto_queue.popleft()
        return None

    def active_kind(self) -> JobKind | None:
        return self._active

    def auto_queue_len(self) -> int:
        return len(self._auto_queue)

    def complete_active(self, kind: JobKind) -> None:
        # Stale completions for a kind that is not running change nothing.
        if self._active != kind:
            return
        self._active = None
        if kind == JobKind.HOTKEY:
            self._hotkey_session_active = False
