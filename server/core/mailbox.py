from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Deque, Optional

from shared.protocol import SyncReason


class _FlagCell:
    """Boolean cell with atomic set and read-and-clear.

    deque.append / deque.popleft are atomic in CPython, so the notifier never
    blocks and a set that races with a take is either seen now or next time.
    """

    def __init__(self) -> None:
        self._cell: Deque[bool] = deque(maxlen=1)

    def set(self) -> None:
        self._cell.append(True)

    def clear(self) -> None:
        self.take()

    def is_set(self) -> bool:
        return bool(self._cell)

    def take(self) -> bool:
        try:
            return self._cell.popleft()
        except IndexError:
            return False


@dataclass(frozen=True)
class PushRequest:
    send_info: bool
    send_sync: bool
    sync_reason: int


class PendingPush:
    """Mailbox between the notification thread and the polling loop.

    Requests coalesce: only the latest combination of flags and reason survives
    until the loop takes it.
    """

    def __init__(self) -> None:
        self._info = _FlagCell()
        self._sync = _FlagCell()
        self._reason: int = int(SyncReason.INITIAL)

    def request_info(self) -> None:
        self._sync.clear()
        self._info.set()

    def request_info_and_sync(self, reason: int) -> None:
        self._reason = int(reason)
        self._sync.set()
        self._info.set()

    def has_pending(self) -> bool:
        return self._info.is_set() or self._sync.is_set()

    def take(self) -> Optional[PushRequest]:
        send_info = self._info.take()
        send_sync = self._sync.take()
        # Reason is read after the flags; a newer reason may pair with older flags.
        reason = self._reason
        if not send_info and not send_sync:
            return None
        return PushRequest(send_info=send_info, send_sync=send_sync, sync_reason=reason)


__all__ = ["PendingPush", "PushRequest"]
