"""In-memory run state per user (read by GET /api/users/{user_id}/run-status).

Also serializes runs: a user can have at most one sync/classification run in
flight per process.
"""
import threading
from typing import Optional

_DEFAULT_STATE = {
    "status": "idle",
    "message": "",
    "new": 0,
    "classified": 0,
    "failed": 0,
    "error": None,
}

_state_by_user: dict[str, dict] = {}
_cancel_by_user: dict[str, threading.Event] = {}
_lock = threading.Lock()


def get_state(user_id: Optional[str] = None) -> dict:
    """Return current run state for user. If user_id is None, return default idle state."""
    if user_id is None:
        return dict(_DEFAULT_STATE)
    with _lock:
        state = _state_by_user.get(user_id)
        return dict(state) if state else dict(_DEFAULT_STATE)


def try_start(user_id: str, message: str = "Running…") -> Optional[threading.Event]:
    """
    Mark the user's run as started. Returns the run's cancel event, or None if
    a run is already in progress for this user.
    """
    with _lock:
        s = _state_by_user.get(user_id)
        if s and s["status"] == "running":
            return None
        s = dict(_DEFAULT_STATE)
        s["status"] = "running"
        s["message"] = message
        _state_by_user[user_id] = s
        cancel_event = threading.Event()
        _cancel_by_user[user_id] = cancel_event
        return cancel_event


def request_cancel(user_id: str) -> bool:
    with _lock:
        event = _cancel_by_user.get(user_id)
        s = _state_by_user.get(user_id)
        if event is None or not s or s["status"] != "running":
            return False
        event.set()
        s["message"] = "Cancelling…"
        return True


def set_idle(result: dict, user_id: str):
    with _lock:
        s = _state_by_user.get(user_id)
        if s:
            s["status"] = "idle"
            s["message"] = "Done"
            s["new"] = result.get("new", 0)
            s["classified"] = result.get("classified", 0)
            s["failed"] = result.get("failed", 0)
            s["error"] = result.get("error")
        _cancel_by_user.pop(user_id, None)


def set_error(err: str, user_id: str):
    with _lock:
        s = _state_by_user.get(user_id)
        if s:
            s["status"] = "idle"
            s["error"] = err
            s["message"] = ""
        _cancel_by_user.pop(user_id, None)


def reset():
    """Forget all state (tests)."""
    with _lock:
        _state_by_user.clear()
        _cancel_by_user.clear()
