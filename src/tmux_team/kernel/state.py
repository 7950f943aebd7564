"""Per-user runtime state in <global_dir>/state.json.

- requests: soft locks for `talk --wait`, keyed by agent
- messages: how many messages each agent has been sent, for `preamble_every`
"""
from __future__ import annotations

from typing import Any, Dict, Optional

from ..paths import Paths, ensure_global_dir
from ..util.fs import atomic_write_json, read_json
from ..util.time import now_ms


def load_state(paths: Paths) -> Dict[str, Any]:
    doc = read_json(paths.state_file)
    return {
        "requests": doc["requests"] if isinstance(doc.get("requests"), dict) else {},
        "messages": doc["messages"] if isinstance(doc.get("messages"), dict) else {},
    }


def save_state(paths: Paths, state: Dict[str, Any]) -> None:
    ensure_global_dir(paths)
    atomic_write_json(paths.state_file, state)


def cleanup_state(paths: Paths, ttl_s: float, *, now: Optional[int] = None) -> Dict[str, Any]:
    state = load_state(paths)
    current = now_ms() if now is None else now
    ttl_ms = max(1.0, float(ttl_s)) * 1000

    kept: Dict[str, Any] = {}
    for agent, req in state["requests"].items():
        if not isinstance(req, dict) or not isinstance(req.get("started_at_ms"), int):
            continue
        if current - req["started_at_ms"] <= ttl_ms:
            kept[agent] = req

    nxt = {"requests": kept, "messages": state["messages"]}
    if len(kept) != len(state["requests"]):
        save_state(paths, nxt)
    return nxt


def set_active_request(paths: Paths, agent: str, *, request_id: str, nonce: str, pane: str) -> Dict[str, Any]:
    state = load_state(paths)
    req = {"id": request_id, "nonce": nonce, "pane": pane, "started_at_ms": now_ms()}
    state["requests"][agent] = req
    save_state(paths, state)
    return req


def clear_active_request(paths: Paths, agent: str, request_id: Optional[str] = None) -> None:
    state = load_state(paths)
    existing = state["requests"].get(agent)
    if not existing:
        return
    if request_id and isinstance(existing, dict) and existing.get("id") != request_id:
        return
    del state["requests"][agent]
    save_state(paths, state)


def bump_message_count(paths: Paths, agent: str) -> int:
    """Count one more message to `agent`; returns the new total (1 for the first)."""
    state = load_state(paths)
    prev = state["messages"].get(agent)
    count = (prev if isinstance(prev, int) and prev >= 0 else 0) + 1
    state["messages"][agent] = count
    save_state(paths, state)
    return count
