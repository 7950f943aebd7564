from __future__ import annotations

import logging
import os
import subprocess
import time
import uuid
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Tuple

logger = logging.getLogger("tmux_team.tmux")

IDENTITY_TIMEOUT_S = 1.0

KNOWN_AGENTS: Dict[str, Tuple[str, ...]] = {
    "claude": ("claude", "claude-code"),
    "codex": ("codex",),
    "gemini": ("gemini",),
    "aider": ("aider",),
    "cursor": ("cursor",),
}


@dataclass(frozen=True)
class PaneCoordinate:
    """Where a pane lives: `window.pane` index (e.g. "10.1") and stable id (e.g. "%12")."""

    index: str
    pane_id: str = ""

    def aliases(self) -> Tuple[str, ...]:
        return tuple(a for a in (self.index, self.pane_id) if a)


@dataclass(frozen=True)
class PaneInfo:
    id: str
    command: str
    suggested_name: Optional[str] = None


def _run_tmux(args: List[str], *, timeout_s: float = 3.0) -> Tuple[int, str, str]:
    try:
        p = subprocess.run(
            ["tmux", *args],
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            timeout=timeout_s,
            check=False,
        )
        return int(p.returncode), (p.stdout or ""), (p.stderr or "")
    except subprocess.TimeoutExpired:
        return 124, "", "tmux timeout"
    except OSError as e:
        return 1, "", str(e)


def in_tmux(env: Optional[Mapping[str, str]] = None) -> bool:
    e = os.environ if env is None else env
    return bool(str(e.get("TMUX") or "").strip())


def pane_coordinate(pane_token: str, *, timeout_s: float = IDENTITY_TIMEOUT_S) -> Optional[PaneCoordinate]:
    """Ask tmux where the pane identified by `pane_token` (usually $TMUX_PANE) lives.

    Targets the token explicitly; the focused pane may differ when text is
    injected into another pane. Any failure reads as None.
    """
    token = (pane_token or "").strip()
    if not token:
        return None
    code, out, err = _run_tmux(
        ["display-message", "-p", "-t", token, "#{window_index}.#{pane_index} #{pane_id}"],
        timeout_s=timeout_s,
    )
    if code != 0:
        logger.debug("pane lookup failed for %s: %s", token, err.strip(), extra={"pane": token})
        return None
    parts = (out or "").strip().split()
    if not parts:
        return None
    return PaneCoordinate(index=parts[0], pane_id=parts[1] if len(parts) > 1 else "")


def current_pane_id(env: Optional[Mapping[str, str]] = None) -> Optional[str]:
    """The pane `this` registers: `$TMUX_PANE`, else the focused pane of the attached client.

    The fallback answers "which pane has focus", not "which pane runs this
    process". It must never feed actor resolution; use `pane_coordinate` there.
    """
    e = os.environ if env is None else env
    token = str(e.get("TMUX_PANE") or "").strip()
    if token:
        return token
    code, out, _ = _run_tmux(["display-message", "-p", "#{pane_id}"], timeout_s=IDENTITY_TIMEOUT_S)
    if code != 0:
        return None
    return (out or "").strip() or None


def detect_agent_name(command: str) -> Optional[str]:
    lowered = (command or "").lower()
    for name, patterns in KNOWN_AGENTS.items():
        if any(p in lowered for p in patterns):
            return name
    return None


def list_panes() -> List[PaneInfo]:
    code, out, _ = _run_tmux(["list-panes", "-a", "-F", "#{pane_id}\t#{pane_current_command}"])
    if code != 0:
        return []
    panes: List[PaneInfo] = []
    for ln in (out or "").splitlines():
        if not ln.strip():
            continue
        pid, _, command = ln.partition("\t")
        panes.append(PaneInfo(id=pid.strip(), command=command.strip(), suggested_name=detect_agent_name(command)))
    return panes


def _prepare_payload(text: str) -> str:
    # "!" triggers history expansion in some agent shells; use the fullwidth form.
    escaped = text.replace("!", "！")
    return escaped if escaped.endswith("\n") else escaped + "\n"


def send_text(pane: str, text: str, *, enter_delay_s: float = 0.5) -> None:
    """Paste `text` into `pane` through a named buffer, then press Enter.

    Falls back to literal send-keys when the buffer path fails.
    """
    # Ensure pane is not in copy-mode
    code, out, _ = _run_tmux(["display-message", "-p", "-t", pane, "#{pane_in_mode}"])
    if code == 0 and (out or "").strip() in ("1", "on", "yes", "true"):
        _run_tmux(["send-keys", "-t", pane, "-X", "cancel"])

    buf = f"tmt-{os.getpid()}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"
    code, _, err = _run_tmux(["set-buffer", "-b", buf, "--", _prepare_payload(text)])
    if code == 0:
        code, _, err = _run_tmux(["paste-buffer", "-b", buf, "-d", "-p", "-t", pane])
    if code == 0:
        if enter_delay_s > 0:
            time.sleep(enter_delay_s)
        code, _, err = _run_tmux(["send-keys", "-t", pane, "Enter"])
        if code == 0:
            return

    logger.debug("buffer paste failed for %s (%s); falling back to send-keys", pane, err.strip(), extra={"pane": pane})
    _run_tmux(["delete-buffer", "-b", buf])
    code, _, err = _run_tmux(["send-keys", "-t", pane, "-l", text])
    if code != 0:
        raise RuntimeError(f"tmux send failed for pane {pane}: {err.strip()}")
    _run_tmux(["send-keys", "-t", pane, "Enter"])


def capture_pane(pane: str, lines: int) -> str:
    code, out, err = _run_tmux(["capture-pane", "-t", pane, "-p", "-S", f"-{max(1, int(lines))}"])
    if code != 0:
        raise RuntimeError(f"tmux capture-pane failed for pane {pane}: {err.strip()}")
    return out
