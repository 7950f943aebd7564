from __future__ import annotations

from . import tmux

__all__ = ["tmux"]
