from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from ..contracts.v1 import BoardEvent, ItemStatus, Milestone, Task, Team
from ..util.fs import atomic_write_json, read_json
from ..util.time import utc_now_iso

M = TypeVar("M", bound=BaseModel)

STATUSES = ("pending", "in_progress", "done")


def parse_status(value: str) -> ItemStatus:
    s = (value or "").strip().lower().replace("-", "_")
    if s not in STATUSES:
        raise ValueError(f"invalid status: {value} (use: {', '.join(STATUSES)})")
    return s  # type: ignore[return-value]


def _numeric_key(item_id: str) -> int:
    try:
        return int(item_id)
    except ValueError:
        return 0


@dataclass
class Board:
    """Filesystem-backed project board for one team.

    Layout under `path`: team.json, milestones/<n>.json, tasks/<n>.json,
    tasks/<n>.md, events.jsonl.
    """

    path: Path

    @property
    def team_file(self) -> Path:
        return self.path / "team.json"

    @property
    def milestones_dir(self) -> Path:
        return self.path / "milestones"

    @property
    def tasks_dir(self) -> Path:
        return self.path / "tasks"

    @property
    def events_path(self) -> Path:
        return self.path / "events.jsonl"

    def _read(self, p: Path, model: Type[M]) -> Optional[M]:
        doc = read_json(p)
        if not doc:
            return None
        try:
            return model.model_validate(doc)
        except ValidationError:
            return None

    def _read_all(self, d: Path, model: Type[M]) -> List[M]:
        if not d.exists():
            return []
        out = [m for m in (self._read(p, model) for p in d.glob("*.json")) if m is not None]
        out.sort(key=lambda m: _numeric_key(getattr(m, "id", "")))
        return out

    def _next_id(self, d: Path) -> str:
        d.mkdir(parents=True, exist_ok=True)
        ids = [int(p.stem) for p in d.glob("*.json") if p.stem.isdigit()]
        return str(max(ids, default=0) + 1)

    # Team

    def init_team(self, name: str, window_id: Optional[str] = None) -> Team:
        self.milestones_dir.mkdir(parents=True, exist_ok=True)
        self.tasks_dir.mkdir(parents=True, exist_ok=True)
        team = Team(id=self.path.name, name=name, window_id=window_id)
        atomic_write_json(self.team_file, team.model_dump(exclude_none=True))
        return team

    def get_team(self) -> Optional[Team]:
        return self._read(self.team_file, Team)

    # Milestones

    def create_milestone(self, name: str) -> Milestone:
        m = Milestone(id=self._next_id(self.milestones_dir), name=name)
        atomic_write_json(self.milestones_dir / f"{m.id}.json", m.model_dump())
        return m

    def get_milestone(self, milestone_id: str) -> Optional[Milestone]:
        return self._read(self.milestones_dir / f"{milestone_id}.json", Milestone)

    def list_milestones(self) -> List[Milestone]:
        return self._read_all(self.milestones_dir, Milestone)

    def update_milestone(self, milestone_id: str, patch: Dict[str, Any]) -> Milestone:
        m = self.get_milestone(milestone_id)
        if m is None:
            raise KeyError(f"milestone {milestone_id}")
        updated = Milestone.model_validate({**m.model_dump(), **patch, "updated_at": utc_now_iso()})
        atomic_write_json(self.milestones_dir / f"{milestone_id}.json", updated.model_dump())
        return updated

    def delete_milestone(self, milestone_id: str) -> None:
        (self.milestones_dir / f"{milestone_id}.json").unlink(missing_ok=True)

    # Tasks

    def create_task(
        self,
        title: str,
        *,
        body: Optional[str] = None,
        milestone: Optional[str] = None,
        assignee: Optional[str] = None,
    ) -> Task:
        tid = self._next_id(self.tasks_dir)
        task = Task(id=tid, title=title, milestone=milestone, assignee=assignee, doc_path=f"tasks/{tid}.md")
        atomic_write_json(self.tasks_dir / f"{tid}.json", task.model_dump(exclude_none=True))
        doc = f"# {title}\n\n" + (body.rstrip() + "\n" if body else "")
        (self.tasks_dir / f"{tid}.md").write_text(doc, encoding="utf-8")
        return task

    def get_task(self, task_id: str) -> Optional[Task]:
        return self._read(self.tasks_dir / f"{task_id}.json", Task)

    def list_tasks(
        self,
        *,
        milestone: Optional[str] = None,
        status: Optional[ItemStatus] = None,
        assignee: Optional[str] = None,
    ) -> List[Task]:
        tasks = self._read_all(self.tasks_dir, Task)
        if milestone:
            tasks = [t for t in tasks if t.milestone == milestone]
        if status:
            tasks = [t for t in tasks if t.status == status]
        if assignee:
            tasks = [t for t in tasks if t.assignee == assignee]
        return tasks

    def update_task(self, task_id: str, patch: Dict[str, Any]) -> Task:
        task = self.get_task(task_id)
        if task is None:
            raise KeyError(f"task {task_id}")
        updated = Task.model_validate({**task.model_dump(), **patch, "updated_at": utc_now_iso()})
        atomic_write_json(self.tasks_dir / f"{task_id}.json", updated.model_dump(exclude_none=True))
        return updated

    def delete_task(self, task_id: str) -> None:
        (self.tasks_dir / f"{task_id}.json").unlink(missing_ok=True)
        (self.tasks_dir / f"{task_id}.md").unlink(missing_ok=True)

    def task_doc_path(self, task_id: str) -> Path:
        return self.tasks_dir / f"{task_id}.md"

    def get_task_doc(self, task_id: str) -> Optional[str]:
        p = self.task_doc_path(task_id)
        if not p.exists():
            return None
        return p.read_text(encoding="utf-8")

    def set_task_doc(self, task_id: str, content: str) -> None:
        self.task_doc_path(task_id).write_text(content, encoding="utf-8")

    # Activity log

    def append_event(self, event: str, *, actor: str, item_id: str = "", data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        ev = BoardEvent(event=event, id=item_id, actor=actor, data=dict(data or {}))
        self.path.mkdir(parents=True, exist_ok=True)
        payload = ev.model_dump()
        with self.events_path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(payload, ensure_ascii=False) + "\n")
        return payload

    def events(self, limit: Optional[int] = None) -> List[BoardEvent]:
        out: List[BoardEvent] = []
        for obj in _iter_jsonl(self.events_path):
            try:
                out.append(BoardEvent.model_validate(obj))
            except ValidationError:
                continue
        if limit:
            return out[-limit:]
        return out


def _iter_jsonl(path: Path) -> Iterable[Dict[str, Any]]:
    if not path.exists():
        return
    with path.open("r", encoding="utf-8", errors="replace") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                obj = json.loads(line)
            except ValueError:
                continue
            if isinstance(obj, dict):
                yield obj
