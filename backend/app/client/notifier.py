import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Iterable
from app.milestones import NOW_KEY, MilestoneDefinition, build_milestones, build_now, match_milestone

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "notified-keys-v1"

def namespace_for(target: datetime) -> str:
    """Keys fired for one countdown target never suppress another."""
    return f"{DEFAULT_NAMESPACE}:{target.astimezone(timezone.utc).isoformat()}"

def should_notify_locally(key: str, notified: Iterable[str]) -> bool:
    return key not in notified

class NotifiedSet:
    """Milestone keys already shown on this device, persisted to a JSON file.

    The file holds one list per namespace so several countdowns can share it.
    Only ``reset`` ever removes keys.
    """

    def __init__(self, path: str | Path, namespace: str = DEFAULT_NAMESPACE):
        self.path = Path(path)
        self.namespace = namespace
        self._keys: set[str] = set()
        self.load()

    @classmethod
    def for_target(cls, path: str | Path, target: datetime) -> "NotifiedSet":
        return cls(path, namespace=namespace_for(target))

    def __contains__(self, key: str) -> bool:
        return key in self._keys

    def __iter__(self):
        return iter(self._keys)

    def __len__(self) -> int:
        return len(self._keys)

    def load(self) -> None:
        document = self._read()
        self._keys = set(document.get(self.namespace, []))

    def add(self, key: str) -> None:
        if key in self._keys:
            return
        self._keys.add(key)
        self._persist()

    def reset(self) -> None:
        self._keys.clear()
        self._persist()

    def _read(self) -> dict:
        try:
            document = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable notified-keys file %s: %s", self.path, e)
            return {}
        return document if isinstance(document, dict) else {}

    def _persist(self) -> None:
        document = self._read()
        document[self.namespace] = sorted(self._keys)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(document), encoding="utf-8")
        os.replace(tmp, self.path)

@dataclass(frozen=True)
class NotificationItem:
    key: str
    title: str
    body: str
    icon: str = ""
    require_interaction: bool = False

class MilestoneNotifier:
    """Shows each milestone at most once on this device, without waiting for a server push."""

    def __init__(
        self,
        notified: NotifiedSet,
        display: Callable[[NotificationItem], None],
        title: str,
        icon: str = "",
        tolerance: timedelta = timedelta(seconds=1),
        table: tuple[MilestoneDefinition, ...] | None = None,
    ):
        self.notified = notified
        self.display = display
        self.title = title
        self.icon = icon
        self.tolerance = tolerance
        self.table = table if table is not None else build_milestones(title)
        self.now_milestone = build_now(title)

    def evaluate(self, left: timedelta) -> NotificationItem | None:
        if NOW_KEY in self.notified:
            return None
        milestone = match_milestone(left, self.tolerance, self.table, self.now_milestone)
        if milestone is None or not should_notify_locally(milestone.key, self.notified):
            return None

        item = NotificationItem(
            key=milestone.key,
            title=self.title,
            body=milestone.label,
            icon=self.icon,
            require_interaction=milestone.terminal,
        )
        try:
            self.display(item)
        except Exception:
            logger.exception("Local notification %s failed", item.key)
        # Marked even when display failed so a broken notifier cannot spam
        self.notified.add(milestone.key)
        return item

    @classmethod
    def for_target(
        cls,
        path: str | Path,
        target: datetime,
        display: Callable[[NotificationItem], None],
        title: str,
        **kwargs,
    ) -> "MilestoneNotifier":
        return cls(NotifiedSet.for_target(path, target), display, title, **kwargs)

    def attach(self, countdown) -> None:
        countdown.on_tick(lambda cd: self.evaluate(cd.remaining))
