from __future__ import annotations
from dataclasses import dataclass, asdict, field
from datetime import datetime
import json
import logging
import os
from typing import List, Dict, Any, Optional
from uuid import uuid4

logger = logging.getLogger(__name__)


@dataclass
class Notification:
    id: str
    type: str
    title: str
    message: str
    date: str
    priority: str = "medium"
    read: bool = False
    related: Dict[str, Any] = field(default_factory=dict)


def _notifications_path(store_dir: str) -> str:
    return os.path.join(store_dir, "notifications.json")


def load_notifications(store_dir: str) -> list[dict]:
    p = _notifications_path(store_dir)
    if not os.path.exists(p):
        return []
    with open(p, "r", encoding="utf-8") as f:
        return json.load(f)


def save_notification(n: Notification, store_dir: str) -> None:
    os.makedirs(store_dir, exist_ok=True)
    # newest first
    data = [asdict(n)] + load_notifications(store_dir)
    with open(_notifications_path(store_dir), "w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2)


def mark_read(notification_id: str, store_dir: str) -> bool:
    data = load_notifications(store_dir)
    hit = False
    for row in data:
        if row["id"] == notification_id:
            row["read"] = True
            hit = True
    if hit:
        with open(_notifications_path(store_dir), "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
    return hit


# ---- Sinks -------------------------------------------------------------------------
# A sink is anything with notify(kind, title, message, related=None).

class LoggingSink:
    def notify(self, kind: str, title: str, message: str, related: Optional[dict] = None) -> None:
        logger.info("[%s] %s: %s", kind, title, message)


class JsonNotificationSink:
    def __init__(self, store_dir: str = ".gearout_store"):
        self.store_dir = store_dir

    def notify(self, kind: str, title: str, message: str, related: Optional[dict] = None) -> Notification:
        n = Notification(
            id=f"{kind}-{uuid4().hex[:8]}",
            type=kind,
            title=title,
            message=message,
            date=datetime.now().isoformat(timespec="seconds"),
            related=dict(related or {}),
        )
        save_notification(n, self.store_dir)
        return n

    def all(self) -> List[dict]:
        return load_notifications(self.store_dir)
