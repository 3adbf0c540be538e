"""
Class status reconciliation.

Persisted class status drifts as wall-clock time passes. Nothing sweeps it in
the background; every read path that lists or fetches classes runs the
documents through reconcile_class_status() and writes corrections back.
"""

from datetime import datetime
from typing import Optional

from app.classes.models import ClassStatus
from app.live.errors import PersistenceError
from app.system.logger import get_logger

logger = get_logger(__name__)


def derive_status(start_time: datetime, end_time: datetime, now: datetime) -> ClassStatus:
    if now < start_time:
        return ClassStatus.UPCOMING
    if now < end_time:
        return ClassStatus.ONGOING
    return ClassStatus.COMPLETED


async def reconcile_class_status(store, class_doc: dict, now: Optional[datetime] = None) -> ClassStatus:
    """
    Bring class_doc["status"] in line with its start/end times.

    Cancelled classes are never touched. The local document is updated even
    when the write-back fails, so the caller always sees the derived status.
    """
    stored = class_doc.get("status", ClassStatus.UPCOMING.value)
    try:
        current = ClassStatus(stored)
    except ValueError:
        logger.warning("Class %s has unknown status %r, rewriting", class_doc["class_id"], stored)
        current = None

    if current == ClassStatus.CANCELLED:
        return current

    now = now or datetime.utcnow()
    derived = derive_status(class_doc["start_time"], class_doc["end_time"], now)
    if derived == current:
        return current

    try:
        await store.set_class_status(class_doc["class_id"], derived.value)
        logger.info("Class %s status %s -> %s", class_doc["class_id"], stored, derived.value)
    except PersistenceError:
        logger.exception("Could not persist status for class %s", class_doc["class_id"])

    class_doc["status"] = derived.value
    return derived


async def reconcile_many(store, class_docs: list, now: Optional[datetime] = None) -> list:
    now = now or datetime.utcnow()
    for class_doc in class_docs:
        await reconcile_class_status(store, class_doc, now)
    return class_docs
