"""Notificações por tenant: gravação + canal publish/subscribe em memória.

O motor de sincronização publica; sessões de cliente assinam por ``user_id``.
O canal não conhece o banco, recebe apenas o registro já persistido.
"""
import threading
from typing import Callable
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session
from nfe_agil.logs import get_logger
from nfe_agil.models import Notification

logger = get_logger("nfe.notifications")

Subscriber = Callable[[dict], None]

class NotificationChannel:
    def __init__(self):
        self._lock = threading.Lock()
        self._subs: dict[str, list[Subscriber]] = {}

    def subscribe(self, user_id: str, callback: Subscriber) -> Callable[[], None]:
        with self._lock:
            self._subs.setdefault(user_id, []).append(callback)

        def unsubscribe():
            with self._lock:
                subs = self._subs.get(user_id) or []
                if callback in subs:
                    subs.remove(callback)
                if not subs:
                    self._subs.pop(user_id, None)
        return unsubscribe

    def publish(self, user_id: str, payload: dict) -> int:
        with self._lock:
            subs = list(self._subs.get(user_id) or [])
        delivered = 0
        for cb in subs:
            try:
                cb(payload)
                delivered += 1
            except Exception:
                # assinante com defeito não derruba o publicador
                logger.exception(f"Falha ao entregar notificação para user={user_id}")
        return delivered

default_channel = NotificationChannel()

def to_dict(n: Notification) -> dict:
    return {
        "id": n.id, "title": n.title, "message": n.message, "is_read": n.is_read,
        "link": n.link, "created_at": n.created_at.isoformat() if n.created_at else None,
    }

def create_notification(db: Session, user_id: str, title: str, message: str, link: str | None = None) -> Notification:
    """Insere a notificação (flush, sem commit). Publicar só depois do commit."""
    n = Notification(user_id=user_id, title=title, message=message, link=link)
    db.add(n)
    db.flush()
    return n

def list_notifications(db: Session, user_id: str, limit: int = 20) -> list[dict]:
    rows = db.execute(
        select(Notification).where(Notification.user_id == user_id)
        .order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit)
    ).scalars().all()
    return [to_dict(n) for n in rows]

def count_unread(db: Session, user_id: str) -> int:
    return db.execute(
        select(func.count()).select_from(Notification)
        .where(Notification.user_id == user_id, Notification.is_read.is_(False))
    ).scalar_one()

def mark_all_read(db: Session, user_id: str) -> int:
    res = db.execute(
        update(Notification).where(Notification.user_id == user_id, Notification.is_read.is_(False)).values(is_read=True)
    )
    db.commit()
    return res.rowcount
