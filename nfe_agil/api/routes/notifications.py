from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from nfe_agil.api.deps import current_user
from nfe_agil.core.notifications import count_unread, list_notifications, mark_all_read
from nfe_agil.store.db import get_db

router = APIRouter()

@router.get("/notifications")
def listar(user_id: str = Depends(current_user), db: Session = Depends(get_db), limit: int = Query(20, le=100)):
    items = list_notifications(db, user_id, limit)
    return {"items": items, "unread": count_unread(db, user_id)}

@router.post("/notifications/read")
def marcar_lidas(user_id: str = Depends(current_user), db: Session = Depends(get_db)):
    return {"updated": mark_all_read(db, user_id)}
