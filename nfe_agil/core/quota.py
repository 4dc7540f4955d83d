"""Cota mensal de conversões (plano Starter)."""
from datetime import datetime
from typing import Optional
from sqlalchemy import select
from sqlalchemy.orm import Session
from nfe_agil.core.plan_gate import get_user_plan_info
from nfe_agil.models import ConversionUsage
from nfe_agil.settings import settings

def month_key(now: Optional[datetime] = None) -> str:
    return (now or datetime.utcnow()).strftime("%Y-%m")

def _row(db: Session, user_id: str, month: str) -> Optional[ConversionUsage]:
    return db.execute(
        select(ConversionUsage).where(ConversionUsage.user_id == user_id, ConversionUsage.month_year == month)
    ).scalar_one_or_none()

def get_monthly_usage(db: Session, user_id: str, now: Optional[datetime] = None) -> int:
    row = _row(db, user_id, month_key(now))
    return row.count if row else 0

def increment_usage(db: Session, user_id: str, amount: int, now: Optional[datetime] = None) -> int:
    """Soma ``amount`` ao mês corrente (uma única escrita por lote) e commita."""
    if amount <= 0:
        return get_monthly_usage(db, user_id, now)
    month = month_key(now)
    row = _row(db, user_id, month)
    if row is None:
        row = ConversionUsage(user_id=user_id, month_year=month, count=0)
        db.add(row)
    row.count = (row.count or 0) + amount
    row.updated_at = datetime.utcnow()
    db.commit()
    return row.count

def usage_summary(db: Session, user_id: str) -> dict:
    info = get_user_plan_info(db, user_id)
    usage = get_monthly_usage(db, user_id)
    if info.is_starter:
        limit = settings.STARTER_MONTHLY_LIMIT
        return {"usage": usage, "limit": limit, "remaining": max(0, limit - usage), "plan": info.slug, "unlimited": False}
    return {"usage": usage, "limit": None, "remaining": None, "plan": info.slug, "unlimited": info.has_plan}
