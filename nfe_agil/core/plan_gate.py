"""
Resolução do plano do usuário.

- Trial (dentro do prazo): acesso completo
- Pro / Lifetime: acesso completo
- Starter: só Conversor XML + Relatório XML, com cota mensal
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from sqlalchemy import select
from sqlalchemy.orm import Session
from nfe_agil.errors import ForbiddenError
from nfe_agil.models import Subscription, Plan

SLUG_STARTER = "starter"
SLUG_PRO = "pro"
SLUG_TRIAL = "trial"

@dataclass
class PlanInfo:
    slug: Optional[str]
    subscription: Optional[Subscription] = None

    @property
    def has_plan(self) -> bool:
        return self.slug is not None

    @property
    def is_starter(self) -> bool:
        return self.slug == SLUG_STARTER

    @property
    def is_pro_or_trial(self) -> bool:
        return self.slug in (SLUG_PRO, SLUG_TRIAL)

def get_user_plan_info(db: Session, user_id: str, now: Optional[datetime] = None) -> PlanInfo:
    now = now or datetime.utcnow()
    sub = db.execute(
        select(Subscription).where(Subscription.user_id == user_id)
        .order_by(Subscription.created_at.desc(), Subscription.id.desc()).limit(1)
    ).scalar_one_or_none()
    if sub is None:
        return PlanInfo(None)
    if sub.is_lifetime:
        return PlanInfo(SLUG_PRO, sub)
    if sub.status == "trialing":
        if sub.trial_ends_at and sub.trial_ends_at > now:
            return PlanInfo(SLUG_TRIAL, sub)
        return PlanInfo(None, sub)
    if sub.status == "active":
        slug = None
        if sub.plan_id is not None:
            slug = db.execute(select(Plan.slug).where(Plan.id == sub.plan_id)).scalar_one_or_none()
        return PlanInfo(slug or SLUG_PRO, sub)
    return PlanInfo(None, sub)

def require_pro_features(db: Session, user_id: str, feature: str = "Este recurso") -> PlanInfo:
    info = get_user_plan_info(db, user_id)
    if not info.is_pro_or_trial:
        raise ForbiddenError(f"{feature} é exclusivo do Plano Pro.")
    return info
