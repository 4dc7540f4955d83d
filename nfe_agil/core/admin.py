from typing import Iterable, Optional
from nfe_agil.settings import settings

def parse_admin_emails(raw: Optional[str]) -> frozenset[str]:
    """``MASTER_ADMIN_EMAILS`` separado por vírgula -> conjunto normalizado."""
    return frozenset(e.strip().lower() for e in (raw or "").split(",") if e.strip())

def is_master_admin(email: Optional[str], allowlist: Iterable[str]) -> bool:
    if not email:
        return False
    return email.strip().lower() in allowlist

def configured_admins() -> frozenset[str]:
    return parse_admin_emails(settings.MASTER_ADMIN_EMAILS)
