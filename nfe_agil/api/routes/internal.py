from typing import Optional
from fastapi import APIRouter, Depends, Header
from pydantic import BaseModel
from sqlalchemy.orm import Session
from nfe_agil.api.deps import get_store, get_proxy_client, get_channel
from nfe_agil.core.cron import verify_internal_secret, verify_cron_bearer, run_daily_sync
from nfe_agil.core.notifications import NotificationChannel
from nfe_agil.core.sefaz_sync import ensure_not_blocked, process_sefaz_sync
from nfe_agil.errors import ValidationError
from nfe_agil.store.blob import BlobStore
from nfe_agil.store.db import get_db
from nfe_agil.ws.sefaz_proxy import SefazProxyClient

router = APIRouter()

class AutoSyncIn(BaseModel):
    userId: Optional[str] = None
    cnpj: Optional[str] = None

@router.post("/auto-sync")
def auto_sync(body: Optional[AutoSyncIn] = None,
              x_internal_secret: Optional[str] = Header(None),
              db: Session = Depends(get_db),
              store: BlobStore = Depends(get_store),
              client: SefazProxyClient = Depends(get_proxy_client),
              channel: NotificationChannel = Depends(get_channel)):
    verify_internal_secret(x_internal_secret)
    body = body or AutoSyncIn()
    if not body.userId or not body.cnpj:
        raise ValidationError("userId e cnpj são obrigatórios")
    ensure_not_blocked(db, body.userId, body.cnpj)
    res = process_sefaz_sync(db, body.userId, body.cnpj, client=client, channel=channel, store=store)
    return res.to_dict()

def _daily(authorization: Optional[str], db: Session, store: BlobStore,
           client: SefazProxyClient, channel: NotificationChannel) -> dict:
    verify_cron_bearer(authorization)
    return run_daily_sync(db, client=client, channel=channel, store=store)

@router.get("/sync-daily")
def sync_daily_get(authorization: Optional[str] = Header(None),
                   db: Session = Depends(get_db),
                   store: BlobStore = Depends(get_store),
                   client: SefazProxyClient = Depends(get_proxy_client),
                   channel: NotificationChannel = Depends(get_channel)):
    return _daily(authorization, db, store, client, channel)

@router.post("/sync-daily")
def sync_daily_post(authorization: Optional[str] = Header(None),
                    db: Session = Depends(get_db),
                    store: BlobStore = Depends(get_store),
                    client: SefazProxyClient = Depends(get_proxy_client),
                    channel: NotificationChannel = Depends(get_channel)):
    return _daily(authorization, db, store, client, channel)
