from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from nfe_agil.api.deps import master_admin, get_store, get_proxy_client
from nfe_agil.core.audit import run_fiscal_audit
from nfe_agil.store.blob import BlobStore
from nfe_agil.store.db import get_db
from nfe_agil.ws.sefaz_proxy import SefazProxyClient

router = APIRouter()

@router.get("/audit")
def audit(_admin: str = Depends(master_admin), db: Session = Depends(get_db),
          store: BlobStore = Depends(get_store), client: SefazProxyClient = Depends(get_proxy_client)):
    return run_fiscal_audit(db, store=store, client=client).to_dict()
