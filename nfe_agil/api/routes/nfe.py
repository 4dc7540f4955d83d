from typing import Optional
from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from pydantic import BaseModel
from sqlalchemy import select, func
from sqlalchemy.orm import Session
from nfe_agil.api.deps import current_user, get_store, get_proxy_client, get_converter, get_channel
from nfe_agil.core import documents
from nfe_agil.core.notifications import NotificationChannel
from nfe_agil.core.plan_gate import require_pro_features
from nfe_agil.core.sefaz_sync import ensure_not_blocked, process_sefaz_sync
from nfe_agil.models import NFe
from nfe_agil.store.blob import BlobStore
from nfe_agil.store.db import get_db
from nfe_agil.ws.sefaz_proxy import SefazProxyClient

router = APIRouter()

class ManifestacaoIn(BaseModel):
    tipo: str = "ciencia"

def _row(n: NFe) -> dict:
    return {
        "id": n.id, "chave": n.chave, "numero": n.numero, "emitente": n.emitente,
        "valor": float(n.valor or 0), "data_emissao": n.data_emissao.isoformat() if n.data_emissao else None,
        "status": n.status, "uf_emitente": n.uf_emitente, "manifestacao": n.manifestacao,
        "xml_disponivel": bool(n.xml_path),
    }

@router.get("/nfe")
def list_nfes(user_id: str = Depends(current_user), db: Session = Depends(get_db),
              status: Optional[str] = Query(None), limit: int = Query(50, le=500), offset: int = Query(0)):
    require_pro_features(db, user_id, "O monitoramento de NF-es")
    q = select(NFe).where(NFe.user_id == user_id)
    if status:
        q = q.where(NFe.status == status)
    total = db.execute(select(func.count()).select_from(q.subquery())).scalar_one()
    rows = db.execute(q.order_by(NFe.data_emissao.desc(), NFe.id.desc()).offset(offset).limit(limit)).scalars().all()
    return {"items": [_row(n) for n in rows], "count": len(rows), "total": total}

@router.post("/nfe/sync")
def sync_now(user_id: str = Depends(current_user), db: Session = Depends(get_db),
             store: BlobStore = Depends(get_store),
             client: SefazProxyClient = Depends(get_proxy_client),
             channel: NotificationChannel = Depends(get_channel)):
    """Sincronização manual da empresa ativa do usuário."""
    require_pro_features(db, user_id, "A sincronização com a SEFAZ")
    emp = documents.active_empresa(db, user_id)
    ensure_not_blocked(db, user_id, emp.cnpj)
    return process_sefaz_sync(db, user_id, emp.cnpj, client=client, channel=channel, store=store).to_dict()

@router.get("/nfe/sync-status")
def sync_status(user_id: str = Depends(current_user), db: Session = Depends(get_db)):
    emp = documents.active_empresa(db, user_id)
    out = documents.sync_status(db, user_id, emp.cnpj)
    out["cnpj"] = emp.cnpj
    return out

@router.get("/nfe/{nfe_id}/xml")
def get_xml(nfe_id: int, user_id: str = Depends(current_user), db: Session = Depends(get_db),
            store: BlobStore = Depends(get_store)):
    nfe = documents.get_nfe(db, user_id, nfe_id)
    xml = documents.load_xml(store, nfe)
    return Response(xml, media_type="application/xml",
                    headers={"Content-Disposition": f'attachment; filename="{nfe.chave}.xml"'})

@router.get("/nfe/{nfe_id}/pdf")
def get_pdf(nfe_id: int, user_id: str = Depends(current_user), db: Session = Depends(get_db),
            store: BlobStore = Depends(get_store), converter=Depends(get_converter)):
    nfe = documents.get_nfe(db, user_id, nfe_id)
    pdf, hit = documents.cached_danfe(store, user_id, nfe, converter=converter)
    return Response(pdf, media_type="application/pdf", headers={
        "Content-Disposition": f'inline; filename="{documents.danfe_filename(nfe)}"',
        "Cache-Control": "no-store",
        "X-Danfe-Cache": "hit" if hit else "miss",
    })

@router.post("/nfe/{nfe_id}/manifestacao")
def manifestar(nfe_id: int, body: ManifestacaoIn, user_id: str = Depends(current_user),
               db: Session = Depends(get_db), store: BlobStore = Depends(get_store),
               client: SefazProxyClient = Depends(get_proxy_client)):
    return documents.manifestar(db, user_id, nfe_id, body.tipo, client=client, store=store)
