from typing import Optional
from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlalchemy.orm import Session
from nfe_agil.api.deps import current_user, get_converter, get_store
from nfe_agil.core.batch import download_lote as build_lote
from nfe_agil.store.blob import BlobStore
from nfe_agil.store.db import get_db

router = APIRouter()

@router.get("/download-lote")
def download_lote(tipo: str = Query("xml", description="xml|pdf|ambos"),
                  period: str = Query("todos", description="hoje|esta_semana|mes_atual|mes_passado|custom|todos"),
                  date_from: Optional[str] = Query(None, alias="from"),
                  date_to: Optional[str] = Query(None, alias="to"),
                  user_id: str = Depends(current_user), db: Session = Depends(get_db),
                  store: BlobStore = Depends(get_store), converter=Depends(get_converter)):
    out = build_lote(db, user_id, tipo, period, date_from, date_to, converter=converter, store=store)
    headers = {"Content-Disposition": f'attachment; filename="{out.filename}"', **out.headers}
    return Response(out.content, media_type=out.media_type, headers=headers)
