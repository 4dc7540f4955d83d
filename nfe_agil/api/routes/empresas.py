from fastapi import APIRouter, Depends, Form, UploadFile, HTTPException
from sqlalchemy import select
from sqlalchemy.orm import Session
from nfe_agil.api.deps import current_user, get_store
from nfe_agil.cert.credentials import register_certificate
from nfe_agil.models import Empresa, Certificado
from nfe_agil.store.blob import BlobStore
from nfe_agil.store.db import get_db

router = APIRouter()

def _digits(s: str) -> str: return "".join(filter(str.isdigit, s or ""))

@router.get("/empresas")
def list_empresas(user_id: str = Depends(current_user), db: Session = Depends(get_db)):
    rows = db.execute(select(Empresa).where(Empresa.user_id == user_id).order_by(Empresa.id)).scalars().all()
    return {"items": [{"id": e.id, "cnpj": e.cnpj, "razao_social": e.razao_social,
                       "ambiente": e.ambiente, "ativo": e.ativo} for e in rows]}

@router.post("/empresas")
def create_empresa(cnpj: str = Form(...), razao_social: str = Form(""), ambiente: str = Form("producao"),
                   user_id: str = Depends(current_user), db: Session = Depends(get_db)):
    cnpj_digits = _digits(cnpj)
    if len(cnpj_digits) != 14:
        raise HTTPException(400, "CNPJ inválido")
    if ambiente not in ("producao", "homologacao"):
        raise HTTPException(400, "ambiente deve ser producao ou homologacao")
    exists = db.execute(
        select(Empresa).where(Empresa.user_id == user_id, Empresa.cnpj == cnpj_digits)
    ).scalar_one_or_none()
    if exists:
        raise HTTPException(409, "CNPJ já cadastrado")
    emp = Empresa(user_id=user_id, cnpj=cnpj_digits, razao_social=razao_social, ambiente=ambiente, ativo=True)
    db.add(emp)
    db.commit()
    return {"id": emp.id, "cnpj": cnpj_digits}

@router.post("/empresas/{cnpj}/certificado")
async def upload_cert(cnpj: str, certificado_pfx: UploadFile, senha_certificado: str = Form(...),
                      user_id: str = Depends(current_user), db: Session = Depends(get_db),
                      store: BlobStore = Depends(get_store)):
    cnpj_digits = _digits(cnpj)
    emp = db.execute(
        select(Empresa).where(Empresa.user_id == user_id, Empresa.cnpj == cnpj_digits)
    ).scalar_one_or_none()
    if not emp:
        raise HTTPException(404, "Empresa não encontrada")
    cert: Certificado = register_certificate(db, user_id, cnpj_digits, await certificado_pfx.read(),
                                             senha_certificado, store=store)
    return {"ok": True, "valido_ate": cert.valido_ate.isoformat() if cert.valido_ate else None}
