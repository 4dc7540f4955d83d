"""Micro-serviço SEFAZ: único processo que fala SOAP/mTLS com a SEFAZ.

    uvicorn nfe_agil.proxy.app:app --port 3001
"""
import base64, binascii
from pathlib import Path
from typing import Optional
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel
from nfe_agil.cert.pfx_utils import pfx_certificate_info
from nfe_agil.errors import UpstreamError
from nfe_agil.logs import get_logger
from nfe_agil.proxy import sefaz_client, manifestacao
from nfe_agil.settings import settings

logger = get_logger("nfe.proxy")

app = FastAPI(title="NF-e Ágil Fiscal Service", version="0.1.0")

class DistDFeIn(BaseModel):
    cnpj: str
    ultNSU: str = "0"
    pfxBase64: Optional[str] = None
    passphrase: Optional[str] = None

class ManifestacaoIn(BaseModel):
    cnpj: str
    chave: str
    tipoEvento: str = "210210"
    pfxBase64: Optional[str] = None
    passphrase: Optional[str] = None

def _default_pfx() -> tuple[bytes, Optional[str]]:
    if not settings.PFX_PATH:
        raise HTTPException(500, "PFX_PATH não configurado")
    p = Path(settings.PFX_PATH)
    if not p.exists():
        raise HTTPException(500, f"Certificado não encontrado: {p}")
    return p.read_bytes(), settings.PFX_PASSWORD

def _credentials(pfx_b64: Optional[str], passphrase: Optional[str]) -> tuple[bytes, Optional[str]]:
    if not pfx_b64:
        return _default_pfx()
    try:
        return base64.b64decode(pfx_b64, validate=True), passphrase
    except (binascii.Error, ValueError):
        raise HTTPException(400, "pfxBase64 inválido")

@app.get("/health")
def health():
    return {"status": "ok", "ambiente": "production" if sefaz_client.is_producao() else "homologation"}

@app.post("/sefaz/distdfe")
def distdfe(body: DistDFeIn):
    cnpj = "".join(ch for ch in body.cnpj if ch.isdigit())
    if len(cnpj) != 14:
        raise HTTPException(400, "cnpj inválido")
    pfx, passphrase = _credentials(body.pfxBase64, body.passphrase)
    try:
        return sefaz_client.dist_dfe(cnpj, body.ultNSU, pfx, passphrase)
    except ValueError as e:
        raise HTTPException(400, str(e))
    except UpstreamError as e:
        logger.error(f"[SEFAZ] distdfe cnpj={cnpj}: {e.message}")
        raise HTTPException(502, e.message)

@app.get("/sefaz/status")
def status():
    pfx, passphrase = _default_pfx()
    try:
        info = pfx_certificate_info(pfx, passphrase)
    except ValueError as e:
        raise HTTPException(500, str(e))
    info["environment"] = "production" if sefaz_client.is_producao() else "homologation"
    info["sistema"] = app.title
    return info

@app.post("/sefaz/manifestacao")
def manifestar(body: ManifestacaoIn):
    cnpj = "".join(ch for ch in body.cnpj if ch.isdigit())
    if not cnpj or len(body.chave) != 44 or not body.chave.isdigit():
        raise HTTPException(400, "CNPJ e Chave (44 dígitos) são obrigatórios")
    if body.tipoEvento not in manifestacao.DESC_EVENTO:
        raise HTTPException(400, f"tipoEvento inválido: {body.tipoEvento}")
    pfx, passphrase = _credentials(body.pfxBase64, body.passphrase)
    try:
        return manifestacao.manifestar(cnpj, body.chave, body.tipoEvento, pfx, passphrase)
    except ValueError as e:
        raise HTTPException(400, str(e))
    except UpstreamError as e:
        raise HTTPException(502, e.message)
