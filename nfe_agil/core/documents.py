"""Operações sobre uma NF-e do tenant: XML, DANFE com cache, manifestação e status da sincronização."""
from datetime import datetime, timedelta
from typing import Callable, Optional
from sqlalchemy import select
from sqlalchemy.orm import Session
from nfe_agil.cert.credentials import load_credentials
from nfe_agil.core.sefaz_sync import read_cursor
from nfe_agil.errors import NotFoundError, ValidationError, XmlNotAvailableError, UpstreamError
from nfe_agil.logs import get_logger
from nfe_agil.models import NFe, Empresa
from nfe_agil.settings import settings
from nfe_agil.store.blob import BlobStore, BUCKET_XML, BUCKET_DANFES, danfe_key
from nfe_agil.ws.danfe_client import convert_xml_to_danfe, DanfeResult
from nfe_agil.ws.sefaz_proxy import SefazProxyClient

logger = get_logger("nfe.danfe")

Converter = Callable[[str], DanfeResult]

# manifestação -> tpEvento
MANIFESTACAO_EVENTOS = {
    "ciencia": "210210",
    "confirmada": "210200",
    "desconhecida": "210220",
    "nao_realizada": "210240",
}

def get_nfe(db: Session, user_id: str, nfe_id: int) -> NFe:
    nfe = db.execute(select(NFe).where(NFe.id == nfe_id, NFe.user_id == user_id)).scalar_one_or_none()
    if nfe is None:
        raise NotFoundError("NF-e não encontrada ou acesso negado.")
    return nfe

def load_xml(store: BlobStore, nfe: NFe) -> str:
    if not nfe.xml_path:
        raise XmlNotAvailableError("XML ainda não disponível pela SEFAZ.")
    raw = store.download(BUCKET_XML, nfe.xml_path)
    if raw is None:
        raise XmlNotAvailableError(f"XML não encontrado no storage: {nfe.xml_path}")
    return raw.decode("utf-8")

def cached_danfe(store: BlobStore, user_id: str, nfe: NFe, xml: Optional[str] = None,
                 converter: Optional[Converter] = None) -> tuple[bytes, bool]:
    """PDF do cache ``danfes/{user}/{id}.pdf``; na falta, converte e grava. Retorna (pdf, veio_do_cache)."""
    key = danfe_key(user_id, nfe.id)
    cached = store.download(BUCKET_DANFES, key)
    if cached:
        return cached, True
    xml = xml if xml is not None else load_xml(store, nfe)
    res = (converter or convert_xml_to_danfe)(xml)
    store.upload(BUCKET_DANFES, key, res.content)
    logger.info(f"[DANFE] Cache gravado {key} ({res.size} bytes)")
    return res.content, False

def danfe_filename(nfe: NFe) -> str:
    return f"danfe-{nfe.numero or nfe.chave[-8:]}.pdf"

def manifestar(db: Session, user_id: str, nfe_id: int, tipo: str,
               client: Optional[SefazProxyClient] = None, store: Optional[BlobStore] = None,
               now: Optional[datetime] = None) -> dict:
    """Envia o evento de manifestação e, aceito (135/136), grava tipo e data na NF-e."""
    tp_evento = MANIFESTACAO_EVENTOS.get(tipo)
    if tp_evento is None:
        raise ValidationError(f"Tipo de manifestação inválido: {tipo}", permitidos=sorted(MANIFESTACAO_EVENTOS))
    nfe = get_nfe(db, user_id, nfe_id)
    creds = load_credentials(db, user_id, nfe.empresa_cnpj, store or BlobStore())
    res = (client or SefazProxyClient()).manifestar(nfe.empresa_cnpj, nfe.chave, tp_evento, creds)
    cstat = str(res.get("cStat") or "")
    if cstat not in ("135", "136"):
        raise UpstreamError(f"SEFAZ rejeitou a manifestação: {cstat} - {res.get('xMotivo') or ''}", cStat=cstat)
    nfe.manifestacao = tipo
    nfe.data_manifestacao = now or datetime.utcnow()
    db.commit()
    logger.info(f"[MANIFESTO] {nfe.chave} -> {tipo} (cStat {cstat})")
    return {"success": True, "manifestacao": tipo, "cStat": cstat, "xMotivo": res.get("xMotivo")}

def active_empresa(db: Session, user_id: str) -> Empresa:
    emp = db.execute(
        select(Empresa).where(Empresa.user_id == user_id, Empresa.ativo.is_(True)).order_by(Empresa.id).limit(1)
    ).scalar_one_or_none()
    if emp is None:
        raise NotFoundError("Nenhuma empresa ativa cadastrada.")
    return emp

def sync_status(db: Session, user_id: str, cnpj: str, now: Optional[datetime] = None) -> dict:
    """Dados do badge de sincronização."""
    now = now or datetime.utcnow()
    state, nsu = read_cursor(db, user_id, cnpj)
    if state is None:
        return {"status": "nunca_sincronizado", "ultimaSync": None, "proximaSync": None,
                "quantidadeImportada": 0, "ultimoNsu": 0, "ultimoCstat": None, "blockedUntil": None}
    if state.blocked_until and state.blocked_until > now:
        status = "bloqueado_656"
        proxima = state.blocked_until
    else:
        status = {"138": "atualizado", "137": "nenhum_documento"}.get(state.ultimo_cstat or "", "erro")
        if state.ultima_sync is None:
            status = "nunca_sincronizado"
        proxima = state.ultima_sync + timedelta(minutes=settings.JOB_INTERVAL_MINUTES) if state.ultima_sync else None
    return {
        "status": status,
        "ultimaSync": state.ultima_sync.isoformat() if state.ultima_sync else None,
        "proximaSync": proxima.isoformat() if proxima else None,
        "quantidadeImportada": state.total_importadas or 0,
        "ultimoNsu": nsu,
        "ultimoCstat": state.ultimo_cstat,
        "blockedUntil": state.blocked_until.isoformat() if state.blocked_until else None,
    }
