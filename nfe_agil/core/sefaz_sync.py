"""
Sincronização incremental (NSU) de um tenant contra a SEFAZ, via micro-serviço.

Regras de estado:
- o cursor (``ultimo_nsu``) só avança após uma chamada bem-sucedida (137/138)
  e nunca regride: ``max(atual, retornado)``;
- falha de rede/provedor não altera nada;
- cStat 656 (consumo indevido) grava ``blocked_until`` e mantém o cursor;
- a ingestão é idempotente pela chave de acesso (única na tabela ``nfes``).
"""
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from typing import Optional
from lxml import etree
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from nfe_agil.cert.credentials import load_credentials
from nfe_agil.core.notifications import NotificationChannel, create_notification, default_channel, to_dict
from nfe_agil.core.xml_fields import (
    parse_xml, extract_resumo, extract_completa, extract_evento, TP_EVENTO_CANCELAMENTO,
)
from nfe_agil.errors import NfeAgilError, SefazBlockedError, UpstreamError
from nfe_agil.logs import get_logger
from nfe_agil.models import (
    NFe, SyncState, STATUS_XML_DISPONIVEL, STATUS_XML_PENDENTE, STATUS_CANCELADA, STATUS_DENEGADA,
)
from nfe_agil.settings import settings
from nfe_agil.store.blob import BlobStore, BUCKET_XML, xml_key
from nfe_agil.ws.sefaz_proxy import SefazProxyClient, DocDFe

logger = get_logger("nfe.sync")

CSTAT_NENHUM_DOC = "137"
CSTAT_DOCS_LOCALIZADOS = "138"
CSTAT_CONSUMO_INDEVIDO = "656"

IMPORTADA, ATUALIZADA, DUPLICADA, IGNORADA = "importada", "atualizada", "duplicada", "ignorada"

@dataclass
class SyncResult:
    success: bool
    importadas: int = 0
    atualizadas: int = 0
    duplicadas: int = 0
    ignoradas: int = 0
    ult_nsu: int = 0
    cstat: Optional[str] = None
    error: Optional[str] = None
    blocked_until: Optional[datetime] = None

    def to_dict(self) -> dict:
        d = asdict(self)
        d["blocked_until"] = self.blocked_until.isoformat() if self.blocked_until else None
        return d

def _cnpj_digits(s: str) -> str: return "".join([c for c in (s or "") if c.isdigit()])

def read_cursor(db: Session, user_id: str, cnpj: str) -> tuple[Optional[SyncState], int]:
    """Estado + NSU utilizável. Cursor ausente, ilegível ou negativo vale 0 (ressincroniza do início)."""
    state = db.execute(
        select(SyncState).where(SyncState.user_id == user_id, SyncState.empresa_cnpj == cnpj)
    ).scalar_one_or_none()
    if state is None:
        return None, 0
    try:
        nsu = int(state.ultimo_nsu)
    except (TypeError, ValueError):
        logger.warning(f"[SEFAZ] Cursor ilegível para user={user_id} cnpj={cnpj}: {state.ultimo_nsu!r}; usando 0")
        return state, 0
    if nsu < 0:
        logger.warning(f"[SEFAZ] Cursor negativo para user={user_id} cnpj={cnpj}: {nsu}; usando 0")
        return state, 0
    return state, nsu

def ensure_not_blocked(db: Session, user_id: str, cnpj: str, now: Optional[datetime] = None) -> None:
    """Recusa chamadas antes de ``blocked_until`` (656). Quem dispara a sincronização aplica a regra."""
    blocked = db.execute(
        select(SyncState.blocked_until).where(SyncState.user_id == user_id, SyncState.empresa_cnpj == _cnpj_digits(cnpj))
    ).scalar_one_or_none()
    if blocked and blocked > (now or datetime.utcnow()):
        raise SefazBlockedError(
            "SEFAZ bloqueou consultas temporariamente (consumo indevido). Aguarde para tentar novamente.",
            blockedUntil=blocked.isoformat(),
        )

def _state_for_write(db: Session, state: Optional[SyncState], user_id: str, cnpj: str) -> SyncState:
    if state is None:
        state = SyncState(user_id=user_id, empresa_cnpj=cnpj, ultimo_nsu=0, total_importadas=0)
        db.add(state)
    return state

def _chave_valida(chave: Optional[str]) -> bool:
    return bool(chave) and len(chave) == 44 and chave.isdigit()

def _find(db: Session, chave: str, seen: dict[str, NFe]) -> Optional[NFe]:
    if chave in seen:
        return seen[chave]
    found = db.execute(select(NFe).where(NFe.chave == chave)).scalar_one_or_none()
    if found is not None:
        seen[chave] = found
    return found

def _ingest(db: Session, user_id: str, cnpj: str, doc: DocDFe, store: BlobStore, seen: dict[str, NFe]) -> str:
    root = parse_xml(doc.xml)
    schema = doc.schema or ""

    if "resNFe" in schema:
        f = extract_resumo(root)
        chave = f["chave"]
        if not _chave_valida(chave):
            logger.warning(f"[SEFAZ] Documento NSU {doc.nsu} ({schema}) com chave de acesso inválida: {chave!r}; ignorado")
            return IGNORADA
        if _find(db, chave, seen) is not None:
            return DUPLICADA
        # cSitNFe: 1=Autorizada, 2=Denegada, 3=Cancelada
        status = {"3": STATUS_CANCELADA, "2": STATUS_DENEGADA}.get(f["c_sit_nfe"], STATUS_XML_PENDENTE)
        nfe = NFe(user_id=user_id, empresa_cnpj=cnpj, chave=chave, nsu=doc.nsu, emitente=f["emitente"],
                  valor=f["valor"], data_emissao=f["data_emissao"] or datetime.utcnow(), status=status,
                  schema_tipo="resNFe")
        db.add(nfe)
        seen[chave] = nfe
        return IMPORTADA

    if "procNFe" in schema:
        f = extract_completa(root)
        chave = f["chave"]
        if not _chave_valida(chave):
            logger.warning(f"[SEFAZ] Documento NSU {doc.nsu} ({schema}) com chave de acesso inválida: {chave!r}; ignorado")
            return IGNORADA
        existing = _find(db, chave, seen)
        if existing is not None and (existing.xml_path or existing.user_id != user_id):
            return DUPLICADA
        key = store.upload(BUCKET_XML, xml_key(user_id, chave), doc.xml.encode("utf-8"))
        if existing is not None:
            # resumo recebido antes: agora ganha o XML completo
            existing.xml_path = key
            existing.schema_tipo = "procNFe"
            existing.numero = f["numero"] or existing.numero
            existing.emitente = f["emitente"] or existing.emitente
            existing.valor = f["valor"] or existing.valor
            existing.uf_emitente = f["uf_emitente"] or existing.uf_emitente
            if existing.status != STATUS_CANCELADA:
                existing.status = STATUS_XML_DISPONIVEL
            return ATUALIZADA
        nfe = NFe(user_id=user_id, empresa_cnpj=cnpj, chave=chave, nsu=doc.nsu, numero=f["numero"],
                  emitente=f["emitente"], valor=f["valor"], data_emissao=f["data_emissao"] or datetime.utcnow(),
                  status=STATUS_XML_DISPONIVEL, schema_tipo="procNFe", uf_emitente=f["uf_emitente"], xml_path=key)
        db.add(nfe)
        seen[chave] = nfe
        return IMPORTADA

    if "procEventoNFe" in schema or "resEvento" in schema:
        ev = extract_evento(root)
        if ev["tp_evento"] == TP_EVENTO_CANCELAMENTO and ev["chave"]:
            target = _find(db, ev["chave"], seen)
            if target is not None and target.user_id == user_id:
                logger.info(f"[SEFAZ] Processando Cancelamento para NF: {ev['chave']}")
                target.status = STATUS_CANCELADA
                return ATUALIZADA
        return IGNORADA

    return IGNORADA

def process_sefaz_sync(db: Session, user_id: str, cnpj: str,
                       client: Optional[SefazProxyClient] = None,
                       channel: Optional[NotificationChannel] = None,
                       store: Optional[BlobStore] = None,
                       now: Optional[datetime] = None) -> SyncResult:
    cnpj = _cnpj_digits(cnpj)
    client = client or SefazProxyClient()
    channel = channel or default_channel
    store = store or BlobStore()
    now = now or datetime.utcnow()

    state, ult_nsu = read_cursor(db, user_id, cnpj)
    logger.info(f"[SEFAZ] Iniciando sincronização. user={user_id} CNPJ: {cnpj}, Ultimo NSU: {ult_nsu}")

    try:
        creds = load_credentials(db, user_id, cnpj, store)
    except NfeAgilError as e:
        return SyncResult(False, ult_nsu=ult_nsu, error=f"Certificado erro: {e.message}")

    try:
        res = client.distdfe(cnpj, ult_nsu, creds)
    except UpstreamError as e:
        logger.error(f"[SEFAZ] Falha na chamada ao micro-serviço cnpj={cnpj}: {e.message}")
        return SyncResult(False, ult_nsu=ult_nsu, error=f"Erro na sincronização: {e.message}")

    if res.status_code == CSTAT_CONSUMO_INDEVIDO:
        blocked_until = now + timedelta(minutes=settings.SEFAZ_BLOCK_COOLDOWN_MINUTES)
        state = _state_for_write(db, state, user_id, cnpj)
        state.blocked_until = blocked_until
        state.ultimo_cstat = CSTAT_CONSUMO_INDEVIDO
        db.commit()
        logger.warning(f"[SEFAZ] cStat 656 cnpj={cnpj}; bloqueado até {blocked_until.isoformat()}")
        return SyncResult(False, ult_nsu=ult_nsu, cstat=res.status_code, blocked_until=blocked_until,
                          error=f"SEFAZ: {res.status_code} - {res.motivo}")

    if res.status_code not in (CSTAT_NENHUM_DOC, CSTAT_DOCS_LOCALIZADOS):
        logger.error(f"[SEFAZ] cnpj={cnpj} cStat={res.status_code} ({res.motivo})")
        return SyncResult(False, ult_nsu=ult_nsu, cstat=res.status_code, error=f"SEFAZ: {res.status_code} - {res.motivo}")

    out = SyncResult(True, cstat=res.status_code)
    seen: dict[str, NFe] = {}
    for doc in sorted(res.documents, key=lambda d: d.nsu):
        try:
            outcome = _ingest(db, user_id, cnpj, doc, store, seen)
        except (etree.XMLSyntaxError, ValueError) as e:
            logger.error(f"[SEFAZ] Erro ao processar docZip NSU {doc.nsu}: {e}")
            outcome = IGNORADA
        if outcome == IMPORTADA: out.importadas += 1
        elif outcome == ATUALIZADA: out.atualizadas += 1
        elif outcome == DUPLICADA: out.duplicadas += 1
        else: out.ignoradas += 1

    state = _state_for_write(db, state, user_id, cnpj)
    out.ult_nsu = max(ult_nsu, res.new_nsu)
    state.ultimo_nsu = out.ult_nsu
    state.ultima_sync = now
    state.ultimo_cstat = res.status_code
    state.blocked_until = None
    state.total_importadas = (state.total_importadas or 0) + out.importadas

    notification = None
    try:
        if out.importadas > 0:
            notification = create_notification(
                db, user_id,
                title="Novas NF-es recebidas",
                message=f"{out.importadas} nova(s) NF-e(s) importada(s) da SEFAZ para o CNPJ {cnpj}.",
                link="/dashboard/nfe",
            )
        db.commit()
    except SQLAlchemyError as e:
        # corrida com outra sincronização do mesmo tenant: nada é gravado, o próximo ciclo reprocessa
        db.rollback()
        logger.error(f"[SEFAZ] Falha ao persistir lote cnpj={cnpj}: {e}")
        return SyncResult(False, ult_nsu=ult_nsu, cstat=res.status_code, error=f"Erro ao gravar documentos: {e.__class__.__name__}")

    if notification is not None:
        channel.publish(user_id, to_dict(notification))

    logger.info(f"[SEFAZ] cnpj={cnpj} cStat={res.status_code} importadas={out.importadas} atualizadas={out.atualizadas} "
                f"duplicadas={out.duplicadas} NSU {ult_nsu}->{out.ult_nsu}")
    return out
