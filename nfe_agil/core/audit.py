"""Auditoria fiscal (somente leitura) sobre cursores, documentos, manifestações e o certificado do proxy."""
from dataclasses import dataclass, field, asdict
from typing import Optional
from sqlalchemy import select, func
from sqlalchemy.orm import Session
from nfe_agil.errors import UpstreamError
from nfe_agil.logs import get_logger
from nfe_agil.models import NFe, SyncState, STATUS_XML_DISPONIVEL
from nfe_agil.store.blob import BlobStore, BUCKET_XML
from nfe_agil.ws.sefaz_proxy import SefazProxyClient

logger = get_logger("nfe.audit")

XML_SAMPLE = 5
MANIFEST_SAMPLE = 20

@dataclass
class AuditReport:
    nsuConsistente: bool = True
    duplicidade: bool = False
    xmlIntegro: bool = True
    manifestacaoValida: bool = True
    certificadoValido: bool = True
    ambienteCorreto: bool = True
    ambienteObservado: Optional[str] = None
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)

def _check_cursors(db: Session, r: AuditReport):
    for state in db.execute(select(SyncState)).scalars():
        if state.ultimo_nsu is not None and state.ultimo_nsu < 0:
            r.nsuConsistente = False
            r.errors.append(f"NSU negativo para {state.user_id} ({state.empresa_cnpj}): {state.ultimo_nsu}")

def _check_keys(db: Session, r: AuditReport):
    dups = db.execute(select(NFe.chave).group_by(NFe.chave).having(func.count(NFe.id) > 1)).scalars().all()
    for chave in dups:
        r.duplicidade = True
        r.errors.append(f"Chave duplicada: {chave}")
    bad = db.execute(select(NFe.chave).where(func.length(NFe.chave) != 44)).scalars().all()
    for chave in bad:
        r.errors.append(f"Chave com tamanho inválido ({len(chave)}): {chave}")

def _check_xml_sample(db: Session, store: BlobStore, r: AuditReport):
    rows = db.execute(
        select(NFe.chave, NFe.xml_path).where(NFe.status == STATUS_XML_DISPONIVEL).limit(XML_SAMPLE)
    ).all()
    for chave, path in rows:
        if not path:
            r.xmlIntegro = False
            r.errors.append(f"NFe {chave} tem status xml_disponivel mas sem xml_path")
            continue
        try:
            data = store.download(BUCKET_XML, path)
        except (OSError, ValueError) as e:
            r.xmlIntegro = False
            r.errors.append(f"Erro lendo XML {chave}: {e}")
            continue
        if data is None:
            r.xmlIntegro = False
            r.errors.append(f"XML não encontrado no storage para {chave}: {path}")
        elif b"<NFe" not in data:
            r.xmlIntegro = False
            r.errors.append(f"XML corrompido/incompleto para {chave}")

def _check_manifestacoes(db: Session, r: AuditReport):
    rows = db.execute(
        select(NFe.chave, NFe.data_manifestacao).where(NFe.manifestacao == "ciencia").limit(MANIFEST_SAMPLE)
    ).all()
    for chave, dt in rows:
        if dt is None:
            r.manifestacaoValida = False
            r.errors.append(f"NFe {chave} com ciência mas sem data_manifestacao")

def _check_certificado(client: SefazProxyClient, r: AuditReport):
    try:
        status = client.status()
    except UpstreamError as e:
        r.certificadoValido = False
        r.errors.append(e.message)
        return
    if not status.get("valid"):
        r.certificadoValido = False
        r.errors.append(f"Certificado expirado em {status.get('expirationDate')}")
    env = status.get("environment")
    r.ambienteObservado = env
    if env != "production":
        r.ambienteCorreto = False
        r.errors.append(f"Ambiente incorreto: {env} (esperado: production)")

def run_fiscal_audit(db: Session, store: Optional[BlobStore] = None,
                     client: Optional[SefazProxyClient] = None) -> AuditReport:
    logger.info("[Audit] Iniciando Auditoria Fiscal...")
    r = AuditReport()
    _check_cursors(db, r)
    _check_keys(db, r)
    _check_xml_sample(db, store or BlobStore(), r)
    _check_manifestacoes(db, r)
    _check_certificado(client or SefazProxyClient(), r)
    logger.info(f"[Audit] Concluída com {len(r.errors)} apontamento(s)")
    return r
