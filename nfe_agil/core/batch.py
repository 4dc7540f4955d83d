"""
Orquestração em lote sobre o serviço de DANFE.

- ``convert_many``: XMLs enviados pelo usuário -> PDF único ou ``danfes.zip``
  (cota mensal no plano Starter, consumida só pelos sucessos).
- ``download_lote``: NF-es armazenadas do tenant -> ZIP com XMLs e/ou PDFs,
  usando o cache ``danfes/{user}/{id}.pdf``.

Falha de um item nunca derruba o lote.
"""
import io, zipfile
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional
from sqlalchemy import select
from sqlalchemy.orm import Session
from nfe_agil.core.documents import Converter, cached_danfe, load_xml
from nfe_agil.core.periods import compute_date_range_brt
from nfe_agil.core.plan_gate import get_user_plan_info
from nfe_agil.core.quota import get_monthly_usage, increment_usage
from nfe_agil.core.xml_fields import looks_like_nfe, nfe_number
from nfe_agil.errors import (
    NfeAgilError, PlanRequiredError, EmptyBatchError, BatchTooLargeError, LimitReachedError,
    BatchFailedError, ForbiddenError, NotFoundError, ValidationError,
)
from nfe_agil.logs import get_logger
from nfe_agil.models import NFe
from nfe_agil.settings import settings
from nfe_agil.store.blob import BlobStore
from nfe_agil.ws.danfe_client import convert_xml_to_danfe

logger = get_logger("nfe.batch")

TIPOS_LOTE = ("xml", "pdf", "ambos")

@dataclass
class UploadedXml:
    filename: str
    content: bytes

@dataclass
class ItemResult:
    filename: str
    success: bool
    content: bytes = b""
    error: Optional[str] = None

@dataclass
class PackagedFile:
    filename: str
    content: bytes
    media_type: str
    headers: dict[str, str] = field(default_factory=dict)

def _unique_name(name: str, used: set[str]) -> str:
    # notas de emitentes diferentes podem repetir o nNF: DANFE-100.pdf, DANFE-100-2.pdf, ...
    stem, dot, ext = name.rpartition(".")
    if not dot:
        stem, ext = name, ""
    candidate, n = name, 1
    while candidate in used:
        n += 1
        candidate = f"{stem}-{n}{dot}{ext}"
    used.add(candidate)
    return candidate

def _zip(entries: list[tuple[str, bytes]]) -> bytes:
    buf = io.BytesIO()
    used: set[str] = set()
    with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=6) as zf:
        for name, data in entries:
            zf.writestr(_unique_name(name, used), data)
    return buf.getvalue()

def decode_upload(raw: bytes) -> str:
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        return raw.decode("latin-1", errors="ignore")

def _convert_one(f: UploadedXml, converter: Converter) -> ItemResult:
    xml = decode_upload(f.content)
    if not looks_like_nfe(xml):
        return ItemResult(f.filename, False, error="Arquivo não parece ser um XML de NF-e válido.")
    try:
        res = converter(xml)
    except NfeAgilError as e:
        logger.warning(f"[Converter] Falha em {f.filename}: {e.message}")
        return ItemResult(f.filename, False, error=e.message)
    return ItemResult(f"DANFE-{nfe_number(xml)}.pdf", True, content=res.content)

def convert_many(db: Session, user_id: str, files: list[UploadedXml],
                 converter: Optional[Converter] = None) -> PackagedFile:
    converter = converter or convert_xml_to_danfe
    info = get_user_plan_info(db, user_id)
    if not info.has_plan:
        raise PlanRequiredError("Assinatura inativa. Escolha um plano para continuar.")
    if not files:
        raise EmptyBatchError("Nenhum arquivo XML enviado.")
    max_files = settings.MAX_FILES_PER_REQUEST
    if len(files) > max_files:
        raise BatchTooLargeError(f"Máximo de {max_files} arquivos por vez.")

    if info.is_starter:
        usage = get_monthly_usage(db, user_id)
        limit = settings.STARTER_MONTHLY_LIMIT
        if usage + len(files) > limit:
            remaining = max(0, limit - usage)
            raise LimitReachedError(
                f"Limite mensal atingido. Você usou {usage} de {limit} conversões. Restam {remaining}.",
                usage=usage, limit=limit, remaining=remaining,
            )

    results = [_convert_one(f, converter) for f in files]
    ok = [r for r in results if r.success]
    failed = len(results) - len(ok)
    if not ok:
        raise BatchFailedError(
            "Nenhum arquivo foi convertido com sucesso.",
            details=[{"file": r.filename, "error": r.error} for r in results],
        )

    if info.is_starter:
        increment_usage(db, user_id, len(ok))
    logger.info(f"[Converter] user={user_id} convertidos={len(ok)} falhas={failed}")

    headers = {"X-Converted-Count": str(len(ok)), "X-Failed-Count": str(failed)}
    if len(ok) == 1:
        return PackagedFile(ok[0].filename, ok[0].content, "application/pdf", headers)
    return PackagedFile("danfes.zip", _zip([(r.filename, r.content) for r in ok]), "application/zip", headers)

def download_lote(db: Session, user_id: str, tipo: str = "xml", period: str = "todos",
                  date_from: Optional[str] = None, date_to: Optional[str] = None,
                  converter: Optional[Converter] = None, store: Optional[BlobStore] = None,
                  now: Optional[datetime] = None) -> PackagedFile:
    if tipo not in TIPOS_LOTE:
        raise ValidationError(f"Tipo inválido: {tipo}. Use xml, pdf ou ambos.")
    info = get_user_plan_info(db, user_id)
    if not info.is_pro_or_trial:
        raise ForbiddenError("Download em lote é exclusivo do Plano Pro.")
    store = store or BlobStore()
    include_pdf = tipo in ("pdf", "ambos")
    include_xml = tipo in ("xml", "ambos")
    limit = settings.LOTE_LIMIT_PDF if include_pdf else settings.LOTE_LIMIT_XML

    q = select(NFe).where(NFe.user_id == user_id, NFe.xml_path.is_not(None))
    if period and period != "todos":
        d_from, d_to = compute_date_range_brt(period, date_from, date_to, now=now)
        if d_from is not None:
            q = q.where(NFe.data_emissao >= d_from)
        if d_to is not None:
            q = q.where(NFe.data_emissao <= d_to)
    nfes = db.execute(q.order_by(NFe.data_emissao.desc()).limit(limit)).scalars().all()
    if not nfes:
        raise NotFoundError("Nenhuma NF-e com XML disponível no período selecionado.")
    logger.info(f"[Download Lote] Tipo: {tipo} | Período: {period} | NF-es encontradas: {len(nfes)}")

    entries: list[tuple[str, bytes]] = []
    xml_count = pdf_count = pdf_errors = 0
    for nfe in nfes:
        try:
            xml = load_xml(store, nfe)
        except NfeAgilError as e:
            logger.warning(f"[Download Lote] XML indisponível {nfe.chave}: {e.message}")
            if include_pdf:
                pdf_errors += 1
            continue
        if include_xml:
            folder = "xmls/" if tipo == "ambos" else ""
            entries.append((f"{folder}{nfe.chave}.xml", xml.encode("utf-8")))
            xml_count += 1
        if include_pdf:
            try:
                pdf, _hit = cached_danfe(store, user_id, nfe, xml=xml, converter=converter)
            except (NfeAgilError, OSError) as e:
                logger.warning(f"[Download Lote] Falha PDF {nfe.chave}: {e}")
                pdf_errors += 1
                continue
            folder = "pdfs/" if tipo == "ambos" else ""
            entries.append((f"{folder}danfe-{nfe.numero or nfe.chave[-8:]}.pdf", pdf))
            pdf_count += 1

    if not entries:
        raise BatchFailedError("Nenhum arquivo pôde ser incluído no download.")

    data = _zip(entries)
    stamp = (now or datetime.utcnow()).strftime("%Y%m%d")
    logger.info(f"[Download Lote] ZIP gerado | {len(entries)} arquivos | {len(data)} bytes | "
                f"XMLs: {xml_count} | PDFs: {pdf_count} | Erros PDF: {pdf_errors}")
    return PackagedFile(
        f"nfe-agil-{tipo}-{stamp}.zip", data, "application/zip",
        {"X-Xml-Count": str(xml_count), "X-Pdf-Count": str(pdf_count),
         "X-Pdf-Errors": str(pdf_errors), "X-Total-Available": str(len(nfes))},
    )
