"""
Conversão XML NF-e -> DANFE PDF via API MeuDanfe.

POST {MEUDANFE_URL} com header ``Api-Key`` e corpo = XML puro.
Retorno: JSON ``{"data": "<base64 do PDF>"}``.
"""
import base64, binascii
from dataclasses import dataclass
from typing import Optional
import requests
from nfe_agil.errors import NfeAgilError
from nfe_agil.logs import get_logger
from nfe_agil.settings import settings

logger = get_logger("nfe.danfe")

class DanfeError(NfeAgilError):
    status_code = 502
    code = "DANFE_ERROR"

class DanfeConfigError(DanfeError):
    status_code = 500
    code = "DANFE_CONFIG"

class DanfeInputError(DanfeError):
    status_code = 400
    code = "DANFE_INPUT"

class DanfeUpstreamError(DanfeError):
    code = "DANFE_UPSTREAM"

class DanfeContractError(DanfeError):
    code = "DANFE_CONTRACT"

class DanfeCorruptError(DanfeError):
    code = "DANFE_CORRUPT"

@dataclass
class DanfeResult:
    content: bytes
    size: int

def convert_xml_to_danfe(xml_content: str, api_key: Optional[str] = None, url: Optional[str] = None,
                         session: Optional[requests.Session] = None) -> DanfeResult:
    api_key = api_key if api_key is not None else settings.MEUDANFE_API_KEY
    if not api_key:
        raise DanfeConfigError("MEUDANFE_API_KEY não configurada no ambiente.")
    if not xml_content or not xml_content.strip():
        raise DanfeInputError("XML vazio, não é possível gerar DANFE.")

    logger.info(f"[MeuDanfe] Enviando XML para conversão | tamanho: {len(xml_content)} chars")
    http = session or requests
    try:
        r = http.post(
            url or settings.MEUDANFE_URL,
            data=xml_content.encode("utf-8"),
            headers={"Api-Key": api_key, "Content-Type": "text/plain"},
            timeout=settings.MEUDANFE_TIMEOUT_SEC,
        )
    except requests.RequestException as e:
        raise DanfeUpstreamError(f"MeuDanfe API inacessível: {e}") from e

    if not (200 <= r.status_code < 300):
        detail = (r.text or "")[:300]
        raise DanfeUpstreamError(f"MeuDanfe API retornou erro {r.status_code}: {detail or r.reason}")

    try:
        body = r.json()
    except ValueError as e:
        raise DanfeContractError("MeuDanfe API retornou resposta não-JSON inesperada.") from e

    data = body.get("data") if isinstance(body, dict) else None
    if not data or not isinstance(data, str):
        keys = ", ".join(body.keys()) if isinstance(body, dict) else type(body).__name__
        raise DanfeContractError(f'MeuDanfe API: campo "data" ausente na resposta. Keys: {keys}')

    try:
        pdf = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DanfeContractError("MeuDanfe API: campo \"data\" não é base64 válido.") from e

    if len(pdf) < settings.DANFE_MIN_PDF_BYTES:
        raise DanfeCorruptError(f"MeuDanfe API: PDF gerado muito pequeno ({len(pdf)} bytes), possível erro.")

    logger.info(f"[MeuDanfe] PDF gerado com sucesso | tamanho: {len(pdf)} bytes")
    return DanfeResult(content=pdf, size=len(pdf))
