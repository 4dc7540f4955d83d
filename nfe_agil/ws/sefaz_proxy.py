"""Cliente HTTP do micro-serviço SEFAZ (``nfe_agil.proxy``)."""
from dataclasses import dataclass, field
from typing import Optional
import requests
from nfe_agil.cert.credentials import Credentials
from nfe_agil.errors import UpstreamError
from nfe_agil.logs import get_logger
from nfe_agil.settings import settings

logger = get_logger("nfe.ws.proxy")

@dataclass
class DocDFe:
    nsu: int
    schema: str
    xml: str

@dataclass
class DistResult:
    status_code: str
    motivo: str
    new_nsu: int
    max_nsu: int
    documents: list[DocDFe] = field(default_factory=list)

def _to_nsu(value) -> int:
    digits = "".join(ch for ch in str(value or "") if ch.isdigit())
    return int(digits) if digits else 0

class SefazProxyClient:
    def __init__(self, base_url: Optional[str] = None, session: Optional[requests.Session] = None, timeout: Optional[int] = None):
        self.base_url = (base_url or settings.MICRO_SEFAZ_URL).rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout or settings.MICRO_SEFAZ_TIMEOUT_SEC

    def _post(self, path: str, payload: dict) -> dict:
        url = f"{self.base_url}{path}"
        try:
            r = self.session.post(url, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise UpstreamError(f"Micro-serviço SEFAZ inacessível: {e}") from e
        if r.status_code >= 300:
            raise UpstreamError(f"Micro-serviço SEFAZ retornou HTTP {r.status_code}: {r.text[:300]}")
        try:
            body = r.json()
        except ValueError as e:
            raise UpstreamError("Micro-serviço SEFAZ retornou resposta não-JSON.") from e
        if not isinstance(body, dict):
            raise UpstreamError("Micro-serviço SEFAZ retornou envelope inesperado.")
        return body

    def distdfe(self, cnpj: str, ult_nsu: int, credentials: Optional[Credentials] = None) -> DistResult:
        payload = {"cnpj": cnpj, "ultNSU": str(ult_nsu).zfill(15)}
        if credentials is not None:
            payload.update(credentials.as_payload())
        body = self._post("/sefaz/distdfe", payload)
        cstat = str(body.get("cStat") or "")
        if not cstat:
            raise UpstreamError("Resposta do micro-serviço sem cStat.")
        docs = []
        for d in body.get("documentos") or []:
            if not isinstance(d, dict) or not d.get("xml"):
                continue
            docs.append(DocDFe(nsu=_to_nsu(d.get("nsu")), schema=str(d.get("schema") or ""), xml=d["xml"]))
        res = DistResult(
            status_code=cstat,
            motivo=str(body.get("xMotivo") or ""),
            new_nsu=_to_nsu(body.get("ultNSU")),
            max_nsu=_to_nsu(body.get("maxNSU")),
            documents=docs,
        )
        logger.debug(f"distdfe cnpj={cnpj} cStat={res.status_code} ultNSU={res.new_nsu} maxNSU={res.max_nsu} docs={len(docs)}")
        return res

    def status(self) -> dict:
        url = f"{self.base_url}/sefaz/status"
        try:
            r = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            raise UpstreamError(f"Micro-serviço inacessível: {e}") from e
        if r.status_code >= 300:
            raise UpstreamError(f"Micro-serviço status retornou erro HTTP {r.status_code}")
        try:
            return r.json()
        except ValueError as e:
            raise UpstreamError("Micro-serviço status retornou resposta não-JSON.") from e

    def manifestar(self, cnpj: str, chave: str, tp_evento: str, credentials: Credentials) -> dict:
        payload = {"cnpj": cnpj, "chave": chave, "tipoEvento": tp_evento}
        payload.update(credentials.as_payload())
        return self._post("/sefaz/manifestacao", payload)
