"""
Conversa SOAP com o Ambiente Nacional (NFeDistribuicaoDFe) por mTLS.

Chamadas diretas por ``requests`` (sem WSDL). Repetição com espera crescente
em HTTP 5xx e falhas de transporte; 4xx não é repetido.
"""
import base64, gzip, time, zlib
from typing import Optional
import certifi
import requests
from lxml import etree
from nfe_agil.cert.pfx_utils import pem_cert_tuple
from nfe_agil.errors import UpstreamError
from nfe_agil.logs import get_logger
from nfe_agil.settings import settings

logger = get_logger("nfe.proxy")

NS_WS = "http://www.portalfiscal.inf.br/nfe/wsdl/NFeDistribuicaoDFe"
NS_NFE = "http://www.portalfiscal.inf.br/nfe"
ACTION = "http://www.portalfiscal.inf.br/nfe/wsdl/NFeDistribuicaoDFe/nfeDistDFeInteresse"

_sleep = time.sleep

class SefazError(UpstreamError):
    code = "SEFAZ_ERROR"

def is_producao() -> bool:
    return settings.NFE_AMBIENTE.upper().startswith("PROD")

def tp_amb() -> str:
    return "1" if is_producao() else "2"

def dist_url() -> str:
    return settings.DIST_URL_PRODUCAO if is_producao() else settings.DIST_URL_HOMOLOG

def _digits(s: str) -> str:
    return "".join(ch for ch in (s or "") if ch.isdigit())

def ensure_nsu15(nsu) -> str:
    return _digits(str(nsu if nsu is not None else "")).zfill(15)[-15:]

def build_dist_envelope(cnpj: str, ult_nsu) -> bytes:
    return f'''<?xml version="1.0" encoding="utf-8"?>
<soap:Envelope xmlns:soap="http://schemas.xmlsoap.org/soap/envelope/" xmlns:ws="{NS_WS}">
    <soap:Body>
        <ws:nfeDistDFeInteresse>
            <ws:nfeDadosMsg>
                <distDFeInt xmlns="{NS_NFE}" versao="1.01">
                    <tpAmb>{tp_amb()}</tpAmb>
                    <cUFAutor>{settings.CUF_AUTOR}</cUFAutor>
                    <CNPJ>{_digits(cnpj)}</CNPJ>
                    <distNSU>
                        <ultNSU>{ensure_nsu15(ult_nsu)}</ultNSU>
                    </distNSU>
                </distDFeInt>
            </ws:nfeDadosMsg>
        </ws:nfeDistDFeInteresse>
    </soap:Body>
</soap:Envelope>'''.encode("utf-8")

def inflate_doczip(b64: str) -> bytes:
    raw = base64.b64decode(b64)
    # NT indica GZip; alguns ambientes enviam zlib ou DEFLATE puro
    if len(raw) >= 2 and raw[0] == 0x1F and raw[1] == 0x8B:
        return gzip.decompress(raw)
    try:
        return zlib.decompress(raw, 15 | 32)
    except zlib.error:
        return zlib.decompress(raw, -15)

def parse_dist_response(raw: bytes) -> dict:
    try:
        env = etree.fromstring(raw, etree.XMLParser(resolve_entities=False, no_network=True, huge_tree=True))
    except etree.XMLSyntaxError as e:
        raise SefazError(f"Resposta SEFAZ não é XML: {e}") from e
    ret = env.find(f".//{{{NS_NFE}}}retDistDFeInt")
    if ret is None:
        ret = env.find(".//retDistDFeInt")
    if ret is None:
        raise SefazError("retDistDFeInt não encontrado na resposta")
    ns = {"nfe": NS_NFE}

    def gx(p):
        el = ret.find(p, ns)
        return el.text if el is not None else None

    docs = []
    for el in ret.findall(".//nfe:docZip", ns):
        try:
            xml = inflate_doczip(el.text or "").decode("utf-8")
        except (ValueError, zlib.error, OSError, EOFError, UnicodeDecodeError) as e:
            logger.error(f"[SEFAZ] docZip NSU {el.get('NSU')} ilegível: {e}")
            continue
        docs.append({"nsu": el.get("NSU"), "schema": el.get("schema"), "xml": xml})
    return {
        "cStat": gx("nfe:cStat") or "",
        "xMotivo": gx("nfe:xMotivo") or "",
        "ultNSU": gx("nfe:ultNSU"),
        "maxNSU": gx("nfe:maxNSU"),
        "documentos": docs,
    }

def post_soap(session: requests.Session, url: str, body: bytes, headers: dict,
              max_attempts: Optional[int] = None) -> bytes:
    max_attempts = max_attempts or settings.SEFAZ_MAX_ATTEMPTS
    for attempt in range(1, max_attempts + 1):
        try:
            r = session.post(url, data=body, headers=headers, timeout=settings.SEFAZ_TIMEOUT_SEC)
        except requests.RequestException as e:
            if attempt >= max_attempts:
                raise SefazError(f"Falha de rede/TLS após {attempt} tentativa(s): {e}") from e
            logger.warning(f"[SEFAZ] Erro de rede (Tentativa {attempt}/{max_attempts}): {e}")
            _sleep(settings.SEFAZ_RETRY_BASE_SEC * attempt)
            continue
        if 400 <= r.status_code < 500:
            raise SefazError(f"SEFAZ HTTP {r.status_code}: {r.text[:300]}")
        if r.status_code >= 500:
            if attempt >= max_attempts:
                raise SefazError(f"SEFAZ HTTP {r.status_code}: {r.text[:300]}")
            logger.warning(f"[SEFAZ] Erro {r.status_code} (Tentativa {attempt}/{max_attempts})")
            _sleep(settings.SEFAZ_RETRY_BASE_SEC * attempt)
            continue
        return r.content
    raise SefazError("Sem resposta da SEFAZ")

def distribuir(session: requests.Session, cnpj: str, ult_nsu, url: Optional[str] = None,
               max_loops: Optional[int] = None) -> dict:
    """Consulta em laço enquanto houver documentos (138) e ultNSU < maxNSU."""
    url = url or dist_url()
    max_loops = max_loops or settings.SEFAZ_MAX_LOOPS
    headers = {"Content-Type": "text/xml; charset=utf-8", "SOAPAction": f'"{ACTION}"'}
    cursor = ensure_nsu15(ult_nsu)
    max_nsu = cursor
    documentos: list[dict] = []
    c_stat, x_motivo = "", ""
    for loop in range(1, max_loops + 1):
        logger.info(f"[SEFAZ] Loop {loop} | CNPJ: {cnpj} | NSU: {cursor}")
        parsed = parse_dist_response(post_soap(session, url, build_dist_envelope(cnpj, cursor), headers))
        c_stat, x_motivo = parsed["cStat"], parsed["xMotivo"]
        if c_stat not in ("137", "138"):
            logger.warning(f"[SEFAZ] Parando por erro/status: {c_stat} - {x_motivo}")
            break
        documentos.extend(parsed["documentos"])
        cursor = ensure_nsu15(parsed["ultNSU"] or cursor)
        max_nsu = ensure_nsu15(parsed["maxNSU"] or cursor)
        if c_stat == "137" or int(cursor) >= int(max_nsu):
            break
    return {"cStat": c_stat, "xMotivo": x_motivo, "ultNSU": cursor, "maxNSU": max_nsu, "documentos": documentos}

def mtls_session(cert_tuple: tuple[str, str]) -> requests.Session:
    s = requests.Session()
    s.cert = cert_tuple
    s.verify = settings.SEFAZ_CA_BUNDLE or certifi.where()
    return s

def dist_dfe(cnpj: str, ult_nsu, pfx: bytes, passphrase: Optional[str]) -> dict:
    with pem_cert_tuple(pfx, passphrase) as cert_tuple:
        with mtls_session(cert_tuple) as session:
            return distribuir(session, cnpj, ult_nsu)
