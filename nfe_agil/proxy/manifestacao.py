"""Manifestação do destinatário (RecepcaoEvento 4.00) com evento assinado."""
import time
from datetime import datetime, timezone, timedelta
from typing import Optional
import requests
from lxml import etree
from signxml import XMLSigner, methods, SignatureMethod, DigestAlgorithm, CanonicalizationMethod
from nfe_agil.cert.pfx_utils import pem_cert_tuple, pfx_key_and_cert_pem
from nfe_agil.logs import get_logger
from nfe_agil.proxy.sefaz_client import NS_NFE, SefazError, is_producao, tp_amb, post_soap, mtls_session
from nfe_agil.settings import settings

logger = get_logger("nfe.proxy")

NS_SOAP12 = "http://www.w3.org/2003/05/soap-envelope"
NS_WS_EV = "http://www.portalfiscal.inf.br/nfe/wsdl/NFeRecepcaoEvento4"
NS_DS = "http://www.w3.org/2000/09/xmldsig#"

DESC_EVENTO = {
    "210200": "Confirmacao da Operacao",
    "210210": "Ciencia da Operacao",
    "210220": "Desconhecimento da Operacao",
    "210240": "Operacao nao Realizada",
}

BRT = timezone(timedelta(hours=-3))

def event_url() -> str:
    return settings.EV_URL_PRODUCAO if is_producao() else settings.EV_URL_HOMOLOG

def _q(tag: str) -> str:
    return f"{{{NS_NFE}}}{tag}"

def build_manifest_xml(cnpj: str, ch_nfe: str, tp_evento: str, n_seq: int = 1,
                       justificativa: Optional[str] = None, now: Optional[datetime] = None) -> etree._Element:
    if tp_evento not in DESC_EVENTO:
        raise ValueError(f"tpEvento não suportado: {tp_evento}")
    env = etree.Element(_q("envEvento"), nsmap={None: NS_NFE}, versao="1.00")
    etree.SubElement(env, _q("idLote")).text = str(int(time.time()))
    evento = etree.SubElement(env, _q("evento"), versao="1.00")
    inf = etree.SubElement(evento, _q("infEvento"), Id=f"ID{tp_evento}{ch_nfe}{n_seq:02d}")
    # manifestação do destinatário é sempre registrada no Ambiente Nacional
    etree.SubElement(inf, _q("cOrgao")).text = "91"
    etree.SubElement(inf, _q("tpAmb")).text = tp_amb()
    etree.SubElement(inf, _q("CNPJ")).text = cnpj
    etree.SubElement(inf, _q("chNFe")).text = ch_nfe
    etree.SubElement(inf, _q("dhEvento")).text = (now or datetime.now(BRT)).astimezone(BRT).strftime("%Y-%m-%dT%H:%M:%S-03:00")
    etree.SubElement(inf, _q("tpEvento")).text = tp_evento
    etree.SubElement(inf, _q("nSeqEvento")).text = str(n_seq)
    etree.SubElement(inf, _q("verEvento")).text = "1.00"
    det = etree.SubElement(inf, _q("detEvento"), versao="1.00")
    etree.SubElement(det, _q("descEvento")).text = DESC_EVENTO[tp_evento]
    if justificativa and tp_evento == "210240":
        etree.SubElement(det, _q("xJust")).text = justificativa
    return env

def sign_evento(env_evento: etree._Element, key_pem: bytes, cert_pem: bytes) -> bytes:
    """Assinatura enveloped dentro de <evento>, referenciando o Id de <infEvento>."""
    signer = XMLSigner(
        method=methods.enveloped,
        signature_algorithm=SignatureMethod.RSA_SHA256,
        digest_algorithm=DigestAlgorithm.SHA256,
        c14n_algorithm=CanonicalizationMethod.CANONICAL_XML_1_0,
    )
    signer.namespaces = {None: NS_DS}
    evento = env_evento.find(f"{{{NS_NFE}}}evento")
    inf = evento.find(f"{{{NS_NFE}}}infEvento")
    signed = signer.sign(evento, key=key_pem, cert=cert_pem, reference_uri="#" + inf.get("Id"))
    env_evento.replace(evento, signed)
    return etree.tostring(env_evento, encoding="utf-8")

def build_soap(signed_xml: bytes) -> tuple[bytes, dict]:
    env = etree.Element(f"{{{NS_SOAP12}}}Envelope", nsmap={"soap12": NS_SOAP12})
    body = etree.SubElement(env, f"{{{NS_SOAP12}}}Body")
    dados = etree.SubElement(body, f"{{{NS_WS_EV}}}nfeDadosMsg", nsmap={None: NS_WS_EV})
    dados.append(etree.fromstring(signed_xml))
    action = f"{NS_WS_EV}/nfeRecepcaoEvento"
    headers = {"Content-Type": f'application/soap+xml; charset=utf-8; action="{action}"'}
    return etree.tostring(env, encoding="utf-8", xml_declaration=True), headers

def parse_evento_response(raw: bytes) -> dict:
    try:
        doc = etree.fromstring(raw)
    except etree.XMLSyntaxError as e:
        raise SefazError(f"Resposta SEFAZ não é XML: {e}") from e
    ns = {"nfe": NS_NFE}
    # cStat do evento (135/136) tem precedência sobre o do lote (128)
    c_stat = doc.find(".//nfe:retEvento/nfe:infEvento/nfe:cStat", ns)
    x_motivo = doc.find(".//nfe:retEvento/nfe:infEvento/nfe:xMotivo", ns)
    if c_stat is None:
        c_stat = doc.find(".//nfe:cStat", ns)
        x_motivo = doc.find(".//nfe:xMotivo", ns)
    return {
        "cStat": c_stat.text if c_stat is not None else None,
        "xMotivo": x_motivo.text if x_motivo is not None else None,
        "xml": raw.decode("utf-8", "ignore"),
    }

def enviar_manifestacao(session: requests.Session, cnpj: str, ch_nfe: str, tp_evento: str,
                        key_pem: bytes, cert_pem: bytes, url: Optional[str] = None) -> dict:
    signed = sign_evento(build_manifest_xml(cnpj, ch_nfe, tp_evento), key_pem, cert_pem)
    soap_xml, headers = build_soap(signed)
    logger.info(f"[Manifestacao] Enviando evento {tp_evento} para chave {ch_nfe} (CNPJ {cnpj})")
    res = parse_evento_response(post_soap(session, url or event_url(), soap_xml, headers))
    res["success"] = res["cStat"] in ("135", "136")
    return res

def manifestar(cnpj: str, ch_nfe: str, tp_evento: str, pfx: bytes, passphrase: Optional[str]) -> dict:
    key_pem, cert_pem = pfx_key_and_cert_pem(pfx, passphrase)
    with pem_cert_tuple(pfx, passphrase) as cert_tuple:
        with mtls_session(cert_tuple) as session:
            return enviar_manifestacao(session, cnpj, ch_nfe, tp_evento, key_pem, cert_pem)
