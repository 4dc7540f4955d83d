from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
import re
from lxml import etree

NS = {"nfe": "http://www.portalfiscal.inf.br/nfe"}

# Marcadores mínimos de um XML de NF-e (procNFe ou NFe avulsa)
NFE_ROOT_MARKERS = ("<nfeProc", "<NFe")

TP_EVENTO_CANCELAMENTO = "110111"

def looks_like_nfe(xml_text: str) -> bool:
    return bool(xml_text and xml_text.strip()) and any(m in xml_text for m in NFE_ROOT_MARKERS)

def parse_xml(xml: bytes | str):
    if isinstance(xml, str):
        xml = xml.encode("utf-8")
    parser = etree.XMLParser(resolve_entities=False, no_network=True, huge_tree=True)
    return etree.fromstring(xml, parser)

def _text(root, xpath: str) -> str | None:
    el = root.find(xpath, NS)
    if el is not None and el.text:
        return el.text.strip()
    return None

def _first(root, *xpaths: str) -> str | None:
    for xp in xpaths:
        v = _text(root, xp)
        if v:
            return v
    return None

def parse_datetime(value: str | None) -> datetime | None:
    """dhEmi (com offset) ou dEmi (só data) -> datetime UTC ingênuo."""
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(value)
    except ValueError:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt

def parse_decimal(value: str | None) -> Decimal:
    try:
        return Decimal(value) if value else Decimal("0")
    except InvalidOperation:
        return Decimal("0")

def extract_chave(root) -> str | None:
    ch = _first(root, ".//nfe:chNFe")
    if ch:
        return ch
    inf = root.find(".//nfe:infNFe", NS)
    if inf is not None and inf.get("Id"):
        return inf.get("Id").replace("NFe", "")
    return None

def extract_resumo(root) -> dict:
    """Campos de um resNFe (resumo entregue antes da ciência)."""
    return {
        "chave": extract_chave(root),
        "emitente": _first(root, ".//nfe:xNome"),
        "valor": parse_decimal(_first(root, ".//nfe:vNF")),
        "data_emissao": parse_datetime(_first(root, ".//nfe:dhEmi")),
        "c_sit_nfe": _first(root, ".//nfe:cSitNFe"),
    }

def extract_completa(root) -> dict:
    """Campos de um procNFe (NF-e autorizada completa)."""
    return {
        "chave": extract_chave(root),
        "numero": _first(root, ".//nfe:ide/nfe:nNF"),
        "emitente": _first(root, ".//nfe:emit/nfe:xNome"),
        "valor": parse_decimal(_first(root, ".//nfe:total/nfe:ICMSTot/nfe:vNF", ".//nfe:vNF")),
        "data_emissao": parse_datetime(_first(root, ".//nfe:ide/nfe:dhEmi", ".//nfe:ide/nfe:dEmi")),
        "uf_emitente": _first(root, ".//nfe:emit/nfe:enderEmit/nfe:UF"),
    }

def extract_evento(root) -> dict:
    return {"chave": _first(root, ".//nfe:chNFe"), "tp_evento": _first(root, ".//nfe:tpEvento")}

_NNF_RE = re.compile(r"<nNF>(\d+)</nNF>")

def nfe_number(xml_text: str) -> str:
    m = _NNF_RE.search(xml_text or "")
    return m.group(1) if m else "sem-numero"

def report_row(xml_text: str) -> dict:
    """Linha tabular do relatório XML. Levanta ValueError se não for NF-e."""
    if not looks_like_nfe(xml_text):
        raise ValueError("Arquivo não parece ser um XML de NF-e válido.")
    try:
        root = parse_xml(xml_text)
    except etree.XMLSyntaxError as e:
        raise ValueError(f"XML malformado: {e}") from e
    if root.find(".//nfe:infNFe", NS) is None:
        raise ValueError("infNFe não encontrado no XML.")
    tot = ".//nfe:total/nfe:ICMSTot/nfe:"
    return {
        "tipo": "Entrada" if _text(root, ".//nfe:ide/nfe:tpNF") == "0" else "Saída",
        "chave": extract_chave(root) or "",
        "numero": _text(root, ".//nfe:ide/nfe:nNF") or "",
        "serie": _text(root, ".//nfe:ide/nfe:serie") or "",
        "emissao": _first(root, ".//nfe:ide/nfe:dhEmi", ".//nfe:ide/nfe:dEmi") or "",
        "natOp": _text(root, ".//nfe:ide/nfe:natOp") or "",
        "emitCnpj": _first(root, ".//nfe:emit/nfe:CNPJ", ".//nfe:emit/nfe:CPF") or "",
        "emitNome": _text(root, ".//nfe:emit/nfe:xNome") or "",
        "emitUf": _text(root, ".//nfe:emit/nfe:enderEmit/nfe:UF") or "",
        "destCnpj": _first(root, ".//nfe:dest/nfe:CNPJ", ".//nfe:dest/nfe:CPF") or "",
        "destNome": _text(root, ".//nfe:dest/nfe:xNome") or "",
        "destUf": _text(root, ".//nfe:dest/nfe:enderDest/nfe:UF") or "",
        "valorProdutos": float(parse_decimal(_text(root, tot + "vProd"))),
        "valorNF": float(parse_decimal(_text(root, tot + "vNF"))),
        "valorICMS": float(parse_decimal(_text(root, tot + "vICMS"))),
        "valorPIS": float(parse_decimal(_text(root, tot + "vPIS"))),
        "valorCOFINS": float(parse_decimal(_text(root, tot + "vCOFINS"))),
        "valorIPI": float(parse_decimal(_text(root, tot + "vIPI"))),
        "valorFrete": float(parse_decimal(_text(root, tot + "vFrete"))),
        "valorDesconto": float(parse_decimal(_text(root, tot + "vDesc"))),
        "qtdItens": len(root.findall(".//nfe:det", NS)),
        "protocolo": _text(root, ".//nfe:protNFe/nfe:infProt/nfe:nProt") or "",
        "cancelada": _text(root, ".//nfe:protNFe/nfe:infProt/nfe:cStat") in ("101", "151"),
    }
