# tests/test_proxy.py
"""
Testes do micro-serviço SEFAZ: envelope DistDFe, docZip, repetição HTTP,
laço de distribuição e evento de manifestação assinado.
"""
import base64
import gzip
import zlib
from unittest.mock import MagicMock

import pytest
import requests
from lxml import etree

from nfe_agil.proxy import manifestacao, sefaz_client
from nfe_agil.proxy.sefaz_client import (
    SefazError,
    build_dist_envelope,
    distribuir,
    ensure_nsu15,
    inflate_doczip,
    parse_dist_response,
    post_soap,
)
from nfe_agil.settings import settings
from tests.samples import chave, make_key_and_cert_pem, res_nfe

NS = "http://www.portalfiscal.inf.br/nfe"
NS_DS = "http://www.w3.org/2000/09/xmldsig#"


@pytest.fixture(autouse=True)
def _sem_espera(monkeypatch):
    esperas = []
    monkeypatch.setattr(sefaz_client, "_sleep", esperas.append)
    return esperas


def _doczip(xml: str) -> str:
    return base64.b64encode(gzip.compress(xml.encode("utf-8"))).decode()


def _ret(cstat="138", ult="000000000000005", max_nsu="000000000000010", docs=()):
    zips = "".join(f'<docZip NSU="{nsu}" schema="resNFe_v1.01.xsd">{z}</docZip>' for nsu, z in docs)
    return (
        '<soap:Envelope xmlns:soap="http://schemas.xmlsoap.org/soap/envelope/"><soap:Body>'
        '<nfeDistDFeInteresseResponse xmlns="http://www.portalfiscal.inf.br/nfe/wsdl/NFeDistribuicaoDFe">'
        f'<nfeDistDFeInteresseResult><retDistDFeInt xmlns="{NS}" versao="1.01">'
        f"<tpAmb>1</tpAmb><cStat>{cstat}</cStat><xMotivo>Documento localizado</xMotivo>"
        f"<ultNSU>{ult}</ultNSU><maxNSU>{max_nsu}</maxNSU><loteDistDFeInt>{zips}</loteDistDFeInt>"
        "</retDistDFeInt></nfeDistDFeInteresseResult></nfeDistDFeInteresseResponse></soap:Body></soap:Envelope>"
    ).encode()


def _resp(status=200, content=b""):
    r = MagicMock()
    r.status_code = status
    r.content = content
    r.text = content.decode("utf-8", "ignore")
    return r


class TestEnvelope:

    def test_nsu_com_15_digitos(self):
        assert ensure_nsu15(42) == "000000000000042"
        assert ensure_nsu15("000000000000042") == "000000000000042"
        assert ensure_nsu15(None) == "000000000000000"

    def test_envelope(self, monkeypatch):
        monkeypatch.setattr(settings, "NFE_AMBIENTE", "HOMOLOG")
        monkeypatch.setattr(settings, "CUF_AUTOR", "35")
        env = etree.fromstring(build_dist_envelope("12.345.678/0001-99", 7))

        assert env.findtext(f".//{{{NS}}}tpAmb") == "2"
        assert env.findtext(f".//{{{NS}}}cUFAutor") == "35"
        assert env.findtext(f".//{{{NS}}}CNPJ") == "12345678000199"
        assert env.findtext(f".//{{{NS}}}ultNSU") == "000000000000007"


class TestDocZip:

    @pytest.mark.parametrize("comprimir", [
        gzip.compress,
        zlib.compress,
        lambda b: zlib.compress(b)[2:-4],
    ])
    def test_formatos_aceitos(self, comprimir):
        xml = res_nfe(chave(1)).encode()
        assert inflate_doczip(base64.b64encode(comprimir(xml)).decode()) == xml

    def test_resposta_com_documentos(self):
        out = parse_dist_response(_ret(docs=[("000000000000004", _doczip(res_nfe(chave(1)))),
                                             ("000000000000005", base64.b64encode(b"lixo").decode())]))

        assert out["cStat"] == "138"
        assert out["ultNSU"] == "000000000000005"
        assert len(out["documentos"]) == 1
        assert out["documentos"][0]["nsu"] == "000000000000004"
        assert out["documentos"][0]["schema"] == "resNFe_v1.01.xsd"
        assert chave(1) in out["documentos"][0]["xml"]

    def test_resposta_invalida(self):
        with pytest.raises(SefazError):
            parse_dist_response(b"<html>manutencao</html")
        with pytest.raises(SefazError):
            parse_dist_response(b"<ok/>")


class TestRepeticao:

    def test_5xx_repete_e_recupera(self, _sem_espera, monkeypatch):
        monkeypatch.setattr(settings, "SEFAZ_RETRY_BASE_SEC", 1.5)
        session = MagicMock()
        session.post.side_effect = [_resp(503), _resp(500), _resp(200, b"<ok/>")]

        assert post_soap(session, "https://sefaz.test", b"x", {}, max_attempts=3) == b"<ok/>"
        assert session.post.call_count == 3
        assert _sem_espera == [1.5, 3.0]

    def test_4xx_nao_repete(self):
        session = MagicMock()
        session.post.return_value = _resp(403, b"Forbidden")

        with pytest.raises(SefazError):
            post_soap(session, "https://sefaz.test", b"x", {}, max_attempts=3)
        assert session.post.call_count == 1

    def test_falha_de_transporte_esgota_tentativas(self):
        session = MagicMock()
        session.post.side_effect = requests.ConnectionError("TLS handshake")

        with pytest.raises(SefazError) as exc:
            post_soap(session, "https://sefaz.test", b"x", {}, max_attempts=2)
        assert "2 tentativa" in exc.value.message
        assert session.post.call_count == 2


class TestDistribuicao:

    def test_laco_ate_alcancar_max_nsu(self):
        session = MagicMock()
        session.post.side_effect = [
            _resp(200, _ret(ult="000000000000005", max_nsu="000000000000010",
                            docs=[("000000000000005", _doczip(res_nfe(chave(1))))])),
            _resp(200, _ret(ult="000000000000010", max_nsu="000000000000010",
                            docs=[("000000000000010", _doczip(res_nfe(chave(2))))])),
        ]

        out = distribuir(session, "12345678000199", 0, url="https://sefaz.test")

        assert session.post.call_count == 2
        assert out["cStat"] == "138"
        assert out["ultNSU"] == "000000000000010"
        assert len(out["documentos"]) == 2
        segundo_envelope = session.post.call_args_list[1].kwargs["data"]
        assert b"<ultNSU>000000000000005</ultNSU>" in segundo_envelope

    def test_137_encerra(self):
        session = MagicMock()
        session.post.return_value = _resp(200, _ret(cstat="137", ult="000000000000009", max_nsu="000000000000009"))

        out = distribuir(session, "12345678000199", 9, url="https://sefaz.test")

        assert session.post.call_count == 1
        assert out["cStat"] == "137"
        assert out["documentos"] == []

    def test_656_encerra_sem_avancar(self):
        session = MagicMock()
        session.post.return_value = _resp(200, _ret(cstat="656", ult="000000000000000", max_nsu="000000000000000"))

        out = distribuir(session, "12345678000199", 3, url="https://sefaz.test")

        assert out["cStat"] == "656"
        assert out["ultNSU"] == "000000000000003"

    def test_limite_de_lacos(self):
        session = MagicMock()
        session.post.return_value = _resp(200, _ret(ult="000000000000005", max_nsu="000000000000999"))

        distribuir(session, "12345678000199", 0, url="https://sefaz.test", max_loops=3)

        assert session.post.call_count == 3


class TestManifestacao:

    def test_evento_montado(self):
        env = manifestacao.build_manifest_xml("12345678000199", chave(1), "210210")
        inf = env.find(f"{{{NS}}}evento/{{{NS}}}infEvento")

        assert inf.get("Id") == f"ID210210{chave(1)}01"
        assert inf.findtext(f"{{{NS}}}cOrgao") == "91"
        assert inf.findtext(f"{{{NS}}}detEvento/{{{NS}}}descEvento") == "Ciencia da Operacao"

    def test_evento_nao_suportado(self):
        with pytest.raises(ValueError):
            manifestacao.build_manifest_xml("12345678000199", chave(1), "110111")

    def test_assinatura_enveloped(self):
        key_pem, cert_pem = make_key_and_cert_pem()
        env = manifestacao.build_manifest_xml("12345678000199", chave(1), "210200")

        signed = etree.fromstring(manifestacao.sign_evento(env, key_pem, cert_pem))

        sig = signed.find(f"{{{NS}}}evento/{{{NS_DS}}}Signature")
        assert sig is not None
        ref = sig.find(f"{{{NS_DS}}}SignedInfo/{{{NS_DS}}}Reference")
        assert ref.get("URI") == f"#ID210200{chave(1)}01"

    def test_cstat_do_evento_prevalece(self):
        raw = (
            f'<retEnvEvento xmlns="{NS}"><cStat>128</cStat><xMotivo>Lote processado</xMotivo>'
            f"<retEvento><infEvento><cStat>135</cStat><xMotivo>Evento registrado</xMotivo></infEvento></retEvento>"
            f"</retEnvEvento>"
        ).encode()
        out = manifestacao.parse_evento_response(raw)

        assert out["cStat"] == "135"
        assert out["xMotivo"] == "Evento registrado"

    def test_envio_completo(self):
        key_pem, cert_pem = make_key_and_cert_pem()
        session = MagicMock()
        session.post.return_value = _resp(200, (
            f'<retEnvEvento xmlns="{NS}"><cStat>128</cStat><retEvento><infEvento>'
            f"<cStat>573</cStat><xMotivo>Duplicidade de evento</xMotivo></infEvento></retEvento></retEnvEvento>"
        ).encode())

        out = manifestacao.enviar_manifestacao(session, "12345678000199", chave(1), "210210",
                                               key_pem, cert_pem, url="https://sefaz.test/evento")

        assert out["success"] is False
        assert out["cStat"] == "573"
        kwargs = session.post.call_args.kwargs
        assert "application/soap+xml" in kwargs["headers"]["Content-Type"]
        assert b"Signature" in kwargs["data"]
