# tests/test_batch.py
"""
Testes do conversor em lote (cota Starter) e do download em lote (Plano Pro).
"""
import io
import zipfile
from datetime import datetime

import pytest

from nfe_agil.core.batch import UploadedXml, convert_many, download_lote
from nfe_agil.core.quota import get_monthly_usage, increment_usage
from nfe_agil.errors import (
    BatchFailedError,
    BatchTooLargeError,
    EmptyBatchError,
    ForbiddenError,
    LimitReachedError,
    NotFoundError,
    PlanRequiredError,
    ValidationError,
)
from nfe_agil.models import NFe
from nfe_agil.settings import settings
from nfe_agil.store.blob import BUCKET_DANFES, BUCKET_XML, danfe_key, xml_key
from tests.conftest import FAKE_PDF, FakeConverter, subscribe
from tests.samples import chave, proc_nfe

USER = "user-1"


def _xml(n, numero=None):
    return UploadedXml(f"nota-{n}.xml", proc_nfe(chave(n), numero=numero or str(n)).encode("utf-8"))


def _names(data: bytes) -> list[str]:
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        return sorted(zf.namelist())


class TestConverter:

    def test_sem_plano(self, db, converter):
        with pytest.raises(PlanRequiredError):
            convert_many(db, USER, [_xml(1)], converter=converter)

    def test_lote_vazio(self, db, converter):
        subscribe(db, USER, "pro")
        with pytest.raises(EmptyBatchError):
            convert_many(db, USER, [], converter=converter)

    def test_lote_grande_demais(self, db, converter, monkeypatch):
        monkeypatch.setattr(settings, "MAX_FILES_PER_REQUEST", 2)
        subscribe(db, USER, "pro")
        with pytest.raises(BatchTooLargeError):
            convert_many(db, USER, [_xml(1), _xml(2), _xml(3)], converter=converter)

    def test_limite_starter_recusa_lote_inteiro(self, db, converter):
        subscribe(db, USER, "starter")
        increment_usage(db, USER, 48)

        with pytest.raises(LimitReachedError) as exc:
            convert_many(db, USER, [_xml(i) for i in range(5)], converter=converter)

        assert exc.value.extra == {"usage": 48, "limit": 50, "remaining": 2}
        assert exc.value.status_code == 429
        assert converter.calls == 0
        assert get_monthly_usage(db, USER) == 48

    def test_cota_consumida_apenas_pelos_sucessos(self, db, converter):
        subscribe(db, USER, "starter")
        files = [_xml(1), UploadedXml("lixo.xml", b"<nota>qualquer coisa</nota>"), _xml(2)]

        out = convert_many(db, USER, files, converter=converter)

        assert out.filename == "danfes.zip"
        assert out.media_type == "application/zip"
        assert out.headers == {"X-Converted-Count": "2", "X-Failed-Count": "1"}
        assert _names(out.content) == ["DANFE-1.pdf", "DANFE-2.pdf"]
        assert get_monthly_usage(db, USER) == 2

    def test_falha_do_conversor_conta_como_falha(self, db):
        subscribe(db, USER, "starter")
        conv = FakeConverter(fail_on=chave(2))

        out = convert_many(db, USER, [_xml(1), _xml(2)], converter=conv)

        assert out.headers["X-Failed-Count"] == "1"
        assert get_monthly_usage(db, USER) == 1

    def test_unico_sucesso_devolve_pdf(self, db, converter):
        subscribe(db, USER, "pro")
        out = convert_many(db, USER, [_xml(9, numero="4512")], converter=converter)

        assert out.filename == "DANFE-4512.pdf"
        assert out.media_type == "application/pdf"
        assert out.content == FAKE_PDF

    def test_nenhum_sucesso(self, db):
        subscribe(db, USER, "starter")
        conv = FakeConverter(fail_on="nfeProc")

        with pytest.raises(BatchFailedError) as exc:
            convert_many(db, USER, [_xml(1), UploadedXml("b.xml", b"")], converter=conv)

        assert exc.value.status_code == 422
        assert len(exc.value.extra["details"]) == 2
        assert get_monthly_usage(db, USER) == 0

    def test_pro_nao_consome_cota(self, db, converter):
        subscribe(db, USER, "pro")
        convert_many(db, USER, [_xml(1), _xml(2)], converter=converter)

        assert get_monthly_usage(db, USER) == 0

    def test_numeros_repetidos_geram_nomes_distintos(self, db, converter):
        subscribe(db, USER, "pro")
        out = convert_many(db, USER, [_xml(1, numero="100"), _xml(2, numero="100"), _xml(3, numero="100")],
                           converter=converter)

        assert out.headers["X-Converted-Count"] == "3"
        assert _names(out.content) == ["DANFE-100-2.pdf", "DANFE-100-3.pdf", "DANFE-100.pdf"]

    def test_arquivo_latin1(self, db, converter):
        subscribe(db, USER, "pro")
        raw = proc_nfe(chave(1), emitente="Comércio São João").encode("latin-1")

        out = convert_many(db, USER, [UploadedXml("latin.xml", raw)], converter=converter)

        assert out.headers["X-Converted-Count"] == "1"


def _nfe_armazenada(db, store, n, data_emissao, numero=None, user_id=USER):
    ch = chave(n)
    key = store.upload(BUCKET_XML, xml_key(user_id, ch), proc_nfe(ch, numero=numero or str(n)).encode())
    nfe = NFe(user_id=user_id, empresa_cnpj="12345678000199", chave=ch, numero=numero or str(n),
              data_emissao=data_emissao, status="xml_disponivel", xml_path=key)
    db.add(nfe)
    db.commit()
    return nfe


class TestDownloadLote:

    def test_tipo_invalido(self, db, store, converter):
        subscribe(db, USER, "pro")
        with pytest.raises(ValidationError):
            download_lote(db, USER, tipo="docx", converter=converter, store=store)

    def test_starter_nao_tem_acesso(self, db, store, converter):
        subscribe(db, USER, "starter")
        with pytest.raises(ForbiddenError):
            download_lote(db, USER, tipo="xml", converter=converter, store=store)

    def test_sem_notas(self, db, store, converter):
        subscribe(db, USER, "pro")
        with pytest.raises(NotFoundError):
            download_lote(db, USER, tipo="xml", converter=converter, store=store)

    def test_apenas_xml(self, db, store, converter):
        subscribe(db, USER, "pro")
        _nfe_armazenada(db, store, 1, datetime(2024, 3, 1, 12))
        _nfe_armazenada(db, store, 2, datetime(2024, 3, 2, 12))

        out = download_lote(db, USER, tipo="xml", converter=converter, store=store, now=datetime(2024, 3, 15))

        assert out.filename == "nfe-agil-xml-20240315.zip"
        assert _names(out.content) == sorted([f"{chave(1)}.xml", f"{chave(2)}.xml"])
        assert out.headers["X-Xml-Count"] == "2"
        assert out.headers["X-Pdf-Count"] == "0"
        assert converter.calls == 0

    def test_ambos_usa_cache_e_pastas(self, db, store, converter):
        subscribe(db, USER, "pro")
        a = _nfe_armazenada(db, store, 1, datetime(2024, 3, 1, 12), numero="10")
        _nfe_armazenada(db, store, 2, datetime(2024, 3, 2, 12), numero="20")
        store.upload(BUCKET_DANFES, danfe_key(USER, a.id), FAKE_PDF)

        out = download_lote(db, USER, tipo="ambos", converter=converter, store=store)

        assert _names(out.content) == sorted([
            f"xmls/{chave(1)}.xml", f"xmls/{chave(2)}.xml", "pdfs/danfe-10.pdf", "pdfs/danfe-20.pdf",
        ])
        assert converter.calls == 1
        assert out.headers["X-Pdf-Count"] == "2"
        assert out.headers["X-Total-Available"] == "2"

    def test_pdfs_com_mesmo_numero_nao_se_sobrescrevem(self, db, store, converter):
        subscribe(db, USER, "pro")
        _nfe_armazenada(db, store, 1, datetime(2024, 3, 1, 12), numero="100")
        _nfe_armazenada(db, store, 2, datetime(2024, 3, 2, 12), numero="100")

        out = download_lote(db, USER, tipo="pdf", converter=converter, store=store)

        assert _names(out.content) == ["danfe-100-2.pdf", "danfe-100.pdf"]
        assert out.headers["X-Pdf-Count"] == "2"

    def test_erro_de_pdf_nao_derruba_lote(self, db, store):
        subscribe(db, USER, "pro")
        _nfe_armazenada(db, store, 1, datetime(2024, 3, 1, 12))
        _nfe_armazenada(db, store, 2, datetime(2024, 3, 2, 12))
        conv = FakeConverter(fail_on=chave(2))

        out = download_lote(db, USER, tipo="pdf", converter=conv, store=store)

        assert out.headers["X-Pdf-Count"] == "1"
        assert out.headers["X-Pdf-Errors"] == "1"
        assert _names(out.content) == ["danfe-1.pdf"]

    def test_todos_os_pdfs_falham(self, db, store):
        subscribe(db, USER, "trial", status="trialing", trial_ends_at=datetime(2999, 1, 1))
        _nfe_armazenada(db, store, 1, datetime(2024, 3, 1, 12))

        with pytest.raises(BatchFailedError):
            download_lote(db, USER, tipo="pdf", converter=FakeConverter(fail_on="nfeProc"), store=store)

    def test_filtra_periodo(self, db, store, converter):
        subscribe(db, USER, "pro")
        _nfe_armazenada(db, store, 1, datetime(2024, 2, 10, 15))
        _nfe_armazenada(db, store, 2, datetime(2024, 3, 10, 15))

        out = download_lote(db, USER, tipo="xml", period="mes_passado", converter=converter, store=store,
                            now=datetime(2024, 3, 15, 12))

        assert _names(out.content) == [f"{chave(1)}.xml"]
        assert out.headers["X-Total-Available"] == "1"

    def test_limite_de_pdfs(self, db, store, converter, monkeypatch):
        monkeypatch.setattr(settings, "LOTE_LIMIT_PDF", 1)
        subscribe(db, USER, "pro")
        _nfe_armazenada(db, store, 1, datetime(2024, 3, 1, 12))
        _nfe_armazenada(db, store, 2, datetime(2024, 3, 2, 12))

        out = download_lote(db, USER, tipo="pdf", converter=converter, store=store)

        assert _names(out.content) == ["danfe-2.pdf"]

    def test_isolamento_entre_tenants(self, db, store, converter):
        subscribe(db, USER, "pro")
        _nfe_armazenada(db, store, 1, datetime(2024, 3, 1, 12), user_id="user-2")

        with pytest.raises(NotFoundError):
            download_lote(db, USER, tipo="xml", converter=converter, store=store)
