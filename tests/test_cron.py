# tests/test_cron.py
"""
Testes da rotina diária multi-tenant e da autenticação dos gatilhos internos.
"""
import json
from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from nfe_agil.core.cron import run_daily_sync, verify_cron_bearer, verify_internal_secret
from nfe_agil.core.sefaz_sync import SyncResult
from nfe_agil.errors import UnauthorizedError
from nfe_agil.models import CronLog, NFe, SyncState
from nfe_agil.ws.sefaz_proxy import DistResult, DocDFe
from tests.conftest import FakeProxy, add_empresa
from tests.samples import SCHEMA_RES, chave, res_nfe

NOW = datetime(2024, 3, 15, 6, 0, 0)


class TestSegredos:

    def test_segredo_interno_correto(self):
        verify_internal_secret("interno-123")

    @pytest.mark.parametrize("header", [None, "", "errado", "interno-1234"])
    def test_segredo_interno_invalido(self, header):
        with pytest.raises(UnauthorizedError):
            verify_internal_secret(header)

    def test_segredo_nao_configurado_sempre_recusa(self):
        with pytest.raises(UnauthorizedError):
            verify_internal_secret("", secret="")
        with pytest.raises(UnauthorizedError):
            verify_internal_secret("qualquer", secret="")

    def test_bearer_correto(self):
        verify_cron_bearer("Bearer cron-456")

    @pytest.mark.parametrize("header", [None, "cron-456", "Bearer ", "Bearer outro", "Basic cron-456"])
    def test_bearer_invalido(self, header):
        with pytest.raises(UnauthorizedError):
            verify_cron_bearer(header)


def _ok(importadas=0, ult=1):
    return SyncResult(True, importadas=importadas, ult_nsu=ult, cstat="138" if importadas else "137")


class TestRotinaDiaria:

    def test_sem_empresas(self, db):
        out = run_daily_sync(db, sync=lambda *a, **k: _ok(), now=NOW)

        assert out["status"] == "success"
        assert out["empresasProcessadas"] == 0
        assert db.execute(select(CronLog)).scalar_one().status == "success"

    def test_todas_com_sucesso(self, db):
        add_empresa(db, "user-1", "11111111000111")
        add_empresa(db, "user-2", "22222222000122")
        vistos = []

        def sync(db_, user_id, cnpj, **kwargs):
            vistos.append((user_id, cnpj))
            return _ok(importadas=3)

        out = run_daily_sync(db, sync=sync, now=NOW)

        assert vistos == [("user-1", "11111111000111"), ("user-2", "22222222000122")]
        assert out["status"] == "success"
        assert out["totalProcessed"] == 6
        log = db.execute(select(CronLog)).scalar_one()
        assert log.processed_count == 6
        assert log.errors is None
        assert log.duration.endswith("s")

    def test_falha_de_um_tenant_nao_interrompe(self, db):
        add_empresa(db, "user-1", "11111111000111")
        add_empresa(db, "user-2", "22222222000122")
        add_empresa(db, "user-3", "33333333000133")

        def sync(db_, user_id, cnpj, **kwargs):
            if user_id == "user-1":
                raise RuntimeError("certificado corrompido")
            if user_id == "user-2":
                return SyncResult(False, error="SEFAZ: 589 - NSU inválido", cstat="589")
            return _ok(importadas=2)

        out = run_daily_sync(db, sync=sync, now=NOW)

        assert out["status"] == "partial"
        assert out["success"] is True
        assert [r["status"] for r in out["results"]] == ["error", "error", "success"]
        log = db.execute(select(CronLog)).scalar_one()
        assert log.status == "partial"
        erros = json.loads(log.errors)
        assert {e["cnpj"] for e in erros} == {"11111111000111", "22222222000122"}

    def test_todas_falham(self, db):
        add_empresa(db, "user-1", "11111111000111")

        def sync(*a, **k):
            raise RuntimeError("boom")

        out = run_daily_sync(db, sync=sync, now=NOW)

        assert out["status"] == "error"
        assert out["success"] is False

    def test_empresa_inativa_ignorada(self, db):
        add_empresa(db, "user-1", "11111111000111", ativo=False)
        chamadas = []
        run_daily_sync(db, sync=lambda *a, **k: chamadas.append(a) or _ok(), now=NOW)

        assert chamadas == []

    def test_bloqueada_656_e_pulada(self, db):
        add_empresa(db, "user-1", "11111111000111")
        add_empresa(db, "user-2", "22222222000122")
        db.add(SyncState(user_id="user-1", empresa_cnpj="11111111000111", ultimo_nsu=5, total_importadas=0,
                         blocked_until=NOW + timedelta(minutes=30), ultimo_cstat="656"))
        db.commit()
        chamadas = []

        def sync(db_, user_id, cnpj, **kwargs):
            chamadas.append(user_id)
            return _ok()

        out = run_daily_sync(db, sync=sync, now=NOW)

        assert chamadas == ["user-2"]
        assert out["results"][0]["status"] == "blocked_656"
        assert out["status"] == "success"

    def test_bloqueio_expirado_volta_a_sincronizar(self, db):
        add_empresa(db, "user-1", "11111111000111")
        db.add(SyncState(user_id="user-1", empresa_cnpj="11111111000111", ultimo_nsu=5, total_importadas=0,
                         blocked_until=NOW - timedelta(minutes=1), ultimo_cstat="656"))
        db.commit()
        chamadas = []
        run_daily_sync(db, sync=lambda d, u, c, **k: chamadas.append(u) or _ok(), now=NOW)

        assert chamadas == ["user-1"]

    def test_656_durante_a_rotina(self, db):
        add_empresa(db, "user-1", "11111111000111")
        bloqueio = NOW + timedelta(hours=1)

        out = run_daily_sync(
            db, sync=lambda *a, **k: SyncResult(False, cstat="656", error="SEFAZ: 656", blocked_until=bloqueio), now=NOW
        )

        assert out["results"][0]["status"] == "blocked_656"
        assert out["results"][0]["blockedUntil"] == bloqueio.isoformat()
        assert out["status"] == "success"

    def test_integra_com_motor_real(self, db, store, channel, fake_credentials):
        add_empresa(db, "user-1", "11111111000111")
        add_empresa(db, "user-2", "22222222000122")
        proxy = FakeProxy(
            DistResult("138", "ok", 1, 1, [DocDFe(1, SCHEMA_RES, res_nfe(chave(1)))]),
            DistResult("138", "ok", 1, 1, [DocDFe(1, SCHEMA_RES, res_nfe(chave(2)))]),
        )

        out = run_daily_sync(db, now=NOW, client=proxy, channel=channel, store=store)

        assert out["status"] == "success"
        assert out["totalProcessed"] == 2
        donos = {n.chave: n.user_id for n in db.execute(select(NFe)).scalars()}
        assert donos == {chave(1): "user-1", chave(2): "user-2"}
