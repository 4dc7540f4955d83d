# tests/conftest.py
"""
Fixtures compartilhadas: banco SQLite em memória, storage em diretório
temporário e dublês do micro-serviço SEFAZ e do conversor de DANFE.
"""
from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from nfe_agil.api import deps
from nfe_agil.api.main import app
from nfe_agil.cert.credentials import Credentials
from nfe_agil.core.notifications import NotificationChannel
from nfe_agil.errors import NfeAgilError
from nfe_agil.models import Base, Empresa, Plan, Subscription
from nfe_agil.settings import settings
from nfe_agil.store.blob import BlobStore
from nfe_agil.store.db import get_db
from nfe_agil.ws.danfe_client import DanfeResult
from nfe_agil.ws.sefaz_proxy import DistResult

TEST_KEY = "0f" * 32
FAKE_PDF = b"%PDF-1.4\n" + b"0" * 256


@pytest.fixture(autouse=True)
def _settings(monkeypatch):
    monkeypatch.setattr(settings, "CERTIFICATE_ENCRYPTION_KEY", TEST_KEY)
    monkeypatch.setattr(settings, "INTERNAL_SYNC_SECRET", "interno-123")
    monkeypatch.setattr(settings, "CRON_SECRET", "cron-456")
    monkeypatch.setattr(settings, "MASTER_ADMIN_EMAILS", "admin@nfeagil.com.br")
    monkeypatch.setattr(settings, "SEFAZ_BLOCK_COOLDOWN_MINUTES", 60)
    monkeypatch.setattr(settings, "STARTER_MONTHLY_LIMIT", 50)
    monkeypatch.setattr(settings, "MAX_FILES_PER_REQUEST", 50)


@pytest.fixture
def db():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    with Session() as session:
        yield session
    engine.dispose()


@pytest.fixture
def store(tmp_path):
    return BlobStore(str(tmp_path / "storage"))


@pytest.fixture
def channel():
    return NotificationChannel()


class FakeProxy:
    """Dublê do SefazProxyClient: devolve as respostas na ordem (a última se repete)."""

    def __init__(self, *results, status=None, manifest=None):
        self.results = list(results) or [DistResult("137", "Nenhum documento localizado", 0, 0)]
        self.calls = []
        self.status_payload = status if status is not None else {"valid": True, "environment": "production"}
        self.manifest_payload = manifest if manifest is not None else {"cStat": "135", "xMotivo": "Evento registrado"}
        self.manifest_calls = []

    def distdfe(self, cnpj, ult_nsu, credentials=None):
        self.calls.append((cnpj, ult_nsu))
        res = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(res, Exception):
            raise res
        return res

    def status(self):
        if isinstance(self.status_payload, Exception):
            raise self.status_payload
        return self.status_payload

    def manifestar(self, cnpj, chave, tp_evento, credentials):
        self.manifest_calls.append((cnpj, chave, tp_evento))
        return self.manifest_payload


class FakeConverter:
    def __init__(self, fail_on=None):
        self.calls = 0
        self.fail_on = fail_on

    def __call__(self, xml: str) -> DanfeResult:
        self.calls += 1
        if self.fail_on and self.fail_on in xml:
            raise NfeAgilError("falha simulada na conversão")
        return DanfeResult(FAKE_PDF, len(FAKE_PDF))


@pytest.fixture
def proxy():
    return FakeProxy()


@pytest.fixture
def converter():
    return FakeConverter()


@pytest.fixture
def fake_credentials(monkeypatch):
    creds = Credentials(pfx=b"pfx-fake", passphrase="senha")
    monkeypatch.setattr("nfe_agil.core.sefaz_sync.load_credentials", lambda *a, **k: creds)
    monkeypatch.setattr("nfe_agil.core.documents.load_credentials", lambda *a, **k: creds)
    return creds


def add_empresa(db, user_id="user-1", cnpj="12345678000199", razao="Empresa Teste", ativo=True):
    emp = Empresa(user_id=user_id, cnpj=cnpj, razao_social=razao, ambiente="producao", ativo=ativo)
    db.add(emp)
    db.commit()
    return emp


def subscribe(db, user_id="user-1", slug="pro", status="active", lifetime=False, trial_ends_at=None):
    plan = None
    if slug in ("starter", "pro"):
        plan = db.query(Plan).filter_by(slug=slug).one_or_none()
        if plan is None:
            plan = Plan(name=slug.title(), slug=slug, price=0)
            db.add(plan)
            db.flush()
    sub = Subscription(user_id=user_id, plan_id=plan.id if plan else None, status=status,
                       is_lifetime=lifetime, trial_ends_at=trial_ends_at, created_at=datetime.utcnow())
    db.add(sub)
    db.commit()
    return sub


@pytest.fixture
def client(db, store, proxy, converter, channel):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[deps.get_store] = lambda: store
    app.dependency_overrides[deps.get_proxy_client] = lambda: proxy
    app.dependency_overrides[deps.get_converter] = lambda: converter
    app.dependency_overrides[deps.get_channel] = lambda: channel
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
