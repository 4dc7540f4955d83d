from sqlalchemy.orm import declarative_base, Mapped, mapped_column
from sqlalchemy import String, Integer, BigInteger, Boolean, DateTime, Text, ForeignKey, Index, Numeric, UniqueConstraint
from datetime import datetime

Base = declarative_base()

# Situação do documento no painel
STATUS_XML_DISPONIVEL = "xml_disponivel"
STATUS_XML_PENDENTE = "xml_pendente"
STATUS_CANCELADA = "cancelada"
STATUS_DENEGADA = "denegada"

MANIFESTACAO_NAO_INFORMADA = "nao_informada"

class Empresa(Base):
    __tablename__ = "empresas"
    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    cnpj: Mapped[str] = mapped_column(String(14), index=True)
    razao_social: Mapped[str] = mapped_column(String(200), default="")
    ambiente: Mapped[str] = mapped_column(String(12), default="producao")  # producao|homologacao
    ativo: Mapped[bool] = mapped_column(Boolean, default=True)

    __table_args__ = (UniqueConstraint("user_id", "cnpj", name="uq_empresa_user_cnpj"),)

class Certificado(Base):
    __tablename__ = "certificados"
    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    empresa_cnpj: Mapped[str] = mapped_column(String(14))
    arquivo_path: Mapped[str] = mapped_column(Text)            # chave do .pfx no bucket certificados
    senha_cifrada: Mapped[str] = mapped_column(Text)           # iv:tag:ciphertext (AES-256-GCM)
    status: Mapped[str] = mapped_column(String(10), default="ativo")  # ativo|expirado|revogado
    valido_ate: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

class SyncState(Base):
    __tablename__ = "nfe_sync_state"
    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64))
    empresa_cnpj: Mapped[str] = mapped_column(String(14))
    ultimo_nsu: Mapped[int] = mapped_column(BigInteger, default=0)
    ultima_sync: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    ultimo_cstat: Mapped[str | None] = mapped_column(String(6), nullable=True)
    blocked_until: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    total_importadas: Mapped[int] = mapped_column(Integer, default=0)

    __table_args__ = (UniqueConstraint("user_id", "empresa_cnpj", name="uq_sync_state_user_cnpj"),)

class NFe(Base):
    __tablename__ = "nfes"
    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    empresa_cnpj: Mapped[str] = mapped_column(String(14))
    chave: Mapped[str] = mapped_column(String(44), unique=True)
    nsu: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    numero: Mapped[str | None] = mapped_column(String(20), nullable=True)
    emitente: Mapped[str | None] = mapped_column(String(200), nullable=True)
    valor: Mapped[float] = mapped_column(Numeric(15, 2), default=0)
    data_emissao: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=STATUS_XML_PENDENTE)
    schema_tipo: Mapped[str | None] = mapped_column(String(20), nullable=True)  # resNFe|procNFe
    uf_emitente: Mapped[str | None] = mapped_column(String(2), nullable=True)
    xml_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Manifestação do destinatário
    manifestacao: Mapped[str] = mapped_column(String(20), default=MANIFESTACAO_NAO_INFORMADA)
    data_manifestacao: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

class Plan(Base):
    __tablename__ = "plans"
    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(60))
    slug: Mapped[str] = mapped_column(String(20), unique=True)  # starter|pro
    price: Mapped[float] = mapped_column(Numeric(10, 2), default=0)

class Subscription(Base):
    __tablename__ = "subscriptions"
    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    plan_id: Mapped[int | None] = mapped_column(ForeignKey("plans.id"), nullable=True)
    status: Mapped[str] = mapped_column(String(12))  # trialing|active|past_due|canceled|expired
    is_lifetime: Mapped[bool] = mapped_column(Boolean, default=False)
    trial_ends_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    current_period_end: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

class ConversionUsage(Base):
    __tablename__ = "conversion_usage"
    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64))
    month_year: Mapped[str] = mapped_column(String(7))  # YYYY-MM
    count: Mapped[int] = mapped_column(Integer, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (UniqueConstraint("user_id", "month_year", name="uq_usage_user_month"),)

class CronLog(Base):
    __tablename__ = "cron_logs"
    id: Mapped[int] = mapped_column(primary_key=True)
    executed_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    duration: Mapped[str] = mapped_column(String(20))
    processed_count: Mapped[int] = mapped_column(Integer, default=0)
    status: Mapped[str] = mapped_column(String(20))  # success|partial|error
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    errors: Mapped[str | None] = mapped_column(Text, nullable=True)  # JSON
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    empresa_cnpj: Mapped[str | None] = mapped_column(String(14), nullable=True)

class Notification(Base):
    __tablename__ = "notifications"
    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    title: Mapped[str] = mapped_column(String(120))
    message: Mapped[str] = mapped_column(Text)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False)
    link: Mapped[str | None] = mapped_column(String(200), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

Index("ix_nfes_user_emissao", NFe.user_id, NFe.data_emissao)
