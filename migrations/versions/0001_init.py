"""init"""
from alembic import op
import sqlalchemy as sa
revision = "0001_init"; down_revision = None; branch_labels=None; depends_on=None

def upgrade():
    op.create_table("empresas",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False, index=True),
        sa.Column("cnpj", sa.String(14), nullable=False, index=True),
        sa.Column("razao_social", sa.String(200), nullable=False, server_default=""),
        sa.Column("ambiente", sa.String(12), nullable=False, server_default="producao"),
        sa.Column("ativo", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.UniqueConstraint("user_id", "cnpj", name="uq_empresa_user_cnpj"),
    )
    op.create_table("certificados",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False, index=True),
        sa.Column("empresa_cnpj", sa.String(14), nullable=False),
        sa.Column("arquivo_path", sa.Text, nullable=False),
        sa.Column("senha_cifrada", sa.Text, nullable=False),
        sa.Column("status", sa.String(10), nullable=False, server_default="ativo"),
        sa.Column("valido_ate", sa.DateTime),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_table("nfe_sync_state",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("empresa_cnpj", sa.String(14), nullable=False),
        sa.Column("ultimo_nsu", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("ultima_sync", sa.DateTime),
        sa.Column("ultimo_cstat", sa.String(6)),
        sa.Column("blocked_until", sa.DateTime),
        sa.Column("total_importadas", sa.Integer, nullable=False, server_default="0"),
        sa.UniqueConstraint("user_id", "empresa_cnpj", name="uq_sync_state_user_cnpj"),
    )
    op.create_table("nfes",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False, index=True),
        sa.Column("empresa_cnpj", sa.String(14), nullable=False),
        sa.Column("chave", sa.String(44), nullable=False, unique=True),
        sa.Column("nsu", sa.BigInteger),
        sa.Column("numero", sa.String(20)),
        sa.Column("emitente", sa.String(200)),
        sa.Column("valor", sa.Numeric(15, 2), nullable=False, server_default="0"),
        sa.Column("data_emissao", sa.DateTime),
        sa.Column("status", sa.String(20), nullable=False, server_default="xml_pendente"),
        sa.Column("schema_tipo", sa.String(20)),
        sa.Column("uf_emitente", sa.String(2)),
        sa.Column("xml_path", sa.Text),
        sa.Column("manifestacao", sa.String(20), nullable=False, server_default="nao_informada"),
        sa.Column("data_manifestacao", sa.DateTime),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_nfes_user_emissao", "nfes", ["user_id", "data_emissao"])
    op.create_table("plans",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("name", sa.String(60), nullable=False),
        sa.Column("slug", sa.String(20), nullable=False, unique=True),
        sa.Column("price", sa.Numeric(10, 2), nullable=False, server_default="0"),
    )
    op.create_table("subscriptions",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False, index=True),
        sa.Column("plan_id", sa.Integer, sa.ForeignKey("plans.id")),
        sa.Column("status", sa.String(12), nullable=False),
        sa.Column("is_lifetime", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("trial_ends_at", sa.DateTime),
        sa.Column("current_period_end", sa.DateTime),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_table("conversion_usage",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("month_year", sa.String(7), nullable=False),
        sa.Column("count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("user_id", "month_year", name="uq_usage_user_month"),
    )
    op.create_table("cron_logs",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("executed_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("duration", sa.String(20), nullable=False),
        sa.Column("processed_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("message", sa.Text),
        sa.Column("errors", sa.Text),
        sa.Column("user_id", sa.String(64)),
        sa.Column("empresa_cnpj", sa.String(14)),
    )
    op.create_table("notifications",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False, index=True),
        sa.Column("title", sa.String(120), nullable=False),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("is_read", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("link", sa.String(200)),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.bulk_insert(
        sa.table("plans", sa.column("name", sa.String), sa.column("slug", sa.String), sa.column("price", sa.Numeric)),
        [{"name": "Starter", "slug": "starter", "price": 29.90}, {"name": "Pro", "slug": "pro", "price": 79.90}],
    )

def downgrade():
    op.drop_table("notifications")
    op.drop_table("cron_logs")
    op.drop_table("conversion_usage")
    op.drop_table("subscriptions")
    op.drop_table("plans")
    op.drop_index("ix_nfes_user_emissao", table_name="nfes")
    op.drop_table("nfes")
    op.drop_table("nfe_sync_state")
    op.drop_table("certificados")
    op.drop_table("empresas")
