from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    APP_ENV: str = "dev"
    APP_DEBUG: bool = False
    DB_URL: str = "sqlite:///./nfe_agil.db"

    # Raiz do "blob storage" local; buckets são subpastas (xml/, danfes/, certificados/)
    STORAGE_BASE_PATH: str = "storage"

    # Micro-serviço SEFAZ (proxy SOAP)
    MICRO_SEFAZ_URL: str = "http://localhost:3001"
    MICRO_SEFAZ_TIMEOUT_SEC: int = 120

    # Segredos dos gatilhos internos. Vazio = endpoint sempre responde 401.
    INTERNAL_SYNC_SECRET: str | None = None
    CRON_SECRET: str | None = None

    # Bloqueio por consumo indevido (cStat 656)
    SEFAZ_BLOCK_COOLDOWN_MINUTES: int = 60

    JOB_INTERVAL_MINUTES: int = 1440

    # MeuDanfe (XML -> DANFE PDF)
    MEUDANFE_API_KEY: str | None = None
    MEUDANFE_URL: str = "https://api.meudanfe.com.br/v2/fd/convert/xml-to-da"
    MEUDANFE_TIMEOUT_SEC: int = 30
    DANFE_MIN_PDF_BYTES: int = 100

    # Conversor e download em lote
    MAX_FILES_PER_REQUEST: int = 50
    STARTER_MONTHLY_LIMIT: int = 50
    LOTE_LIMIT_XML: int = 500
    LOTE_LIMIT_PDF: int = 100
    RELATORIO_MAX_FILES: int = 100

    # Lista separada por vírgula
    MASTER_ADMIN_EMAILS: str = ""

    # 32 bytes em hex (64 chars) para AES-256-GCM da senha do certificado
    CERTIFICATE_ENCRYPTION_KEY: str | None = None

    # ---- Proxy SEFAZ (nfe_agil.proxy) ----
    NFE_AMBIENTE: str = "PRODUCAO"  # HOMOLOG|PRODUCAO
    CUF_AUTOR: str = "35"
    DIST_URL_PRODUCAO: str = "https://www1.nfe.fazenda.gov.br/NFeDistribuicaoDFe/NFeDistribuicaoDFe.asmx"
    DIST_URL_HOMOLOG: str = "https://hom1.nfe.fazenda.gov.br/NFeDistribuicaoDFe/NFeDistribuicaoDFe.asmx"
    EV_URL_PRODUCAO: str = "https://www1.nfe.fazenda.gov.br/NFeRecepcaoEvento4/NFeRecepcaoEvento4.asmx"
    EV_URL_HOMOLOG: str = "https://hom1.nfe.fazenda.gov.br/NFeRecepcaoEvento4/NFeRecepcaoEvento4.asmx"
    # Certificado padrão do proxy (usado quando a chamada não envia pfxBase64)
    PFX_PATH: str | None = None
    PFX_PASSWORD: str | None = None
    # Opcional: bundle de certificados raiz ICP-Brasil (para substituir certifi)
    SEFAZ_CA_BUNDLE: str | None = None
    SEFAZ_TIMEOUT_SEC: int = 30
    SEFAZ_MAX_ATTEMPTS: int = 3
    SEFAZ_RETRY_BASE_SEC: float = 1.5
    SEFAZ_MAX_LOOPS: int = 50

    class Config:
        env_file = ".env"

settings = Settings()
