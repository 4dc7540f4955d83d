import base64
from dataclasses import dataclass
from datetime import datetime, timezone
from sqlalchemy import select, update
from sqlalchemy.orm import Session
from nfe_agil.cert.crypto import decrypt, encrypt
from nfe_agil.cert.pfx_utils import pfx_certificate_info, pfx_extract_cnpj_cpf
from nfe_agil.errors import CertificateError, NfeAgilError
from nfe_agil.models import Certificado
from nfe_agil.store.blob import BlobStore, BUCKET_CERTIFICADOS

@dataclass
class Credentials:
    pfx: bytes
    passphrase: str

    def as_payload(self) -> dict:
        return {"pfxBase64": base64.b64encode(self.pfx).decode("ascii"), "passphrase": self.passphrase}

def load_credentials(db: Session, user_id: str, cnpj: str, store: BlobStore | None = None) -> Credentials:
    """Certificado A1 ativo do tenant: PFX do storage + senha decifrada."""
    store = store or BlobStore()
    cert = db.execute(
        select(Certificado)
        .where(Certificado.user_id == user_id, Certificado.empresa_cnpj == cnpj, Certificado.status == "ativo")
        .order_by(Certificado.created_at.desc())
        .limit(1)
    ).scalar_one_or_none()
    if not cert:
        raise CertificateError(f"Nenhum certificado ativo para CNPJ {cnpj}")
    pfx = store.download(BUCKET_CERTIFICADOS, cert.arquivo_path)
    if not pfx:
        raise CertificateError(f"Arquivo do certificado não encontrado: {cert.arquivo_path}")
    try:
        passphrase = decrypt(cert.senha_cifrada)
    except NfeAgilError:
        raise
    except ValueError as e:
        raise CertificateError(f"Senha do certificado ilegível: {e}") from e
    return Credentials(pfx=pfx, passphrase=passphrase)

def register_certificate(db: Session, user_id: str, cnpj: str, pfx: bytes, passphrase: str,
                         store: BlobStore | None = None, now: datetime | None = None) -> Certificado:
    """Valida o A1 (senha, validade, CNPJ-base) e grava PFX + senha cifrada. O anterior é revogado."""
    store = store or BlobStore()
    now = now or datetime.utcnow()
    try:
        info = pfx_certificate_info(pfx, passphrase)
        tipo, doc = pfx_extract_cnpj_cpf(pfx, passphrase)
    except ValueError as e:
        raise CertificateError(str(e)) from e
    if tipo == "CPF":
        raise CertificateError("Certificado PF não suportado")
    if tipo == "CNPJ" and (doc or "")[:8] != cnpj[:8]:
        raise CertificateError("CNPJ consultado difere do CNPJ-base do certificado")
    if not info["valid"]:
        raise CertificateError(f"Certificado fora da validade (expira em {info['expirationDate']})")

    key = store.upload(BUCKET_CERTIFICADOS, f"{user_id}/{cnpj}-{now.strftime('%Y%m%d%H%M%S')}.pfx", pfx)
    db.execute(
        update(Certificado)
        .where(Certificado.user_id == user_id, Certificado.empresa_cnpj == cnpj, Certificado.status == "ativo")
        .values(status="revogado")
    )
    expira = datetime.fromisoformat(info["expirationDate"]).astimezone(timezone.utc).replace(tzinfo=None)
    cert = Certificado(user_id=user_id, empresa_cnpj=cnpj, arquivo_path=key, senha_cifrada=encrypt(passphrase),
                       status="ativo", valido_ate=expira, created_at=now)
    db.add(cert)
    db.commit()
    return cert
