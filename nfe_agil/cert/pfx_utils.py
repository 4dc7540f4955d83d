from contextlib import contextmanager
from datetime import datetime, timezone
from cryptography.hazmat.primitives.serialization import pkcs12, Encoding, PrivateFormat, NoEncryption
from cryptography import x509
from cryptography.x509.oid import NameOID
import tempfile, os

def _load(pfx_bytes: bytes, password: str | None):
    try:
        key, cert, chain = pkcs12.load_key_and_certificates(pfx_bytes, password.encode("utf-8") if password else None)
    except ValueError as e:
        raise ValueError(f"PFX inválido/senha incorreta: {e}") from e
    if not key or not cert:
        raise ValueError("PFX inválido/senha incorreta")
    return key, cert, chain

def pfx_key_and_cert_pem(pfx_bytes: bytes, password: str | None) -> tuple[bytes, bytes]:
    """(chave privada PKCS8, certificado do titular) em PEM, para assinatura XML."""
    key, cert, _ = _load(pfx_bytes, password)
    return key.private_bytes(Encoding.PEM, PrivateFormat.PKCS8, NoEncryption()), cert.public_bytes(Encoding.PEM)

def pfx_to_pem_tempfiles(pfx_bytes: bytes, password: str | None):
    key, cert, chain = _load(pfx_bytes, password)
    certs = [cert.public_bytes(Encoding.PEM)]
    if chain:
        for c in chain: certs.append(c.public_bytes(Encoding.PEM))
    cert_fd, cert_path = tempfile.mkstemp(suffix=".pem"); os.write(cert_fd, b"".join(certs)); os.close(cert_fd)
    key_fd, key_path = tempfile.mkstemp(suffix=".pem"); os.write(key_fd, key.private_bytes(Encoding.PEM, PrivateFormat.PKCS8, NoEncryption())); os.close(key_fd)
    return cert_path, key_path

@contextmanager
def pem_cert_tuple(pfx_bytes: bytes, password: str | None):
    """Gera (cert.pem, key.pem) temporários para mTLS e remove ao sair."""
    cert_tuple = pfx_to_pem_tempfiles(pfx_bytes, password)
    try:
        yield cert_tuple
    finally:
        for p in cert_tuple:
            if p and os.path.exists(p):
                os.remove(p)

def pfx_extract_cnpj_cpf(pfx_bytes: bytes, password: str | None):
    """Extrai CNPJ ou CPF do certificado a partir do PFX.
    Retorna tuple (tipo, valor_digits) onde tipo em {"CNPJ","CPF"} ou (None, None).
    """
    _, cert, _ = _load(pfx_bytes, password)
    # ICP-Brasil grava o documento em OtherName do SAN (2.16.76.1.3.3 = CNPJ, 2.16.76.1.3.1 = dados PF)
    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    except x509.ExtensionNotFound:
        san = []
    for gn in san:
        if not isinstance(gn, x509.OtherName):
            continue
        oid = gn.type_id.dotted_string
        txt = gn.value.decode(errors="ignore") if isinstance(gn.value, (bytes, bytearray)) else str(gn.value)
        digits = "".join(ch for ch in txt if ch.isdigit())
        if oid == "2.16.76.1.3.3" and len(digits) >= 14:
            return ("CNPJ", digits[-14:])
        if oid == "2.16.76.1.3.1" and len(digits) >= 11:
            return ("CPF", digits[-11:])
    # Fallback: serialNumber (2.5.4.5) no Subject
    for attr in cert.subject:
        if attr.oid == NameOID.SERIAL_NUMBER:
            digits = "".join(ch for ch in attr.value if ch.isdigit())
            if len(digits) >= 14:
                return ("CNPJ", digits[-14:])
            if len(digits) >= 11:
                return ("CPF", digits[-11:])
    return (None, None)

def _cn(name: x509.Name) -> str:
    attrs = name.get_attributes_for_oid(NameOID.COMMON_NAME)
    return str(attrs[0].value) if attrs else "Desconhecido"

def pfx_certificate_info(pfx_bytes: bytes, password: str | None, now: datetime | None = None) -> dict:
    """Validade, emissor e titular (CN) do certificado."""
    _, cert, _ = _load(pfx_bytes, password)
    now = now or datetime.now(timezone.utc)
    not_before = cert.not_valid_before_utc
    not_after = cert.not_valid_after_utc
    days_remaining = (not_after - now).days
    return {
        "valid": not_before <= now <= not_after,
        "expirationDate": not_after.isoformat(),
        "daysRemaining": days_remaining,
        "issuer": _cn(cert.issuer),
        "subject": _cn(cert.subject),
    }
