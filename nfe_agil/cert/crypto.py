"""Cifra da senha do certificado (AES-256-GCM, formato ``iv:tag:ciphertext`` em hex)."""
import os
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from nfe_agil.errors import ConfigurationError
from nfe_agil.settings import settings

IV_LENGTH = 12
TAG_LENGTH = 16

def _key(hex_key: str | None = None) -> bytes:
    hex_key = hex_key if hex_key is not None else settings.CERTIFICATE_ENCRYPTION_KEY
    if not hex_key or len(hex_key) != 64:
        raise ConfigurationError("CERTIFICATE_ENCRYPTION_KEY inválida. Deve ser 32 bytes em hex (64 chars).")
    return bytes.fromhex(hex_key)

def encrypt(plaintext: str, hex_key: str | None = None) -> str:
    iv = os.urandom(IV_LENGTH)
    # AESGCM devolve ciphertext || tag
    sealed = AESGCM(_key(hex_key)).encrypt(iv, plaintext.encode("utf-8"), None)
    enc, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
    return ":".join([iv.hex(), tag.hex(), enc.hex()])

def decrypt(ciphertext: str, hex_key: str | None = None) -> str:
    parts = (ciphertext or "").split(":")
    if len(parts) != 3:
        raise ValueError("Formato de ciphertext inválido.")
    iv, tag, enc = (bytes.fromhex(p) for p in parts)
    try:
        return AESGCM(_key(hex_key)).decrypt(iv, enc + tag, None).decode("utf-8")
    except InvalidTag as e:
        raise ValueError("Falha ao decifrar: chave incorreta ou dado adulterado.") from e
