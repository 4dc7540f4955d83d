# tests/test_admin_crypto.py
import pytest

from nfe_agil.cert.crypto import decrypt, encrypt
from nfe_agil.core.admin import configured_admins, is_master_admin, parse_admin_emails
from nfe_agil.errors import ConfigurationError

OUTRA_CHAVE = "a1" * 32


class TestAdmin:

    def test_lista_normalizada(self):
        assert parse_admin_emails(" Admin@NfeAgil.com.br, ,ops@x.com ") == frozenset({"admin@nfeagil.com.br", "ops@x.com"})

    def test_lista_vazia(self):
        assert parse_admin_emails(None) == frozenset()
        assert is_master_admin("admin@nfeagil.com.br", parse_admin_emails("")) is False

    @pytest.mark.parametrize("email,esperado", [
        ("admin@nfeagil.com.br", True),
        ("ADMIN@nfeagil.com.br ", True),
        ("outro@nfeagil.com.br", False),
        (None, False),
        ("", False),
    ])
    def test_predicado(self, email, esperado):
        assert is_master_admin(email, configured_admins()) is esperado


class TestCifraDaSenha:

    def test_ida_e_volta(self):
        cifrado = encrypt("senha do certificado")
        assert cifrado.count(":") == 2
        assert decrypt(cifrado) == "senha do certificado"

    def test_iv_aleatorio(self):
        assert encrypt("x") != encrypt("x")

    def test_chave_errada(self):
        cifrado = encrypt("segredo")
        with pytest.raises(ValueError):
            decrypt(cifrado, hex_key=OUTRA_CHAVE)

    def test_formato_invalido(self):
        with pytest.raises(ValueError):
            decrypt("abc")

    def test_chave_nao_configurada(self):
        with pytest.raises(ConfigurationError):
            encrypt("x", hex_key="")
