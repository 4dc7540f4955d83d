"""Dependências FastAPI: identidade vinda do gateway e serviços externos (substituíveis nos testes)."""
from typing import Optional
from fastapi import Header
from nfe_agil.core.admin import configured_admins, is_master_admin
from nfe_agil.core.documents import Converter
from nfe_agil.core.notifications import NotificationChannel, default_channel
from nfe_agil.errors import UnauthorizedError, ForbiddenError
from nfe_agil.store.blob import BlobStore
from nfe_agil.ws.danfe_client import convert_xml_to_danfe
from nfe_agil.ws.sefaz_proxy import SefazProxyClient

def current_user(x_user_id: Optional[str] = Header(None)) -> str:
    if not x_user_id:
        raise UnauthorizedError("Não autenticado.")
    return x_user_id

def master_admin(x_user_email: Optional[str] = Header(None)) -> str:
    if not is_master_admin(x_user_email, configured_admins()):
        raise ForbiddenError("Acesso restrito ao administrador.")
    return x_user_email

def get_store() -> BlobStore:
    return BlobStore()

def get_proxy_client() -> SefazProxyClient:
    return SefazProxyClient()

def get_converter() -> Converter:
    return convert_xml_to_danfe

def get_channel() -> NotificationChannel:
    return default_channel
