"""
Access-token encryption/decryption for stored integrations.
"""
import base64
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from wms_sync.config import settings
from wms_sync.models import Integration
from wms_sync.services.errors import SyncSetupError


def get_encryption_key() -> bytes:
    """Derive the Fernet key from ENCRYPTION_KEY"""
    key_str = settings.ENCRYPTION_KEY
    # Fernet wants 32 urlsafe-base64 bytes
    key_bytes = key_str.encode()[:32].ljust(32, b'0')
    return base64.urlsafe_b64encode(key_bytes)

def encrypt_token(token: str) -> str:
    """Encrypt a token"""
    f = Fernet(get_encryption_key())
    return f.encrypt(token.encode()).decode()

def decrypt_token(encrypted: str) -> str:
    """Decrypt a token"""
    f = Fernet(get_encryption_key())
    return f.decrypt(encrypted.encode()).decode()


def get_integration_credentials(integration: Optional[Integration]) -> tuple[str, str]:
    """
    Return (shop_domain, access_token) for an integration, decrypted.
    Raises SyncSetupError when either is missing or the token cannot be decrypted.
    """
    if integration is None:
        raise SyncSetupError("Integration not found")
    shop = (integration.shop_domain or "").strip()
    if not shop or not integration.access_token:
        raise SyncSetupError("Missing Shopify credentials")
    try:
        token = decrypt_token(integration.access_token)
    except InvalidToken as e:
        raise SyncSetupError("Stored Shopify access token cannot be decrypted") from e
    return shop, token


def has_credentials(integration: Optional[Integration]) -> bool:
    return bool(integration and integration.access_token and (integration.shop_domain or "").strip())
