from cryptography.fernet import Fernet, InvalidToken
from botdesk.core.config import settings
from botdesk.core.exceptions import CryptoError
import logging

logger = logging.getLogger(__name__)


def get_cipher(key: str = None) -> Fernet:
    """Get Fernet cipher instance for encryption/decryption"""
    try:
        return Fernet((key or settings.encryption_key).encode())
    except (ValueError, TypeError) as e:
        # Malformed key material; never echo the key itself
        raise CryptoError(f"Invalid encryption key: {type(e).__name__}")


def encrypt_secret(secret: str, key: str = None) -> str:
    """Encrypt an exchange credential before storing it in the database"""
    logger.debug("encrypt_secret: Entry")

    cipher = get_cipher(key)
    encrypted = cipher.encrypt(secret.encode())
    logger.debug("encrypt_secret: Success")
    return encrypted.decode()


def decrypt_secret(ciphertext: str, key: str = None) -> str:
    """Decrypt an exchange credential from the database"""
    logger.debug("decrypt_secret: Entry")

    cipher = get_cipher(key)
    try:
        decrypted = cipher.decrypt(ciphertext.encode())
    except (InvalidToken, ValueError, TypeError, AttributeError) as e:
        logger.error(f"decrypt_secret: Failure - {type(e).__name__}")
        raise CryptoError("Ciphertext is malformed or was encrypted with a different key")
    logger.debug("decrypt_secret: Success")
    return decrypted.decode()
