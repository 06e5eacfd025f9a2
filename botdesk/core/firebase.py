import firebase_admin
from firebase_admin import credentials, auth, firestore
from botdesk.core.config import settings
from typing import Optional
import logging

logger = logging.getLogger(__name__)


def init_firebase():
    """Initialize Firebase Admin SDK (token verification and Firestore analytics)"""
    logger.info("init_firebase: Entry")

    try:
        if firebase_admin._apps:
            logger.info("init_firebase: Already initialized")
            return
        cred = credentials.Certificate(settings.firebase_credentials_path)
        firebase_admin.initialize_app(cred, {'projectId': settings.firebase_project_id})
        logger.info(f"init_firebase: Success - project: {settings.firebase_project_id}")
    except Exception as e:
        logger.error(f"init_firebase: Failure - {e}")
        raise


def verify_firebase_token(token: str) -> dict:
    """Verify a Firebase ID token; raises on an invalid or expired token"""
    # Runs twice per authenticated request (rate limiter and auth dependency)
    decoded_token = auth.verify_id_token(token)
    logger.debug(f"verify_firebase_token: Success - {decoded_token.get('uid')}")
    return decoded_token


def caller_identity(token: str) -> Optional[dict]:
    """
    Resolve a bearer token to the caller that owns bots, credentials and the
    subscription. Returns None for a valid token that carries no uid.
    """
    decoded_token = verify_firebase_token(token)
    user_id = decoded_token.get('uid')
    if not user_id:
        logger.warning("caller_identity: Token has no uid")
        return None
    return {
        'uid': user_id,
        'email': decoded_token.get('email'),
        'name': decoded_token.get('name'),
        'token': decoded_token,
    }


def get_firestore_client():
    """Firestore client for analytics events and error reports"""
    return firestore.client()
