"""
Firebase Authentication
Initialises the Admin SDK and verifies bearer ID tokens
"""

import logging
from typing import Optional

import firebase_admin
from fastapi import Header
from firebase_admin import auth, credentials

from vidya.config import Settings
from vidya.errors import AuthenticationError, FirebaseConfigError, ServiceUnavailableError

logger = logging.getLogger(__name__)


def init_firebase(config: Settings) -> bool:
    """
    Initialize Firebase Admin SDK at app startup

    Returns:
        bool: True when the SDK is ready

    Raises:
        FirebaseConfigError: credentials missing in production or rejected by the SDK
    """
    if firebase_admin._apps:
        return True

    service_account = config.firebase_service_account()
    if service_account is None and not config.FIREBASE_CREDENTIALS_FILE:
        if config.is_production:
            raise FirebaseConfigError("Firebase service account credentials are not configured")
        logger.warning("Firebase credentials not configured; authenticated routes will return 503")
        return False

    try:
        cred = credentials.Certificate(service_account or config.FIREBASE_CREDENTIALS_FILE)
        firebase_admin.initialize_app(cred)
    except (ValueError, IOError) as e:
        raise FirebaseConfigError(f"Firebase initialization failed: {e}") from e

    logger.info("Firebase Admin SDK initialized")
    return True


def is_well_formed_jwt(token: str) -> bool:
    """header.payload.signature, every segment non-empty"""
    segments = token.split(".")
    return len(segments) == 3 and all(segments)


def verify_firebase_token(id_token: str) -> dict:
    """
    Verify a Firebase ID token (revocation checked)

    Raises:
        AuthenticationError: expired, revoked, malformed or otherwise invalid token
    """
    if not is_well_formed_jwt(id_token):
        raise AuthenticationError("Invalid token format")

    if not firebase_admin._apps:
        raise ServiceUnavailableError("Authentication service not initialized")

    try:
        return auth.verify_id_token(id_token, check_revoked=True)
    except auth.ExpiredIdTokenError:
        raise AuthenticationError("Token expired")
    except auth.RevokedIdTokenError:
        raise AuthenticationError("Token revoked")
    except (auth.InvalidIdTokenError, ValueError) as e:
        logger.warning("Rejected ID token: %s", e)
        raise AuthenticationError("Invalid token")


def extract_bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise AuthenticationError("No authorization header")
    scheme, _, token = authorization.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        raise AuthenticationError("No token provided")
    return token


async def get_token_claims(authorization: Optional[str] = Header(None)) -> dict:
    """Dependency: decoded claims of the caller's bearer token"""
    token = extract_bearer_token(authorization)
    return verify_firebase_token(token)
