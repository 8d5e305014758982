from hospital_api.config import get_settings
from hospital_api.utils.logger import get_logger

logger = get_logger("firebase")

# Lazy init so the SDK is only touched when the firebase provider is selected
_firebase_app = None


def get_firebase_app():
    """Initialize (once) and return the Firebase Admin app."""
    global _firebase_app
    if _firebase_app is not None:
        return _firebase_app

    import firebase_admin
    from firebase_admin import credentials

    settings = get_settings()
    if settings.FIREBASE_CREDENTIALS_FILE:
        cred = credentials.Certificate(settings.FIREBASE_CREDENTIALS_FILE)
        _firebase_app = firebase_admin.initialize_app(cred)
    else:
        # Falls back to GOOGLE_APPLICATION_CREDENTIALS / metadata server
        _firebase_app = firebase_admin.initialize_app()
    logger.info("Firebase Admin initialized")
    return _firebase_app


def verify_id_token(token: str) -> dict:
    """Verify a Firebase ID token and return its decoded claims (blocking call)."""
    from firebase_admin import auth

    return auth.verify_id_token(token, app=get_firebase_app())
