"""
Service account discovery for the two Google services the records backend talks to:

- Firebase Admin: push delivery of reviewer/owner notifications
- Cloud Storage: the rendered field report PDFs

Each service looks for credentials in order: a key file path, an inline
JSON env var, a key file in the working directory, and (GCS only) the
ambient default credentials. A service that cannot be set up stays None;
callers degrade instead of failing at import time.
"""
import json
import os
import logging

import firebase_admin
from firebase_admin import credentials
from google.cloud import storage

logger = logging.getLogger(__name__)

FIREBASE_KEY_FILE = 'firebase-adminsdk.json'
GCS_KEY_FILE = 'gcs-service-account.json'


def _load_service_account(path_var, json_var, local_file):
    """
    Returns:
        Tuple of (source description, service account info dict or key path),
        or (None, None) when nothing is configured
    """
    key_path = os.environ.get(path_var)
    if key_path and os.path.exists(key_path):
        return f"key file {key_path}", key_path

    inline = os.environ.get(json_var)
    if inline:
        return f"${json_var}", json.loads(inline)

    if os.path.exists(local_file):
        return f"local file {local_file}", local_file

    return None, None


class CredentialManager:
    """Builds the Firebase app and the GCS client once per process"""

    def __init__(self):
        self.firebase_app = self._init_firebase()
        self.gcs_client = self._init_storage()

    def _init_firebase(self):
        if firebase_admin._apps:
            return firebase_admin.get_app()

        try:
            source, account = _load_service_account('FIREBASE_KEY_PATH', 'FIREBASE_CREDENTIALS_JSON',
                                                    FIREBASE_KEY_FILE)
            if account is None:
                logger.warning("No Firebase credentials configured; notifications are stored but not pushed")
                return None
            app = firebase_admin.initialize_app(credentials.Certificate(account))
            logger.info(f"Firebase initialized from {source}")
            return app
        except Exception as e:
            logger.error(f"Failed to initialize Firebase: {e}")
            return None

    def _init_storage(self):
        try:
            source, account = _load_service_account('GCS_KEY_PATH', 'GCS_CREDENTIALS_JSON', GCS_KEY_FILE)
            if account is None:
                client = storage.Client()
                logger.info("GCS client initialized from default credentials")
            elif isinstance(account, dict):
                client = storage.Client.from_service_account_info(account)
                logger.info(f"GCS client initialized from {source}")
            else:
                client = storage.Client.from_service_account_json(account)
                logger.info(f"GCS client initialized from {source}")
            return client
        except Exception as e:
            # Report submissions fail with UploadFailure until storage is reachable
            logger.error(f"Failed to initialize GCS: {e}")
            return None

    def get_gcs_client(self):
        return self.gcs_client

    def is_firebase_available(self):
        return self.firebase_app is not None


_credential_manager = None


def get_credential_manager():
    """Return the process-wide CredentialManager, creating it on first use"""
    global _credential_manager
    if _credential_manager is None:
        _credential_manager = CredentialManager()
    return _credential_manager
