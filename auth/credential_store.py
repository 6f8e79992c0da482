# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Credential Store - Durable home of the upstream session token
"""
import json
import logging
import os
from typing import Optional

import config
from models import WriteOperation
from storage.document_store import SERVER_TIMESTAMP, DocumentStore, StoreError

logger = logging.getLogger(__name__)


class CredentialStore:
    """Survives restarts, so a new process can reuse the last session"""

    def get(self) -> Optional[str]:
        raise NotImplementedError

    def set(self, value: str):
        raise NotImplementedError


class FileCredentialStore(CredentialStore):
    """Session token cached in a JSON file on the persistent disk"""

    def __init__(self, path: str = config.CREDENTIAL_FILE):
        self.path = path

    def get(self) -> Optional[str]:
        try:
            if not os.path.exists(self.path):
                logger.info("No persistent session cache found")
                return None
            with open(self.path, 'r') as f:
                cached = json.load(f)
            token = cached.get('session_token')
            if token:
                logger.info("✅ Loaded session token from persistent storage")
            return token or None
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load session token from disk: {e}")
            return None

    def set(self, value: str):
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.path, 'w') as f:
            json.dump({'session_token': value}, f)
        logger.info("✅ Session token saved to persistent storage")


class DocumentCredentialStore(CredentialStore):
    """Session token kept in one document of the document store"""

    def __init__(self, store: DocumentStore, path: str = config.CREDENTIAL_DOCUMENT_PATH):
        self.store = store
        self.path = path

    def get(self) -> Optional[str]:
        try:
            data = self.store.get(self.path)
        except StoreError as e:
            logger.warning(f"Failed to read session token from {self.path}: {e}")
            return None
        return (data or {}).get('sessionToken') or None

    def set(self, value: str):
        self.store.commit([WriteOperation.upsert(self.path, {
            'sessionToken': value,
            'lastUpdated': SERVER_TIMESTAMP,
        })])
        logger.info(f"✅ Session token saved to {self.path}")
