"""
Subscription Record Storage

Persists one subscription record per user as a JSON document under a fixed
storage key. Two backends are provided:

- FileSubscriptionStore: <storage_dir>/<user_id>/pocket-protector-subscription.json
- MemorySubscriptionStore: process-local dict, for tests and ephemeral use

Stores deal in raw dicts. Parsing and validation belong to the models.
"""

import json
import os
import re
import tempfile
from pathlib import Path
from typing import Optional, Dict, Any

from subscription.models import utcnow
from utils.logger import logger


STORAGE_KEY = "pocket-protector-subscription"

_USER_ID_PATTERN = re.compile(r"[A-Za-z0-9_.@-]{1,128}")


class PersistenceError(Exception):
    """Raised when a subscription record cannot be written"""

    def __init__(self, user_id: str, message: str):
        self.user_id = user_id
        self.message = message
        super().__init__(message)


class CorruptRecordError(Exception):
    """Raised when stored data exists but cannot be decoded"""


def validate_user_id(user_id: str) -> str:
    """Reject user ids that are empty or unsafe as a path component"""
    if not isinstance(user_id, str) or not _USER_ID_PATTERN.fullmatch(user_id) or user_id in (".", ".."):
        raise ValueError(f"Invalid user id: {user_id!r}")
    return user_id


class SubscriptionStore:
    """Interface for per-user subscription record persistence"""

    def load(self, user_id: str) -> Optional[Dict[str, Any]]:
        """
        Return the stored document for a user, or None if nothing is stored.

        Raises CorruptRecordError when stored data cannot be decoded.
        """
        raise NotImplementedError

    def save(self, user_id: str, data: Dict[str, Any]) -> None:
        """Store the document for a user. Raises PersistenceError on failure."""
        raise NotImplementedError

    def delete(self, user_id: str) -> None:
        raise NotImplementedError

    @staticmethod
    def _with_metadata(data: Dict[str, Any]) -> Dict[str, Any]:
        document = dict(data)
        document["savedAt"] = utcnow().isoformat()
        return document


class FileSubscriptionStore(SubscriptionStore):
    """JSON file per user, written atomically"""

    def __init__(self, storage_dir: str):
        self.storage_dir = Path(storage_dir)

    def record_path(self, user_id: str) -> Path:
        validate_user_id(user_id)
        return self.storage_dir / user_id / f"{STORAGE_KEY}.json"

    def load(self, user_id: str) -> Optional[Dict[str, Any]]:
        path = self.record_path(user_id)
        if not path.exists():
            return None

        try:
            with open(path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise CorruptRecordError(f"Could not decode {path}: {e}") from e
        except OSError as e:
            raise CorruptRecordError(f"Could not read {path}: {e}") from e

    def save(self, user_id: str, data: Dict[str, Any]) -> None:
        path = self.record_path(user_id)
        document = self._with_metadata(data)

        tmp_path = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".subscription-", suffix=".tmp")
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(document, f, indent=2)
            os.replace(tmp_path, path)
            tmp_path = None
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Could not save subscription for {user_id}: {e}")
            raise PersistenceError(user_id, f"Failed to save subscription: {e}") from e
        finally:
            if tmp_path and os.path.exists(tmp_path):
                os.unlink(tmp_path)

    def delete(self, user_id: str) -> None:
        path = self.record_path(user_id)
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise PersistenceError(user_id, f"Failed to delete subscription: {e}") from e


class MemorySubscriptionStore(SubscriptionStore):
    """
    In-memory store.

    Documents are kept as JSON strings so that loads behave like the
    file store (fresh objects, same decoding errors).
    """

    def __init__(self):
        self._documents: Dict[str, str] = {}

    def load(self, user_id: str) -> Optional[Dict[str, Any]]:
        validate_user_id(user_id)
        raw = self._documents.get(user_id)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise CorruptRecordError(f"Could not decode record for {user_id}: {e}") from e

    def save(self, user_id: str, data: Dict[str, Any]) -> None:
        validate_user_id(user_id)
        try:
            self._documents[user_id] = json.dumps(self._with_metadata(data))
        except (TypeError, ValueError) as e:
            raise PersistenceError(user_id, f"Failed to save subscription: {e}") from e

    def delete(self, user_id: str) -> None:
        validate_user_id(user_id)
        self._documents.pop(user_id, None)

    def put_raw(self, user_id: str, raw: str) -> None:
        """Store raw text as-is (used to simulate corrupt data)"""
        validate_user_id(user_id)
        self._documents[user_id] = raw
