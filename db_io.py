# db_io.py
"""
Language preference storage.

Provides:
- LanguagePreference
- PreferenceStore (interface)
- InMemoryPreferenceStore (process memory, lost on restart)
- JsonFilePreferenceStore (JSON document on disk, default db.json)
- DynamoPreferenceStore (table: user_language_preferences by default)
- build_preference_store (selects one backend at startup)
- PreferenceStoreError (backend read/write failure)

Every store holds exactly one language code per sender.
"""
from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import boto3

from languages import is_supported

logger = logging.getLogger("db_io")

class PreferenceStoreError(RuntimeError):
    """A preference backend could not be read or written."""

def now_ts() -> float:
    return time.time()

def iso_timestamp(ts: Optional[float] = None) -> str:
    value = datetime.fromtimestamp(ts or now_ts(), tz=timezone.utc)
    return value.isoformat()

def default_db_path() -> str:
    # Serverless runtimes only allow writes under the temp dir.
    if os.getenv("AWS_LAMBDA_FUNCTION_NAME") or os.getenv("VERCEL"):
        return os.path.join(tempfile.gettempdir(), "db.json")
    return os.path.join(os.getcwd(), "db.json")

@dataclass
class LanguagePreference:
    phone: str
    language: str
    updated_at: str = field(default_factory=lambda: iso_timestamp())

    def to_item(self) -> Dict[str, Any]:
        return {"phone": self.phone, "language": self.language, "updated_at": self.updated_at}

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "LanguagePreference":
        return cls(phone=item["phone"], language=item["language"], updated_at=item.get("updated_at", iso_timestamp()))

class PreferenceStore:
    """get/set/clear a language code keyed by sender identity."""

    backend = "abstract"

    @property
    def uses_dynamo(self) -> bool:
        return False

    def get(self, sender: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, sender: str, code: str) -> None:
        raise NotImplementedError

    def clear(self, sender: str) -> None:
        raise NotImplementedError

    @staticmethod
    def _validate(code: str) -> None:
        if not is_supported(code):
            raise ValueError(f"Unsupported language code: {code!r}")

class InMemoryPreferenceStore(PreferenceStore):
    backend = "memory"

    def __init__(self):
        self._lock = threading.Lock()
        self._languages: Dict[str, str] = {}

    def get(self, sender: str) -> Optional[str]:
        with self._lock:
            return self._languages.get(sender)

    def set(self, sender: str, code: str) -> None:
        self._validate(code)
        with self._lock:
            self._languages[sender] = code

    def clear(self, sender: str) -> None:
        with self._lock:
            self._languages.pop(sender, None)

class JsonFilePreferenceStore(PreferenceStore):
    """Persist preferences in a JSON document: {"user_lang": {sender: code}}.

    The file is re-read on every call so several workers pointed at the same
    path see each other's writes. Writes go through a temp file and
    os.replace, which keeps the document whole but does not serialize
    read-modify-write cycles across processes.
    """

    backend = "file"

    def __init__(self, path: Optional[str] = None):
        self.path = path or default_db_path()
        self._lock = threading.Lock()

    def _read(self) -> Dict[str, str]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, ValueError):
            logger.exception("Preference file unreadable, starting empty: %s", self.path)
            return {}
        user_lang = data.get("user_lang") if isinstance(data, dict) else None
        return dict(user_lang) if isinstance(user_lang, dict) else {}

    def _write(self, user_lang: Dict[str, str]) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        try:
            fd, tmp_path = tempfile.mkstemp(prefix=".db-", suffix=".json", dir=directory)
        except OSError as exc:
            logger.exception("Preference file write failed: %s", self.path)
            raise PreferenceStoreError(f"Could not write {self.path}") from exc
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump({"user_lang": user_lang}, f, ensure_ascii=False, indent=2)
            os.replace(tmp_path, self.path)
        except OSError as exc:
            logger.exception("Preference file write failed: %s", self.path)
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise PreferenceStoreError(f"Could not write {self.path}") from exc

    def get(self, sender: str) -> Optional[str]:
        with self._lock:
            return self._read().get(sender)

    def set(self, sender: str, code: str) -> None:
        self._validate(code)
        with self._lock:
            user_lang = self._read()
            user_lang[sender] = code
            self._write(user_lang)

    def clear(self, sender: str) -> None:
        with self._lock:
            user_lang = self._read()
            if user_lang.pop(sender, None) is not None:
                self._write(user_lang)

class DynamoPreferenceStore(PreferenceStore):
    """Persist preferences to DynamoDB using table name from env or default 'user_language_preferences'."""

    backend = "dynamo"

    def __init__(self, table_name: Optional[str], region: str, table: Any = None):
        self.table_name = table_name or "user_language_preferences"
        self.region = region
        if table is None:
            resource = boto3.resource("dynamodb", region_name=region)
            table = resource.Table(self.table_name)
        self._table = table

    @property
    def uses_dynamo(self) -> bool:
        return True

    def get(self, sender: str) -> Optional[str]:
        try:
            response = self._table.get_item(Key={"phone": sender})
        except Exception as exc:
            logger.exception("Dynamo get failed")
            raise PreferenceStoreError(f"Dynamo get failed for {sender}") from exc
        item = response.get("Item")
        return LanguagePreference.from_item(item).language if item else None

    def set(self, sender: str, code: str) -> None:
        self._validate(code)
        try:
            self._table.put_item(Item=LanguagePreference(phone=sender, language=code).to_item())
        except Exception as exc:
            logger.exception("Dynamo put failed")
            raise PreferenceStoreError(f"Dynamo put failed for {sender}") from exc

    def clear(self, sender: str) -> None:
        # delete_item on a missing key succeeds, so clear stays idempotent
        try:
            self._table.delete_item(Key={"phone": sender})
        except Exception as exc:
            logger.exception("Dynamo delete failed")
            raise PreferenceStoreError(f"Dynamo delete failed for {sender}") from exc

def build_preference_store(backend: str, path: Optional[str] = None, table_name: Optional[str] = None, region: str = "ap-south-1") -> PreferenceStore:
    backend = (backend or "file").strip().lower()
    if backend == "memory":
        return InMemoryPreferenceStore()
    if backend == "file":
        return JsonFilePreferenceStore(path)
    if backend == "dynamo":
        return DynamoPreferenceStore(table_name, region)
    raise ValueError(f"Unknown preference backend: {backend!r}")
