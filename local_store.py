"""Offline stand-in for the REST API.

When the server cannot be reached the client keeps working against one JSON
file per collection (``<prefix><collection>.json`` under ``LIBRARY_LOCAL_DIR``).
``handle()`` accepts the same method/endpoint/body triples the client would
send over HTTP and answers with the same shapes. The command endpoints run
the circulation commands directly against this store.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import circulation
from circulation import Action, FineAssessment
from config import settings
from models import COLLECTIONS, FINES, HISTORY, REQUESTS, new_id

logger = logging.getLogger(__name__)


class LocalStoreError(Exception):
    """Raised for endpoints that have no offline equivalent."""


def _load_json(path: Path, default: Any) -> Any:
    """Load JSON from the given file. If it doesn't exist, return default."""
    if not path.exists():
        return default
    with open(path, "r", encoding="utf-8") as f:
        try:
            return json.load(f)
        except json.JSONDecodeError:
            logger.warning("Ignoring corrupt local data file %s", path)
            return default


def _save_json(path: Path, data: Any) -> None:
    """Write data as JSON to the given file atomically."""
    tmp_path = path.with_suffix(".tmp")
    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2)
    os.replace(tmp_path, path)


class LocalStore:
    def __init__(self, directory: Optional[str] = None, prefix: Optional[str] = None) -> None:
        self.directory = Path(directory or settings.local_store_dir)
        self.directory.mkdir(parents=True, exist_ok=True)
        self.prefix = settings.local_key_prefix if prefix is None else prefix

    def _path(self, key: str) -> Path:
        return self.directory / f"{self.prefix}{key}.json"

    def load(self, key: str) -> List[Dict[str, Any]]:
        return _load_json(self._path(key), default=[])

    def save(self, key: str, data: List[Dict[str, Any]]) -> None:
        _save_json(self._path(key), data)

    # --- document store interface used by circulation commands ---
    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        return next((d for d in self.load(collection) if d.get("id") == doc_id), None)

    def all(self, collection: str) -> List[Dict[str, Any]]:
        return self.load(collection)

    def put(self, collection: str, doc: Dict[str, Any]) -> None:
        self.upsert(collection, [doc])

    def upsert(self, collection: str, docs: List[Dict[str, Any]]) -> None:
        """Replace documents with matching ids in place and append the rest."""
        for doc in docs:
            if not doc.get("id"):
                raise ValueError(f"Documents in '{collection}' need an 'id' field.")
        data = self.load(collection)
        index = {d.get("id"): i for i, d in enumerate(data)}
        for doc in docs:
            if doc.get("id") in index:
                data[index[doc["id"]]] = doc
            else:
                index[doc.get("id")] = len(data)
                data.append(doc)
        self.save(collection, data)

    def merge(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        data = self.load(collection)
        for doc in data:
            if doc.get("id") == doc_id:
                doc.update(fields)
                self.save(collection, data)
                return doc
        return None

    def delete(self, collection: str, doc_id: Optional[str] = None) -> None:
        if doc_id is None:
            self.save(collection, [])
        else:
            self.save(collection, [d for d in self.load(collection) if d.get("id") != doc_id])

    # --- REST emulation ---
    def handle(self, method: str, endpoint: str, body: Any = None) -> Any:
        """Answer one API call locally.

        ``endpoint`` is the path below ``/api``, e.g. ``/books``,
        ``/books/bulk`` or ``/requests/R1``.
        """
        method = method.upper()
        segments = [s for s in endpoint.split("?")[0].strip("/").split("/") if s]
        if not segments:
            raise LocalStoreError("Empty endpoint")
        key = segments[0]
        doc_id = segments[1] if len(segments) > 1 and segments[1] != "bulk" else None

        if key == "returns" and method == "POST":
            fine = body.get("fine")
            assessment = FineAssessment(fine["amount"], fine.get("reason", "")) if fine else None
            return circulation.process_return(self, body["bookId"], body["userId"], assessment).to_dict()
        if key not in COLLECTIONS:
            raise LocalStoreError(f"{method} /{key} is not available offline")

        if method == "GET":
            if doc_id is None:
                return self.all(key)
            return self.get(key, doc_id)

        if method == "POST":
            if key == REQUESTS and isinstance(body, dict) and "id" not in body:
                return circulation.request_borrow(self, body["bookId"], body["userId"]).to_dict()
            if key == FINES and isinstance(body, dict) and not body.get("id"):
                body = {**body, "id": new_id("F")}
            docs = body if isinstance(body, list) else [body]
            self.upsert(key, docs)
            return body

        if method == "PATCH":
            if doc_id is None:
                raise LocalStoreError(f"PATCH /{key} needs an id")
            if key == REQUESTS and "status" in body:
                return circulation.resolve_request(self, doc_id, Action.from_status(body["status"])).to_dict()
            if key == FINES and "status" in body:
                return circulation.set_fine_status(self, doc_id, body["status"]).to_dict()
            if key == HISTORY and set(body) <= {"returnDate"}:
                return circulation.close_history_record(self, doc_id, body.get("returnDate")).to_dict()
            return self.merge(key, doc_id, body)

        if method == "DELETE":
            self.delete(key, doc_id)
            return {"message": "Deleted successfully" if doc_id else "All deleted successfully"}

        raise LocalStoreError(f"Unsupported method {method}")
