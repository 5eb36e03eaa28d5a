"""
In-memory document store.
Keeps every collection in process memory; used for tests and demo runs.
"""

import copy
import logging
from collections import OrderedDict, defaultdict
from typing import Dict, List, Optional, Tuple

from .document_store import DocumentStore

logger = logging.getLogger(__name__)


class MemoryDocumentStore(DocumentStore):
    """Document store backed by ordered dicts, one per collection"""

    def __init__(self, clock=None):
        super().__init__(clock)
        self._collections: Dict[str, "OrderedDict[str, dict]"] = defaultdict(OrderedDict)

    async def _load_collection(self, collection: str, company_id: Optional[str] = None) -> List[Tuple[str, dict]]:
        rows = []
        for doc_id, data in self._collections[collection].items():
            if company_id is not None and data.get("companyId") != company_id:
                continue
            rows.append((doc_id, copy.deepcopy(data)))
        return rows

    async def _load_one(self, collection: str, doc_id: str) -> Optional[dict]:
        data = self._collections[collection].get(doc_id)
        return copy.deepcopy(data) if data is not None else None

    async def _insert(self, collection: str, doc_id: str, data: dict) -> None:
        self._collections[collection][doc_id] = copy.deepcopy(data)

    async def _patch(self, collection: str, doc_id: str, fields: dict) -> bool:
        existing = self._collections[collection].get(doc_id)
        if existing is None:
            return False
        existing.update(copy.deepcopy(fields))
        return True

    async def _remove(self, collection: str, doc_id: str) -> bool:
        return self._collections[collection].pop(doc_id, None) is not None

    def put(self, collection: str, doc_id: str, data: dict):
        """Seed a document under a known id"""
        self._collections[collection][doc_id] = copy.deepcopy(data)

    def count(self, collection: str) -> int:
        return len(self._collections[collection])
