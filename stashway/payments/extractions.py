"""
Extraction Store

Append-only record of every successfully parsed screenshot. Reconciliation
always reads the latest extraction of each kind, so a re-upload simply
supersedes the earlier attempt without erasing it.
"""

from typing import Optional
from uuid import UUID

from stashway.models.payment import (
    ExtractionFields,
    ExtractionKind,
    PaymentExtraction,
)
from stashway.services.storage import ExtractionStorageInterface


class ExtractionStore:

    def __init__(self, storage: ExtractionStorageInterface):
        self._storage = storage

    async def save_extraction(
        self,
        request_id: UUID,
        kind: ExtractionKind,
        fields: ExtractionFields,
        raw_response: str,
        storage_path: Optional[str] = None,
    ) -> PaymentExtraction:
        extraction = PaymentExtraction(
            request_id=request_id,
            kind=kind,
            fields=fields,
            raw_response=raw_response,
            storage_path=storage_path,
        )
        await self._storage.save_extraction(extraction)
        return extraction

    async def get_latest_extraction(
        self,
        request_id: UUID,
        kind: ExtractionKind,
    ) -> Optional[PaymentExtraction]:
        return await self._storage.get_latest_extraction(request_id, kind)

    async def list_extractions(self, request_id: UUID) -> list[PaymentExtraction]:
        return await self._storage.list_extractions(request_id)
