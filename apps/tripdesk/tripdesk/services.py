from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Generic, List, Optional, TypeVar

from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from tripdesk.backend import Backend, BackendError
from tripdesk.models import DonationForm, DonationOut, ParticipantOut, ParticipantRecord

logger = logging.getLogger(__name__)

UNEXPECTED_ERROR = "An unexpected error occurred"

PARTICIPANT_LIST_COLUMNS = (
    "id",
    "full_name",
    "number_of_guests",
    "payment_status",
    "amount_paid",
    "created_at",
    "avatar_url",
    "email",
    "phone_number",
)

ItemT = TypeVar("ItemT", bound=BaseModel)


@dataclass
class OperationResult:
    success: bool
    error: Optional[str] = None


@dataclass
class FetchResult(Generic[ItemT]):
    items: List[ItemT] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ParticipantService:
    """Single-row calls against the participants and donations tables.

    Backend failures are logged and folded into the return value; nothing
    raised by the backend reaches the caller.
    """

    def __init__(self, backend: Backend):
        self.backend = backend

    async def _write(self, label: str, call, *args) -> OperationResult:
        try:
            await run_in_threadpool(call, *args)
        except BackendError as exc:
            logger.error("%s: %s", label, exc.message)
            return OperationResult(success=False, error=exc.message)
        except Exception:
            logger.exception("%s", label)
            return OperationResult(success=False, error=UNEXPECTED_ERROR)
        return OperationResult(success=True)

    async def _load(self, label: str, table: str, schema, columns, descending: bool) -> FetchResult:
        try:
            rows = await run_in_threadpool(self.backend.rows.select, table, columns, "created_at", descending)
            return FetchResult(items=[schema.model_validate(row) for row in rows])
        except BackendError as exc:
            logger.error("%s: %s", label, exc.message)
            return FetchResult(error=exc.message)
        except Exception:
            logger.exception("%s", label)
            return FetchResult(error=UNEXPECTED_ERROR)

    async def register_participant(self, record: ParticipantRecord) -> OperationResult:
        row = record.model_dump(mode="json")
        return await self._write("Registration error", self.backend.rows.insert, "participants", [row])

    async def load_participants(self) -> FetchResult[ParticipantOut]:
        return await self._load(
            "Error fetching participants", "participants", ParticipantOut, PARTICIPANT_LIST_COLUMNS, False
        )

    async def get_participants(self) -> List[ParticipantOut]:
        return (await self.load_participants()).items

    async def add_donation(self, participant_id: str, participant_name: str, record: DonationForm) -> OperationResult:
        row = {
            "participant_id": participant_id,
            "participant_name": participant_name,
            **record.model_dump(),
        }
        return await self._write("Donation error", self.backend.rows.insert, "donations", [row])

    async def load_donations(self) -> FetchResult[DonationOut]:
        return await self._load("Error fetching donations", "donations", DonationOut, None, True)

    async def get_donations(self) -> List[DonationOut]:
        return (await self.load_donations()).items

    async def update_participant_avatar(self, participant_id: str, avatar_url: str) -> OperationResult:
        return await self._write(
            "Avatar update error",
            self.backend.rows.update,
            "participants",
            {"avatar_url": avatar_url},
            participant_id,
        )
