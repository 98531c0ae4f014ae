from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set

from tripdesk.avatars import backfill_avatar, placeholder_avatar_url
from tripdesk.config import Config
from tripdesk.models import DonationOut, ParticipantOut, PaymentStatus
from tripdesk.services import ParticipantService
from tripdesk.sync import LiveList, Reconciler, RefreshListener, SubscriptionBridge

logger = logging.getLogger(__name__)


@dataclass
class ParticipantStats:
    registrations: int = 0
    total_guests: int = 0
    total_revenue: float = 0
    expected_revenue: float = 0
    by_status: Dict[PaymentStatus, int] = field(default_factory=lambda: {status: 0 for status in PaymentStatus})

    @property
    def paid(self) -> int:
        return self.by_status[PaymentStatus.paid]

    @property
    def partial(self) -> int:
        return self.by_status[PaymentStatus.partial]

    @property
    def pending(self) -> int:
        return self.by_status[PaymentStatus.pending]

    @property
    def outstanding(self) -> float:
        return max(self.expected_revenue - self.total_revenue, 0)


@dataclass
class DonationStats:
    total_donations: int = 0
    unique_donors: int = 0
    total_items: int = 0


def participant_stats(participants: Iterable[ParticipantOut], trip_cost: int = Config.TRIP_COST) -> ParticipantStats:
    stats = ParticipantStats()
    for participant in participants:
        stats.registrations += 1
        stats.total_guests += participant.number_of_guests
        stats.total_revenue += participant.amount_paid or 0
        stats.expected_revenue += participant.number_of_guests * trip_cost
        stats.by_status[participant.payment_status] += 1
    return stats


def donation_stats(donations: Iterable[DonationOut]) -> DonationStats:
    donations = list(donations)
    return DonationStats(
        total_donations=len(donations),
        unique_donors=len({d.participant_id for d in donations}),
        total_items=sum(d.quantity for d in donations),
    )


class LiveView(ABC):
    """Server-side state of one list page.

    ``load`` fetches every list once. ``mount`` additionally opens the
    subscription bridge so the lists follow the backend until ``unmount``.
    """

    tables: tuple = ()

    def __init__(self, service: ParticipantService, config=Config, on_refresh: Optional[RefreshListener] = None):
        self.service = service
        self.config = config
        self.on_refresh = on_refresh
        self.lists: Dict[str, LiveList] = {name: LiveList(name, self._loader(name)) for name in self.tables}
        self.reconciler = Reconciler(self.lists.values(), on_refresh=self._refreshed)
        self.bridge = SubscriptionBridge(service.backend.rows, self.reconciler, self.tables)
        self.mounted = False
        self.closed = False

    @abstractmethod
    def _loader(self, name: str):
        """Return the fetch coroutine function for list ``name``."""

    @property
    def loading(self) -> bool:
        return not all(live.loaded for live in self.lists.values())

    @property
    def error(self) -> Optional[str]:
        for live in self.lists.values():
            if live.error:
                return live.error
        return None

    async def load(self) -> None:
        await asyncio.gather(*(live.load() for live in self.lists.values()))
        self.after_load(list(self.lists))

    async def mount(self) -> None:
        self.mounted = True
        self.bridge.open()
        await self.load()

    async def unmount(self) -> None:
        self.mounted = False
        self.closed = True
        await self.bridge.close()

    async def _refreshed(self, names: List[str]) -> None:
        self.after_load(names)
        if self.on_refresh is not None:
            await self.on_refresh(names)

    def after_load(self, names: List[str]) -> None:
        pass


class ParticipantsView(LiveView):
    tables = ("participants",)

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._backfilling: Set[str] = set()
        self.backfill_tasks: Set[asyncio.Task] = set()

    def _loader(self, name: str):
        return self.service.load_participants

    @property
    def participants(self) -> List[ParticipantOut]:
        return self.lists["participants"].items

    @property
    def stats(self) -> ParticipantStats:
        return participant_stats(self.participants, self.config.TRIP_COST)

    def avatar_for(self, participant: ParticipantOut) -> str:
        return participant.avatar_url or placeholder_avatar_url(participant.full_name, self.config)

    def missing_avatars(self) -> List[ParticipantOut]:
        return [p for p in self.participants if not p.avatar_url]

    def find(self, participant_id: str) -> Optional[ParticipantOut]:
        return next((p for p in self.participants if p.id == participant_id), None)

    def after_load(self, names: List[str]) -> None:
        if self.mounted and "participants" in names:
            self.schedule_backfill()

    def schedule_backfill(self) -> None:
        for participant in self.missing_avatars():
            if participant.id in self._backfilling:
                continue
            self._backfilling.add(participant.id)
            task = asyncio.create_task(self._backfill(participant))
            self.backfill_tasks.add(task)
            task.add_done_callback(self.backfill_tasks.discard)

    async def _backfill(self, participant: ParticipantOut) -> None:
        try:
            url = await backfill_avatar(self.service, participant, self.config)
        finally:
            self._backfilling.discard(participant.id)
        if url is None or self.closed:
            return
        live = self.lists["participants"]
        live.items = [
            p.model_copy(update={"avatar_url": url}) if p.id == participant.id else p
            for p in live.items
        ]


class DonationsView(LiveView):
    tables = ("donations", "participants")

    def _loader(self, name: str):
        if name == "donations":
            return self.service.load_donations
        return self.service.load_participants

    @property
    def donations(self) -> List[DonationOut]:
        return self.lists["donations"].items

    @property
    def participants(self) -> List[ParticipantOut]:
        return self.lists["participants"].items

    @property
    def stats(self) -> DonationStats:
        return donation_stats(self.donations)

    def find_participant(self, participant_id: Optional[str]) -> Optional[ParticipantOut]:
        if not participant_id:
            return None
        return next((p for p in self.participants if p.id == participant_id), None)
