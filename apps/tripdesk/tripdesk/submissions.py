from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, Mapping, Optional

from tripdesk.avatars import AvatarUpload, UploadState, placeholder_avatar_url
from tripdesk.config import Config
from tripdesk.models import ParticipantOut, ParticipantRecord, PaymentStatus, RegistrationForm
from tripdesk.services import ParticipantService
from tripdesk.validation import validate_donation, validate_registration

logger = logging.getLogger(__name__)


@dataclass
class SubmissionOutcome:
    success: bool = False
    errors: Dict[str, str] = field(default_factory=dict)
    error: Optional[str] = None
    record: Optional[object] = None


def build_participant_record(form: RegistrationForm, avatar_url: Optional[str]) -> ParticipantRecord:
    amount_paid = 0 if form.payment_status == PaymentStatus.pending else form.amount_paid
    return ParticipantRecord(
        full_name=form.full_name,
        phone_number=form.phone_number,
        email=form.email,
        number_of_guests=form.number_of_guests,
        payment_status=form.payment_status,
        amount_paid=amount_paid,
        avatar_url=avatar_url,
    )


async def _resolve_upload(upload: Optional[AvatarUpload]) -> tuple:
    """Return ``(url, error)`` for an optional attached file."""
    if upload is None:
        return None, None
    if upload.error and upload.state == UploadState.idle:
        return None, upload.error
    if upload.state == UploadState.file_selected:
        url = await upload.upload()
        if url is None:
            return None, upload.error
        return url, None
    return upload.url, None


async def submit_registration(
    service: ParticipantService,
    data: Mapping[str, object],
    upload: Optional[AvatarUpload] = None,
    config=Config,
) -> SubmissionOutcome:
    result = validate_registration(data)
    if not result.ok:
        return SubmissionOutcome(errors=result.errors)
    form = result.value

    avatar_url, upload_error = await _resolve_upload(upload)
    if upload_error:
        return SubmissionOutcome(errors={"avatar": upload_error}, error=upload_error)
    if avatar_url is None:
        avatar_url = placeholder_avatar_url(form.full_name, config)

    record = build_participant_record(form, avatar_url)
    saved = await service.register_participant(record)
    if not saved.success:
        return SubmissionOutcome(error=saved.error or "Registration failed. Please try again.")
    logger.info("Registered %s (%s)", record.full_name, record.payment_status.value)
    return SubmissionOutcome(success=True, record=record)


async def submit_donation(
    service: ParticipantService,
    participants: Iterable[ParticipantOut],
    participant_id: Optional[str],
    data: Mapping[str, object],
) -> SubmissionOutcome:
    participant = next((p for p in participants if p.id == participant_id), None)
    if participant is None:
        message = "Please choose a participant from the list"
        return SubmissionOutcome(errors={"participant_id": message}, error=message)

    result = validate_donation(data)
    if not result.ok:
        return SubmissionOutcome(errors=result.errors)

    saved = await service.add_donation(participant.id, participant.full_name, result.value)
    if not saved.success:
        return SubmissionOutcome(error=saved.error or "Failed to add donation. Please try again.")
    return SubmissionOutcome(success=True, record=result.value)


async def submit_avatar_change(
    service: ParticipantService,
    participant: ParticipantOut,
    upload: Optional[AvatarUpload],
    config=Config,
) -> SubmissionOutcome:
    avatar_url, upload_error = await _resolve_upload(upload)
    if upload_error:
        return SubmissionOutcome(errors={"avatar": upload_error}, error=upload_error)
    if avatar_url is None:
        avatar_url = participant.avatar_url or placeholder_avatar_url(participant.full_name, config)

    saved = await service.update_participant_avatar(participant.id, avatar_url)
    if not saved.success:
        return SubmissionOutcome(error=saved.error or "Failed to update avatar. Please try again.")
    return SubmissionOutcome(success=True, record=avatar_url)
