"""Announcements and SMS broadcast.

SMS audiences are stored as (target_type, target_value) rows and exchanged
as tag strings:

    all                              every active resident
    special_category:PWD             residents flagged as PWD
    special_category:SOLO_PARENT     solo parents
    special_category:INDIGENT        indigent families
    special_category:SENIOR_CITIZEN  residents aged 60 and over
    purok:<n>                        residents of purok <n>

Publishing resolves the tags to a de-duplicated list of mobile numbers and
sends one message per number synchronously.
"""
from __future__ import annotations

import logging

from sqlalchemy import func, update

from .constants import ANNOUNCEMENT_TYPE_NAMES, SENIOR_CITIZEN_AGE, SPECIAL_CATEGORY_LABELS
from .errors import InvalidTransition, ValidationError
from .extensions import db
from .models import Announcement, AnnouncementTargetGroup, SmsLog
from .repositories import ResidentRepository, get_resident_repository
from .sms import SmsClient, normalize_ph_number
from .time_utils import isoformat, utcnow

logger = logging.getLogger(__name__)

TITLE_MIN_LENGTH = 10
CONTENT_MIN_LENGTH = 30
CONTENT_MAX_LENGTH = 1000

_CATEGORY_FLAGS = {
    "PWD": "is_pwd",
    "SOLO_PARENT": "is_solo_parent",
    "INDIGENT": "is_indigent",
}


def parse_target_group(tag: str) -> tuple[str, str | None]:
    """Split a tag into (target_type, target_value), rejecting unknown audiences."""
    tag = (tag or "").strip()
    if tag == "all":
        return "all", None
    target_type, _, value = tag.partition(":")
    if target_type == "special_category" and value in SPECIAL_CATEGORY_LABELS:
        return target_type, value
    if target_type == "purok" and value.isdigit() and int(value) > 0:
        return target_type, str(int(value))
    raise ValidationError(f"Unknown SMS target group: {tag or '(empty)'}", fields={"sms_target_groups": tag})


def describe_target_group(tag: str) -> str:
    if tag == "all":
        return "All Residents"
    target_type, _, value = tag.partition(":")
    if target_type == "special_category":
        return SPECIAL_CATEGORY_LABELS.get(value, tag)
    if target_type == "purok":
        return f"Purok {value}"
    return tag


def describe_target_groups(tags: list[str]) -> str:
    """Readable audience summary: names for up to two groups, else a count."""
    if not tags:
        return "No SMS"
    if len(tags) <= 2:
        return ", ".join(describe_target_group(t) for t in tags)
    return f"{len(tags)} groups"


def _text(value) -> str | None:
    if value is None:
        return ""
    if not isinstance(value, str):
        return None
    return value.strip()


def validate_announcement(data: dict) -> dict:
    """Check and normalise announcement input.  Raises ValidationError."""
    errors: dict = {}
    title = _text(data.get("title"))
    content = _text(data.get("content"))

    if title is None:
        errors["title"] = "Title must be text"
    elif not title:
        errors["title"] = "Title is required"
    elif len(title) < TITLE_MIN_LENGTH:
        errors["title"] = f"Title must be at least {TITLE_MIN_LENGTH} characters"

    if content is None:
        errors["content"] = "Content must be text"
    elif not content:
        errors["content"] = "Content is required"
    elif len(content) < CONTENT_MIN_LENGTH:
        errors["content"] = f"Content must be at least {CONTENT_MIN_LENGTH} characters"
    elif len(content) > CONTENT_MAX_LENGTH:
        errors["content"] = f"Content must be {CONTENT_MAX_LENGTH} characters or less"
    elif "test" in content.lower():
        errors["content"] = 'Content cannot contain the word "TEST" as it may be blocked by SMS providers'

    try:
        announcement_type = int(data.get("type") or 1)
    except (TypeError, ValueError):
        announcement_type = 0
    if announcement_type not in ANNOUNCEMENT_TYPE_NAMES:
        errors["type"] = "Type is required"

    send_sms = bool(data.get("send_sms"))
    raw_tags = (data.get("sms_target_groups") or []) if send_sms else []
    if not isinstance(raw_tags, (list, tuple)) or not all(isinstance(t, str) for t in raw_tags):
        errors["sms_target_groups"] = "SMS target groups must be a list of group names"
        raw_tags = []
    tags = [t for t in raw_tags if t]
    if send_sms and not tags and "sms_target_groups" not in errors:
        errors["sms_target_groups"] = "Please select at least one target group for SMS notifications"
    cleaned_tags = []
    for tag in tags:
        try:
            target_type, value = parse_target_group(tag)
        except ValidationError as exc:
            errors["sms_target_groups"] = exc.message
            continue
        normalized = f"{target_type}:{value}" if value else target_type
        if normalized not in cleaned_tags:
            cleaned_tags.append(normalized)

    if errors:
        raise ValidationError(next(iter(errors.values())), fields=errors)
    return {
        "title": title,
        "content": content,
        "type": announcement_type,
        "is_urgent": bool(data.get("is_urgent")),
        "sms_target_groups": cleaned_tags,
    }


def resident_matches(tag: str, resident: dict) -> bool:
    target_type, value = parse_target_group(tag)
    if target_type == "all":
        return True
    if target_type == "purok":
        return resident.get("purok") == int(value)
    if value == "SENIOR_CITIZEN":
        age = resident.get("age")
        return age is not None and age >= SENIOR_CITIZEN_AGE
    return bool(resident.get(_CATEGORY_FLAGS[value]))


def resolve_sms_recipients(tags: list[str], residents: list[dict]) -> list[dict]:
    """Active residents matching any tag, one entry per distinct mobile number."""
    recipients = []
    seen = set()
    for resident in residents:
        if resident.get("is_active") == 0:
            continue
        if not any(resident_matches(tag, resident) for tag in tags):
            continue
        number = normalize_ph_number(resident.get("contact_number"))
        if number is None or number in seen:
            continue
        seen.add(number)
        recipients.append(
            {
                "resident_id": resident["id"],
                "phone_number": number,
                "name": resident.get("full_name"),
            }
        )
    return recipients


def _set_target_groups(announcement: Announcement, tags: list[str]) -> None:
    announcement.target_groups.clear()
    for tag in tags:
        target_type, value = parse_target_group(tag)
        announcement.target_groups.append(AnnouncementTargetGroup(target_type=target_type, target_value=value))


def create_announcement(data: dict, user_id: int | None) -> Announcement:
    cleaned = validate_announcement(data)
    announcement = Announcement(
        title=cleaned["title"],
        content=cleaned["content"],
        type=cleaned["type"],
        is_urgent=cleaned["is_urgent"],
        created_by=user_id,
    )
    _set_target_groups(announcement, cleaned["sms_target_groups"])
    db.session.add(announcement)
    db.session.commit()
    return announcement


def update_announcement(announcement: Announcement, data: dict) -> Announcement:
    if announcement.published_at:
        raise InvalidTransition("Published announcements can no longer be edited.")
    cleaned = validate_announcement(data)
    announcement.title = cleaned["title"]
    announcement.content = cleaned["content"]
    announcement.type = cleaned["type"]
    announcement.is_urgent = cleaned["is_urgent"]
    _set_target_groups(announcement, cleaned["sms_target_groups"])
    announcement.updated_at = utcnow()
    db.session.commit()
    return announcement


def compose_sms(announcement: Announcement) -> str:
    prefix = "URGENT: " if announcement.is_urgent else ""
    type_name = ANNOUNCEMENT_TYPE_NAMES.get(announcement.type, "General")
    return f"{prefix}[{type_name}] {announcement.title}\n{announcement.content}"


def publish_announcement(
    announcement: Announcement,
    user_id: int | None,
    *,
    residents: ResidentRepository | None = None,
    sms_client: SmsClient | None = None,
) -> dict:
    """Publish and broadcast.  Returns the SMS delivery summary."""
    if announcement.published_at:
        raise InvalidTransition("Announcement is already published.")

    # Only one publisher may flip a draft; the loser sends nothing.
    claimed = db.session.execute(
        update(Announcement)
        .where(Announcement.id == announcement.id, Announcement.published_at.is_(None))
        .values(published_at=utcnow(), published_by=user_id)
        .execution_options(synchronize_session=False)
    ).rowcount
    if claimed != 1:
        db.session.rollback()
        raise InvalidTransition("Announcement is already published.")
    db.session.commit()

    tags = announcement.sms_target_groups
    if tags:
        residents = residents or get_resident_repository()
        sms_client = sms_client or SmsClient.from_config()
        recipients = resolve_sms_recipients(tags, residents.list_active())
        message = compose_sms(announcement)
        for recipient in recipients:
            result = sms_client.send(recipient["phone_number"], message)
            db.session.add(
                SmsLog(
                    announcement=announcement,
                    resident_id=recipient["resident_id"],
                    phone_number=result.phone_number,
                    status="sent" if result.success else "failed",
                    provider_message_id=result.message_id,
                    error=result.error,
                )
            )
        logger.info("Announcement %s published to %s SMS recipient(s).", announcement.id, len(recipients))

    db.session.commit()
    return sms_status(announcement)


def sms_status(announcement: Announcement) -> dict:
    rows = (
        db.session.query(SmsLog.status, func.count(SmsLog.id))
        .filter(SmsLog.announcement_id == announcement.id)
        .group_by(SmsLog.status)
        .all()
    )
    counts = {status: int(count) for status, count in rows}
    return {
        "total_recipients": sum(counts.values()),
        "successful_sends": counts.get("sent", 0),
        "failed_sends": counts.get("failed", 0),
    }


def delete_announcement(announcement: Announcement) -> None:
    db.session.delete(announcement)
    db.session.commit()


def serialize_announcement(announcement: Announcement) -> dict:
    return {
        "id": announcement.id,
        "title": announcement.title,
        "content": announcement.content,
        "type": announcement.type,
        "type_name": ANNOUNCEMENT_TYPE_NAMES.get(announcement.type, "General"),
        "is_urgent": announcement.is_urgent,
        "status": announcement.status,
        "sms_target_groups": announcement.sms_target_groups,
        "sms_target_summary": describe_target_groups(announcement.sms_target_groups),
        "created_by": announcement.created_by,
        "created_at": isoformat(announcement.created_at),
        "updated_at": isoformat(announcement.updated_at),
        "published_at": isoformat(announcement.published_at),
        "published_by": announcement.published_by,
    }
