"""
Clerk webhook event classification.

Turns an authenticated raw payload into exactly one strongly typed event
variant before any handler runs:

- user.created, user.updated                  -> UserUpserted
- user.deleted                                -> UserDeleted
- organization.created                        -> OrganizationCreated
- organization.updated                        -> OrganizationUpdated
- organization.deleted                        -> OrganizationDeleted
- organizationMembership.created, .updated    -> MembershipUpserted
- organizationMembership.deleted              -> MembershipDeleted
- anything else                               -> UnknownEvent (acknowledged no-op)

A recognised kind with a missing or malformed required field raises
EventClassificationError. Silently dropping, say, a user.deleted without
an id would leave the local mirror inconsistent with nobody noticing.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Union

from identity_sync.errors import EventClassificationError

logger = logging.getLogger(__name__)

USER_CREATED = "user.created"
USER_UPDATED = "user.updated"
USER_DELETED = "user.deleted"
ORGANIZATION_CREATED = "organization.created"
ORGANIZATION_UPDATED = "organization.updated"
ORGANIZATION_DELETED = "organization.deleted"
MEMBERSHIP_CREATED = "organizationMembership.created"
MEMBERSHIP_UPDATED = "organizationMembership.updated"
MEMBERSHIP_DELETED = "organizationMembership.deleted"


# =============================================================================
# Event variants
# =============================================================================

@dataclass(frozen=True)
class UserUpserted:
    event_type: str
    clerk_user_id: str
    full_name: Optional[str] = None
    username: Optional[str] = None
    avatar_url: Optional[str] = None


@dataclass(frozen=True)
class UserDeleted:
    event_type: str
    clerk_user_id: str


@dataclass(frozen=True)
class OrganizationCreated:
    event_type: str
    clerk_organization_id: str
    name: str
    created_by: str
    slug: Optional[str] = None
    avatar_url: Optional[str] = None


@dataclass(frozen=True)
class OrganizationUpdated:
    event_type: str
    clerk_organization_id: str
    name: str
    slug: Optional[str] = None
    avatar_url: Optional[str] = None


@dataclass(frozen=True)
class OrganizationDeleted:
    event_type: str
    clerk_organization_id: str


@dataclass(frozen=True)
class MembershipUpserted:
    event_type: str
    clerk_organization_id: str
    clerk_user_id: str
    role: str


@dataclass(frozen=True)
class MembershipDeleted:
    event_type: str
    clerk_organization_id: str
    clerk_user_id: str


@dataclass(frozen=True)
class UnknownEvent:
    event_type: str


ClerkEvent = Union[
    UserUpserted,
    UserDeleted,
    OrganizationCreated,
    OrganizationUpdated,
    OrganizationDeleted,
    MembershipUpserted,
    MembershipDeleted,
    UnknownEvent,
]


# =============================================================================
# Field helpers
# =============================================================================

def build_full_name(first_name: Optional[str], last_name: Optional[str]) -> Optional[str]:
    """
    Join first and last name with a space, skipping empty parts.

    An empty result is None (absent), so an upsert never overwrites a
    previously set name with blank data.
    """
    parts = [part.strip() for part in (first_name, last_name) if part and part.strip()]
    return " ".join(parts) or None


def _required_str(
    data: Dict[str, Any],
    field_name: str,
    event_type: str,
    external_id: Optional[str] = None,
) -> str:
    value = data.get(field_name)
    if not isinstance(value, str) or not value.strip():
        raise EventClassificationError(
            f"Missing or invalid '{field_name}' in {event_type} payload",
            event_type=event_type,
            external_id=external_id,
        )
    return value


def _optional_str(data: Dict[str, Any], field_name: str, event_type: str) -> Optional[str]:
    value = data.get(field_name)
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise EventClassificationError(
            f"Field '{field_name}' in {event_type} payload must be a string",
            event_type=event_type,
            external_id=data.get("id") if isinstance(data.get("id"), str) else None,
        )
    return value


def _required_object(data: Dict[str, Any], field_name: str, event_type: str) -> Dict[str, Any]:
    value = data.get(field_name)
    if not isinstance(value, dict):
        raise EventClassificationError(
            f"Missing or invalid '{field_name}' object in {event_type} payload",
            event_type=event_type,
            external_id=data.get("id") if isinstance(data.get("id"), str) else None,
        )
    return value


# =============================================================================
# Per-kind decoders
# =============================================================================

def _decode_user_upserted(event_type: str, data: Dict[str, Any]) -> UserUpserted:
    clerk_user_id = _required_str(data, "id", event_type)
    return UserUpserted(
        event_type=event_type,
        clerk_user_id=clerk_user_id,
        full_name=build_full_name(
            _optional_str(data, "first_name", event_type),
            _optional_str(data, "last_name", event_type),
        ),
        username=_optional_str(data, "username", event_type),
        avatar_url=_optional_str(data, "image_url", event_type),
    )


def _decode_user_deleted(event_type: str, data: Dict[str, Any]) -> UserDeleted:
    return UserDeleted(event_type=event_type, clerk_user_id=_required_str(data, "id", event_type))


def _decode_organization_created(event_type: str, data: Dict[str, Any]) -> OrganizationCreated:
    clerk_org_id = _required_str(data, "id", event_type)
    return OrganizationCreated(
        event_type=event_type,
        clerk_organization_id=clerk_org_id,
        name=_required_str(data, "name", event_type, clerk_org_id),
        created_by=_required_str(data, "created_by", event_type, clerk_org_id),
        slug=_optional_str(data, "slug", event_type),
        avatar_url=_optional_str(data, "image_url", event_type),
    )


def _decode_organization_updated(event_type: str, data: Dict[str, Any]) -> OrganizationUpdated:
    clerk_org_id = _required_str(data, "id", event_type)
    return OrganizationUpdated(
        event_type=event_type,
        clerk_organization_id=clerk_org_id,
        name=_required_str(data, "name", event_type, clerk_org_id),
        slug=_optional_str(data, "slug", event_type),
        avatar_url=_optional_str(data, "image_url", event_type),
    )


def _decode_organization_deleted(event_type: str, data: Dict[str, Any]) -> OrganizationDeleted:
    return OrganizationDeleted(
        event_type=event_type,
        clerk_organization_id=_required_str(data, "id", event_type),
    )


def _decode_membership_keys(event_type: str, data: Dict[str, Any]):
    membership_id = data.get("id") if isinstance(data.get("id"), str) else None
    organization = _required_object(data, "organization", event_type)
    user_data = _required_object(data, "public_user_data", event_type)
    clerk_org_id = _required_str(organization, "id", event_type, membership_id)
    clerk_user_id = _required_str(user_data, "user_id", event_type, membership_id)
    return clerk_org_id, clerk_user_id, membership_id


def _decode_membership_upserted(event_type: str, data: Dict[str, Any]) -> MembershipUpserted:
    clerk_org_id, clerk_user_id, membership_id = _decode_membership_keys(event_type, data)
    return MembershipUpserted(
        event_type=event_type,
        clerk_organization_id=clerk_org_id,
        clerk_user_id=clerk_user_id,
        role=_required_str(data, "role", event_type, membership_id),
    )


def _decode_membership_deleted(event_type: str, data: Dict[str, Any]) -> MembershipDeleted:
    clerk_org_id, clerk_user_id, _ = _decode_membership_keys(event_type, data)
    return MembershipDeleted(
        event_type=event_type,
        clerk_organization_id=clerk_org_id,
        clerk_user_id=clerk_user_id,
    )


_DECODERS: Dict[str, Callable[[str, Dict[str, Any]], ClerkEvent]] = {
    # User events
    USER_CREATED: _decode_user_upserted,
    USER_UPDATED: _decode_user_upserted,
    USER_DELETED: _decode_user_deleted,
    # Organization events
    ORGANIZATION_CREATED: _decode_organization_created,
    ORGANIZATION_UPDATED: _decode_organization_updated,
    ORGANIZATION_DELETED: _decode_organization_deleted,
    # Membership events
    MEMBERSHIP_CREATED: _decode_membership_upserted,
    MEMBERSHIP_UPDATED: _decode_membership_upserted,
    MEMBERSHIP_DELETED: _decode_membership_deleted,
}

SUPPORTED_EVENT_TYPES = frozenset(_DECODERS)


# =============================================================================
# Entry points
# =============================================================================

def classify_event(payload: Dict[str, Any]) -> ClerkEvent:
    """
    Classify a parsed Clerk webhook payload.

    Args:
        payload: Parsed JSON body with "type" and "data"

    Returns:
        One event variant; UnknownEvent for unsupported types

    Raises:
        EventClassificationError: If the payload has no type, or a
            recognised kind is missing a required field
    """
    if not isinstance(payload, dict):
        raise EventClassificationError("Webhook payload must be a JSON object")

    event_type = payload.get("type")
    if not isinstance(event_type, str) or not event_type:
        raise EventClassificationError("Missing event type in webhook payload")

    decoder = _DECODERS.get(event_type)
    if decoder is None:
        logger.info("Ignoring unsupported Clerk event type", extra={"event_type": event_type})
        return UnknownEvent(event_type=event_type)

    data = payload.get("data")
    if not isinstance(data, dict):
        raise EventClassificationError(
            f"Missing data object in {event_type} payload",
            event_type=event_type,
        )

    return decoder(event_type, data)


def classify_payload(raw_body: bytes) -> ClerkEvent:
    """
    Parse a raw, already verified body and classify it.

    Raises:
        EventClassificationError: If the body is not valid JSON or fails
            classification
    """
    try:
        payload = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise EventClassificationError(f"Invalid JSON payload: {e}")
    return classify_event(payload)
