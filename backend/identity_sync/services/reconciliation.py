"""
Reconciliation handlers: one per Clerk event kind.

Each handler maps (classified event, keyed store reads) to a
Reconciliation: a mutation plan, a no-op, or a missing-reference outcome.
Handlers never write; the dispatcher applies the plan.

All handlers are idempotent. Applying the same event twice leaves the
store exactly as applying it once, because every mutation is an upsert
keyed by an external id or a "delete where" on a stable key.

Ordering hazards: Clerk delivers events unordered, so organization.created
may land before user.created for its creator, and membership events may
land before their organization. A missing prerequisite is reported as
MISSING_REFERENCE (retryable), never as a crash or a silent drop.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Type

from identity_sync.models import MembershipRole, derive_handle
from identity_sync.repositories.identity_store import IdentityStore
from identity_sync.services.mutations import (
    Delete,
    RecordRef,
    Reconciliation,
    Table,
    Upsert,
)
from identity_sync.webhooks.events import (
    ClerkEvent,
    MembershipDeleted,
    MembershipUpserted,
    OrganizationCreated,
    OrganizationDeleted,
    OrganizationUpdated,
    UnknownEvent,
    UserDeleted,
    UserUpserted,
)

logger = logging.getLogger(__name__)

Handler = Callable[[ClerkEvent, IdentityStore, datetime], Reconciliation]


def map_clerk_role(clerk_role: Optional[str]) -> MembershipRole:
    """
    Map a Clerk organization role to a local membership role.

    Clerk roles: org:owner, org:admin, org:member, org:billing, custom roles.
    Unrecognised roles fall back to member (least privilege).
    """
    role = (clerk_role or "").strip().lower()
    if role.startswith("org:"):
        role = role[len("org:"):]

    role_mapping = {
        "owner": MembershipRole.OWNER,
        "admin": MembershipRole.ADMIN,
        "member": MembershipRole.MEMBER,
    }

    return role_mapping.get(role, MembershipRole.MEMBER)


# =============================================================================
# User handlers
# =============================================================================

def reconcile_user_upserted(event: UserUpserted, store: IdentityStore, now: datetime) -> Reconciliation:
    """
    user.created / user.updated: upsert the Profile by clerk_user_id.

    Only fields present in the payload are written; absent fields keep
    their current value.
    """
    fields = {
        name: value
        for name, value in (
            ("full_name", event.full_name),
            ("username", event.username),
            ("avatar_url", event.avatar_url),
        )
        if value is not None
    }
    return Reconciliation.plan(
        Upsert(Table.PROFILES, key={"clerk_user_id": event.clerk_user_id}, fields=fields)
    )


def reconcile_user_deleted(event: UserDeleted, store: IdentityStore, now: datetime) -> Reconciliation:
    """
    user.deleted: delete the Profile, if it is still there.

    Memberships are not deleted here; they are removed by membership
    deletion events, the entity cascade, or the store's foreign key.
    """
    if store.find_profile(event.clerk_user_id) is None:
        return Reconciliation.noop(f"Profile already absent for {event.clerk_user_id}")
    return Reconciliation.plan(
        Delete(Table.PROFILES, where={"clerk_user_id": event.clerk_user_id})
    )


# =============================================================================
# Organization handlers
# =============================================================================

def reconcile_organization_created(
    event: OrganizationCreated,
    store: IdentityStore,
    now: datetime,
) -> Reconciliation:
    """
    organization.created: upsert the Entity and make its creator owner.

    The entity write is an upsert by clerk_organization_id, so if the
    membership write fails after the entity write succeeded, redelivery
    completes the pair without duplicating the entity. The owner role is
    only written on insert so a replay never undoes a later role change.
    """
    creator = store.find_profile(event.created_by)
    if creator is None:
        return Reconciliation.missing_reference(
            f"Creator profile not found for Clerk user {event.created_by}"
        )

    entity_key = {"clerk_organization_id": event.clerk_organization_id}
    entity_fields = {
        "name": event.name,
        "handle": derive_handle(event.name, event.slug),
    }
    if event.avatar_url is not None:
        entity_fields["avatar_url"] = event.avatar_url

    return Reconciliation.plan(
        Upsert(
            Table.ENTITIES,
            key=entity_key,
            fields=entity_fields,
            insert_fields={"brief": "", "created_by": creator.id},
        ),
        Upsert(
            Table.ENTITY_MEMBERS,
            key={
                "entity_id": RecordRef(Table.ENTITIES, entity_key),
                "profile_id": creator.id,
            },
            insert_fields={"role": MembershipRole.OWNER.value, "joined_at": now},
        ),
    )


def reconcile_organization_updated(
    event: OrganizationUpdated,
    store: IdentityStore,
    now: datetime,
) -> Reconciliation:
    """
    organization.updated: patch name, handle and avatar. Never creates.

    An event without image_url keeps the stored avatar rather than
    clearing it; a partial payload must not erase data.
    """
    entity = store.find_entity(event.clerk_organization_id)
    if entity is None:
        return Reconciliation.noop(f"Entity not found for Clerk organization {event.clerk_organization_id}")

    fields = {
        "name": event.name,
        "handle": derive_handle(event.name, event.slug),
    }
    if event.avatar_url is not None:
        fields["avatar_url"] = event.avatar_url

    return Reconciliation.plan(
        Upsert(
            Table.ENTITIES,
            key={"clerk_organization_id": event.clerk_organization_id},
            fields=fields,
        )
    )


def reconcile_organization_deleted(
    event: OrganizationDeleted,
    store: IdentityStore,
    now: datetime,
) -> Reconciliation:
    """
    organization.deleted: remove the Entity and everything it owns.

    Children go first, parent last, so a partial application leaves a
    state from which redelivery finishes the job. Each step is an
    idempotent "delete where entity_id = X".
    """
    entity = store.find_entity(event.clerk_organization_id)
    if entity is None:
        return Reconciliation.noop(f"Entity already absent for Clerk organization {event.clerk_organization_id}")

    return Reconciliation.plan(
        Delete(Table.ENTITY_CONFIGURATIONS, where={"entity_id": entity.id}),
        Delete(Table.ENTITY_SOCIAL_LINKS, where={"entity_id": entity.id}),
        Delete(Table.ENTITY_MEMBERS, where={"entity_id": entity.id}),
        Delete(Table.ENTITIES, where={"id": entity.id}),
    )


# =============================================================================
# Membership handlers
# =============================================================================

def reconcile_membership_upserted(
    event: MembershipUpserted,
    store: IdentityStore,
    now: datetime,
) -> Reconciliation:
    """organizationMembership.created / .updated: upsert the role for the pair."""
    profile = store.find_profile(event.clerk_user_id)
    if profile is None:
        return Reconciliation.missing_reference(
            f"Profile not found for Clerk user {event.clerk_user_id}"
        )

    entity = store.find_entity(event.clerk_organization_id)
    if entity is None:
        return Reconciliation.missing_reference(
            f"Entity not found for Clerk organization {event.clerk_organization_id}"
        )

    return Reconciliation.plan(
        Upsert(
            Table.ENTITY_MEMBERS,
            key={"entity_id": entity.id, "profile_id": profile.id},
            fields={"role": map_clerk_role(event.role).value},
            insert_fields={"joined_at": now},
        )
    )


def reconcile_membership_deleted(
    event: MembershipDeleted,
    store: IdentityStore,
    now: datetime,
) -> Reconciliation:
    """
    organizationMembership.deleted: remove the row for the pair.

    A membership cannot exist without both sides, so a missing profile,
    entity or row means there is nothing to do.
    """
    profile = store.find_profile(event.clerk_user_id)
    if profile is None:
        return Reconciliation.noop(f"Profile not found for Clerk user {event.clerk_user_id}")

    entity = store.find_entity(event.clerk_organization_id)
    if entity is None:
        return Reconciliation.noop(f"Entity not found for Clerk organization {event.clerk_organization_id}")

    if store.find_membership(entity.id, profile.id) is None:
        return Reconciliation.noop("Membership already absent")

    return Reconciliation.plan(
        Delete(Table.ENTITY_MEMBERS, where={"entity_id": entity.id, "profile_id": profile.id})
    )


def reconcile_unknown(event: UnknownEvent, store: IdentityStore, now: datetime) -> Reconciliation:
    return Reconciliation.noop(f"Unsupported event type: {event.event_type}")


HANDLERS: Dict[Type, Handler] = {
    UserUpserted: reconcile_user_upserted,
    UserDeleted: reconcile_user_deleted,
    OrganizationCreated: reconcile_organization_created,
    OrganizationUpdated: reconcile_organization_updated,
    OrganizationDeleted: reconcile_organization_deleted,
    MembershipUpserted: reconcile_membership_upserted,
    MembershipDeleted: reconcile_membership_deleted,
    UnknownEvent: reconcile_unknown,
}


def reconcile(event: ClerkEvent, store: IdentityStore, now: Optional[datetime] = None) -> Reconciliation:
    """
    Run the handler registered for the event's variant.

    Args:
        event: Classified event
        store: Store used for keyed reads only
        now: Timestamp for insert-only time fields (defaults to UTC now)
    """
    handler = HANDLERS[type(event)]
    return handler(event, store, now or datetime.now(timezone.utc))
