#!/usr/bin/env python3
"""
Script to send signed Clerk webhooks to a local server.

Usage:
    # Start your server first
    CLERK_WEBHOOK_SECRET=whsec_... uvicorn main:app --reload

    # Then run this script
    python scripts/send_test_webhook.py --event user_created
    python scripts/send_test_webhook.py --event organization_created
    python scripts/send_test_webhook.py --event invalid_signature
    python scripts/send_test_webhook.py            # full lifecycle
"""

import argparse
import json
import os
import uuid
from datetime import datetime, timezone

import httpx
from svix.webhooks import Webhook

DEFAULT_SECRET = os.getenv("CLERK_WEBHOOK_SECRET", "")
DEFAULT_BASE_URL = os.getenv("TEST_BASE_URL", "http://localhost:8000")
ENDPOINT = "/api/webhooks/clerk"

USER_ID = "user_local_test"
ORG_ID = "org_local_test"


def send_webhook(base_url: str, secret: str, payload: dict, tamper: bool = False):
    """Sign a payload the way Svix does and post it to the local server."""
    url = f"{base_url}{ENDPOINT}"
    body = json.dumps(payload)
    msg_id = f"msg_{uuid.uuid4().hex}"
    now = datetime.now(timezone.utc)
    signature = Webhook(secret).sign(msg_id, now, body)

    if tamper:
        body = body.replace("}", " }", 1)

    headers = {
        "Content-Type": "application/json",
        "svix-id": msg_id,
        "svix-timestamp": str(int(now.timestamp())),
        "svix-signature": signature,
    }

    print(f"\n{'='*60}")
    print(f"Sending webhook: {payload.get('type')}{' (tampered)' if tamper else ''}")
    print(f"URL: {url}")
    print(f"Payload: {json.dumps(payload, indent=2)}")
    print(f"{'='*60}\n")

    try:
        response = httpx.post(url, content=body.encode("utf-8"), headers=headers)
        print(f"Response Status: {response.status_code}")
        print(f"Response Body: {response.text}")
        return response
    except httpx.HTTPError as e:
        print(f"Error: {e}")
        return None


def user_created_payload():
    return {
        "type": "user.created",
        "data": {
            "id": USER_ID,
            "first_name": "Ada",
            "last_name": "Lovelace",
            "username": "ada",
            "image_url": "https://example.com/ada.png",
        },
    }


def organization_created_payload():
    return {
        "type": "organization.created",
        "data": {"id": ORG_ID, "name": "Acme Capital", "created_by": USER_ID},
    }


def membership_updated_payload():
    return {
        "type": "organizationMembership.updated",
        "data": {
            "organization": {"id": ORG_ID},
            "public_user_data": {"user_id": USER_ID},
            "role": "org:admin",
        },
    }


def organization_deleted_payload():
    return {"type": "organization.deleted", "data": {"id": ORG_ID}}


def user_deleted_payload():
    return {"type": "user.deleted", "data": {"id": USER_ID}}


EVENTS = {
    "user_created": user_created_payload,
    "organization_created": organization_created_payload,
    "membership_updated": membership_updated_payload,
    "organization_deleted": organization_deleted_payload,
    "user_deleted": user_deleted_payload,
}


def main():
    parser = argparse.ArgumentParser(description="Send signed Clerk webhooks to a local server")
    parser.add_argument(
        "--event",
        choices=list(EVENTS) + ["invalid_signature", "all"],
        default="all",
        help="Which event to send (default: full lifecycle)"
    )
    parser.add_argument(
        "--secret",
        default=DEFAULT_SECRET,
        help="Svix signing secret (default: CLERK_WEBHOOK_SECRET env var)"
    )
    parser.add_argument(
        "--base-url",
        default=DEFAULT_BASE_URL,
        help="Base URL of your server (default: http://localhost:8000)"
    )
    args = parser.parse_args()

    if not args.secret:
        parser.error("a signing secret is required (--secret or CLERK_WEBHOOK_SECRET)")

    if args.event == "invalid_signature":
        response = send_webhook(args.base_url, args.secret, user_created_payload(), tamper=True)
        if response is not None and response.status_code == 400:
            print("\n✓ Correctly rejected tampered payload!")
        else:
            print("\n✗ WARNING: Tampered payload was NOT rejected!")
    elif args.event == "all":
        for build_payload in EVENTS.values():
            send_webhook(args.base_url, args.secret, build_payload())
    else:
        send_webhook(args.base_url, args.secret, EVENTS[args.event]())


if __name__ == "__main__":
    main()
