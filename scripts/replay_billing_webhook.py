#!/usr/bin/env python3
"""
Replay a stored billing webhook against a running API.
Usage: python scripts/replay_billing_webhook.py payload.json [--url http://localhost:8000] [--secret ...]
"""
import argparse
import os
import sys
from pathlib import Path

import httpx

from app.services.signature_service import compute_signature


def main():
    parser = argparse.ArgumentParser(description="Sign and POST a billing webhook payload")
    parser.add_argument("payload", help="Path to the raw JSON body")
    parser.add_argument("--url", default="http://localhost:8000", help="API base URL")
    parser.add_argument(
        "--secret",
        default=os.environ.get("BILLING_SIGNING_SECRET"),
        help="Signing secret (defaults to BILLING_SIGNING_SECRET)",
    )
    args = parser.parse_args()

    if not args.secret:
        print("No signing secret: pass --secret or set BILLING_SIGNING_SECRET")
        return 2

    raw_body = Path(args.payload).read_bytes()
    signature = compute_signature(args.secret, raw_body)
    response = httpx.post(
        f"{args.url.rstrip('/')}/webhooks/billing",
        content=raw_body,
        headers={"Content-Type": "application/json", "X-Signature": signature},
        timeout=30.0,
    )
    print(f"{response.status_code} {response.text}")
    return 0 if response.status_code == 200 else 1


if __name__ == "__main__":
    sys.exit(main())
