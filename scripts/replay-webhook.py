#!/usr/bin/env python3
"""
Send a signed payment-gateway webhook to a running checkout service.

Useful for exercising the webhook path locally without the real gateway:

    ./replay-webhook.py XRF_1700000000000_ABC123XYZ --type PAYMENT_SUCCESS_WEBHOOK
    ./replay-webhook.py XRF_... --type PAYMENT_FAILED_WEBHOOK --secret wrong   # expect 401
"""

import argparse
import base64
import hashlib
import hmac
import json
import os
import sys
import time
from datetime import datetime

import requests

API_URL = os.getenv("API_URL", "http://localhost:8000")

WEBHOOK_TYPES = [
    "PAYMENT_SUCCESS_WEBHOOK",
    "PAYMENT_FAILED_WEBHOOK",
    "PAYMENT_USER_DROPPED_WEBHOOK",
]


def log(message):
    timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    print(f"[{timestamp}] {message}")


def sign(body: bytes, timestamp: str, secret: str) -> str:
    digest = hmac.new(secret.encode(), timestamp.encode() + body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


def build_payload(order_id: str, event_type: str, payment_id: str) -> dict:
    return {
        "type": event_type,
        "event_time": datetime.now().astimezone().isoformat(),
        "data": {
            "order": {"order_id": order_id},
            "payment": {"cf_payment_id": payment_id},
        },
    }


def main():
    parser = argparse.ArgumentParser(description="Replay a signed payment webhook")
    parser.add_argument("order_id", help="Gateway order id (XRF_...)")
    parser.add_argument("--type", default="PAYMENT_SUCCESS_WEBHOOK", choices=WEBHOOK_TYPES)
    parser.add_argument("--payment-id", default="replay-payment-1")
    parser.add_argument("--secret", default=os.getenv("PAYMENT_GATEWAY_SECRET_KEY", ""))
    parser.add_argument("--url", default=f"{API_URL}/webhook")
    parser.add_argument("--unsigned", action="store_true", help="Send without signature headers")
    args = parser.parse_args()

    body = json.dumps(build_payload(args.order_id, args.type, args.payment_id)).encode()
    headers = {"content-type": "application/json"}
    if not args.unsigned:
        if not args.secret:
            log("No secret given; set PAYMENT_GATEWAY_SECRET_KEY or pass --secret")
            sys.exit(2)
        timestamp = str(int(time.time()))
        headers["x-webhook-timestamp"] = timestamp
        headers["x-webhook-signature"] = sign(body, timestamp, args.secret)

    try:
        response = requests.post(args.url, data=body, headers=headers, timeout=10)
    except requests.RequestException as e:
        log(f"Webhook delivery failed - {e}")
        sys.exit(1)

    log(f"{args.type} for {args.order_id}: {response.status_code} {response.text}")
    sys.exit(0 if response.status_code == 200 else 1)


if __name__ == "__main__":
    main()
