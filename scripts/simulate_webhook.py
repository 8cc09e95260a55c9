"""
Sign and send a sample webhook to a running leadhooks instance.

Usage:
    python scripts/simulate_webhook.py --integration <id> --secret devsecret
    python scripts/simulate_webhook.py --platform hubspot --integration <id> --secret devsecret
    python scripts/simulate_webhook.py --integration <id> --secret wrong   # expect 401
"""
import argparse
import asyncio
import json
import logging
import uuid

import httpx

from leadhooks.utils.webhook_signatures import compute_signature

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

BASE_URL = "http://localhost:8000"

SAMPLE_PAYLOADS = {
    "instagram": {
        "object": "instagram",
        "entry": [{"id": "1784", "time": 1760000000, "changes": [{"field": "mentions", "value": {"media_id": "1790"}}]}],
    },
    "tiktok": {"type": "comment", "video_id": "7301", "text": "where can I buy this?"},
    "salesforce": {"sobject": "Lead", "event_type": "lead_created", "Id": "00Q5e00000ABC"},
    "hubspot": [{"subscriptionType": "contact.creation", "objectId": 512, "portalId": 62515}],
    "pipedrive": {"event": "added", "meta": {"object": "person", "id": 42}, "current": {"name": "Jane Doe"}},
}


async def send(platform: str, integration_id: str, secret: str, delivery_id: str | None) -> httpx.Response:
    body = json.dumps(SAMPLE_PAYLOADS.get(platform, {"hello": "world"})).encode()
    headers = {
        "Content-Type": "application/json",
        "User-Agent": f"{platform}-webhook-simulator/1.0",
        "X-Hub-Signature": compute_signature(platform, secret, body),
    }
    if delivery_id:
        headers["X-Delivery-Id"] = delivery_id

    async with httpx.AsyncClient(timeout=30) as client:
        resp = await client.post(
            f"{BASE_URL}/webhooks/{platform}/{integration_id}",
            content=body,
            headers=headers,
        )
        logger.info("%s webhook response: %s %s", platform, resp.status_code, resp.text)
        return resp


async def challenge(platform: str, integration_id: str, token: str) -> httpx.Response:
    async with httpx.AsyncClient(timeout=30) as client:
        resp = await client.get(
            f"{BASE_URL}/webhooks/{platform}/{integration_id}/verify",
            params={"hub.challenge": "abc123", "hub.verify_token": token},
        )
        logger.info("Challenge response: %s %r", resp.status_code, resp.text)
        return resp


async def main():
    parser = argparse.ArgumentParser(description="Simulate inbound platform webhooks")
    parser.add_argument("--platform", default="instagram", choices=sorted(SAMPLE_PAYLOADS))
    parser.add_argument("--integration", required=True)
    parser.add_argument("--secret", default="devsecret")
    parser.add_argument("--delivery-id", default=None, help="Repeat an id to exercise dedup")
    parser.add_argument("--random-delivery-id", action="store_true")
    parser.add_argument("--challenge", action="store_true", help="Send the subscription handshake instead")
    args = parser.parse_args()

    if args.challenge:
        await challenge(args.platform, args.integration, args.secret)
        return

    delivery_id = uuid.uuid4().hex if args.random_delivery_id else args.delivery_id
    await send(args.platform, args.integration, args.secret, delivery_id)


if __name__ == "__main__":
    asyncio.run(main())
