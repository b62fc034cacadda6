"""Publish a terminal intent event straight to Kafka.

Useful for exercising webhook delivery by hand and for checking that the
notification inbox skips a repeated `event_id`.
"""

import argparse
import asyncio
import json
from datetime import datetime, timezone
from uuid import uuid4

from aiokafka import AIOKafkaProducer

TOPICS = {"settled": "payment_intents.settled", "failed": "payment_intents.failed"}


def build_envelope(args: argparse.Namespace) -> dict:
    return {
        "event_id": args.event_id or str(uuid4()),
        "event_type": TOPICS[args.state],
        "aggregate_id": args.intent_id,
        "occurred_at": datetime.now(timezone.utc).isoformat(),
        "trace_id": f"manual-{uuid4()}",
        "payload": {
            "state": args.state,
            "reference": args.reference,
            "settlement_tx_hash": args.settlement_tx_hash,
            "failure_reason": args.failure_reason if args.state == "failed" else None,
            "callback_url": args.callback_url,
        },
    }


async def publish(bootstrap_servers: str, topic: str, envelope: dict, copies: int) -> None:
    """Open producer, publish the envelope `copies` times, close producer."""

    producer = AIOKafkaProducer(bootstrap_servers=bootstrap_servers)
    await producer.start()
    try:
        for _ in range(copies):
            await producer.send_and_wait(topic, json.dumps(envelope).encode("utf-8"))
    finally:
        await producer.stop()


def main() -> None:
    parser = argparse.ArgumentParser(description="Publish a settled/failed intent event to Kafka.")
    parser.add_argument("--bootstrap-servers", default="localhost:9092")
    parser.add_argument("--intent-id", required=True)
    parser.add_argument("--state", choices=sorted(TOPICS), default="settled")
    parser.add_argument("--event-id", default=None, help="Reuse an event_id to test inbox dedupe")
    parser.add_argument("--reference", default=None)
    parser.add_argument("--settlement-tx-hash", default=None)
    parser.add_argument("--failure-reason", default="settlement-failed")
    parser.add_argument("--callback-url", default=None)
    parser.add_argument("--copies", type=int, default=1)
    args = parser.parse_args()

    envelope = build_envelope(args)
    asyncio.run(publish(args.bootstrap_servers, TOPICS[args.state], envelope, args.copies))
    print(f"Published event_id={envelope['event_id']} to topic={TOPICS[args.state]} x{args.copies}")


if __name__ == "__main__":
    main()
