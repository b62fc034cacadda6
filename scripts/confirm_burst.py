"""Fire concurrent confirm calls at one intent and report the states seen.

Every response must carry the same terminal state and settlement hash once
the intent has settled; differing answers point at a concurrency bug.
"""

import argparse
import asyncio
from collections import Counter
from uuid import uuid4

import httpx


async def confirm_once(client: httpx.AsyncClient, base_url: str, api_key: str, intent_id: str, funding_tx_hash: str | None):
    body = {"funding_tx_hash": funding_tx_hash} if funding_tx_hash else {}
    try:
        resp = await client.post(
            f"{base_url}/payments/{intent_id}/confirm",
            json=body,
            headers={"x-api-key": api_key, "x-correlation-id": str(uuid4())},
        )
    except httpx.HTTPError as exc:
        return ("error", type(exc).__name__)
    if resp.status_code >= 400:
        return ("http", str(resp.status_code))
    data = resp.json()
    return (data["state"], data.get("settlement_tx_hash") or data.get("failure_reason") or "")


async def run(base_url: str, api_key: str, intent_id: str, concurrency: int, funding_tx_hash: str | None) -> None:
    async with httpx.AsyncClient(timeout=180.0) as client:
        results = await asyncio.gather(
            *(confirm_once(client, base_url, api_key, intent_id, funding_tx_hash) for _ in range(concurrency))
        )
    for (state, detail), count in Counter(results).most_common():
        print(f"{count:>4} state={state} detail={detail}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("intent_id")
    parser.add_argument("--concurrency", type=int, default=10)
    parser.add_argument("--base-url", default="http://localhost:8000")
    parser.add_argument("--api-key", default="dev-secret")
    parser.add_argument("--funding-tx-hash", default=None)
    args = parser.parse_args()
    asyncio.run(run(args.base_url, args.api_key, args.intent_id, args.concurrency, args.funding_tx_hash))
