"""Trigger one settlement reconciliation sweep and print the summary JSON."""

import argparse
import json

import httpx


def main() -> None:
    """CLI entrypoint for manual reconciliation sweeps."""

    parser = argparse.ArgumentParser(description="Advance stalled non-terminal payment intents.")
    parser.add_argument("--settlement-url", default="http://localhost:8001")
    parser.add_argument("--limit", type=int, default=100)
    args = parser.parse_args()

    resp = httpx.post(f"{args.settlement_url}/internal/reconcile", params={"limit": args.limit}, timeout=300.0)
    resp.raise_for_status()
    print(json.dumps(resp.json(), indent=2))


if __name__ == "__main__":
    main()
