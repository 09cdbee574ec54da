#!/usr/bin/env python3
"""
Outbox Relay - doccache Demo Application

Producers stage orders in a document store; a relay drains unprocessed
orders in batches, "publishes" them and confirms them; finally the store is
purged of everything already relayed.

Run modes:
  python main.py                                  # In-memory store, sample orders
  python main.py --count 50 --batch 8             # More orders, bigger batches
  python main.py --fail-rate 0.2                  # Some publishes fail and are retried
  python main.py --backend redis --url redis://localhost:6379
"""

import argparse
import asyncio
import logging
import random
import sys

from doccache.core.config import StoreSettings, create_store
from doccache.core.logging import configure_store_logger

logging.basicConfig(level=logging.INFO, format="%(message)s", stream=sys.stderr)


def create_orders(count: int) -> list[dict]:
    """Create sample order documents."""
    skus = ["ABC-1", "XYZ-9", "QRS-4", "LMN-2"]
    return [
        {
            "order_id": f"order-{i:05d}",
            "sku": random.choice(skus),
            "quantity": random.randint(1, 5),
        }
        for i in range(count)
    ]


async def produce(store, orders: list[dict]) -> None:
    """Stage every order; redelivered orders are ignored by the store."""
    for order in orders:
        await store.save(order["order_id"], order)
    # Simulate an at-least-once producer resending part of its output
    for order in orders[: len(orders) // 4]:
        await store.save(order["order_id"], {**order, "quantity": 0})


async def relay(store, batch_size: int, fail_rate: float, verbose: bool) -> int:
    """Drain unprocessed orders until none remain."""
    relayed = 0
    rounds = 0
    while batch := await store.get_unprocessed(batch_size):
        rounds += 1
        published = [order["order_id"] for order in batch if random.random() >= fail_rate]
        confirmed = await store.mark_processed(published)
        relayed += len(confirmed)
        if verbose:
            print(f"  round {rounds}: pulled {len(batch)}, confirmed {len(confirmed)}")
    return relayed


async def run(args: argparse.Namespace) -> None:
    settings = StoreSettings.build(
        backend=args.backend,
        connection_string=args.url or "",
        database_name="demo",
        collection_name="outbox",
    )
    async with create_store(settings) as store:
        orders = create_orders(args.count)

        await produce(store, orders)
        print(f"Staged {len(orders)} orders ({len(orders) // 4} redelivered)")

        relayed = await relay(store, args.batch, args.fail_rate, verbose=not args.quiet)
        print(f"Relayed {relayed} orders")

        purged = await store.purge()
        health = await store.health()
        print(f"Purge complete: {purged}")
        print(f"Store health: {health.details}")
        print(f"Metrics: {store.metrics}")


def main():
    parser = argparse.ArgumentParser(description="Outbox Relay Demo")
    parser.add_argument("--backend", choices=["memory", "redis"], default="memory", help="Store backend")
    parser.add_argument("--url", type=str, help="Redis URL for the redis backend")
    parser.add_argument("--count", type=int, default=20, help="Number of orders to stage")
    parser.add_argument("--batch", type=int, default=5, help="Relay batch size")
    parser.add_argument("--fail-rate", type=float, default=0.0, help="Chance a publish fails")
    parser.add_argument("--json-logs", action="store_true", help="Emit store logs as JSON")
    parser.add_argument("--quiet", "-q", action="store_true", help="Minimal output")
    args = parser.parse_args()

    if not 0.0 <= args.fail_rate < 1.0:
        parser.error("--fail-rate must be in [0, 1)")
    if args.json_logs:
        configure_store_logger(logging.INFO)

    asyncio.run(run(args))


if __name__ == "__main__":
    main()
