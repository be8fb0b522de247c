"""
Redis Control Script for Simulated Price Permission
Allow or forbid simulated prices at runtime without restarting the engine
"""
import sys
from typing import Optional

import redis
from loguru import logger

import config as cfg
from execution.trade_engine import PricePolicy


def get_redis_client() -> Optional[redis.Redis]:
    """Get a connected Redis client, or None when Redis is unreachable."""
    try:
        client = redis.Redis(
            host=cfg.REDIS_HOST,
            port=cfg.REDIS_PORT,
            db=cfg.REDIS_DB,
            decode_responses=True,
            socket_connect_timeout=5,
        )
        client.ping()
        return client
    except redis.RedisError as e:
        logger.warning(f"Redis connection failed: {e}")
        return None


def get_simulation_allowed(client) -> Optional[bool]:
    """
    Read the runtime override.

    Returns:
        True/False when set, None when unset or unreadable (use .env default)
    """
    if client is None:
        return None
    try:
        value = client.get(cfg.REDIS_SIMULATION_KEY)
    except redis.RedisError as e:
        logger.warning(f"Error reading simulation permission: {e}")
        return None
    if value is None:
        return None
    return value == '1'


def set_simulation_allowed(client, allowed: bool) -> bool:
    """Write the runtime override."""
    try:
        client.set(cfg.REDIS_SIMULATION_KEY, '1' if allowed else '0')
    except redis.RedisError as e:
        logger.error(f"Error setting simulation permission: {e}")
        return False
    logger.info(f"Simulated prices {'ALLOWED' if allowed else 'FORBIDDEN'}")
    return True


def resolve_price_policy(client=None):
    """Price policy with the Redis override applied over the .env defaults."""
    allowed = get_simulation_allowed(client)
    if allowed is None:
        return PricePolicy()
    return PricePolicy.simulated(allowed)


def display_status(client) -> None:
    allowed = get_simulation_allowed(client)

    print("\n" + "=" * 60)
    print("PRICE SOURCE POLICY")
    print("=" * 60)

    if allowed is None:
        policy = resolve_price_policy(None)
        state = "allowed" if policy.simulation_permitted else "forbidden"
        print(f"Status: ⚪ Not set (using .env default: simulation {state})")
    elif allowed:
        print("Status: 🟡 SIMULATION ALLOWED")
        print("  - Trades fall back to simulated prices when the feed is down")
        print("  - Outcomes are tagged as simulated")
    else:
        print("Status: 🔴 REAL PRICES ONLY")
        print("  - Trading is blocked while the live feed is down")

    print("=" * 60 + "\n")


def main() -> None:
    client = get_redis_client()
    if not client:
        print("✗ Redis unavailable. Make sure Redis is running: redis-server")
        return

    display_status(client)

    if len(sys.argv) < 2:
        print("Usage:")
        print("  python redis_control.py allow     - Allow simulated prices")
        print("  python redis_control.py forbid    - Require real prices")
        print("  python redis_control.py status    - Show current status")
        return

    command = sys.argv[1].lower()
    if command in ('allow', 'sim', 'on'):
        set_simulation_allowed(client, True)
        display_status(client)
    elif command in ('forbid', 'real', 'off'):
        set_simulation_allowed(client, False)
        display_status(client)
    elif command not in ('status', 'check'):
        print(f"Unknown command: {command}")


if __name__ == "__main__":
    main()
