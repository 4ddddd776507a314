#!/usr/bin/env python3
"""
create_api_key.py: issue an agent API key straight into the credential store.

Usage:
  python scripts/create_api_key.py --agent-id AGENT [--database-url URL]

The raw key is printed once and never stored. DATABASE_URL (or .env) is used
when --database-url is omitted.
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

# Make the app package importable when run from a checkout.
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from app.auth import generate_api_key  # noqa: E402
from app.config import settings  # noqa: E402
from app.store import SqlCredentialStore  # noqa: E402

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(message)s",
    datefmt="%H:%M:%S",
)
log = logging.getLogger(__name__)


async def issue_key(agent_id: str, database_url: str) -> dict:
    store = SqlCredentialStore.from_url(database_url)
    try:
        await store.init()
        raw_key, key_hash = generate_api_key()
        record = await store.put_api_key(agent_id, key_hash)
    finally:
        await store.close()
    log.info("Issued key %s for agent %s", record.id, agent_id)
    return {"api_key": raw_key, "agent_id": agent_id, "key_id": record.id}


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Issue a clawgate API key")
    parser.add_argument("--agent-id", required=True, help="Agent the key authenticates as")
    parser.add_argument("--database-url", default=None, help="Async SQLAlchemy URL (default: DATABASE_URL)")
    args = parser.parse_args(argv)

    agent_id = args.agent_id.strip()
    if not agent_id:
        parser.error("--agent-id must be a non-empty string")

    created = asyncio.run(issue_key(agent_id, args.database_url or settings.database_url))
    print(json.dumps(created, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
