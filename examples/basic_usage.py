#!/usr/bin/env python3
# SPDX-License-Identifier: Apache-2.0
# Copyright (c) 2025 Eul Bite

"""
Basic Atum Client Usage Example

Demonstrates:
- Timestamping a short nonce
- Timestamping a whole file
- Storing a timestamp as JSON and verifying it later
- Asking for a post-quantum (XMSS^MT) signature

Run:
    python basic_usage.py [file]

Environment:
    ATUM_SERVER_URL   server to use (defaults to the public SIDN server)
    ATUM_TIMEOUT_MS   request timeout
"""

import asyncio
import logging
import sys
from pathlib import Path

from atum_client import AtumClient, ClientConfig, SignatureAlgorithm, Timestamp
from atum_client.errors import AtumError

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)


async def main(path: Path):
    async with AtumClient(config=ClientConfig.from_env()) as client:

        # Example 1: Timestamp a nonce
        logger.info("=== Example 1: Nonce ===")
        nonce = b"example nonce"
        ts = await client.stamp(nonce)
        logger.info(f"Stamped at {ts.get_time().isoformat()} with {ts.sig.alg.value}")
        logger.info(f"Valid: {await client.verify(ts, nonce)}")

        # Example 2: Timestamp a file, store the result as JSON
        logger.info("=== Example 2: File ===")
        ts = await client.stamp_file(path)
        stored = ts.to_json()
        logger.info(f"Timestamp is {len(stored)} bytes of JSON")

        # ... later, possibly somewhere else
        loaded = Timestamp.from_json(stored)
        logger.info(f"{path.name} unchanged since {loaded.get_time().isoformat()}: "
                    f"{await client.verify_file(loaded, path)}")

        # Example 3: Post-quantum signature
        logger.info("=== Example 3: XMSS^MT ===")
        ts = await client.stamp_message(b"long-lived record", preferred_sig_alg=SignatureAlgorithm.XMSSMT)
        logger.info(f"Signed with {ts.sig.alg.value}, signature {len(ts.sig.data)} bytes")
        logger.info(f"Valid: {await client.verify(ts, b'long-lived record')}")

        logger.info(f"Client stats: {client.get_stats()}")


if __name__ == "__main__":
    target = Path(sys.argv[1] if len(sys.argv) > 1 else __file__)
    try:
        asyncio.run(main(target))
    except AtumError as e:
        logger.error(f"Atum request failed: {e}")
        sys.exit(1)
