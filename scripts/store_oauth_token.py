"""
Store a CRM OAuth credential by hand (e.g. one obtained outside the callback flow).
Run: python -m scripts.store_oauth_token LOCATION_ID ACCESS_TOKEN REFRESH_TOKEN [--expires-in 86400]
"""
import argparse
import asyncio
import os
import sys

# Add parent so we can import from the project root
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import AsyncSessionLocal, init_db
from services.token_vault import TokenVault


async def store(location_id: str, access_token: str, refresh_token: str, expires_in: int) -> None:
    await init_db()
    vault = TokenVault(AsyncSessionLocal)
    try:
        await vault.save_initial(location_id, access_token, refresh_token, expires_in)
    finally:
        await vault.aclose()
    print(f"Stored credential for location {location_id} (expires in {expires_in}s)")


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("location_id")
    parser.add_argument("access_token")
    parser.add_argument("refresh_token")
    parser.add_argument("--expires-in", type=int, default=86400)
    args = parser.parse_args()
    asyncio.run(store(args.location_id, args.access_token, args.refresh_token, args.expires_in))


if __name__ == "__main__":
    main()
