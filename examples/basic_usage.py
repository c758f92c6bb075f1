"""
Phozos API Client - Basic Usage Example

Demonstrates reads, CSRF-protected writes and the query/mutation adapters.
"""

import asyncio
from typing import List

from pydantic import BaseModel

from phozos_client import (
    PhozosClient,
    PhozosAsyncClient,
    PhozosConfig,
    FileStorage,
    QueryClient,
    MutationRunner,
    PhozosError,
    AuthenticationError,
)


class University(BaseModel):
    id: int
    name: str
    country: str


def sync_example():
    """Synchronous client example."""
    print("=== Sync Client Example ===\n")

    client = PhozosClient(PhozosConfig(
        base_url="http://localhost:5000",
        storage=FileStorage(),
        debug=True,
    ))

    print(f"Authenticated: {client.is_authenticated()}")

    try:
        universities = client.get("/api/universities", List[University], params={"country": "DE"})
        print(f"Found {len(universities)} universities")

        # Mutating requests synchronize the CSRF token first
        client.post("/api/applications", {"universityId": universities[0].id})
    except AuthenticationError as e:
        print(f"Please log in: {e.message}")
    except PhozosError as e:
        print(f"Error (expected without real API): {e.code}")

    client.close()


def adapters_example():
    """Query cache and mutation runner example."""
    print("\n=== Query/Mutation Example ===\n")

    with PhozosClient(PhozosConfig.from_env()) as client:
        queries = QueryClient(client)
        mutations = MutationRunner(query_client=queries)

        try:
            queries.fetch(["/api/universities", {"country": "DE"}], response_schema=List[University])
            mutations.run(
                client.post, "/api/applications", {"universityId": 1},
                invalidate=[["/api/applications"]],
            )
        except PhozosError as e:
            print(f"Error (expected without real API): {e.code}")


async def async_example():
    """Asynchronous client example."""
    print("\n=== Async Client Example ===\n")

    async with PhozosAsyncClient(PhozosConfig(base_url="http://localhost:5000")) as client:
        try:
            user = await client.check_auth_status()
            print(f"Current user: {user}")
        except PhozosError as e:
            print(f"Error (expected without real API): {e.code}")


if __name__ == "__main__":
    sync_example()
    adapters_example()
    asyncio.run(async_example())
