from __future__ import annotations

import asyncio
import logging
import os
import uuid
from dataclasses import dataclass

from tablestore_py import (
    CharacterReplacementSanitizationProvider,
    DynamoDBTableStoreClient,
    SanitizedKeysEntity,
    TableStorage,
    get_dynamodb_client,
)


@dataclass(kw_only=True)
class Note(SanitizedKeysEntity):
    value: int = 0


async def main() -> None:
    logging.basicConfig(level=logging.DEBUG if os.environ.get("DEBUG") else logging.INFO)

    client = get_dynamodb_client(
        region=os.environ.get("AWS_REGION", "us-east-1"),
        endpoint_url=os.environ.get("DYNAMODB_ENDPOINT", "http://localhost:8000"),
    )
    table = TableStorage(DynamoDBTableStoreClient(f"tablestore_py_example_{uuid.uuid4().hex[:12]}", client=client))

    await table.create_if_not_exists()
    try:
        await table.insert_sanitized(
            [Note(partition_key="team/a", row_key=f"{i:03d}", value=i) for i in range(250)],
            CharacterReplacementSanitizationProvider(),
        )

        note = await table.query_by_partition_and_row("team_a", "010", model=Note)
        print("lookup:", note)

        big = await table.query_where(lambda n: n.value >= 245, model=Note)
        print("value >= 245:", [n.row_key for n in big])

        await table.delete_by_partition("team_a")
        print("after delete:", await table.query_by_partition("team_a"))
    finally:
        await table.delete_table()


if __name__ == "__main__":
    asyncio.run(main())
