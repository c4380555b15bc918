from __future__ import annotations

import logging
import os
import uuid
from dataclasses import dataclass

import boto3

from dynarecord import Client, record_field


@dataclass(frozen=True)
class Note:
    pk: str | None = record_field(roles=["hash"], default=None)
    sk: str | None = record_field(roles=["range"], default=None)
    value: int = 0


def _client():
    return boto3.client(
        "dynamodb",
        endpoint_url=os.environ.get("DYNAMODB_ENDPOINT", "http://localhost:8000"),
        region_name=os.environ.get("AWS_REGION", "us-east-1"),
        aws_access_key_id=os.environ.get("AWS_ACCESS_KEY_ID", "dummy"),
        aws_secret_access_key=os.environ.get("AWS_SECRET_ACCESS_KEY", "dummy"),
    )


def main() -> None:
    logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO"))

    client = _client()
    table_name = f"dynarecord_example_{uuid.uuid4().hex[:12]}"

    client.create_table(
        TableName=table_name,
        KeySchema=[{"AttributeName": "pk", "KeyType": "HASH"}, {"AttributeName": "sk", "KeyType": "RANGE"}],
        AttributeDefinitions=[
            {"AttributeName": "pk", "AttributeType": "S"},
            {"AttributeName": "sk", "AttributeType": "S"},
        ],
        BillingMode="PAY_PER_REQUEST",
    )
    client.get_waiter("table_exists").wait(TableName=table_name)

    try:
        db = Client(client)

        db.put(table_name, Note(pk="A", sk="001", value=1))
        db.put(table_name, Note(pk="A", sk="010", value=10))
        db.put(table_name, Note(pk="A", sk="100", value=100))

        print("get:", db.get(table_name, Note(pk="A", sk="010")))

        it = db.query(table_name, Note).where_hash("pk", "A").where_range("begins_with(sk, :p)", "0").run()
        print("query begins_with('0'):", list(it))
    finally:
        client.delete_table(TableName=table_name)


if __name__ == "__main__":
    main()
