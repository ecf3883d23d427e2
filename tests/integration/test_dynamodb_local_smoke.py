from __future__ import annotations

import os
import uuid

import boto3
import pytest

from dynamap_py import ConditionFailedError, Context, PollPolicy, Schema, Settings, gsi

pytestmark = pytest.mark.skipif(not os.environ.get("DYNAMODB_ENDPOINT"), reason="DYNAMODB_ENDPOINT not set")


def _client():
    return boto3.client(
        "dynamodb",
        endpoint_url=os.environ["DYNAMODB_ENDPOINT"],
        region_name=os.environ.get("AWS_REGION", "us-east-1"),
        aws_access_key_id=os.environ.get("AWS_ACCESS_KEY_ID", "dummy"),
        aws_secret_access_key=os.environ.get("AWS_SECRET_ACCESS_KEY", "dummy"),
    )


def test_crud_query_and_batch_round_trip() -> None:
    table_name = f"dynamap_smoke_{uuid.uuid4().hex[:12]}"
    schema = Schema.define(
        hash_key="email",
        range_key="created",
        attributes={"email": "string", "created": "date", "age": "number", "nick": "string", "roles": "string_set"},
        indexes=[gsi("NickIndex", hash_key="nick", range_key="age")],
    )

    with Context(client=_client(), settings=Settings(poll=PollPolicy(interval=0.2))) as ctx:
        User = ctx.define("User", schema, table_name=table_name)
        User.create_table()
        try:
            first = User.create({"email": "a@b.c", "created": "2024-01-01", "age": 30, "nick": "al"}, overwrite=False)
            assert first.get("created") == "2024-01-01T00:00:00.000Z"

            with pytest.raises(ConditionFailedError):
                User.create(first.attrs, overwrite=False)

            updated = User.update({"email": "a@b.c", "created": "2024-01-01", "age": {"$add": 1}, "roles": ["x"]})
            assert updated.get("age") == 31
            assert updated.get("roles") == ["x"]

            User.create({"email": "a@b.c", "created": "2024-02-01", "age": 5, "nick": "al"})
            rows = User.query("a@b.c").where("created").begins_with("2024-0").all()
            assert [r.get("age") for r in rows] == [31, 5]

            by_nick = User.query().using_index("NickIndex").where("nick").eq("al").where("age").gt(10).all()
            assert [r.get("created") for r in by_nick] == ["2024-01-01T00:00:00.000Z"]

            got = User.get_items([("a@b.c", "2024-01-01"), ("a@b.c", "2024-02-01")], consistent_read=True)
            assert len(got.items) == 2

            User.destroy("a@b.c", "2024-01-01")
            User.write_items(deletes=[("a@b.c", "2024-02-01")])
            assert User.scan().all() == []
        finally:
            User.delete_table()
