from __future__ import annotations

import os
import uuid

from dynamap_py import Context, Schema, create_dynamodb_client


def _client():
    return create_dynamodb_client(
        region=os.environ.get("AWS_REGION", "us-east-1"),
        endpoint_url=os.environ.get("DYNAMODB_ENDPOINT", "http://localhost:8000"),
    )


def main() -> None:
    ctx = Context(client=_client())
    schema = Schema.define(
        hash_key="pk",
        range_key="sk",
        attributes={"pk": "string", "sk": "string", "value": "number", "tags": "string_set"},
        table_name=f"dynamap_example_{uuid.uuid4().hex[:12]}",
    )
    Note = ctx.define("Note", schema)
    Note.create_table()

    try:
        Note.create([{"pk": "A", "sk": f"{n:03d}", "value": n} for n in (1, 10, 100)])
        Note.update({"pk": "A", "sk": "010", "value": {"$add": 5}, "tags": {"$add": ["x"]}})

        page = Note.query("A").where("sk").gte("010").exec()
        print([note.to_dict() for note in page.items])

        Note.destroy("A", "001")
        print(Note.get("A", "001"))
    finally:
        Note.delete_table()
        ctx.close()


if __name__ == "__main__":
    main()
