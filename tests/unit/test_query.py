from __future__ import annotations

import pytest

from dynamap_py import Schema, Table, ValidationError, decode_cursor, encode_cursor, gsi, lsi
from dynamap_py.mocks import ANY, FakeDynamoDBClient


def _schema() -> Schema:
    return Schema.define(
        hash_key="email",
        range_key="created",
        attributes={"email": "string", "created": "date", "age": "number", "nick": "string", "roles": "string_set"},
        indexes=[gsi("NickIndex", hash_key="nick", range_key="age"), lsi("AgeIndex", range_key="age")],
        table_name="users",
    )


def _table(client: FakeDynamoDBClient | None = None) -> Table:
    return Table(_schema(), client=client or FakeDynamoDBClient())


def _wire(email: str, age: int) -> dict:
    return {"email": {"S": email}, "created": {"S": "2024-01-01T00:00:00.000Z"}, "age": {"N": str(age)}}


def test_query_partitions_key_and_filter_conditions() -> None:
    req = (
        _table()
        .query("a@b.c")
        .where("created")
        .gt("2024-01-01")
        .where("age")
        .gt(3)
        .filter("nick")
        .eq("z")
        .build_request()
    )

    assert req["TableName"] == "users"
    assert req["KeyConditionExpression"] == "#email = :email AND #created > :created"
    assert req["FilterExpression"] == "(#age > :age) AND (#nick = :nick)"
    assert req["ExpressionAttributeValues"] == {
        ":email": {"S": "a@b.c"},
        ":created": {"S": "2024-01-01T00:00:00.000Z"},
        ":age": {"N": "3"},
        ":nick": {"S": "z"},
    }
    assert req["ExpressionAttributeNames"] == {"#email": "email", "#created": "created", "#age": "age", "#nick": "nick"}


def test_only_first_range_condition_is_a_key_condition() -> None:
    req = _table().query("a").where("created").gt(0).where("created").lt(1000).build_request()

    assert req["KeyConditionExpression"] == "#email = :email AND #created > :created"
    assert req["FilterExpression"] == "(#created < :created_2)"


def test_non_key_operator_on_range_key_is_a_filter() -> None:
    req = _table().query("a").where("created").ne(0).build_request()

    assert req["KeyConditionExpression"] == "#email = :email"
    assert req["FilterExpression"] == "(#created <> :created)"


def test_query_without_hash_condition_fails() -> None:
    with pytest.raises(ValidationError, match="hash key"):
        _table().query().where("created").gt(0).build_request()


def test_query_on_global_index() -> None:
    req = (
        _table()
        .query()
        .using_index("NickIndex")
        .where("nick")
        .eq("z")
        .where("age")
        .between(1, 5)
        .descending()
        .limit(10)
        .build_request()
    )

    assert req["IndexName"] == "NickIndex"
    assert req["KeyConditionExpression"] == "#nick = :nick AND #age BETWEEN :age AND :age_2"
    assert req["ScanIndexForward"] is False
    assert req["Limit"] == 10
    assert "FilterExpression" not in req


def test_local_index_uses_table_hash_key() -> None:
    req = _table().query("a").using_index("AgeIndex").where("age").gte(21).consistent_read().build_request()

    assert req["KeyConditionExpression"] == "#email = :email AND #age >= :age"
    assert req["ConsistentRead"] is True


def test_builder_rejections() -> None:
    table = _table()

    with pytest.raises(ValidationError, match="unknown index"):
        table.query("a").using_index("Nope")
    with pytest.raises(ValidationError, match="GSIs"):
        table.query().using_index("NickIndex").consistent_read().where("nick").eq("z").build_request()
    with pytest.raises(ValidationError, match="begins_with"):
        table.query("a").where("age").begins_with("1")
    with pytest.raises(ValidationError, match="limit"):
        table.scan().limit(0)
    with pytest.raises(ValidationError, match="select"):
        table.scan().select("EVERYTHING")


def test_begins_with_keeps_the_prefix_raw() -> None:
    req = _table().query("a").where("created").begins_with("2024-05").build_request()

    assert req["KeyConditionExpression"] == "#email = :email AND begins_with(#created, :created)"
    assert req["ExpressionAttributeValues"][":created"] == {"S": "2024-05"}


def test_projection_select_and_consumed_capacity() -> None:
    req = (
        _table()
        .scan()
        .where("roles")
        .contains("admin")
        .attributes(["email", "settings.theme"])
        .select("specific_attributes")
        .return_consumed_capacity()
        .build_request()
    )

    assert req["FilterExpression"] == "(contains(#roles, :roles))"
    assert req["ExpressionAttributeValues"] == {":roles": {"S": "admin"}}
    assert req["ProjectionExpression"] == "#email, #settings.#theme"
    assert req["Select"] == "SPECIFIC_ATTRIBUTES"
    assert req["ReturnConsumedCapacity"] == "TOTAL"


def test_in_and_exists_filters() -> None:
    req = _table().scan().where("age").in_([1, 2]).where("nick").not_exists().build_request()

    assert req["FilterExpression"] == "(#age IN (:age, :age_2)) AND (attribute_not_exists(#nick))"


def test_pages_follow_cursor_until_exhausted() -> None:
    client = FakeDynamoDBClient()
    last_key = {"email": {"S": "a"}, "created": {"S": "2024-01-01T00:00:00.000Z"}}
    client.expect("query", {"TableName": "users"}, response={"Items": [_wire("a", 1)], "LastEvaluatedKey": last_key})
    client.expect("query", {"ExclusiveStartKey": last_key}, response={"Items": [_wire("a", 2)], "Count": 1})

    paginator = _table(client).query("a").pages()
    first = next(paginator)
    assert paginator.exhausted is False
    assert first.items == [{"email": "a", "created": "2024-01-01T00:00:00.000Z", "age": 1}]
    assert first.last_evaluated_key == last_key
    assert decode_cursor(first.next_cursor or "") == last_key

    second = next(paginator)
    assert second.next_cursor is None
    assert paginator.exhausted is True
    with pytest.raises(StopIteration):
        next(paginator)
    client.assert_no_pending()


def test_all_continues_through_empty_pages() -> None:
    client = FakeDynamoDBClient()
    key = {"email": {"S": "a"}, "created": {"S": "x"}}
    client.expect("scan", response={"Items": [_wire("a", 1)], "LastEvaluatedKey": key})
    client.expect("scan", response={"Items": [], "LastEvaluatedKey": key})
    client.expect("scan", response={"Items": [_wire("b", 2)]})

    items = _table(client).scan().all()

    assert [i["email"] for i in items] == ["a", "b"]
    client.assert_no_pending()


def test_exec_returns_first_page_or_everything_with_load_all() -> None:
    key = {"email": {"S": "a"}, "created": {"S": "x"}}

    client = FakeDynamoDBClient()
    client.expect("scan", response={"Items": [_wire("a", 1)], "LastEvaluatedKey": key, "Count": 1, "ScannedCount": 4})
    page = _table(client).scan().exec()
    assert len(page.items) == 1
    assert page.scanned_count == 4
    assert page.last_evaluated_key == key

    client = FakeDynamoDBClient()
    client.expect("scan", response={"Items": [_wire("a", 1)], "LastEvaluatedKey": key, "Count": 1, "ScannedCount": 4})
    client.expect("scan", response={"Items": [_wire("b", 2)], "Count": 1, "ScannedCount": 2})
    merged = _table(client).scan().load_all().exec()
    assert merged.count == 2
    assert merged.scanned_count == 6
    assert merged.last_evaluated_key is None


def test_start_key_accepts_cursor_record_or_wire_key() -> None:
    key = {"email": {"S": "a"}, "created": {"S": "2024-01-01T00:00:00.000Z"}}
    cursor = encode_cursor(key, index="AgeIndex")

    for start in (cursor, key, {"email": "a", "created": "2024-01-01"}):
        client = FakeDynamoDBClient()
        client.expect("query", {"ExclusiveStartKey": key}, response={"Items": []})
        _table(client).query("a").start_key(start).exec()
        client.assert_no_pending()

    with pytest.raises(ValidationError, match="cursor"):
        _table().query("a").start_key("not-a-cursor")


def test_cursor_round_trip_with_binary_and_nested_values() -> None:
    key = {"id": {"B": b"\x00\x01"}, "meta": {"M": {"n": {"N": "1"}, "l": {"L": [{"S": "x"}]}}}}

    assert decode_cursor(encode_cursor(key)) == key
    with pytest.raises(ValueError):
        decode_cursor("")


def test_scan_segments_and_parallel_scan() -> None:
    req = _table().scan().segments(1, 4).build_request()
    assert (req["Segment"], req["TotalSegments"]) == (1, 4)
    with pytest.raises(ValidationError):
        _table().scan().segments(4, 4)

    client = FakeDynamoDBClient(ordered=False)
    for segment in range(3):
        client.expect(
            "scan",
            {"Segment": segment, "TotalSegments": 3, "FilterExpression": ANY},
            response={"Items": [_wire(f"user{segment}", segment)]},
        )

    parallel = _table(client).parallel_scan(3).where("age").gte(0)
    assert len(parallel.segment_scans()) == 3

    items = parallel.load_all(max_workers=3)
    assert [i["email"] for i in items] == ["user0", "user1", "user2"]
    client.assert_no_pending()
