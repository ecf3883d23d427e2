from __future__ import annotations

import json
import threading

import pytest

from dynamap_py import Context, DynamapError, Item, Schema, Settings, attribute
from dynamap_py.testkit import FakeDynamoDBClient, client_error, no_sleep


def _schema() -> Schema:
    return Schema.define(
        hash_key="email",
        attributes={"email": "string", "name": "string", "age": "number", "roles": "string_set", "avatar": "binary"},
    )


def _context(client: FakeDynamoDBClient) -> Context:
    return Context(client=client, sleep=no_sleep)


def test_define_registers_model_with_default_table_name() -> None:
    client = FakeDynamoDBClient()
    ctx = _context(client)

    User = ctx.define("User", _schema())
    Account = ctx.define("Account", _schema(), table_name="accounts-v2")

    assert issubclass(User, Item)
    assert User.__name__ == "User"
    assert User.table_name() == "users"
    assert Account.table_name() == "accounts-v2"
    assert ctx.model("User") is User
    assert ctx.model("Missing") is None
    assert set(ctx.models()) == {"User", "Account"}

    with pytest.raises(DynamapError):
        ctx.define("", _schema())


def test_schema_table_name_wins_over_the_model_default() -> None:
    schema = Schema.define(hash_key="id", attributes={"id": "string"}, table_name=lambda: "tenant-a-things")
    Thing = _context(FakeDynamoDBClient()).define("Thing", schema)

    assert Thing.table_name() == "tenant-a-things"


def test_reset_forgets_models() -> None:
    ctx = _context(FakeDynamoDBClient())
    ctx.define("User", _schema())
    ctx.reset()

    assert ctx.models() == {}


def test_reconfigure_rebinds_every_table() -> None:
    old, new = FakeDynamoDBClient(), FakeDynamoDBClient()
    ctx = _context(old)
    User = ctx.define("User", _schema())
    Group = ctx.define("Group", _schema())

    settings = Settings(write_chunk_size=10)
    ctx.reconfigure(client=new, settings=settings)

    assert ctx.client() is new
    assert User.table.client is new and Group.table.client is new
    assert User.table.settings is settings
    assert ctx.settings is settings

    new.expect("get_item", {"TableName": "groups"}, response={})
    assert Group.get("a") is None
    assert old.calls == []


def test_class_level_calls_return_model_instances() -> None:
    client = FakeDynamoDBClient()
    client.expect("get_item", response={"Item": {"email": {"S": "a"}, "age": {"N": "3"}}})
    client.expect("put_item", {"Item": {"email": {"S": "b"}}}, response={})
    client.expect(
        "update_item",
        {"UpdateExpression": "SET #name = :name"},
        response={"Attributes": {"email": {"S": "b"}, "name": {"S": "Bo"}}},
    )
    client.expect("delete_item", {"Key": {"email": {"S": "b"}}}, response={})

    User = _context(client).define("User", _schema())

    user = User.get("a")
    assert isinstance(user, User)
    assert user.get("age") == 3
    assert user.get() == {"email": "a", "age": 3}

    created = User.create({"email": "b"})
    assert created == User({"email": "b"})

    updated = User.update({"email": "b", "name": "Bo"})
    assert updated.attrs == {"email": "b", "name": "Bo"}

    assert User.destroy(created) is None
    client.assert_no_pending()


def test_instance_methods_act_on_the_record() -> None:
    client = FakeDynamoDBClient()
    client.expect("put_item", {"Item": {"email": {"S": "a"}, "name": {"S": "Al"}}}, response={})
    client.expect(
        "update_item",
        {"Key": {"email": {"S": "a"}}, "UpdateExpression": "SET #name = :name, #age = :age"},
        response={"Attributes": {"email": {"S": "a"}, "name": {"S": "Alan"}, "age": {"N": "40"}}},
    )
    client.expect("delete_item", {"Key": {"email": {"S": "a"}}, "ReturnValues": "ALL_OLD"}, response={})

    User = _context(client).define("User", _schema())

    user = User({"email": "a", "name": "Al"}).save()
    user.set({"name": "Alan", "age": 40}).update()
    assert user.attrs == {"email": "a", "name": "Alan", "age": 40}

    user.destroy(return_values="ALL_OLD")
    client.assert_no_pending()


def test_model_hooks_share_the_table_pipeline() -> None:
    client = FakeDynamoDBClient()
    client.expect("put_item", {"Item": {"email": {"S": "a"}, "name": {"S": "hooked"}}}, response={})

    User = _context(client).define("User", _schema())
    User.before("create", lambda data: {**data, "name": "hooked"})
    seen: list[object] = []
    User.after("create", seen.append)

    User.create({"email": "a"})
    assert seen == [User({"email": "a", "name": "hooked"})]


def test_to_json_handles_sets_binary_and_dates() -> None:
    User = _context(FakeDynamoDBClient()).define("User", _schema())
    user = User({"email": "a", "roles": {"b", "a"}, "avatar": b"\x00\x01"})

    assert json.loads(user.to_json()) == {"email": "a", "roles": ["a", "b"], "avatar": "AAE="}
    assert user.to_dict() == user.attrs
    assert user.to_dict() is not user.attrs
    assert "User(" in repr(user)


def test_batch_helpers_accept_items_and_keys() -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "batch_get_item",
        {"RequestItems": {"users": {"Keys": [{"email": {"S": "a"}}, {"email": {"S": "b"}}]}}},
        response={"Responses": {"users": [{"email": {"S": "a"}}]}},
    )
    client.expect("batch_write_item", response={})

    User = _context(client).define("User", _schema())
    result = User.get_items(["a", User({"email": "b"})])
    assert result.items == [User({"email": "a"})]

    User.write_items(puts=[User({"email": "c"})], deletes=["a"])
    written = client.calls_to("batch_write_item")[0]["RequestItems"]["users"]
    assert written == [
        {"PutRequest": {"Item": {"email": {"S": "c"}}}},
        {"DeleteRequest": {"Key": {"email": {"S": "a"}}}},
    ]


def test_defer_runs_on_the_worker_pool_and_calls_back() -> None:
    client = FakeDynamoDBClient()
    client.expect("get_item", response={"Item": {"email": {"S": "a"}}})
    client.expect("get_item", error=client_error("InternalServerError"))

    with _context(client) as ctx:
        User = ctx.define("User", _schema())
        done = threading.Event()
        outcomes: list[tuple[object, object]] = []

        def callback(err: BaseException | None, result: object) -> None:
            outcomes.append((err, result))
            done.set()

        future = User.defer("get", "a", callback=callback)
        assert future.result(timeout=5) == User({"email": "a"})
        assert done.wait(timeout=5)
        assert outcomes == [(None, User({"email": "a"}))]

        failed = User.defer("get", "b")
        with pytest.raises(DynamapError):
            failed.result(timeout=5)

        with pytest.raises(DynamapError, match="cannot be deferred"):
            User.defer("query", "a")


def test_create_tables_reports_created_and_existing() -> None:
    client = FakeDynamoDBClient()
    # models are visited in name order: Account, then User
    client.expect("describe_table", {"TableName": "accounts"}, error=client_error("ResourceNotFoundException"))
    client.expect("create_table", {"TableName": "accounts", "BillingMode": "PROVISIONED"}, response={})
    client.expect("describe_table", {"TableName": "accounts"}, response={"Table": {"TableStatus": "ACTIVE"}})
    client.expect("describe_table", {"TableName": "users"}, response={"Table": {"TableStatus": "ACTIVE"}})
    client.expect("describe_table", {"TableName": "users"}, response={"Table": {"TableStatus": "ACTIVE"}})

    ctx = _context(client)
    ctx.define("User", _schema())
    ctx.define("Account", _schema())

    assert ctx.create_tables(read_capacity=1, write_capacity=1) == {"Account": "created", "User": "exists"}
    client.assert_no_pending()


def test_validator_errors_surface_through_models() -> None:
    schema = Schema.define(hash_key="email", attributes={"email": "string", "age": attribute("number", required=True)})
    User = _context(FakeDynamoDBClient()).define("User", schema)

    with pytest.raises(DynamapError) as exc:
        User.create({"email": "a"})
    assert [e.path for e in exc.value.errors] == ["age"]
