# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Tests for table_operations module - TableOperations engine."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Annotated

import pytest

from tableops import (
    AffixPosition,
    AmendExpression,
    DatabaseType,
    DataConnection,
    DefaultValueExpression,
    EncryptData,
    FieldName,
    InvalidExpressionError,
    PrimaryKey,
    RecordFilter,
    Restriction,
    RootQueryRestriction,
    StatementTypes,
    TableName,
    TableOperationError,
    TableOperations,
    TargetExpression,
    UpdateValueExpression,
    UseEscapedName,
    ValueExpressionScope,
    sort_extension,
    table,
    value_list,
)


def _now(scope: ValueExpressionScope) -> datetime:
    return scope.connection.utc_now()


@dataclass
class Person:
    ID: Annotated[int, PrimaryKey(identity=True)] = 0
    Name: str = ""
    Email: Annotated[str | None, EncryptData()] = None
    Age: int = 0
    Active: bool = True
    Created: Annotated[datetime | None, DefaultValueExpression(_now)] = None
    Updated: Annotated[datetime | None, UpdateValueExpression(_now)] = None


PERSON_SCHEMA = """
CREATE TABLE Person (
    ID INTEGER PRIMARY KEY AUTOINCREMENT,
    Name TEXT,
    Email TEXT,
    Age INTEGER,
    Active INTEGER,
    Created TEXT,
    Updated TEXT
);
"""


@table(RootQueryRestriction("Active = {0}", True))
@dataclass
class Member:
    ID: Annotated[int, PrimaryKey()] = 0
    Name: str = ""
    Active: bool = True


@table(
    TableName("Order Items"),
    UseEscapedName(DatabaseType.SQLSERVER),
    AmendExpression(
        "TOP 100",
        DatabaseType.SQLSERVER,
        TargetExpression.FIELD_LIST,
        StatementTypes.SELECT_SET,
    ),
    AmendExpression(
        "WITH (NOLOCK)",
        DatabaseType.SQLSERVER,
        TargetExpression.TABLE_NAME,
        StatementTypes.SELECT_COUNT | StatementTypes.SELECT_SET,
        AffixPosition.SUFFIX,
    ),
)
@dataclass
class OrderItem:
    order_id: Annotated[int, PrimaryKey(), FieldName("OrderID")] = 0
    order: Annotated[int, UseEscapedName(DatabaseType.SQLSERVER), FieldName("Order")] = 0


@dataclass
class Ghost:
    ID: Annotated[int, PrimaryKey()] = 0
    Name: str = ""


def _no_default(scope: ValueExpressionScope) -> str:
    raise RuntimeError("no default")


@dataclass
class Broken:
    ID: Annotated[int, PrimaryKey()] = 0
    Code: Annotated[str, DefaultValueExpression(_no_default)] = ""


@dataclass
class Ranked:
    ID: Annotated[int, PrimaryKey()] = 0
    Name: str = ""
    Secret: Annotated[str | None, EncryptData()] = None

    @staticmethod
    @sort_extension(r"^NameLength$")
    def sort_name_length(field_name: str) -> str:
        return "LENGTH(Name)"

    @staticmethod
    @sort_extension(r"^Secret$")
    def sort_secret(field_name: str) -> str:
        return "Name"


async def _ranked(connection: DataConnection) -> TableOperations[Ranked]:
    await connection.execute_script(
        "CREATE TABLE Ranked (ID INTEGER PRIMARY KEY, Name TEXT, Secret TEXT);"
    )
    ranked = TableOperations(Ranked, connection)
    for key, name, secret in [(1, "Zed", "b"), (2, "Maximilian", "a"), (3, "Al", "c")]:
        await ranked.add_new_record(Ranked(ID=key, Name=name, Secret=secret))
    return ranked


async def _people(connection: DataConnection) -> TableOperations[Person]:
    await connection.execute_script(PERSON_SCHEMA)
    people = TableOperations(Person, connection)
    for name, email, age in [
        ("Ann", "ann@example.org", 25),
        ("Bob", "bob@example.org", 35),
        ("Cid", "cid@example.org", 45),
    ]:
        await people.add_new_record(Person(Name=name, Email=email, Age=age))
    return people


async def _members(connection: DataConnection, **kwargs) -> TableOperations[Member]:
    await connection.execute_script(
        "CREATE TABLE Member (ID INTEGER PRIMARY KEY, Name TEXT, Active INTEGER);"
    )
    members = TableOperations(Member, connection, **kwargs)
    for key, name, active in [(1, "Ann", True), (2, "Bob", False), (3, "Cid", True)]:
        await connection.execute_non_query(
            "INSERT INTO Member (ID, Name, Active) VALUES ({0}, {1}, {2})", key, name, active
        )
    return members


class TestValueList:
    """Tests for value_list helper."""

    def test_renders_index_value_pairs(self):
        """Values render as index:value, None as null."""
        assert value_list([1, None, "x"]) == "0:1, 1:null, 2:x"
        assert value_list([]) == ""
        assert value_list(None) == ""


class TestFieldNames:
    """Tests for field name helpers."""

    def test_field_lists(self, connection):
        """Field, key and non-key names in declaration order."""
        people = TableOperations(Person, connection)
        assert people.get_field_names() == [
            "ID",
            "Name",
            "Email",
            "Age",
            "Active",
            "Created",
            "Updated",
        ]
        assert people.get_primary_key_field_names() == ["ID"]
        assert people.get_non_primary_field_names()[0] == "Name"

    def test_field_info(self, connection):
        """Type, encryption and marker lookups by field name."""
        people = TableOperations(Person, connection)
        assert people.field_exists("email")
        assert not people.field_exists("Phone")
        assert people.get_field_type("Age") is int
        assert people.field_is_encrypted("Email")
        assert not people.field_is_encrypted("Name")
        assert isinstance(people.get_field_marker("Email", EncryptData), EncryptData)
        assert people.get_field_marker("Name", EncryptData) is None

    def test_primary_keys(self, connection):
        """Primary key values come from records or rows."""
        people = TableOperations(Person, connection)
        assert people.get_primary_keys(Person(ID=4)) == [4]
        assert people.get_primary_keys({"id": 5}) == [5]

    def test_validate_order_by(self, connection):
        """Order-by terms keep their direction; unknown fields raise."""
        people = TableOperations(Person, connection)
        assert people.validate_order_by("name desc, Age") == "Name DESC, Age"
        assert people.validate_order_by(None) is None
        with pytest.raises(InvalidExpressionError, match='"Phone" is not a valid field'):
            people.validate_order_by("Phone")

    def test_validate_order_by_sort_extension(self, connection):
        """Terms matching a sort extension render the extension's expression."""
        ranked = TableOperations(Ranked, connection)
        assert ranked.validate_order_by("NameLength desc, Name") == "LENGTH(Name) DESC, Name"
        assert ranked.validate_order_by("namelength") == "LENGTH(Name)"


class TestCrud:
    """End-to-end CRUD against SQLite."""

    async def test_add_new_assigns_identity(self, connection):
        """Inserted records get their identity key from the database."""
        people = await _people(connection)
        records = await people.query_records()
        assert [p.ID for p in records] == [1, 2, 3]
        assert [p.Name for p in records] == ["Ann", "Bob", "Cid"]

    async def test_encrypted_field_stored_as_ciphertext(self, connection, keyring):
        """Encrypted fields are ciphertext in the table, plaintext on load."""
        people = await _people(connection)
        stored = await connection.execute_scalar("SELECT Email FROM Person WHERE ID = {0}", 1)
        assert stored.startswith("ENC:")
        assert keyring.decrypt(stored) == "ann@example.org"
        ann = await people.load_record(1)
        assert ann.Email == "ann@example.org"

    async def test_prefixed_plaintext_round_trips(self, connection, keyring):
        """Values that look like ciphertext are still encrypted on write."""
        people = await _people(connection)
        await people.add_new_record(Person(Name="Dee", Email="ENC:hello"))
        stored = await connection.execute_scalar("SELECT Email FROM Person WHERE ID = {0}", 4)
        assert stored != "ENC:hello"
        assert keyring.decrypt(stored) == "ENC:hello"
        dee = await people.load_record(4)
        assert dee.Email == "ENC:hello"

    async def test_query_by_encrypted_value(self, connection):
        """Equality filters on encrypted fields match."""
        people = await _people(connection)
        bob = await people.query_record(
            Restriction("Email = {0}", people.get_interpreted_field_value("Email", "bob@example.org"))
        )
        assert bob.Name == "Bob"
        records = await people.search_records(
            None, True, RecordFilter(Person, "Email", "=", "cid@example.org")
        )
        assert [p.Name for p in records] == ["Cid"]

    async def test_load_record(self, connection):
        """load_record returns the record or None."""
        people = await _people(connection)
        bob = await people.load_record(2)
        assert bob.Name == "Bob"
        assert bob.Active is True
        assert await people.load_record(99) is None

    async def test_load_record_key_count(self, connection):
        """load_record requires one value per key field."""
        people = await _people(connection)
        with pytest.raises(ValueError, match="expects 1 primary key values, got 2"):
            await people.load_record(1, 2)

    async def test_new_record_applies_defaults(self, connection):
        """new_record evaluates default value expressions."""
        people = TableOperations(Person, connection)
        person = people.new_record()
        assert isinstance(person.Created, datetime)
        assert person.Updated is None

    async def test_query_records_order_and_limit(self, connection):
        """query_records honors order by and limit."""
        people = await _people(connection)
        records = await people.query_records("Age DESC", None, 2)
        assert [p.Name for p in records] == ["Cid", "Bob"]

    async def test_query_records_where(self, connection):
        """Restrictions filter the result."""
        people = await _people(connection)
        records = await people.query_records_where("Age > {0}", 30)
        assert [p.Name for p in records] == ["Bob", "Cid"]
        bob = await people.query_record_where("Name = {0}", "Bob")
        assert bob.Age == 35

    async def test_query_records_invalid_order_by(self, connection):
        """Unknown order-by fields raise before querying."""
        people = await _people(connection)
        with pytest.raises(InvalidExpressionError):
            await people.query_records("Nope")

    async def test_query_record_count(self, connection):
        """Counts accept restrictions and filters together."""
        people = await _people(connection)
        assert await people.query_record_count() == 3
        assert await people.query_record_count_where("Age < {0}", 40) == 2
        count = await people.query_record_count(
            Restriction("Age < {0}", 40), RecordFilter(Person, "Name", "LIKE", "B*")
        )
        assert count == 1

    async def test_update_record(self, connection):
        """update_record writes the record and applies update expressions."""
        people = await _people(connection)
        bob = await people.load_record(2)
        bob.Age = 36
        assert await people.update_record(bob) == 1
        assert isinstance(bob.Updated, datetime)
        reloaded = await people.load_record(2)
        assert reloaded.Age == 36
        assert reloaded.Updated is not None

    async def test_update_record_with_restriction(self, connection):
        """A restriction selects the updated rows instead of the key."""
        people = await _people(connection)
        template = Person(Name="Same", Email="same@example.org", Age=99)
        assert await people.update_record_where(template, "Age > {0}", 30) == 2
        assert await people.query_record_count_where("Age = {0}", 99) == 2
        ann = await people.load_record(1)
        assert ann.Name == "Ann"

    async def test_add_new_or_update(self, connection):
        """Records with a default key are inserted, others updated."""
        people = await _people(connection)
        assert await people.add_new_or_update_record(Person(Name="Dee", Age=20)) == 1
        assert await people.query_record_count() == 4
        ann = await people.load_record(1)
        ann.Name = "Anne"
        assert await people.add_new_or_update_record(ann) == 1
        assert (await people.load_record(1)).Name == "Anne"
        assert await people.query_record_count() == 4

    async def test_add_new_from_row(self, connection):
        """Rows are accepted wherever a record is."""
        people = await _people(connection)
        assert await people.add_new_record({"Name": "Eve", "Age": 50}) == 1
        eve = await people.query_record_where("Name = {0}", "Eve")
        assert eve.Age == 50

    async def test_non_primary_field_restriction(self, connection):
        """The non-key restriction finds a just-inserted record."""
        people = await _people(connection)
        dee = Person(Name="Dee", Email="dee@example.org", Age=20)
        await people.add_new_record(dee)
        restriction = people.get_non_primary_field_record_restriction(dee)
        assert "Created IS NULL" in restriction.filter_expression
        found = await people.query_record(restriction)
        assert found.ID == 4

    async def test_delete(self, connection):
        """Records are deleted by record, key or restriction."""
        people = await _people(connection)
        ann = await people.load_record(1)
        assert await people.delete_record(ann) == 1
        assert await people.delete_record_by_key(2) == 1
        assert await people.delete_record_by_key(2) == 0
        assert await people.delete_record_where("Age > {0}", 40) == 1
        assert await people.query_record_count() == 0

    async def test_delete_records_requires_restriction(self, connection):
        """delete_records refuses to delete without a restriction."""
        people = TableOperations(Person, connection)
        with pytest.raises(ValueError, match="restriction is required"):
            await people.delete_records(None)

    async def test_to_data_table(self, connection):
        """Records materialize into a table shaped by the schema."""
        people = await _people(connection)
        data = people.to_data_table(await people.query_records())
        assert data.name == "Person"
        assert data.column_names[:3] == ["ID", "Name", "Email"]
        assert [row["Email"] for row in data] == [
            "ann@example.org",
            "bob@example.org",
            "cid@example.org",
        ]


class TestSearchRecords:
    """Tests for search_records and local sorting."""

    async def test_sort_on_encrypted_field(self, connection):
        """Encrypted sort fields are sorted locally on plaintext."""
        people = await _people(connection)
        await people.add_new_record(Person(Name="Abe", Email="zed@example.org", Age=60))
        records = await people.search_records("Email", False)
        assert [p.Email for p in records] == [
            "zed@example.org",
            "cid@example.org",
            "bob@example.org",
            "ann@example.org",
        ]

    async def test_filters_and_sort(self, connection):
        """Filters combine and plain fields sort in SQL."""
        people = await _people(connection)
        records = await people.search_records(
            "Age",
            False,
            RecordFilter(Person, "Age", ">", 20),
            None,
            RecordFilter(Person, "Name", "NOT LIKE", "C*"),
        )
        assert [p.Name for p in records] == ["Bob", "Ann"]

    def test_get_page_of_records(self):
        """Pages are 1-based slices; pages below 1 read the first page."""
        records = list(range(7))
        assert TableOperations.get_page_of_records(records, 2, 3) == [3, 4, 5]
        assert TableOperations.get_page_of_records(records, 3, 3) == [6]
        assert TableOperations.get_page_of_records(records, 0, 3) == [0, 1, 2]
        assert TableOperations.get_page_of_records(records, 1, 0) == []


class TestSortExtensions:
    """Tests for sort extensions through queries, paging and search."""

    async def test_query_records(self, connection):
        """query_records orders by the extension's expression."""
        ranked = await _ranked(connection)
        records = await ranked.query_records("NameLength")
        assert [r.ID for r in records] == [3, 1, 2]
        records = await ranked.query_records("NameLength DESC")
        assert [r.ID for r in records] == [2, 1, 3]

    async def test_query_page(self, connection):
        """query_page sorts the key cache by the extension's expression."""
        ranked = await _ranked(connection)
        first = await ranked.query_page("NameLength", True, 1, 2)
        second = await ranked.query_page("NameLength", True, 2, 2)
        assert [r.Name for r in first] == ["Al", "Zed"]
        assert [r.Name for r in second] == ["Maximilian"]
        page = await ranked.query_page("NameLength", False, 1, 1)
        assert [r.Name for r in page] == ["Maximilian"]

    async def test_encrypted_field_wins_over_extension(self, connection):
        """An encrypted sort field is sorted on plaintext, not by its extension."""
        ranked = await _ranked(connection)
        page = await ranked.query_page("Secret", True, 1, 3)
        assert [r.Secret for r in page] == ["a", "b", "c"]
        records = await ranked.search_records("Secret", False)
        assert [r.Secret for r in records] == ["c", "b", "a"]
        # The extension alone would order by Name
        by_name = await ranked.query_records(ranked.validate_order_by("Secret"))
        assert [r.Secret for r in by_name] == ["c", "a", "b"]


class TestRootQueryRestriction:
    """Tests for the table-level root restriction."""

    async def test_queries_are_restricted(self, connection):
        """Queries and counts only see rows matching the root restriction."""
        members = await _members(connection)
        assert [m.Name for m in await members.query_records()] == ["Ann", "Cid"]
        assert await members.query_record_count() == 2
        assert await members.query_record_count_where("Name = {0}", "Bob") == 0

    async def test_root_restriction_override(self, connection):
        """An explicit None root restriction disables it."""
        members = await _members(connection, root_query_restriction=None)
        assert await members.query_record_count() == 3

    async def test_update_narrows_key_match(self, connection):
        """Updates by key do not touch rows outside the root restriction."""
        members = await _members(connection)
        bob = Member(ID=2, Name="Robert", Active=False)
        assert await members.update_record(bob) == 0
        assert await members.update_record(bob, apply_root_query_restriction=False) == 1
        ann = Member(ID=1, Name="Anne", Active=True)
        assert await members.update_record(ann) == 1
        names = await connection.retrieve_data("SELECT Name FROM Member ORDER BY ID")
        assert [row["Name"] for row in names] == ["Anne", "Robert", "Cid"]

    async def test_delete_records_applies_root(self, connection):
        """Bulk deletes are narrowed by the root restriction."""
        members = await _members(connection)
        assert await members.delete_records(Restriction("ID > {0}", 0)) == 2
        remaining = await connection.execute_scalar("SELECT COUNT(*) FROM Member")
        assert remaining == 1

    async def test_delete_records_without_root(self, connection):
        """The delete flag can be turned off per engine."""
        members = await _members(connection, apply_root_query_restriction_to_deletes=False)
        assert await members.delete_records(Restriction("ID > {0}", 0)) == 3


class TestTemplateFinalization:
    """Tests for dialect escaping, amendments and custom tokens."""

    def test_sqlserver(self, keyring):
        """SQL Server gets brackets, amendments and no leftover tokens."""
        items = TableOperations(OrderItem, DataConnection(":memory:", "sqlserver", keyring=keyring))
        templates = items.templates
        assert items.table_name == "[Order Items]"
        assert items.unescaped_table_name == "Order Items"
        assert templates.select_count == "SELECT COUNT(*) FROM [Order Items] WITH (NOLOCK)"
        assert templates.select_set == "SELECT TOP 100 * FROM [Order Items] WITH (NOLOCK) ORDER BY {0}"
        assert templates.select_keys == (
            "SELECT TOP 100 OrderID FROM [Order Items] WITH (NOLOCK) ORDER BY {0}"
        )
        assert templates.select_row == "SELECT * FROM [Order Items] WHERE OrderID={0}"
        assert templates.update == "UPDATE [Order Items] SET [Order]={0} WHERE OrderID={1}"
        assert templates.add_new == "INSERT INTO [Order Items](OrderID, [Order]) VALUES ({0}, {1})"

    def test_other_dialect_removes_tokens(self, keyring):
        """Dialects without amendments get the plain statements."""
        items = TableOperations(OrderItem, DataConnection(":memory:", keyring=keyring))
        assert items.table_name == "Order Items"
        assert items.templates.select_set == "SELECT * FROM Order Items ORDER BY {0}"
        assert items.templates.delete == "DELETE FROM Order Items WHERE OrderID={0}"

    def test_update_field_names(self, keyring):
        """ANSI-quoted field names in filters become the dialect form."""
        items = TableOperations(OrderItem, DataConnection(":memory:", "sqlserver", keyring=keyring))
        assert items.update_field_names('"order" > {0}') == "[Order] > {0}"
        assert items.get_escaped_field_name("order") == "[Order]"
        assert items.validate_order_by("Order DESC, OrderID") == "[Order] DESC, OrderID"

    def test_custom_tokens_applied_last(self, keyring):
        """Custom tokens replace text in the finalized templates."""
        items = TableOperations(
            OrderItem,
            DataConnection(":memory:", "sqlserver", keyring=keyring),
            custom_tokens={"COUNT(*)": "COUNT_BIG(*)"},
        )
        assert items.templates.select_count == "SELECT COUNT_BIG(*) FROM [Order Items] WITH (NOLOCK)"


class TestExceptionHandler:
    """Tests for error routing and sentinel results."""

    async def test_errors_raise_without_handler(self, connection):
        """Execution errors are wrapped with SQL and parameters."""
        ghosts = TableOperations(Ghost, connection)
        with pytest.raises(TableOperationError) as excinfo:
            await ghosts.load_record(5)
        error = excinfo.value
        assert str(error).startswith(
            'Exception during record load for Ghost "SELECT * FROM Ghost WHERE ID={0}, 0:5": '
        )
        assert error.sql == "SELECT * FROM Ghost WHERE ID={0}"
        assert error.parameters == [5]
        assert error.__cause__ is not None

    async def test_handler_receives_errors(self, connection):
        """With a handler, operations return their sentinel values."""
        errors: list[Exception] = []
        ghosts = TableOperations(Ghost, connection, exception_handler=errors.append)
        assert await ghosts.load_record(1) is None
        assert await ghosts.query_records() == []
        assert await ghosts.query_record(Restriction("Name = {0}", "x")) is None
        assert await ghosts.query_record_count() == -1
        assert await ghosts.query_page(None, True, 1, 10) == []
        assert await ghosts.add_new_record(Ghost(ID=1)) == 0
        assert await ghosts.update_record(Ghost(ID=1)) == 0
        assert await ghosts.delete_record_by_key(1) == 0
        assert await ghosts.delete_record_where("ID > {0}", 0) == 0
        assert len(errors) == 9
        assert all(isinstance(e, TableOperationError) for e in errors)
        assert str(errors[3]).startswith(
            'Exception during record count query for Ghost "SELECT COUNT(*) FROM Ghost, ": '
        )

    async def test_timeout_is_routed(self, connection):
        """Statement timeouts reach the handler and return the sentinel."""
        await _people(connection)
        errors: list[Exception] = []
        people = TableOperations(Person, connection, exception_handler=errors.append)
        connection.default_timeout = 1e-9
        try:
            assert await people.query_record_count() == -1
        finally:
            connection.default_timeout = 30.0
        assert len(errors) == 1
        assert isinstance(errors[0], TableOperationError)
        assert isinstance(errors[0].__cause__, TimeoutError)

    async def test_cancellation_propagates(self, connection, monkeypatch):
        """CancelledError is never routed to the handler."""
        errors: list[Exception] = []
        people = TableOperations(Person, connection, exception_handler=errors.append)

        async def cancelled(*args, **kwargs):
            raise asyncio.CancelledError

        monkeypatch.setattr(connection, "execute_scalar", cancelled)
        with pytest.raises(asyncio.CancelledError):
            await people.query_record_count()
        assert errors == []

    async def test_configuration_errors_are_not_routed(self, connection):
        """Invalid expressions raise even when a handler is set."""
        errors: list[Exception] = []
        ghosts = TableOperations(Ghost, connection, exception_handler=errors.append)
        with pytest.raises(InvalidExpressionError):
            await ghosts.query_records("Nope")
        with pytest.raises(InvalidExpressionError):
            await ghosts.query_page("Nope", True, 1, 10)
        assert errors == []

    async def test_expression_errors_routed(self, connection):
        """Failing value expressions are routed like execution errors."""
        errors: list[Exception] = []
        broken = TableOperations(Broken, connection, exception_handler=errors.append)
        assert broken.new_record() is None
        assert isinstance(errors[0], RuntimeError)
