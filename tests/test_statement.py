"""Tests for WHERE rendering of draft statements and the entity schema."""

import pytest
from sqlalchemy.dialects import sqlite

from optlock import SchemaError
from optlock.schema import is_zero, schema_for, storage_value
from optlock.statement import AndConditions, DraftStatement, OrConditions, StatementKind, build_predicate
from optlock.version import Version

from tests.entities import Account, Address, Ext, Note, User

users = User.__table__


def _sql(expr):
    return str(expr.compile(dialect=sqlite.dialect(), compile_kwargs={"literal_binds": True}))


# ---------------------------------------------------------------------------
# build_predicate
# ---------------------------------------------------------------------------

class TestBuildPredicate:

    def test_empty(self):
        assert build_predicate([]) is None

    def test_plain_conditions_are_anded(self):
        expr = build_predicate([users.c.id == 1, users.c.name == "bob"])
        assert _sql(expr) == "users.id = 1 AND users.name = 'bob'"

    def test_single_operand_or_joins_with_or(self):
        expr = build_predicate([users.c.id == 1, OrConditions([users.c.name == "bob"])])
        assert _sql(expr) == "users.id = 1 OR users.name = 'bob'"

    def test_and_binds_tighter_than_degenerate_or(self):
        expr = build_predicate([
            users.c.id == 1,
            OrConditions([users.c.name == "bob"]),
            users.c.version == 3,
        ])
        assert _sql(expr) == "users.id = 1 OR users.name = 'bob' AND users.version = 3"

    def test_and_group_is_parenthesized(self):
        expr = build_predicate([
            AndConditions([users.c.id == 1, OrConditions([users.c.name == "bob"])]),
            users.c.version == 3,
        ])
        assert _sql(expr) == "(users.id = 1 OR users.name = 'bob') AND users.version = 3"

    def test_multi_operand_or_is_a_group(self):
        expr = build_predicate([
            users.c.id == 1,
            OrConditions([users.c.name == "bob", users.c.age == 3]),
        ])
        assert _sql(expr) == "users.id = 1 AND (users.name = 'bob' OR users.age = 3)"

    def test_leading_or_is_plain(self):
        expr = build_predicate([OrConditions([users.c.name == "bob"]), users.c.id == 1])
        assert _sql(expr) == "users.name = 'bob' AND users.id = 1"


# ---------------------------------------------------------------------------
# DraftStatement
# ---------------------------------------------------------------------------

class TestDraftStatement:

    def test_target_prefers_model(self):
        model, dest = User(name="a"), User(name="b")
        stmt = DraftStatement(StatementKind.UPDATE, schema_for(User), model=model, dest=dest)
        assert stmt.target is model
        assert stmt.reflect_value is model

    def test_reflect_value_ignores_classes_and_mappings(self):
        stmt = DraftStatement(StatementKind.UPDATE, schema_for(User), model=User, dest={"age": 1})
        assert stmt.reflect_value is None
        assert stmt.targets() == []

    def test_targets_of_batch(self):
        batch = [User(name="a"), User(name="b")]
        stmt = DraftStatement(StatementKind.CREATE, schema_for(User), dest=batch)
        assert stmt.targets() == batch

    def test_selected_columns(self):
        stmt = DraftStatement(StatementKind.UPDATE, schema_for(User), selects=["name", "age"])
        assert stmt.restricted
        assert stmt.selected_columns() == {"name", "age"}

    def test_unrestricted(self):
        stmt = DraftStatement(StatementKind.UPDATE, schema_for(User))
        assert not stmt.restricted
        assert stmt.selected_columns() is None

    def test_reflect_value_survives_payload_swap(self):
        user = User(name="a")
        stmt = DraftStatement(StatementKind.UPDATE, schema_for(User), dest=user)
        stmt.dest = {"name": "a"}
        assert stmt.reflect_value is user

    def test_set_column_per_row(self):
        stmt = DraftStatement(StatementKind.CREATE, schema_for(User))
        stmt.set_column("version", 1, row=0)
        stmt.set_column("version", 100, row=1)
        assert stmt.row_assignments == {0: {"version": 1}, 1: {"version": 100}}
        assert stmt.assignments == {}


# ---------------------------------------------------------------------------
# EntitySchema
# ---------------------------------------------------------------------------

class TestEntitySchema:

    def test_finds_version_field(self):
        schema = schema_for(User)
        assert schema.version_field.key == "version"
        assert schema.version_field.column == "version"
        assert len(schema.create_hooks) == 1
        assert len(schema.update_hooks) == 1

    def test_entity_without_version(self):
        schema = schema_for(Note)
        assert schema.version_field is None
        assert schema.create_hooks == []
        assert schema.update_hooks == []

    def test_bookkeeping_columns(self):
        schema = schema_for(User)
        assert [pk.column for pk in schema.primary_keys] == ["id"]
        assert schema.auto_create_time.column == "created_at"
        assert schema.auto_update_time.column == "updated_at"

    def test_not_a_mapped_class(self):
        with pytest.raises(SchemaError):
            schema_for(dict)

    def test_resolve_columns(self):
        schema = schema_for(Account)
        assert schema.resolve_columns(["address"]) == {"city", "zip_code"}
        assert "version" in schema.resolve_columns(["*"])
        with pytest.raises(SchemaError):
            schema.resolve_columns(["nope"])

    def test_values_of_flattens_composite(self):
        account = Account(amount=5, address=Address("Paris", None))
        values = schema_for(Account).values_of(account, omit_zero=True)
        assert values["city"] == "Paris"
        assert "zip_code" not in values
        assert values["amount"] == 5

    def test_values_of_uses_storage_conversion(self):
        account = Account(ext=Ext(["123456"]))
        values = schema_for(Account).values_of(account, omit_zero=True)
        assert values["ext"] == '{"credit_cards": ["123456"]}'

    def test_values_of_restricted_keeps_zero(self):
        user = User(name="lewis")
        values = schema_for(User).values_of(user, columns={"name", "age"})
        assert values == {"name": "lewis", "age": None}


class TestZeroValues:

    @pytest.mark.parametrize("value", [None, 0, "", b"", False, 0.0, Version()])
    def test_zero(self, value):
        assert is_zero(value)

    @pytest.mark.parametrize("value", [1, "x", True, Version(0), [], object()])
    def test_non_zero(self, value):
        assert not is_zero(value)

    def test_storage_value(self):
        assert storage_value(Version(4)) == 4
        assert storage_value("plain") == "plain"
