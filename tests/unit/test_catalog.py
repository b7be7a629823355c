import pytest

from adapters.catalog import CatalogQueries, group_foreign_keys, group_index_columns, run_operation, yes_no
from adapters.errors import InvalidInput
from adapters.models import ColumnInfo, EngineKind, IndexInfo, TableFields, parse_operation


def test_group_foreign_keys_keeps_composite_order():
    rows = [
        ("fk_line_order", "order_id", "orders", "id"),
        ("fk_line_order", "order_rev", "orders", "rev"),
        ("fk_line_product", "product_id", "products", "id"),
    ]
    keys = group_foreign_keys(rows)
    assert [fk.name for fk in keys] == ["fk_line_order", "fk_line_product"]
    assert keys[0].columns == ["order_id", "order_rev"]
    assert keys[0].referenced_columns == ["id", "rev"]
    assert keys[1].referenced_table == "products"


def test_group_index_columns_skips_expression_columns():
    rows = [
        ("ix_orders_customer", "orders", "customer_id", False),
        ("ix_orders_customer", "orders", "created_at", False),
        ("ux_users_email", "users", None, True),
    ]
    summaries = group_index_columns(rows)
    assert summaries[0].columns == ["customer_id", "created_at"]
    assert summaries[0].unique is False
    assert summaries[1].table == "users"
    assert summaries[1].columns == []
    assert summaries[1].unique is True


def test_yes_no():
    assert yes_no("YES") is True
    assert yes_no(b"yes") is True
    assert yes_no("NO") is False
    assert yes_no(None) is False


class InMemoryCatalog(CatalogQueries):
    engine = EngineKind.POSTGRES

    def __init__(self):
        super().__init__(conn=None)
        self.calls = []

    def default_schema(self):
        return "public"

    def list_tables(self, schema):
        return ["orders"]

    def list_views(self, schema):
        return ["recent_orders"]

    def list_indexes(self, schema, table):
        return []

    def table_exists(self, schema, table):
        return table == "orders"

    def columns(self, schema, table):
        self.calls.append("columns")
        return [ColumnInfo(name="id", data_type="integer", nullable=False)]

    def primary_key_columns(self, schema, table):
        self.calls.append("primary_key")
        return ["id"]

    def foreign_key_rows(self, schema, table):
        self.calls.append("foreign_keys")
        return []

    def indexes(self, schema, table):
        self.calls.append("indexes")
        return [IndexInfo(name="ix_orders_id", columns=["id"], unique=True)]

    def view_definition(self, schema, view):
        if view == "recent_orders":
            return True, "SELECT * FROM orders"
        return False, None


def test_table_details_honours_field_selection():
    catalog = InMemoryCatalog()
    operation = parse_operation({"op": "table_details", "name": "orders", "fields": TableFields.parse("columns,indexes")})
    result = run_operation(catalog, operation, "sales")
    assert result.kind == "table_details"
    assert result.table.schema_name == "sales"
    assert [c.name for c in result.table.columns] == ["id"]
    assert result.table.primary_key is None
    assert result.table.indexes[0].unique is True
    assert catalog.calls == ["columns", "indexes"]


def test_missing_table_and_view_are_invalid_input():
    catalog = InMemoryCatalog()
    with pytest.raises(InvalidInput, match="Table 'ghost' not found"):
        run_operation(catalog, parse_operation({"op": "table_details", "name": "ghost"}), "public")
    with pytest.raises(InvalidInput, match="View 'ghost' not found"):
        run_operation(catalog, parse_operation({"op": "view_details", "name": "ghost"}), "public")


def test_view_details_reuses_column_lookup():
    result = run_operation(InMemoryCatalog(), parse_operation({"op": "view_details", "name": "recent_orders"}), "public")
    assert result.view.definition == "SELECT * FROM orders"
    assert result.view.columns[0].name == "id"
    assert result.model_dump(by_alias=True)["view"]["schema"] == "public"


def test_listing_databases_is_unsupported_by_default():
    with pytest.raises(InvalidInput, match="does not support listing databases"):
        run_operation(InMemoryCatalog(), parse_operation({"op": "list_databases"}), None)


def test_table_fields_parse():
    assert TableFields.parse(None) == TableFields()
    assert TableFields.parse("all") == TableFields()
    assert TableFields.parse("primary-key") == TableFields(columns=False, primary_key=True, foreign_keys=False, indexes=False)
    with pytest.raises(ValueError, match="Unknown table fields: triggers"):
        TableFields.parse("columns,triggers")
