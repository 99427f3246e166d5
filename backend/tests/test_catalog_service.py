"""
Catalog and settings service tests.

Master data rules: opening stock, primary location, reference guards on
delete, permission codes on users.
"""

import pytest

from conftest import stock_at
from vinerp.models import Location, Product, User
from vinerp.services import catalog_service, invoice_service, settings_service
from vinerp.services.catalog_service import CatalogError, CatalogNotFound
from vinerp.services.settings_service import SettingsError


# =============================================================================
# PRODUCTS
# =============================================================================


class TestProducts:
    def test_create_with_opening_stock(self, db_session, store, warehouse, piece_unit):
        product = catalog_service.create_product({
            "code": "P-0100",
            "barcode": "4760000001001",
            "name": "Green tea",
            "unit_id": piece_unit.id,
            "sales_price_cents": 450,
            "purchase_price_cents": 300,
            "stocks": {store.id: 12, str(warehouse.id): 3},
        })

        assert stock_at(product.id, store.id) == 12
        assert stock_at(product.id, warehouse.id) == 3
        assert db_session.get(Product, product.id).stock == 15

    def test_opening_stock_at_unknown_location(self, db_session, store):
        with pytest.raises(CatalogError):
            catalog_service.create_product({"code": "P-0101", "name": "Tea", "stocks": {999: 1}})
        assert db_session.query(Product).count() == 0

    @pytest.mark.parametrize("patch", [
        {"code": "P-0102", "name": ""},
        {"code": "", "name": "Tea"},
        {"code": "P-0102", "name": "Tea", "sales_price_cents": -1},
        {"code": "P-0102", "name": "Tea", "sales_price_cents": 1.5},
        {"code": "P-0102", "name": "Tea", "vat_rate": 120},
        {"code": "P-0102", "name": "Tea", "unit_id": 999},
    ])
    def test_invalid_products_rejected(self, db_session, patch):
        with pytest.raises(CatalogError):
            catalog_service.create_product(patch)

    def test_duplicate_code_rejected(self, db_session, water):
        with pytest.raises(CatalogError):
            catalog_service.create_product({"code": "P-0001", "name": "Another water"})

    def test_barcode_lookup_falls_back_to_code(self, db_session, water, tomatoes):
        assert catalog_service.find_product_by_barcode("4760000000011").id == water.id
        assert catalog_service.find_product_by_barcode("P-0003").id == tomatoes.id
        assert catalog_service.find_product_by_barcode("nope") is None

    def test_search(self, db_session, water, tomatoes):
        assert [p.id for p in catalog_service.list_products(search="tomat")] == [tomatoes.id]

    def test_update_does_not_touch_stock(self, db_session, store, water):
        catalog_service.update_product(water.id, {"sales_price_cents": 120, "stocks": {store.id: 999}})
        assert db_session.get(Product, water.id).sales_price_cents == 120
        assert stock_at(water.id, store.id) == 50

    def test_delete_referenced_product_rejected(self, db_session, settings, admin, water):
        invoice_service.commit_invoice({
            "type": "SALE",
            "items": [{"product_id": water.id, "quantity": 1, "price_cents": 100}],
            "payment_method": "CASH",
        }, user=admin)
        with pytest.raises(CatalogError):
            catalog_service.delete_product(water.id)

    def test_delete_unused_product(self, db_session, tomatoes):
        product_id = tomatoes.id
        catalog_service.delete_product(product_id)
        with pytest.raises(CatalogNotFound):
            catalog_service.get_product(product_id)


# =============================================================================
# LOCATIONS
# =============================================================================


class TestLocations:
    def test_first_location_is_primary(self, db_session):
        location = catalog_service.create_location({"name": "Shop", "type": "STORE"})
        assert location.is_primary is True

    def test_single_primary(self, db_session, store):
        depot = catalog_service.create_location({"name": "Depot", "type": "WAREHOUSE", "is_primary": True})

        primaries = db_session.query(Location).filter_by(is_primary=True).all()
        assert [loc.id for loc in primaries] == [depot.id]

    def test_invalid_type(self, db_session):
        with pytest.raises(CatalogError):
            catalog_service.create_location({"name": "Van", "type": "TRUCK"})

    def test_delete_location_with_stock_rejected(self, db_session, store, water):
        with pytest.raises(CatalogError):
            catalog_service.delete_location(store.id)

    def test_delete_empty_location(self, db_session, warehouse):
        location_id = warehouse.id
        catalog_service.delete_location(location_id)
        assert db_session.get(Location, location_id) is None


# =============================================================================
# LOOKUPS / PARTNERS
# =============================================================================


class TestLookupsAndPartners:
    def test_lookup_crud(self, db_session):
        category = catalog_service.create_lookup("categories", {"name": "Drinks"})
        catalog_service.update_lookup("categories", category.id, {"name": "Beverages"})
        assert [c.name for c in catalog_service.list_lookup("categories")] == ["Beverages"]

        with pytest.raises(CatalogError):
            catalog_service.create_lookup("categories", {"name": "Beverages"})

        catalog_service.delete_lookup("categories", category.id)
        assert catalog_service.list_lookup("categories") == []

    def test_unknown_lookup_kind(self, db_session):
        with pytest.raises(CatalogNotFound):
            catalog_service.list_lookup("colors")

    def test_customer_discount_range(self, db_session):
        with pytest.raises(CatalogError):
            catalog_service.create_customer({"name": "Nigar", "discount_rate": 150})

    def test_customer_with_balance_cannot_be_deleted(self, db_session, customer):
        customer.balance_cents = 500
        db_session.commit()
        with pytest.raises(CatalogError):
            catalog_service.delete_customer(customer.id)

    def test_supplier_search(self, db_session, supplier):
        assert [s.id for s in catalog_service.list_suppliers("wholesale")] == [supplier.id]


# =============================================================================
# REGISTERS / USERS
# =============================================================================


class TestRegistersAndUsers:
    def test_unknown_permission_rejected(self, db_session):
        with pytest.raises(CatalogError) as exc:
            catalog_service.create_user({"username": "kassa2", "permissions": ["fly"]})
        assert exc.value.details["permissions"] == ["fly"]

    def test_duplicate_username(self, db_session, cashier):
        with pytest.raises(CatalogError):
            catalog_service.create_user({"username": "cashier"})

    def test_deleting_register_unassigns_users(self, db_session, register, cashier):
        catalog_service.update_user(cashier.id, {"assigned_cash_register_id": register.id})

        catalog_service.delete_register(register.id)

        assert db_session.get(User, cashier.id).assigned_cash_register_id is None
        assert catalog_service.list_registers() == []

    def test_bank_with_transactions_cannot_be_deleted(self, db_session, settings, admin, water, bank):
        invoice_service.commit_invoice({
            "type": "SALE",
            "items": [{"product_id": water.id, "quantity": 1, "price_cents": 100}],
            "payment_method": "CARD",
            "bank_id": bank.id,
        }, user=admin)
        with pytest.raises(CatalogError):
            catalog_service.delete_bank(bank.id)


# =============================================================================
# SETTINGS
# =============================================================================


class TestSettings:
    def test_created_on_first_use(self, db_session):
        settings = settings_service.get_settings()
        assert settings.currency == "AZN"
        assert settings.allow_negative_stock is True

    def test_update(self, db_session, settings, bank):
        updated = settings_service.update_settings({"default_bank_id": bank.id, "allow_negative_stock": True})
        assert updated.default_bank_id == bank.id
        assert updated.allow_negative_stock is True

    def test_unknown_field_rejected(self, db_session, settings):
        with pytest.raises(SettingsError):
            settings_service.update_settings({"tenant_id": 2})

    def test_unknown_bank_rejected(self, db_session, settings):
        with pytest.raises(SettingsError):
            settings_service.update_settings({"default_bank_id": 999})
