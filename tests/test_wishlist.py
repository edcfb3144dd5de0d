"""Tests for the wishlist store."""

import pytest

from cart import add_to_cart, get_cart_lines
from catalog import delete_product
from errors import InvalidState, NotFound
from wishlist import add_to_wishlist, clear_wishlist, move_to_cart, remove_from_wishlist, view_wishlist


class TestWishlist:
    def test_add_and_view(self, db, customer, make_product):
        product = make_product("Dates", price="3.00", stock=0)
        add_to_wishlist(db, customer["id"], product)

        items = view_wishlist(db, customer["id"])

        assert [i["product_name"] for i in items] == ["Dates"]
        assert items[0]["in_stock"] is False

    def test_duplicate(self, db, customer, make_product):
        product = make_product()
        add_to_wishlist(db, customer["id"], product)
        with pytest.raises(InvalidState, match="already in wishlist"):
            add_to_wishlist(db, customer["id"], product)

    def test_deleted_product_is_hidden(self, db, customer, make_product):
        product = make_product()
        add_to_wishlist(db, customer["id"], product)
        delete_product(db, product)
        assert view_wishlist(db, customer["id"]) == []

    def test_remove_is_scoped_to_owner(self, db, customer, other_customer, make_product):
        entry = add_to_wishlist(db, customer["id"], make_product())
        with pytest.raises(NotFound):
            remove_from_wishlist(db, other_customer["id"], entry)
        remove_from_wishlist(db, customer["id"], entry)
        assert view_wishlist(db, customer["id"]) == []

    def test_clear(self, db, customer, make_product):
        add_to_wishlist(db, customer["id"], make_product("A"))
        add_to_wishlist(db, customer["id"], make_product("B"))
        assert clear_wishlist(db, customer["id"]) == 2


class TestMoveToCart:
    def test_moves_and_removes_entry(self, db, customer, make_product):
        product = make_product(stock=5)
        entry = add_to_wishlist(db, customer["id"], product)

        result = move_to_cart(db, customer["id"], entry, 2)

        assert result["quantity"] == 2
        assert [line["quantity"] for line in get_cart_lines(db, customer["id"])] == [2]
        assert view_wishlist(db, customer["id"]) == []

    def test_merges_with_existing_cart_line(self, db, customer, make_product):
        product = make_product(stock=5)
        add_to_cart(db, customer["id"], product, 1)
        entry = add_to_wishlist(db, customer["id"], product)

        assert move_to_cart(db, customer["id"], entry, 2)["quantity"] == 3

    def test_stock_check_keeps_entry(self, db, customer, make_product):
        product = make_product(stock=5)
        add_to_cart(db, customer["id"], product, 4)
        entry = add_to_wishlist(db, customer["id"], product)

        with pytest.raises(InvalidState, match="exceeds available stock"):
            move_to_cart(db, customer["id"], entry, 2)

        assert get_cart_lines(db, customer["id"])[0]["quantity"] == 4
        assert len(view_wishlist(db, customer["id"])) == 1

    def test_other_users_entry(self, db, customer, other_customer, make_product):
        entry = add_to_wishlist(db, customer["id"], make_product())
        with pytest.raises(NotFound, match="Wishlist item not found"):
            move_to_cart(db, other_customer["id"], entry)
