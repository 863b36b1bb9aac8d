# Overview: Pytest coverage for sale creation, cancellation and sale reads.

import pytest

from backoffice.models import Product, Sale, SaleItem, StockMovement
from backoffice.services import sales_service, ledger_service, price_history_service
from backoffice.validation import (
    ConflictError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)


def _sale(user, items, **kwargs):
    kwargs.setdefault("client_name", "Walk-in")
    return sales_service.create_sale(user_id=user.id, items=items, **kwargs)


class TestCreateSale:

    def test_retail_sale_and_cancel_restore_stock(self, db_session, user, make_product):
        """retail=8, stock=10; sell 2 -> subtotal 16, stock 8; cancel -> stock 10."""
        p = make_product(retail_price=8.0, stock=10)

        sale = _sale(user, [{"product_id": p.id, "quantity": 2}], sale_type="retail")

        assert sale.status == "completed"
        assert sale.subtotal == 16.0
        assert sale.total_amount == 16.0
        assert len(sale.items) == 1
        assert sale.items[0].unit_price == 8.0
        assert sale.items[0].unit_cost == 5.0
        assert sale.user.id == user.id
        assert db_session.get(Product, p.id).stock == 8

        cancelled = sales_service.cancel_sale(sale.id, user.id)

        assert cancelled.status == "cancelled"
        assert cancelled.cancelled_by_user_id == user.id
        assert cancelled.to_dict()["cancelled_by"]["id"] == user.id
        assert cancelled.cancelled_at is not None
        assert db_session.get(Product, p.id).stock == 10

    def test_insufficient_stock_reports_and_writes_nothing(self, db_session, user, make_product):
        p = make_product(stock=2)

        with pytest.raises(InsufficientStockError) as exc:
            _sale(user, [{"product_id": p.id, "quantity": 5}])

        report = exc.value.details["items"]
        assert report == [{
            "product_id": p.id,
            "product_name": p.name,
            "requested": 5,
            "available": 2,
        }]
        assert db_session.get(Product, p.id).stock == 2
        assert db_session.query(Sale).count() == 0
        assert db_session.query(SaleItem).count() == 0
        assert db_session.query(StockMovement).count() == 0

    def test_report_lists_every_short_line(self, db_session, user, make_product):
        a = make_product(stock=1)
        b = make_product(stock=10)
        c = make_product(stock=0)

        with pytest.raises(InsufficientStockError) as exc:
            _sale(user, [
                {"product_id": a.id, "quantity": 2},
                {"product_id": b.id, "quantity": 1},
                {"product_id": c.id, "quantity": 1},
            ])

        short = [line["product_id"] for line in exc.value.details["items"]]
        assert short == [a.id, c.id]
        assert db_session.get(Product, b.id).stock == 10

    def test_repeated_product_checked_cumulatively(self, db_session, user, make_product):
        p = make_product(stock=5)

        with pytest.raises(InsufficientStockError) as exc:
            _sale(user, [
                {"product_id": p.id, "quantity": 3},
                {"product_id": p.id, "quantity": 3},
            ])

        assert exc.value.details["items"] == [{
            "product_id": p.id, "product_name": p.name, "requested": 3, "available": 2,
        }]
        assert db_session.get(Product, p.id).stock == 5

    def test_unknown_product_aborts_whole_sale(self, db_session, user, product):
        with pytest.raises(NotFoundError) as exc:
            _sale(user, [
                {"product_id": product.id, "quantity": 1},
                {"product_id": 9999, "quantity": 1},
            ])

        assert exc.value.details == {"product_id": 9999}
        assert db_session.get(Product, product.id).stock == 10
        assert db_session.query(Sale).count() == 0
        assert db_session.query(StockMovement).count() == 0

    def test_totals_identity_with_tax_discounts_and_explicit_price(self, db_session, user, make_product):
        a = make_product(retail_price=10.0)
        b = make_product(retail_price=4.0)

        sale = _sale(
            user,
            [
                {"product_id": a.id, "quantity": 2, "discount": 25},
                {"product_id": b.id, "quantity": 3, "unit_price": 3.5},
            ],
            tax_amount=2.0,
            discount_amount=1.5,
        )

        assert sale.items[0].total_price == pytest.approx(15.0)
        assert sale.items[1].unit_price == 3.5
        assert sale.items[1].total_price == pytest.approx(10.5)
        assert sale.subtotal == pytest.approx(sum(i.total_price for i in sale.items))
        assert sale.total_amount == pytest.approx(sale.subtotal + sale.tax_amount - sale.discount_amount)
        assert sale.total_amount == pytest.approx(26.0)

    def test_wholesale_uses_wholesale_price(self, db_session, user, make_product):
        p = make_product(retail_price=8.0, wholesale_price=6.0)

        sale = _sale(user, [{"product_id": p.id, "quantity": 4}], sale_type="wholesale")

        assert sale.sale_type == "wholesale"
        assert sale.items[0].unit_price == 6.0
        assert sale.subtotal == 24.0

    def test_explicit_zero_price_is_kept(self, db_session, user, product):
        sale = _sale(user, [{"product_id": product.id, "quantity": 1, "unit_price": 0}])
        assert sale.items[0].unit_price == 0.0
        assert sale.total_amount == 0.0

    def test_later_price_change_does_not_touch_sale(self, db_session, user, product):
        sale = _sale(user, [{"product_id": product.id, "quantity": 1}])

        price_history_service.register_price_change(
            product_id=product.id, price_type="retail", value=99.0, user_id=user.id,
        )

        reloaded = sales_service.get_sale_by_id(sale.id)
        assert reloaded.items[0].unit_price == 8.0

    def test_negative_total_rejected(self, db_session, user, product):
        with pytest.raises(ValidationError):
            _sale(user, [{"product_id": product.id, "quantity": 1}], discount_amount=100.0)
        assert db_session.query(Sale).count() == 0
        assert db_session.get(Product, product.id).stock == 10

    def test_discount_equal_to_subtotal_gives_zero_total(self, db_session, user, make_product):
        """0.70 + 0.10 with a flat 0.80 discount is a free sale, not a negative one."""
        a = make_product(retail_price=0.7)
        b = make_product(retail_price=0.1)

        sale = _sale(
            user,
            [{"product_id": a.id, "quantity": 1}, {"product_id": b.id, "quantity": 1}],
            discount_amount=0.8,
        )

        assert sale.subtotal == 0.8
        assert sale.total_amount == 0.0
        assert sale.subtotal == round(sum(item.total_price for item in sale.items), 2)

    def test_totals_stored_in_cents(self, db_session, user, make_product):
        a = make_product(retail_price=0.1)
        b = make_product(retail_price=0.2)

        sale = _sale(
            user,
            [{"product_id": a.id, "quantity": 1}, {"product_id": b.id, "quantity": 1}],
            discount_amount=0.3,
        )
        assert sale.subtotal == 0.3
        assert sale.total_amount == 0.0

        # 3 x 3.33 at 10% off is 8.991 before rounding
        c = make_product(retail_price=3.33)
        discounted = _sale(user, [{"product_id": c.id, "quantity": 3, "discount": 10}])
        assert discounted.items[0].total_price == 8.99
        assert discounted.subtotal == 8.99

    def test_writes_one_output_movement_per_line(self, db_session, user, make_product):
        a = make_product()
        b = make_product()

        sale = _sale(user, [{"product_id": a.id, "quantity": 1}, {"product_id": b.id, "quantity": 2}])

        movements = db_session.query(StockMovement).filter_by(sale_id=sale.id).order_by(StockMovement.id).all()
        assert [(m.product_id, m.movement_type, m.reason, m.quantity) for m in movements] == [
            (a.id, "output", "sale", 1),
            (b.id, "output", "sale", 2),
        ]
        assert all(m.reference_id == str(sale.id) for m in movements)
        assert all(m.document_reference == str(sale.id) for m in movements)

    def test_default_payment_method(self, app, db_session, user, product):
        sale = _sale(user, [{"product_id": product.id, "quantity": 1}])
        assert sale.payment_method == app.config["DEFAULT_PAYMENT_METHOD"]

        sale = _sale(user, [{"product_id": product.id, "quantity": 1}], payment_method="card")
        assert sale.payment_method == "card"

    @pytest.mark.parametrize("items", [
        [],
        None,
        [{"product_id": 1, "quantity": 0}],
        [{"product_id": 1, "quantity": 2.5}],
        [{"product_id": 1, "quantity": 1, "unit_price": -1}],
        [{"product_id": 1, "quantity": 1, "discount": 101}],
        [{"product_id": 1, "quantity": 1, "discount": -5}],
        ["not-a-line"],
    ])
    def test_invalid_lines(self, db_session, user, product, items):
        with pytest.raises(ValidationError):
            _sale(user, items)

    def test_invalid_header(self, db_session, user, product):
        line = [{"product_id": product.id, "quantity": 1}]
        with pytest.raises(ValidationError):
            _sale(user, line, client_name="   ")
        with pytest.raises(ValidationError):
            _sale(user, line, sale_type="vip")
        with pytest.raises(ValidationError):
            _sale(user, line, tax_amount=-1)
        with pytest.raises(ValidationError):
            sales_service.create_sale(user_id=None, client_name="x", items=line)


class TestCancelSale:

    def test_second_cancel_conflicts_without_stock_change(self, db_session, user, product):
        sale = _sale(user, [{"product_id": product.id, "quantity": 3}])
        sales_service.cancel_sale(sale.id, user.id)
        assert db_session.get(Product, product.id).stock == 10

        with pytest.raises(ConflictError):
            sales_service.cancel_sale(sale.id, user.id)

        assert db_session.get(Product, product.id).stock == 10
        returns = db_session.query(StockMovement).filter_by(movement_type="return_in").count()
        assert returns == 1

    def test_cancel_writes_return_movements(self, db_session, user, other_user, make_product):
        a = make_product(cost=2.0)
        b = make_product(cost=3.0)
        sale = _sale(user, [{"product_id": a.id, "quantity": 1}, {"product_id": b.id, "quantity": 2}])

        sales_service.cancel_sale(sale.id, other_user.id)

        returns = (
            db_session.query(StockMovement)
            .filter_by(sale_id=sale.id, movement_type="return_in")
            .order_by(StockMovement.id)
            .all()
        )
        assert [(m.product_id, m.quantity, m.reason, m.unit_cost, m.user_id) for m in returns] == [
            (a.id, 1, "return", 2.0, other_user.id),
            (b.id, 2, "return", 3.0, other_user.id),
        ]
        assert ledger_service.rebuild_stock(a.id)["consistent"] is True
        assert ledger_service.rebuild_stock(b.id)["consistent"] is True

    def test_cancel_unknown_sale(self, db_session, user):
        with pytest.raises(NotFoundError):
            sales_service.cancel_sale(4242, user.id)

    def test_cancel_fails_closed_for_inactive_product(self, db_session, user, make_product):
        a = make_product()
        b = make_product()
        sale = _sale(user, [{"product_id": a.id, "quantity": 1}, {"product_id": b.id, "quantity": 1}])

        prod_b = db_session.get(Product, b.id)
        prod_b.is_active = False
        db_session.commit()

        with pytest.raises(ConflictError):
            sales_service.cancel_sale(sale.id, user.id)

        assert db_session.get(Sale, sale.id).status == "completed"
        assert db_session.get(Product, a.id).stock == 9
        assert db_session.get(Product, b.id).stock == 9

    def test_cancel_fails_closed_for_deleted_product(self, db_session, user, make_product):
        a = make_product()
        b = make_product()
        sale = _sale(user, [{"product_id": a.id, "quantity": 1}, {"product_id": b.id, "quantity": 1}])
        sale_id, user_id, a_id, b_id = sale.id, user.id, a.id, b.id

        db_session.execute(Product.__table__.delete().where(Product.id == b_id))
        db_session.commit()
        db_session.expunge_all()

        with pytest.raises(ConflictError) as exc:
            sales_service.cancel_sale(sale_id, user_id)

        assert exc.value.details["product_id"] == b_id
        assert db_session.get(Sale, sale_id).status == "completed"
        assert db_session.get(Product, a_id).stock == 9
        assert db_session.query(StockMovement).filter_by(movement_type="return_in").count() == 0


class TestSaleReads:

    def test_get_sale_by_id(self, db_session, user, product):
        sale = _sale(user, [{"product_id": product.id, "quantity": 1}])
        loaded = sales_service.get_sale_by_id(sale.id)
        assert loaded.id == sale.id
        assert loaded.items[0].product.id == product.id

        with pytest.raises(NotFoundError):
            sales_service.get_sale_by_id(777)

    def test_filters_and_order(self, db_session, user, other_user, make_product):
        p = make_product(stock=100)
        first = _sale(user, [{"product_id": p.id, "quantity": 1}], client_name="Maria Lopez")
        second = _sale(other_user, [{"product_id": p.id, "quantity": 1}], client_name="JOSE MARTIN")
        third = _sale(user, [{"product_id": p.id, "quantity": 1}], client_name="Ana Maria", sale_type="wholesale")
        sales_service.cancel_sale(second.id, user.id)

        everything = sales_service.get_sales()
        assert everything["total"] == 3
        assert [s.id for s in everything["items"]] == [third.id, second.id, first.id]

        by_name = sales_service.get_sales(client_name="maria")
        assert {s.id for s in by_name["items"]} == {first.id, third.id}

        assert [s.id for s in sales_service.get_sales(user_id=other_user.id)["items"]] == [second.id]
        assert [s.id for s in sales_service.get_sales(status="cancelled")["items"]] == [second.id]
        assert [s.id for s in sales_service.get_sales(sale_type="wholesale")["items"]] == [third.id]

        page = sales_service.get_sales(limit=1, offset=1)
        assert page["total"] == 3
        assert [s.id for s in page["items"]] == [second.id]

    def test_invalid_filters(self, db_session):
        with pytest.raises(ValidationError):
            sales_service.get_sales(status="refunded")
        with pytest.raises(ValidationError):
            sales_service.get_sales(sale_type="vip")

    def test_client_name_filter_matches_wildcards_literally(self, db_session, user, product):
        percent = _sale(user, [{"product_id": product.id, "quantity": 1}], client_name="100% Cotton SA")
        _sale(user, [{"product_id": product.id, "quantity": 1}], client_name="Ana Ruiz")
        _sale(user, [{"product_id": product.id, "quantity": 1}], client_name="Ana_Ruiz")

        assert [s.id for s in sales_service.get_sales(client_name="%")["items"]] == [percent.id]
        assert [s.client_name for s in sales_service.get_sales(client_name="a_r")["items"]] == ["Ana_Ruiz"]
