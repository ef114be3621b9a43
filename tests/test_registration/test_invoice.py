"""Tests for tax invoices in django_ticketing.registration.services.invoice."""

import datetime

import pytest
from django.db import IntegrityError

from django_ticketing.registration.models import Order, Registration
from django_ticketing.registration.services.invoice import (
    assign_invoice_number,
    build_invoice_document,
    generate_invoice_number,
    render_invoice,
)


def _make_order(*, subtotal=0, discount=0, invoice_number=None, **kwargs):
    return Order.objects.create(
        purchaser_email="buyer@example.com",
        purchaser_name="Buyer",
        payment_method=Order.PaymentMethod.INVOICE,
        subtotal_amount=subtotal,
        discount_amount=discount,
        total_amount=subtotal - discount,
        invoice_number=invoice_number,
        **kwargs,
    )


def _add_registration(order, *, name, ticket_type="Standard (Industry/Professional)", price=59500, discount=0, **kw):
    return Registration.objects.create(
        order=order,
        email=f"{name.lower()}@example.com",
        name=name,
        ticket_tier="standard",
        ticket_type=ticket_type,
        ticket_price=price,
        discount_amount=discount,
        amount_paid=price - discount,
        **kw,
    )


@pytest.mark.django_db
class TestInvoiceNumbers:
    def test_first_number(self):
        assert generate_invoice_number() == "TEST26-0001"

    def test_counts_issued_numbers(self):
        _make_order(invoice_number="TEST26-0001")
        _make_order()
        assert generate_invoice_number() == "TEST26-0002"
        assert generate_invoice_number(offset=2) == "TEST26-0004"

    def test_assign_sets_due_date(self):
        order = _make_order(subtotal=59500)
        assign_invoice_number(order, today=datetime.date(2026, 3, 1))
        order.refresh_from_db()
        assert order.invoice_number == "TEST26-0001"
        assert order.invoice_due_date == datetime.date(2026, 3, 15)

    def test_assign_skips_taken_number(self):
        _make_order(invoice_number="TEST26-0002")
        order = _make_order(subtotal=59500)
        assign_invoice_number(order)
        assert order.invoice_number == "TEST26-0003"

    def test_assign_gives_up_after_repeated_collisions(self):
        # Ten issued numbers, all sitting exactly where the next ten candidates fall.
        for n in range(11, 21):
            _make_order(invoice_number=f"TEST26-{n:04d}")
        order = _make_order(subtotal=59500)
        with pytest.raises(IntegrityError):
            assign_invoice_number(order)
        assert order.invoice_number is None


@pytest.mark.django_db
class TestInvoiceDocument:
    def test_groups_lines_by_type_and_price(self):
        order = _make_order(subtotal=143500, invoice_number="TEST26-0001", org_name="Acme", po_number="PO-9")
        _add_registration(order, name="Alice")
        _add_registration(order, name="Bob")
        _add_registration(order, name="Carol", ticket_type="Academic / Non-Profit / Government", price=24500)

        document = build_invoice_document(order)

        assert document.invoice_number == "TEST26-0001"
        assert [(item.quantity, item.unit_price, item.amount) for item in document.line_items] == [
            (2, 59500, 119000),
            (1, 24500, 24500),
        ]
        assert document.line_items[0].description == "Standard (Industry/Professional) Ticket - Test Summit 2026"
        assert sum(item.amount for item in document.line_items) == document.subtotal
        assert document.total == 143500
        assert document.gst_amount == 13045
        assert document.org_name == "Acme"
        assert document.bank.bsb == "062-000"
        assert len(document.attendees) == 3

    def test_complimentary_tickets_listed_but_not_charged(self):
        order = _make_order(subtotal=59500, invoice_number="TEST26-0001")
        _add_registration(order, name="Alice")
        _add_registration(order, name="Speaker", discount=59500, is_complimentary=True)

        document = build_invoice_document(order)

        assert len(document.line_items) == 1
        assert document.line_items[0].quantity == 1
        assert {a.name for a in document.attendees} == {"Alice", "Speaker"}

    def test_discount_shown(self):
        order = _make_order(subtotal=59500, discount=11900, invoice_number="TEST26-0001", coupon_code="SAVE20")
        _add_registration(order, name="Alice", discount=11900)

        text = render_invoice(build_invoice_document(order))

        assert "Discount (SAVE20): -$119.00" in text
        assert "Total (AUD, GST inclusive): $476.00" in text
        assert "GST included: $43.27" in text
        assert "Reference:      TEST26-0001" in text
