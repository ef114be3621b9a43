"""Custom signals for the registration app.

Signals:
    order_paid: Sent after an order transitions to PAID and the transaction
        has committed.
        Sender: The ``Order`` class.
        Kwargs:
            order: The ``Order`` instance that was paid.
    order_cancelled: Sent after an order is cancelled by an operator or the
        purchaser.
        Sender: The ``Order`` class.
        Kwargs:
            order: The cancelled ``Order`` instance.
            refunded: Whether a provider refund was issued.
"""

from django.dispatch import Signal

order_paid = Signal()
order_cancelled = Signal()
