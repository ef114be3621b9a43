"""URL configuration for the registration app.

Includes checkout, coupon preview, access-code checks, cancellation, and the
Stripe webhook endpoint. Mount these under a prefix in the host project::

    urlpatterns = [
        path("registration/", include("django_ticketing.registration.urls")),
    ]
"""

from django.urls import path

from django_ticketing.registration.models import Registration
from django_ticketing.registration.views import AccessCodeView, CancellationView, CheckoutView, CouponPreviewView
from django_ticketing.registration.webhooks import stripe_webhook

app_name = "registration"

urlpatterns = [
    path("checkout/", CheckoutView.as_view(), name="checkout"),
    path("coupons/preview/", CouponPreviewView.as_view(), name="coupon-preview"),
    path("access-codes/check/", AccessCodeView.as_view(), name="access-code-check"),
    path("orders/<int:pk>/cancel/", CancellationView.as_view(), name="order-cancel"),
    path(
        "registrations/<int:pk>/cancel/",
        CancellationView.as_view(model=Registration),
        name="registration-cancel",
    ),
    path("webhooks/stripe/", stripe_webhook, name="stripe-webhook"),
]
