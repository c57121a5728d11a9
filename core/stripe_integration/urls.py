from django.urls import path
from .views import CreateCheckoutSessionView

app_name = "stripe_integration"

urlpatterns = [
    path("stripe/checkout-session/", CreateCheckoutSessionView.as_view(), name="stripe-checkout-session"),
]
