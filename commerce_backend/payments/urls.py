# payments/urls.py
"""
PAYMENT GATEWAY URLS

Base path (mounted in backend/urls.py):
    /api/payments/

- GET|POST /api/payments/pesapal/callback/   IPN (register this URL with Pesapal)
- GET      /api/payments/pesapal/confirm/    customer return URL
"""

from django.urls import path

from payments.views.pesapal_callback import PesapalCallbackView
from payments.views.pesapal_confirm import PesapalConfirmView

app_name = "payments"

urlpatterns = [
    path("pesapal/callback/", PesapalCallbackView.as_view(), name="pesapal-callback"),
    path("pesapal/confirm/", PesapalConfirmView.as_view(), name="pesapal-confirm"),
]
