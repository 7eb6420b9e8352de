from django.contrib import admin
from django.urls import path, include
from drf_spectacular.views import SpectacularAPIView, SpectacularSwaggerView

from billing import health, webhook_views

urlpatterns = [
    path("admin/", admin.site.urls),
    path("health/", health.health_check, name="health_check"),
    path("webhooks/stripe/", webhook_views.stripe_webhook, name="stripe-webhook"),
    path("webhooks/paypal/", webhook_views.paypal_webhook, name="paypal-webhook"),
    path("api/schema/", SpectacularAPIView.as_view(), name="schema"),
    path("api/docs/", SpectacularSwaggerView.as_view(url_name="schema"), name="api-docs"),
    path("api/v1/", include("billing.api.urls")),
]
