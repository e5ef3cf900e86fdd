from django.urls import path

from .views import OrderCreateWebhookView, PointsBalanceView, RedeemPointsView

app_name = "pointsman"

urlpatterns = [
    path("webhooks/orders/create/", OrderCreateWebhookView.as_view(), name="orders-create-webhook"),
    path("redeem/", RedeemPointsView.as_view(), name="redeem-points"),
    path("points/", PointsBalanceView.as_view(), name="points-balance"),
]
