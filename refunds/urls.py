"""URL configuration for refunds app."""
from django.urls import path
from . import views

urlpatterns = [
    path('<str:account_id>/refunds/', views.apply_refund, name='apply_refund'),
    path(
        '<str:account_id>/refunds/<int:entry_id>/eligibility/',
        views.refund_eligibility,
        name='refund_eligibility',
    ),
]
