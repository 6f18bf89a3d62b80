"""URL configuration for ledger app."""
from django.urls import path
from . import views

urlpatterns = [
    path('<str:account_id>/balance/', views.get_balance, name='get_balance'),
    path('<str:account_id>/history/', views.get_history, name='get_history'),
    path('<str:account_id>/debit/', views.debit_credits, name='debit_credits'),
    path('<str:account_id>/adjust/', views.adjust_credits, name='adjust_credits'),
    path('<str:account_id>/signup-bonus/', views.grant_signup_bonus, name='grant_signup_bonus'),
]

admin_urlpatterns = [
    path('entries/', views.list_entries, name='list_entries'),
    path('analytics/', views.get_analytics, name='credit_analytics'),
    path('export/', views.export_entries, name='export_entries'),
]
