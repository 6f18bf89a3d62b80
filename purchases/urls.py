"""URL configuration for purchases app."""
from django.urls import path
from . import views

urlpatterns = [
    path('', views.initiate_purchase, name='initiate_purchase'),
    path('packages/', views.list_packages, name='list_packages'),
    path('<str:order_ref>/', views.get_purchase, name='get_purchase'),
    path('<str:order_ref>/confirm/', views.confirm_purchase, name='confirm_purchase'),
    path('<str:order_ref>/fail/', views.fail_purchase, name='fail_purchase'),
]
