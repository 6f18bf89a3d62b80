"""URL configuration for credits_ledger project."""
from django.contrib import admin
from django.urls import include, path

from ledger.urls import admin_urlpatterns as ledger_admin_urlpatterns

urlpatterns = [
    path('admin/', admin.site.urls),
    path('api/admin/credits/', include(ledger_admin_urlpatterns)),
    path('api/accounts/', include('ledger.urls')),
    path('api/accounts/', include('refunds.urls')),
    path('api/purchases/', include('purchases.urls')),
]
