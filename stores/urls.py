"""
Stores — URL Configuration

@file stores/urls.py
"""

from django.urls import include, path
from rest_framework.routers import SimpleRouter

from .views import CompanyViewSet, MedicalStoreViewSet, SupplierViewSet

app_name = 'stores'

router = SimpleRouter()
router.register('', MedicalStoreViewSet, basename='store')

store_router = SimpleRouter()
store_router.register('companies', CompanyViewSet, basename='company')
store_router.register('suppliers', SupplierViewSet, basename='supplier')

urlpatterns = [
    path('<uuid:store_pk>/', include(store_router.urls)),
    path('', include(router.urls)),
]
