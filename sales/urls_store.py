"""
Sales — Store-scoped URL Configuration

Mounted at ``stores/{store_pk}/``.

@file sales/urls_store.py
"""

from django.urls import include, path
from rest_framework.routers import SimpleRouter

from .views import OrderViewSet, SoldItemViewSet

app_name = 'sales'

router = SimpleRouter()
router.register('orders', OrderViewSet, basename='order')
router.register('sold-items', SoldItemViewSet, basename='sold-item')

urlpatterns = [
    path('', include(router.urls)),
]
