"""
Medicines — Store-scoped URL Configuration

Mounted at ``stores/{store_pk}/medicines/``.

@file medicines/urls_store.py
"""

from django.urls import include, path
from rest_framework.routers import SimpleRouter

from .views import StoreMedicineViewSet

app_name = 'store-medicines'

router = SimpleRouter()
router.register('', StoreMedicineViewSet, basename='medicine')

urlpatterns = [
    path('', include(router.urls)),
]
