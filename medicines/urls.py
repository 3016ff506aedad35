"""
Medicines — URL Configuration

``medicines/{id}/batches/`` for cross-store batch lookups.

@file medicines/urls.py
"""

from django.urls import include, path
from rest_framework.routers import SimpleRouter

from .views import MedicineBatchViewSet

app_name = 'medicines'

router = SimpleRouter()
router.register('', MedicineBatchViewSet, basename='medicine')

urlpatterns = [
    path('', include(router.urls)),
]
