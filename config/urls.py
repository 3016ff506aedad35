"""
MediStock — Root URL Configuration

All API endpoints are namespaced under /api/v1/.
The DRF browsable API is available for route inspection in development.

@file config/urls.py
"""

from django.contrib import admin
from django.urls import include, path
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.reverse import reverse

admin.site.site_header = 'MediStock Administration'
admin.site.site_title = 'MediStock'
admin.site.index_title = 'Pharmacy Inventory'


@api_view(['GET'])
@permission_classes([AllowAny])
def api_root(request, format=None):
    """MediStock API v1 endpoint directory."""
    return Response({
        'auth': {
            'token': reverse('api-v1:auth:token-obtain', request=request, format=format),
            'refresh': reverse('api-v1:auth:token-refresh', request=request, format=format),
            'logout': reverse('api-v1:auth:logout', request=request, format=format),
        },
        'stores': reverse('api-v1:stores:store-list', request=request, format=format),
        'store_routes': {
            'companies': '/api/v1/stores/{store_pk}/companies/',
            'suppliers': '/api/v1/stores/{store_pk}/suppliers/',
            'medicines': '/api/v1/stores/{store_pk}/medicines/',
            'orders': '/api/v1/stores/{store_pk}/orders/',
            'sold_items': '/api/v1/stores/{store_pk}/sold-items/',
        },
    })


api_v1_patterns = [
    path('', api_root, name='api-root'),
    path('auth/', include('users.urls', namespace='auth')),
    path('stores/<uuid:store_pk>/medicines/', include('medicines.urls_store', namespace='store-medicines')),
    path('stores/<uuid:store_pk>/', include('sales.urls_store', namespace='sales')),
    path('stores/', include('stores.urls', namespace='stores')),
    path('medicines/', include('medicines.urls', namespace='medicines')),
]

urlpatterns = [
    path('admin/', admin.site.urls),

    # DRF session auth (powers the "Log in" button on the browsable API)
    path('api/auth/', include('rest_framework.urls', namespace='rest_framework')),

    # Versioned API
    path('api/v1/', include((api_v1_patterns, 'api-v1'))),
]
