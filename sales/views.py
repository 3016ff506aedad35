"""
Sales — Views

Store-scoped orders: open, list, retrieve, multi-item checkout and
mark-paid, plus a read-only sold-item feed.

@file sales/views.py
"""

from django.db.models import Count
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from medicines.serializers import SoldItemSerializer
from stores.views import StoreScopedMixin
from users.permissions import IsStoreMember

from .models import Order
from .serializers import (
    CheckoutSerializer,
    OrderCreateSerializer,
    OrderListSerializer,
    OrderReadSerializer,
)
from .services import OrderService


class OrderViewSet(
    StoreScopedMixin,
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    viewsets.GenericViewSet,
):
    permission_classes = [IsAuthenticated, IsStoreMember]
    filterset_fields = ['status', 'payment_method']
    search_fields = ['customer_name', 'customer_contact']
    ordering_fields = ['invoice_date', 'bill', 'profit']
    ordering = ['-invoice_date']

    def get_queryset(self):
        qs = Order.objects.filter(medical_store=self.get_store())
        if self.action == 'list':
            return qs.annotate(item_count=Count('sold_items'))
        return qs.prefetch_related(
            'sold_items__medicine', 'sold_items__batch',
            'returned_items__batch',
        )

    def get_serializer_class(self):
        if self.action == 'list':
            return OrderListSerializer
        return OrderReadSerializer

    def create(self, request, *args, **kwargs):
        ser = OrderCreateSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        order = OrderService.create_order(
            store_id=self.get_store().pk,
            actor=request.user,
            **ser.validated_data,
        )
        return Response(
            {'success': True, 'data': OrderReadSerializer(order).data},
            status=status.HTTP_201_CREATED,
        )

    @action(detail=False, methods=['post'], url_path='checkout')
    def checkout(self, request, store_pk=None):
        ser = CheckoutSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        data = ser.validated_data
        order = OrderService.checkout(
            store_id=self.get_store().pk,
            items=[dict(item) for item in data['items']],
            discount_rate=data['discount_rate'],
            customer_name=data['customer_name'],
            customer_contact=data['customer_contact'],
            payment_method=data['payment_method'],
            actor=request.user,
        )
        order = self.get_queryset().get(pk=order.pk)
        return Response(
            {'success': True, 'data': OrderReadSerializer(order).data},
            status=status.HTTP_201_CREATED,
        )

    @action(detail=True, methods=['post'], url_path='pay')
    def pay(self, request, store_pk=None, pk=None):
        order = OrderService.mark_paid(store_id=self.get_store().pk, order_id=pk, actor=request.user)
        return Response({'success': True, 'data': OrderListSerializer(order).data})


class SoldItemViewSet(StoreScopedMixin, mixins.ListModelMixin, viewsets.GenericViewSet):
    """Sold rows of a store, newest first."""

    permission_classes = [IsAuthenticated, IsStoreMember]
    serializer_class = SoldItemSerializer
    filterset_fields = ['medicine', 'order']
    ordering_fields = ['created_at', 'margin']
    ordering = ['-created_at']

    def get_queryset(self):
        return OrderService.list_sold_items(self.get_store())
