"""
Sales — Serializers

Order headers, checkout payloads and sold-item listings.

@file sales/serializers.py
"""

from rest_framework import serializers

from medicines.serializers import ReturnedItemSerializer, SoldItemSerializer

from .models import Order


class OrderReadSerializer(serializers.ModelSerializer):
    sold_items = SoldItemSerializer(many=True, read_only=True)
    returned_items = ReturnedItemSerializer(many=True, read_only=True)

    class Meta:
        model = Order
        fields = [
            'id', 'medical_store', 'customer_name', 'customer_contact',
            'payment_method', 'discount', 'items_cost', 'selling_price',
            'profit', 'bill', 'status', 'invoice_date',
            'sold_items', 'returned_items', 'created_at',
        ]
        read_only_fields = fields


class OrderListSerializer(serializers.ModelSerializer):
    item_count = serializers.IntegerField(read_only=True, default=None)

    class Meta:
        model = Order
        fields = [
            'id', 'customer_name', 'payment_method', 'discount',
            'selling_price', 'profit', 'bill', 'status', 'invoice_date', 'item_count',
        ]
        read_only_fields = fields


class OrderCreateSerializer(serializers.ModelSerializer):
    class Meta:
        model = Order
        fields = ['customer_name', 'customer_contact', 'payment_method', 'discount']
        extra_kwargs = {
            'discount': {'min_value': 0, 'max_value': 100},
        }


class CheckoutItemSerializer(serializers.Serializer):
    medicine = serializers.UUIDField()
    quantity = serializers.IntegerField(min_value=1)


class CheckoutSerializer(serializers.Serializer):
    items = CheckoutItemSerializer(many=True, allow_empty=False)
    discount_rate = serializers.DecimalField(
        max_digits=5, decimal_places=2, min_value=0, max_value=100, required=False, default=0,
    )
    customer_name = serializers.CharField(required=False, allow_blank=True, default='', max_length=255)
    customer_contact = serializers.CharField(required=False, allow_blank=True, default='', max_length=50)
    payment_method = serializers.ChoiceField(
        choices=Order.PaymentMethod.choices, required=False, default=Order.PaymentMethod.CASH,
    )
