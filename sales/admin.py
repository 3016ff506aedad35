"""
Sales — Django Admin Configuration

Orders with their sold items inline. Item rows are insert-only and shown
read-only.

@file sales/admin.py
"""

from django.contrib import admin
from django.utils.translation import gettext_lazy as _

from .models import Order, ReturnedItem, SoldItem

ITEM_FIELDS = (
    'medicine', 'batch', 'instance', 'subunit', 'quantity',
    'retail_price', 'discount_price', 'margin', 'created_at',
)


class SoldItemInline(admin.TabularInline):
    model = SoldItem
    extra = 0
    fields = ITEM_FIELDS
    readonly_fields = ITEM_FIELDS
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ('id', 'medical_store', 'customer_name', 'bill', 'profit', 'status', 'invoice_date')
    list_filter = ('status', 'payment_method', 'medical_store')
    search_fields = ('customer_name', 'customer_contact')
    readonly_fields = ('id', 'items_cost', 'selling_price', 'profit', 'bill', 'created_at', 'updated_at')
    list_select_related = ('medical_store',)
    date_hierarchy = 'invoice_date'
    inlines = [SoldItemInline]

    fieldsets = (
        (None, {
            'fields': ('id', 'medical_store', 'status', 'invoice_date'),
        }),
        (_('Customer'), {
            'fields': ('customer_name', 'customer_contact', 'payment_method'),
        }),
        (_('Totals'), {
            'fields': ('discount', 'items_cost', 'selling_price', 'profit', 'bill'),
        }),
    )


class _ReadOnlyItemAdmin(admin.ModelAdmin):
    list_select_related = ('medicine', 'medical_store')

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(SoldItem)
class SoldItemAdmin(_ReadOnlyItemAdmin):
    list_display = ('medicine', 'order', 'quantity', 'retail_price', 'margin', 'created_at')
    list_filter = ('medical_store',)
    search_fields = ('medicine__name', 'batch__batch_no')


@admin.register(ReturnedItem)
class ReturnedItemAdmin(_ReadOnlyItemAdmin):
    list_display = ('medicine', 'return_type', 'order', 'quantity', 'retail_price', 'created_at')
    list_filter = ('return_type', 'medical_store')
    search_fields = ('medicine__name', 'batch__batch_no')
