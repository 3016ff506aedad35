"""
Stock — Django Admin Configuration

Read-only list of StockTransaction. No edit, no delete (insert-only).

@file stock/admin.py
"""

from django.contrib import admin
from django.utils.translation import gettext_lazy as _

from .models import StockTransaction


@admin.register(StockTransaction)
class StockTransactionAdmin(admin.ModelAdmin):
    list_display = (
        'id', 'medical_store', 'medicine', 'instance', 'transaction_type',
        'quantity', 'reference_id', 'created_by', 'created_at',
    )
    list_filter = ('transaction_type', 'medical_store', 'created_at')
    search_fields = ('medicine__name', 'instance__batch__batch_no')
    readonly_fields = (
        'id', 'medical_store', 'medicine', 'instance', 'transaction_type',
        'quantity', 'reference_id', 'created_by', 'created_at',
    )
    list_select_related = ('medical_store', 'medicine', 'instance', 'created_by')
    show_full_result_count = False
    list_per_page = 50
    date_hierarchy = 'created_at'
    ordering = ('-created_at',)

    fieldsets = (
        (_('Transaction'), {
            'fields': ('id', 'medical_store', 'medicine', 'instance', 'transaction_type', 'quantity'),
        }),
        (_('Reference'), {
            'fields': ('reference_id',),
        }),
        (_('Audit'), {
            'fields': ('created_by', 'created_at'),
        }),
    )

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False  # insert-only

    def has_delete_permission(self, request, obj=None):
        return False  # insert-only
