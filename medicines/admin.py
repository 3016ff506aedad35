"""
Medicines — Django Admin Configuration

Admin for medicines, batches and instances with expiry colour coding.
Stock quantities are read-only here; they change only through the ledger.

@file medicines/admin.py
"""

from django.contrib import admin
from django.utils import timezone
from django.utils.html import format_html
from django.utils.translation import gettext_lazy as _

from .models import (
    Batch,
    MedicalStoreMedicine,
    Medicine,
    MedicineExpiry,
    MedicineInstance,
    MedicineLocation,
    Variation,
)


def _render_expiry_badge(expiry_date):
    """Shared helper for expiry color coding."""
    if expiry_date is None:
        return '—'
    days = (expiry_date - timezone.now().date()).days
    if days < 0:
        color, label = '#dc2626', f'EXPIRED ({abs(days)}d ago)'
    elif days <= 30:
        color, label = '#ef4444', f'{days}d left'
    elif days <= 90:
        color, label = '#f97316', f'{days}d left'
    elif days <= 213:
        color, label = '#eab308', f'{days}d left'
    else:
        color, label = '#22c55e', f'{days}d left'
    return format_html(
        '<span style="background:{};color:#fff;padding:2px 8px;'
        'border-radius:4px;font-size:11px;font-weight:600;">{}</span>',
        color, label,
    )


class VariationInline(admin.TabularInline):
    model = Variation
    extra = 0
    fields = ('potency', 'packaging', 'unit_type', 'units_per_pack')
    show_change_link = True


@admin.register(Medicine)
class MedicineAdmin(admin.ModelAdmin):
    list_display = ('name', 'formula', 'company', 'supplier', 'min_quantity', 'is_active', 'created_at')
    list_filter = ('is_active', 'company__medical_store')
    search_fields = ('name', 'formula', 'company__name')
    readonly_fields = ('id', 'created_at', 'updated_at', 'created_by', 'updated_by')
    raw_id_fields = ('company', 'supplier')
    list_select_related = ('company', 'supplier')
    list_per_page = 30
    inlines = [VariationInline]

    fieldsets = (
        (None, {
            'fields': ('id', 'name', 'formula', 'description', 'min_quantity', 'is_active'),
        }),
        (_('Ownership'), {
            'fields': ('company', 'supplier'),
        }),
        (_('Audit'), {
            'fields': ('created_at', 'updated_at', 'created_by', 'updated_by'),
            'classes': ('collapse',),
        }),
    )


@admin.register(Batch)
class BatchAdmin(admin.ModelAdmin):
    list_display = ('batch_no', 'variation', 'mfg_date', 'expiry_date', 'expiry_badge', 'quantity', 'price')
    search_fields = ('batch_no', 'variation__medicine__name')
    readonly_fields = ('id', 'quantity', 'created_at', 'updated_at', 'created_by')
    raw_id_fields = ('variation',)
    list_select_related = ('variation', 'variation__medicine')
    date_hierarchy = 'expiry_date'
    ordering = ('expiry_date',)

    @admin.display(description=_('Expiry'))
    def expiry_badge(self, obj):
        return _render_expiry_badge(obj.expiry_date)


class LocationInline(admin.TabularInline):
    model = MedicineLocation
    extra = 0
    fields = ('medical_store', 'location', 'rank', 'quantity')
    readonly_fields = ('quantity',)


@admin.register(MedicineInstance)
class MedicineInstanceAdmin(admin.ModelAdmin):
    list_display = ('medicine', 'batch', 'quantity', 'purchase_price', 'selling_price', 'expiry_badge')
    search_fields = ('medicine__name', 'batch__batch_no')
    readonly_fields = ('id', 'quantity', 'created_at', 'updated_at')
    raw_id_fields = ('medicine', 'variation', 'batch')
    list_select_related = ('medicine', 'batch')
    inlines = [LocationInline]

    @admin.display(description=_('Expiry'))
    def expiry_badge(self, obj):
        return _render_expiry_badge(obj.expiry_date)


@admin.register(MedicalStoreMedicine)
class MedicalStoreMedicineAdmin(admin.ModelAdmin):
    list_display = ('medicine', 'medical_store', 'quantity', 'low_stock_badge', 'updated_at')
    list_filter = ('medical_store',)
    search_fields = ('medicine__name',)
    readonly_fields = ('id', 'medical_store', 'medicine', 'quantity', 'created_at', 'updated_at')
    list_select_related = ('medicine', 'medical_store')

    @admin.display(description=_('Low stock'))
    def low_stock_badge(self, obj):
        if obj.is_low_stock:
            return format_html(
                '<span style="background:#ef4444;color:#fff;padding:2px 8px;'
                'border-radius:4px;font-size:11px;font-weight:600;">LOW</span>',
            )
        return '—'

    def has_add_permission(self, request):
        return False


@admin.register(MedicineExpiry)
class MedicineExpiryAdmin(admin.ModelAdmin):
    list_display = ('medicine', 'expiry_date', 'expiry_badge', 'is_near_expiry', 'updated_at')
    list_filter = ('is_near_expiry',)
    search_fields = ('medicine__name',)
    list_select_related = ('medicine',)
    ordering = ('expiry_date',)

    @admin.display(description=_('Expiry'))
    def expiry_badge(self, obj):
        return _render_expiry_badge(obj.expiry_date)
