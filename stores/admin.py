"""
Stores — Django Admin Configuration

Admin for medical stores with inline companies and suppliers.

@file stores/admin.py
"""

from django.contrib import admin
from django.utils.translation import gettext_lazy as _

from .models import Company, MedicalStore, Supplier


class CompanyInline(admin.TabularInline):
    model = Company
    extra = 0
    fields = ('company_code', 'name', 'phone', 'is_active')
    show_change_link = True


class SupplierInline(admin.TabularInline):
    model = Supplier
    extra = 0
    fields = ('supplier_code', 'name', 'company', 'is_active')
    raw_id_fields = ('company',)
    show_change_link = True


@admin.register(MedicalStore)
class MedicalStoreAdmin(admin.ModelAdmin):
    list_display = ('name', 'license_number', 'owner', 'phone', 'is_active', 'created_at')
    list_filter = ('is_active',)
    search_fields = ('name', 'license_number', 'address')
    readonly_fields = ('id', 'created_at', 'updated_at', 'created_by', 'updated_by')
    raw_id_fields = ('owner',)
    list_select_related = ('owner',)
    inlines = [CompanyInline, SupplierInline]

    fieldsets = (
        (None, {
            'fields': ('id', 'name', 'license_number', 'owner', 'is_active'),
        }),
        (_('Contact'), {
            'fields': ('address', 'phone'),
        }),
        (_('Audit'), {
            'fields': ('created_at', 'updated_at', 'created_by', 'updated_by'),
            'classes': ('collapse',),
        }),
    )


@admin.register(Company)
class CompanyAdmin(admin.ModelAdmin):
    list_display = ('name', 'company_code', 'medical_store', 'distributor_code', 'is_active')
    list_filter = ('is_active', 'medical_store')
    search_fields = ('name', 'company_code', 'ntn_number')
    readonly_fields = ('id', 'created_at', 'updated_at')
    list_select_related = ('medical_store',)


@admin.register(Supplier)
class SupplierAdmin(admin.ModelAdmin):
    list_display = ('name', 'supplier_code', 'company', 'medical_store', 'is_active')
    list_filter = ('is_active', 'medical_store')
    search_fields = ('name', 'supplier_code', 'email')
    readonly_fields = ('id', 'created_at', 'updated_at')
    raw_id_fields = ('company',)
    list_select_related = ('company', 'medical_store')
