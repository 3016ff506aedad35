"""
Stores — Serializers

Read and write serializers for MedicalStore, Company and Supplier.
Explicit field lists; no __all__.

@file stores/serializers.py
"""

from rest_framework import serializers

from .models import Company, MedicalStore, Supplier

__all__ = [
    'MedicalStoreReadSerializer',
    'MedicalStoreWriteSerializer',
    'CompanyReadSerializer',
    'CompanyWriteSerializer',
    'SupplierReadSerializer',
    'SupplierWriteSerializer',
]


class MedicalStoreReadSerializer(serializers.ModelSerializer):
    owner_email = serializers.EmailField(source='owner.email', read_only=True, default=None)

    class Meta:
        model = MedicalStore
        fields = [
            'id', 'name', 'address', 'license_number', 'phone',
            'owner', 'owner_email', 'is_active',
            'created_at', 'updated_at',
        ]
        read_only_fields = fields


class MedicalStoreWriteSerializer(serializers.ModelSerializer):
    class Meta:
        model = MedicalStore
        fields = ['name', 'address', 'license_number', 'phone']
        extra_kwargs = {'license_number': {'validators': []}}


class CompanyReadSerializer(serializers.ModelSerializer):
    class Meta:
        model = Company
        fields = [
            'id', 'medical_store', 'company_code', 'name', 'address',
            'phone', 'mobile', 'distributor_code', 'ntn_number', 'is_active',
            'created_at', 'updated_at',
        ]
        read_only_fields = fields


class CompanyWriteSerializer(serializers.ModelSerializer):
    class Meta:
        model = Company
        fields = [
            'company_code', 'name', 'address', 'phone', 'mobile',
            'distributor_code', 'ntn_number',
        ]


class SupplierReadSerializer(serializers.ModelSerializer):
    company_name = serializers.CharField(source='company.name', read_only=True)

    class Meta:
        model = Supplier
        fields = [
            'id', 'medical_store', 'company', 'company_name', 'supplier_code',
            'name', 'email', 'address', 'phone', 'mobile', 'ntn_number',
            'is_active', 'created_at', 'updated_at',
        ]
        read_only_fields = fields


class SupplierWriteSerializer(serializers.ModelSerializer):
    class Meta:
        model = Supplier
        fields = [
            'company', 'supplier_code', 'name', 'email', 'address',
            'phone', 'mobile', 'ntn_number',
        ]
