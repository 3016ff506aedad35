"""
Medicines — Serializers

Request-shape validation for ledger operations and read serializers for
medicines, batches, instances and alerts. Business rules (ownership,
batch completeness, quantity sums) are enforced by the ledger.

@file medicines/serializers.py
"""

from rest_framework import serializers

from sales.models import ReturnedItem, SoldItem

from .models import (
    Batch,
    MedicalStoreMedicine,
    Medicine,
    MedicineExpiry,
    MedicineInstance,
    MedicineLocation,
    Variation,
)

MONEY = {'max_digits': 12, 'decimal_places': 2, 'min_value': 0}


# ---------------------------------------------------------------------------
# Read
# ---------------------------------------------------------------------------

class VariationSerializer(serializers.ModelSerializer):
    class Meta:
        model = Variation
        fields = ['id', 'potency', 'packaging', 'unit_type', 'units_per_pack']
        read_only_fields = fields


class MedicineReadSerializer(serializers.ModelSerializer):
    company_name = serializers.CharField(source='company.name', read_only=True)
    supplier_name = serializers.CharField(source='supplier.name', read_only=True, default=None)
    store_quantity = serializers.IntegerField(read_only=True, default=None)
    latest_location = serializers.CharField(read_only=True, default=None)
    variations = VariationSerializer(many=True, read_only=True)

    class Meta:
        model = Medicine
        fields = [
            'id', 'name', 'formula', 'description', 'min_quantity',
            'company', 'company_name', 'supplier', 'supplier_name',
            'is_active', 'store_quantity', 'latest_location', 'variations',
            'created_at', 'updated_at',
        ]
        read_only_fields = fields


class MedicineLocationSerializer(serializers.ModelSerializer):
    class Meta:
        model = MedicineLocation
        fields = ['id', 'medical_store', 'location', 'rank', 'quantity']
        read_only_fields = fields


class MedicineInstanceSerializer(serializers.ModelSerializer):
    medicine_name = serializers.CharField(source='medicine.name', read_only=True)
    batch_no = serializers.CharField(source='batch.batch_no', read_only=True)
    locations = MedicineLocationSerializer(many=True, read_only=True)

    class Meta:
        model = MedicineInstance
        fields = [
            'id', 'medicine', 'medicine_name', 'variation', 'batch', 'batch_no',
            'quantity', 'purchase_price', 'selling_price', 'expiry_date',
            'locations', 'created_at',
        ]
        read_only_fields = fields


class BatchReadSerializer(serializers.ModelSerializer):
    variation = VariationSerializer(read_only=True)
    instances = MedicineInstanceSerializer(many=True, read_only=True)

    class Meta:
        model = Batch
        fields = [
            'id', 'batch_no', 'mfg_date', 'expiry_date', 'quantity', 'price',
            'variation', 'instances', 'created_at',
        ]
        read_only_fields = fields


class StoreCounterSerializer(serializers.ModelSerializer):
    medicine_name = serializers.CharField(source='medicine.name', read_only=True)
    min_quantity = serializers.IntegerField(source='medicine.min_quantity', read_only=True)

    class Meta:
        model = MedicalStoreMedicine
        fields = ['id', 'medicine', 'medicine_name', 'quantity', 'min_quantity', 'updated_at']
        read_only_fields = fields


class ExpiryFlagSerializer(serializers.ModelSerializer):
    class Meta:
        model = MedicineExpiry
        fields = ['id', 'medicine', 'expiry_date', 'is_near_expiry']
        read_only_fields = fields


class FifoCandidateSerializer(serializers.Serializer):
    medicine = serializers.UUIDField(source='medicine.pk')
    medicine_name = serializers.CharField(source='medicine.name')
    instance = MedicineInstanceSerializer()
    mfg_date = serializers.DateField(source='instance.batch.mfg_date')
    available_units = serializers.IntegerField()
    total_quantity = serializers.IntegerField()
    batch_count = serializers.IntegerField()


class SoldItemSerializer(serializers.ModelSerializer):
    medicine_name = serializers.CharField(source='medicine.name', read_only=True)
    batch_no = serializers.CharField(source='batch.batch_no', read_only=True)

    class Meta:
        model = SoldItem
        fields = [
            'id', 'order', 'medicine', 'medicine_name', 'batch', 'batch_no',
            'instance', 'subunit', 'quantity', 'retail_price', 'discount_price',
            'margin', 'created_at',
        ]
        read_only_fields = fields


class ReturnedItemSerializer(serializers.ModelSerializer):
    batch_no = serializers.CharField(source='batch.batch_no', read_only=True)

    class Meta:
        model = ReturnedItem
        fields = [
            'id', 'order', 'return_type', 'medicine', 'batch', 'batch_no',
            'instance', 'subunit', 'quantity', 'retail_price', 'discount_price',
            'margin', 'created_at',
        ]
        read_only_fields = fields


# ---------------------------------------------------------------------------
# Write (request shape only)
# ---------------------------------------------------------------------------

class VariationInputSerializer(serializers.Serializer):
    potency = serializers.CharField(required=False, allow_blank=True, max_length=100)
    packaging = serializers.CharField(required=False, allow_blank=True, max_length=200)
    unit_type = serializers.CharField(required=False, allow_blank=True, max_length=12)
    units_per_pack = serializers.IntegerField(required=False, allow_null=True)


class BatchInputSerializer(serializers.Serializer):
    batch_no = serializers.CharField(required=False, allow_blank=True, max_length=100)
    quantity = serializers.IntegerField(required=False, allow_null=True)
    purchase_price = serializers.DecimalField(required=False, allow_null=True, **MONEY)
    selling_price = serializers.DecimalField(required=False, allow_null=True, **MONEY)
    price = serializers.DecimalField(required=False, allow_null=True, max_digits=14, decimal_places=2, min_value=0)
    mfg_date = serializers.DateField(required=False, allow_null=True)
    expiry_date = serializers.DateField(required=False, allow_null=True)
    location = serializers.CharField(required=False, allow_blank=True, max_length=100)
    rank = serializers.CharField(required=False, allow_blank=True, max_length=50)


class MedicineRegisterSerializer(serializers.Serializer):
    """
    Registration payload with optional nested ``variation`` and ``batch``
    objects, passed to the ledger as given. Their all-or-nothing rules are
    enforced by the ledger.
    """

    name = serializers.CharField(max_length=255)
    formula = serializers.CharField(required=False, allow_blank=True, default='')
    description = serializers.CharField(required=False, allow_blank=True, default='')
    min_quantity = serializers.IntegerField()
    company = serializers.UUIDField()
    supplier = serializers.UUIDField(required=False, allow_null=True)
    quantity = serializers.IntegerField(required=False, default=0)
    variation = VariationInputSerializer(required=False)
    batch = BatchInputSerializer(required=False)


class AddStockSerializer(serializers.Serializer):
    """Either ``batches`` or one flat batch in the body."""

    variation = serializers.UUIDField(required=False, allow_null=True)
    quantity = serializers.IntegerField(required=False, allow_null=True)
    batches = BatchInputSerializer(many=True, required=False)
    batch_no = serializers.CharField(required=False, allow_blank=True, max_length=100)
    purchase_price = serializers.DecimalField(required=False, allow_null=True, **MONEY)
    selling_price = serializers.DecimalField(required=False, allow_null=True, **MONEY)
    price = serializers.DecimalField(required=False, allow_null=True, max_digits=14, decimal_places=2, min_value=0)
    mfg_date = serializers.DateField(required=False, allow_null=True)
    expiry_date = serializers.DateField(required=False, allow_null=True)
    location = serializers.CharField(required=False, allow_blank=True, max_length=100)
    rank = serializers.CharField(required=False, allow_blank=True, max_length=50)

    FLAT_FIELDS = (
        'batch_no', 'purchase_price', 'selling_price', 'price',
        'mfg_date', 'expiry_date', 'location', 'rank',
    )

    def normalised_batches(self) -> list[dict]:
        data = self.validated_data
        if data.get('batches'):
            return [dict(b) for b in data['batches']]
        flat = {f: data[f] for f in self.FLAT_FIELDS if f in data}
        flat['quantity'] = data.get('quantity')
        return [flat]


class SellSerializer(serializers.Serializer):
    order = serializers.UUIDField()
    quantity = serializers.IntegerField(min_value=1)
    discount_price = serializers.DecimalField(required=False, allow_null=True, **MONEY)


class ReturnSerializer(serializers.Serializer):
    return_type = serializers.ChoiceField(choices=ReturnedItem.ReturnType.choices)
    quantity = serializers.IntegerField(min_value=1)
    retail_price = serializers.DecimalField(required=False, allow_null=True, **MONEY)
    discount_price = serializers.DecimalField(required=False, allow_null=True, **MONEY)
    order = serializers.UUIDField(required=False, allow_null=True)
    batch = serializers.UUIDField(required=False, allow_null=True)
    batch_no = serializers.CharField(required=False, allow_blank=True, max_length=100)
    expiry_date = serializers.DateField(required=False, allow_null=True)
    variation = serializers.UUIDField(required=False, allow_null=True)
    location = serializers.CharField(required=False, allow_blank=True, max_length=100)


class MedicineUpdateSerializer(serializers.Serializer):
    description = serializers.CharField(required=False, allow_blank=True)
    formula = serializers.CharField(required=False, allow_blank=True)
    min_quantity = serializers.IntegerField(required=False, min_value=1)
    location = serializers.CharField(required=False, max_length=100)
