"""
Medicines — Models

Store-scoped medicine catalogue and the stock records the inventory ledger
mutates: variations, batches, sellable instances, per-unit sub-units,
shelf locations, the per-store aggregate counter and expiry alert flags.

@file medicines/models.py
"""

from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import F, Q
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from core.models import BaseModel

DEFAULT_VARIATION_LABEL = 'Default'
DEFAULT_LOCATION_CODE = 'Default'


class Medicine(BaseModel):
    """
    A medicine sold by one store. Ownership flows through the company:
    ``company.medical_store`` is the store allowed to stock it.
    """

    name = models.CharField(_('name'), max_length=255)
    formula = models.CharField(_('formula'), max_length=255, blank=True, default='')
    description = models.TextField(_('description'), blank=True, default='')
    min_quantity = models.PositiveIntegerField(
        _('minimum quantity'),
        help_text=_('Reorder threshold; at or below it the store is low on stock.'),
    )
    company = models.ForeignKey(
        'stores.Company',
        on_delete=models.PROTECT,
        related_name='medicines',
        verbose_name=_('company'),
    )
    supplier = models.ForeignKey(
        'stores.Supplier',
        null=True, blank=True,
        on_delete=models.SET_NULL,
        related_name='medicines',
        verbose_name=_('supplier'),
    )
    is_active = models.BooleanField(_('active'), default=True, db_index=True)

    class Meta:
        verbose_name = _('medicine')
        verbose_name_plural = _('medicines')
        ordering = ['name']
        indexes = [
            models.Index(fields=['company', 'is_active']),
            models.Index(fields=['name']),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(min_quantity__gt=0),
                name='medicine_min_quantity_positive',
            ),
        ]

    def __str__(self):
        return self.name


class Variation(BaseModel):
    """Potency and packaging grouping under a medicine."""

    class UnitTypeChoices(models.TextChoices):
        TABLET = 'TABLET', _('Tablet')
        CAPSULE = 'CAPSULE', _('Capsule')
        SYRUP = 'SYRUP', _('Syrup')
        INJECTION = 'INJECTION', _('Injection')
        CREAM = 'CREAM', _('Cream')
        DROPS = 'DROPS', _('Drops')
        SACHET = 'SACHET', _('Sachet')
        OTHER = 'OTHER', _('Other')

    medicine = models.ForeignKey(
        Medicine,
        on_delete=models.CASCADE,
        related_name='variations',
        verbose_name=_('medicine'),
    )
    potency = models.CharField(_('potency'), max_length=100)
    packaging = models.CharField(_('packaging'), max_length=200)
    unit_type = models.CharField(
        _('unit type'), max_length=12,
        choices=UnitTypeChoices.choices,
        default=UnitTypeChoices.TABLET,
    )
    units_per_pack = models.PositiveIntegerField(_('units per pack'), default=1)

    class Meta:
        verbose_name = _('variation')
        verbose_name_plural = _('variations')
        ordering = ['created_at']
        constraints = [
            models.CheckConstraint(
                condition=Q(units_per_pack__gt=0),
                name='variation_units_per_pack_positive',
            ),
        ]

    def __str__(self):
        return f'{self.medicine} {self.potency} / {self.packaging}'


class Batch(BaseModel):
    """
    One manufactured lot. Identity (number, dates) is fixed at creation;
    stock changes go through the lot's instances and locations.
    """

    variation = models.ForeignKey(
        Variation,
        on_delete=models.PROTECT,
        related_name='batches',
        verbose_name=_('variation'),
    )
    batch_no = models.CharField(_('batch number'), max_length=100)
    mfg_date = models.DateField(_('manufacture date'), db_index=True)
    expiry_date = models.DateField(_('expiry date'), db_index=True)
    quantity = models.PositiveIntegerField(_('quantity at creation'))
    price = models.DecimalField(_('total price'), max_digits=14, decimal_places=2)

    class Meta:
        verbose_name = _('batch')
        verbose_name_plural = _('batches')
        ordering = ['mfg_date', 'created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['variation', 'batch_no'],
                name='unique_batch_no_per_variation',
            ),
            models.CheckConstraint(
                condition=Q(expiry_date__gt=F('mfg_date')),
                name='batch_expiry_after_mfg',
            ),
            models.CheckConstraint(
                condition=Q(price__gte=0),
                name='batch_price_non_negative',
            ),
        ]

    def __str__(self):
        return f'Batch {self.batch_no} ({self.variation})'

    @property
    def is_expired(self) -> bool:
        return self.expiry_date <= timezone.now().date()

    def clean(self):
        super().clean()
        if self.expiry_date and self.mfg_date and self.expiry_date <= self.mfg_date:
            raise ValidationError({
                'expiry_date': _('Expiry date must be after manufacture date.'),
            })


class MedicineInstance(BaseModel):
    """
    The live, sellable stock record of one batch. ``purchase_price`` and
    ``selling_price`` are per pack; ``quantity`` counts dispensable units,
    each charged ``selling_price / variation.units_per_pack``.
    """

    medicine = models.ForeignKey(
        Medicine,
        on_delete=models.CASCADE,
        related_name='instances',
        verbose_name=_('medicine'),
    )
    variation = models.ForeignKey(
        Variation,
        on_delete=models.PROTECT,
        related_name='instances',
        verbose_name=_('variation'),
    )
    batch = models.ForeignKey(
        Batch,
        on_delete=models.PROTECT,
        related_name='instances',
        verbose_name=_('batch'),
    )
    quantity = models.IntegerField(_('quantity'), default=0)
    purchase_price = models.DecimalField(_('purchase price'), max_digits=12, decimal_places=2)
    selling_price = models.DecimalField(_('selling price'), max_digits=12, decimal_places=2)
    expiry_date = models.DateField(_('expiry date'), db_index=True)

    class Meta:
        verbose_name = _('medicine instance')
        verbose_name_plural = _('medicine instances')
        ordering = ['expiry_date', 'created_at']
        indexes = [
            models.Index(fields=['medicine', 'expiry_date']),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(quantity__gte=0),
                name='instance_quantity_non_negative',
            ),
        ]

    def __str__(self):
        return f'{self.medicine} [{self.batch.batch_no}] x{self.quantity}'


class SubUnit(BaseModel):
    """
    One dispensable unit of an instance. Flags only ever move from False
    to True; rows are never deleted.
    """

    instance = models.ForeignKey(
        MedicineInstance,
        on_delete=models.CASCADE,
        related_name='subunits',
        verbose_name=_('instance'),
    )
    sequence = models.PositiveIntegerField(_('sequence'))
    sub_unit_count = models.PositiveIntegerField(_('units in pack'), default=1)
    sub_unit_price = models.DecimalField(_('unit price'), max_digits=12, decimal_places=2)
    is_sold = models.BooleanField(_('sold'), default=False, db_index=True)
    is_returned_to_supplier = models.BooleanField(_('returned to supplier'), default=False)
    is_returned_by_customer = models.BooleanField(_('returned by customer'), default=False)

    class Meta:
        verbose_name = _('sub-unit')
        verbose_name_plural = _('sub-units')
        ordering = ['instance', 'sequence']
        indexes = [
            models.Index(fields=['instance', 'is_sold', 'is_returned_to_supplier']),
        ]
        constraints = [
            models.CheckConstraint(
                condition=~Q(is_sold=True, is_returned_to_supplier=True),
                name='subunit_not_sold_and_returned',
            ),
        ]

    def __str__(self):
        return f'{self.instance_id}#{self.sequence}'


class MedicineLocation(BaseModel):
    """Shelf placement of an instance in a store, mirroring its quantity."""

    medical_store = models.ForeignKey(
        'stores.MedicalStore',
        on_delete=models.CASCADE,
        related_name='locations',
        verbose_name=_('medical store'),
    )
    medicine = models.ForeignKey(
        Medicine,
        on_delete=models.CASCADE,
        related_name='locations',
        verbose_name=_('medicine'),
    )
    instance = models.ForeignKey(
        MedicineInstance,
        on_delete=models.CASCADE,
        related_name='locations',
        verbose_name=_('instance'),
    )
    location = models.CharField(_('location'), max_length=100, default=DEFAULT_LOCATION_CODE)
    rank = models.CharField(_('rank'), max_length=50, blank=True, default='')
    quantity = models.IntegerField(_('quantity'), default=0)

    class Meta:
        verbose_name = _('medicine location')
        verbose_name_plural = _('medicine locations')
        ordering = ['created_at']
        indexes = [
            models.Index(fields=['medical_store', 'medicine']),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(quantity__gte=0),
                name='location_quantity_non_negative',
            ),
        ]

    def __str__(self):
        return f'{self.location} ({self.quantity})'


class MedicalStoreMedicine(BaseModel):
    """Running stock total of a medicine in one store."""

    medical_store = models.ForeignKey(
        'stores.MedicalStore',
        on_delete=models.CASCADE,
        related_name='stock_counters',
        verbose_name=_('medical store'),
    )
    medicine = models.ForeignKey(
        Medicine,
        on_delete=models.CASCADE,
        related_name='store_counters',
        verbose_name=_('medicine'),
    )
    quantity = models.IntegerField(_('quantity'), default=0)

    class Meta:
        verbose_name = _('store stock counter')
        verbose_name_plural = _('store stock counters')
        constraints = [
            models.UniqueConstraint(
                fields=['medical_store', 'medicine'],
                name='unique_store_medicine_counter',
            ),
            models.CheckConstraint(
                condition=Q(quantity__gte=0),
                name='store_counter_non_negative',
            ),
        ]

    def __str__(self):
        return f'{self.medicine} @ {self.medical_store}: {self.quantity}'

    @property
    def is_low_stock(self) -> bool:
        return self.quantity <= self.medicine.min_quantity


class MedicineExpiry(BaseModel):
    """Alert flag per (medicine, expiry date). Upserted, never cleared."""

    medicine = models.ForeignKey(
        Medicine,
        on_delete=models.CASCADE,
        related_name='expiry_flags',
        verbose_name=_('medicine'),
    )
    expiry_date = models.DateField(_('expiry date'))
    is_near_expiry = models.BooleanField(_('near expiry'), default=False)

    class Meta:
        verbose_name = _('medicine expiry flag')
        verbose_name_plural = _('medicine expiry flags')
        ordering = ['expiry_date']
        constraints = [
            models.UniqueConstraint(
                fields=['medicine', 'expiry_date'],
                name='unique_medicine_expiry_date',
            ),
        ]

    def __str__(self):
        return f'{self.medicine} expires {self.expiry_date}'
