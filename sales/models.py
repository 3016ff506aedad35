"""
Sales — Models

Order headers and the insert-only sold/returned item rows written by the
inventory ledger. Item rows reference medicine, batch and sub-unit weakly
(PROTECT, never cascade) so history survives catalogue edits.

@file sales/models.py
"""

import uuid
from decimal import Decimal

from django.conf import settings
from django.db import models
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from core.models import BaseModel, InsertOnlyMixin


class Order(BaseModel):
    """Sale transaction header. Totals are maintained by the ledger."""

    class PaymentMethod(models.TextChoices):
        CASH = 'CASH', _('Cash')
        CARD = 'CARD', _('Card')
        ONLINE = 'ONLINE', _('Online')

    class StatusChoices(models.TextChoices):
        PENDING = 'PENDING', _('Pending')
        PAID = 'PAID', _('Paid')

    medical_store = models.ForeignKey(
        'stores.MedicalStore',
        on_delete=models.PROTECT,
        related_name='orders',
        verbose_name=_('medical store'),
    )
    customer_name = models.CharField(_('customer name'), max_length=255, blank=True, default='')
    customer_contact = models.CharField(_('customer contact'), max_length=50, blank=True, default='')
    payment_method = models.CharField(
        _('payment method'), max_length=8,
        choices=PaymentMethod.choices, default=PaymentMethod.CASH,
    )
    discount = models.DecimalField(
        _('discount rate (%)'), max_digits=5, decimal_places=2, default=Decimal('0.00'),
    )
    items_cost = models.DecimalField(
        _('items cost'), max_digits=14, decimal_places=2, default=Decimal('0.00'),
    )
    selling_price = models.DecimalField(
        _('selling price'), max_digits=14, decimal_places=2, default=Decimal('0.00'),
    )
    profit = models.DecimalField(
        _('profit'), max_digits=14, decimal_places=2, default=Decimal('0.00'),
    )
    bill = models.DecimalField(
        _('bill'), max_digits=14, decimal_places=2, default=Decimal('0.00'),
    )
    status = models.CharField(
        _('status'), max_length=8,
        choices=StatusChoices.choices, default=StatusChoices.PENDING, db_index=True,
    )
    invoice_date = models.DateTimeField(_('invoice date'), default=timezone.now, db_index=True)

    class Meta:
        verbose_name = _('order')
        verbose_name_plural = _('orders')
        ordering = ['-invoice_date']
        indexes = [
            models.Index(fields=['medical_store', 'invoice_date']),
        ]

    def __str__(self):
        return f'Order {self.pk} ({self.get_status_display()})'


class _LedgerItem(InsertOnlyMixin, models.Model):
    """Columns shared by sold and returned item rows."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    medical_store = models.ForeignKey(
        'stores.MedicalStore',
        on_delete=models.PROTECT,
        related_name='+',
        verbose_name=_('medical store'),
    )
    medicine = models.ForeignKey(
        'medicines.Medicine',
        on_delete=models.PROTECT,
        related_name='+',
        verbose_name=_('medicine'),
    )
    batch = models.ForeignKey(
        'medicines.Batch',
        on_delete=models.PROTECT,
        related_name='+',
        verbose_name=_('batch'),
    )
    instance = models.ForeignKey(
        'medicines.MedicineInstance',
        on_delete=models.PROTECT,
        related_name='+',
        verbose_name=_('instance'),
    )
    subunit = models.ForeignKey(
        'medicines.SubUnit',
        null=True, blank=True,
        on_delete=models.PROTECT,
        related_name='+',
        verbose_name=_('sub-unit'),
    )
    quantity = models.PositiveIntegerField(_('quantity'), default=1)
    retail_price = models.DecimalField(_('retail price'), max_digits=12, decimal_places=2)
    discount_price = models.DecimalField(
        _('discount amount'), max_digits=12, decimal_places=2, null=True, blank=True,
    )
    margin = models.DecimalField(_('margin'), max_digits=12, decimal_places=2)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True, blank=True,
        on_delete=models.SET_NULL,
        related_name='+',
        verbose_name=_('created by'),
    )
    created_at = models.DateTimeField(_('created at'), auto_now_add=True, db_index=True)

    class Meta:
        abstract = True


class SoldItem(_LedgerItem):
    """One unit (UNIT granularity) or one instance draw (INSTANCE) sold."""

    order = models.ForeignKey(
        Order,
        on_delete=models.PROTECT,
        related_name='sold_items',
        verbose_name=_('order'),
    )

    class Meta:
        verbose_name = _('sold item')
        verbose_name_plural = _('sold items')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['medical_store', 'created_at']),
            models.Index(fields=['medicine', 'created_at']),
        ]

    def __str__(self):
        return f'Sold {self.quantity} x {self.medicine_id} on {self.order_id}'


class ReturnedItem(_LedgerItem):
    """One unit or instance draw returned by a customer or to a supplier."""

    class ReturnType(models.TextChoices):
        CUSTOMER_RETURN = 'CUSTOMER_RETURN', _('Customer return')
        COMPANY_RETURN = 'COMPANY_RETURN', _('Company return')

    order = models.ForeignKey(
        Order,
        null=True, blank=True,
        on_delete=models.PROTECT,
        related_name='returned_items',
        verbose_name=_('order'),
    )
    return_type = models.CharField(
        _('return type'), max_length=16,
        choices=ReturnType.choices, db_index=True,
    )

    class Meta:
        verbose_name = _('returned item')
        verbose_name_plural = _('returned items')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['medical_store', 'return_type']),
        ]

    def __str__(self):
        return f'{self.return_type} {self.quantity} x {self.medicine_id}'
