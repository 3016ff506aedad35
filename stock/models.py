"""
Stock — Models

Signed, immutable stock transactions. Every change to an instance's
quantity is mirrored by one row here: positive on intake and customer
return, negative on sale and company return.
Records are INSERT ONLY — never update or delete.

@file stock/models.py
"""

import uuid

from django.conf import settings
from django.db import models
from django.utils.translation import gettext_lazy as _

from core.models import InsertOnlyMixin

INBOUND_TYPES = {'INTAKE', 'CUSTOMER_RETURN'}
OUTBOUND_TYPES = {'SALE', 'COMPANY_RETURN'}


class StockTransaction(InsertOnlyMixin, models.Model):
    """
    A single stock transaction against one instance in one store.
    ``quantity`` is signed: inbound types are positive, outbound negative.
    """

    class TransactionType(models.TextChoices):
        INTAKE = 'INTAKE', _('Intake')
        SALE = 'SALE', _('Sale')
        CUSTOMER_RETURN = 'CUSTOMER_RETURN', _('Customer return')
        COMPANY_RETURN = 'COMPANY_RETURN', _('Company return')

    id = models.UUIDField(
        primary_key=True, default=uuid.uuid4, editable=False,
    )
    medical_store = models.ForeignKey(
        'stores.MedicalStore',
        on_delete=models.PROTECT,
        related_name='stock_transactions',
        verbose_name=_('medical store'),
    )
    medicine = models.ForeignKey(
        'medicines.Medicine',
        on_delete=models.PROTECT,
        related_name='stock_transactions',
        verbose_name=_('medicine'),
    )
    instance = models.ForeignKey(
        'medicines.MedicineInstance',
        on_delete=models.PROTECT,
        related_name='stock_transactions',
        verbose_name=_('instance'),
    )
    transaction_type = models.CharField(
        _('transaction type'), max_length=16,
        choices=TransactionType.choices, db_index=True,
    )
    quantity = models.IntegerField(_('quantity'))
    reference_id = models.UUIDField(
        _('reference ID'), null=True, blank=True,
        help_text=_('Order the movement belongs to, when there is one'),
    )
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True, blank=True,
        on_delete=models.SET_NULL,
        related_name='+',
        verbose_name=_('created by'),
    )
    created_at = models.DateTimeField(
        _('created at'), auto_now_add=True, db_index=True,
    )
    # No updated_at; rows are immutable.

    class Meta:
        verbose_name = _('stock transaction')
        verbose_name_plural = _('stock transactions')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['medical_store', 'medicine'], name='stock_store_medicine_idx'),
            models.Index(fields=['instance', 'created_at'], name='stock_instance_created_idx'),
        ]
        constraints = [
            models.CheckConstraint(
                condition=~models.Q(quantity=0),
                name='stock_transaction_non_zero',
            ),
        ]

    def __str__(self):
        return f'{self.transaction_type} {self.quantity:+d} instance={self.instance_id}'
