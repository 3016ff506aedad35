"""
Stores — Models

A MedicalStore is the tenant boundary for inventory. Companies
(manufacturers) and suppliers are registered per store; every medicine
belongs to a company and so, transitively, to exactly one store.

@file stores/models.py
"""

from django.conf import settings
from django.db import models
from django.db.models import Q
from django.utils.translation import gettext_lazy as _

from core.models import BaseModel


class MedicalStore(BaseModel):
    """A pharmacy outlet holding its own stock counters."""

    name = models.CharField(_('name'), max_length=255)
    address = models.CharField(_('address'), max_length=500, blank=True, default='')
    license_number = models.CharField(
        _('licence number'), max_length=50, unique=True,
    )
    phone = models.CharField(_('phone'), max_length=20, blank=True, default='')
    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True, blank=True,
        on_delete=models.SET_NULL,
        related_name='owned_stores',
        verbose_name=_('owner'),
    )
    is_active = models.BooleanField(_('active'), default=True, db_index=True)

    class Meta:
        verbose_name = _('medical store')
        verbose_name_plural = _('medical stores')
        ordering = ['name']

    def __str__(self):
        return self.name


class Company(BaseModel):
    """Manufacturer registered by a store. company_code is unique per store."""

    medical_store = models.ForeignKey(
        MedicalStore,
        on_delete=models.CASCADE,
        related_name='companies',
        verbose_name=_('medical store'),
    )
    company_code = models.CharField(_('company code'), max_length=50)
    name = models.CharField(_('name'), max_length=255)
    address = models.CharField(_('address'), max_length=500, blank=True, default='')
    phone = models.CharField(_('phone'), max_length=20, blank=True, default='')
    mobile = models.CharField(_('mobile'), max_length=20, blank=True, default='')
    distributor_code = models.CharField(_('distributor code'), max_length=50, blank=True, default='')
    ntn_number = models.CharField(_('NTN number'), max_length=50, blank=True, default='')
    is_active = models.BooleanField(_('active'), default=True, db_index=True)

    class Meta:
        verbose_name = _('company')
        verbose_name_plural = _('companies')
        ordering = ['name']
        constraints = [
            models.UniqueConstraint(
                fields=['medical_store', 'company_code'],
                name='unique_company_code_per_store',
            ),
        ]

    def __str__(self):
        return f'{self.name} ({self.company_code})'


class Supplier(BaseModel):
    """Distributor supplying a company's products to a store."""

    medical_store = models.ForeignKey(
        MedicalStore,
        on_delete=models.CASCADE,
        related_name='suppliers',
        verbose_name=_('medical store'),
    )
    company = models.ForeignKey(
        Company,
        on_delete=models.PROTECT,
        related_name='suppliers',
        verbose_name=_('company'),
    )
    supplier_code = models.CharField(_('supplier code'), max_length=50, blank=True, default='')
    name = models.CharField(_('name'), max_length=255)
    email = models.EmailField(_('email'), blank=True, default='')
    address = models.CharField(_('address'), max_length=500, blank=True, default='')
    phone = models.CharField(_('phone'), max_length=20, blank=True, default='')
    mobile = models.CharField(_('mobile'), max_length=20, blank=True, default='')
    ntn_number = models.CharField(_('NTN number'), max_length=50, blank=True, default='')
    is_active = models.BooleanField(_('active'), default=True, db_index=True)

    class Meta:
        verbose_name = _('supplier')
        verbose_name_plural = _('suppliers')
        ordering = ['name']
        constraints = [
            models.UniqueConstraint(
                fields=['medical_store', 'supplier_code'],
                condition=~Q(supplier_code=''),
                name='unique_supplier_code_per_store',
            ),
        ]

    def __str__(self):
        return self.name
