"""
Medicines — Service Layer

Store-scoped catalogue queries (stock listing, batches, near-expiry,
low-stock and FIFO candidates) and catalogue edits. Stock counters are
never written here; every quantity change goes through
``stock.services.InventoryLedger``.

@file medicines/services.py
"""

import logging
from datetime import timedelta

from django.conf import settings
from django.db import transaction
from django.db.models import Count, F, OuterRef, Prefetch, Q, Subquery, Value
from django.db.models.functions import Coalesce
from django.utils import timezone

from core.constants import AUDIT_ACTION_UPDATE
from core.exceptions import BusinessRuleViolation, OwnershipMismatchError, ResourceNotFoundError
from core.services import AuditService

from .models import (
    Batch,
    MedicalStoreMedicine,
    Medicine,
    MedicineInstance,
    MedicineLocation,
)

logger = logging.getLogger('medistock')

EDITABLE_FIELDS = ('description', 'formula', 'min_quantity')


def _located_in(store):
    return MedicineLocation.objects.filter(medical_store=store).values('instance_id')


class MedicineService:
    """Read models and catalogue edits for a store's medicines."""

    @staticmethod
    def get_store_medicine(store, medicine_id) -> Medicine:
        try:
            medicine = Medicine.objects.select_related('company').get(pk=medicine_id)
        except Medicine.DoesNotExist:
            raise ResourceNotFoundError(detail='Medicine not found.')
        if medicine.company.medical_store_id != store.pk:
            raise OwnershipMismatchError(detail='Medicine does not belong to this medical store.')
        return medicine

    @staticmethod
    def list_store_medicines(store):
        """
        Medicines of ``store`` annotated with ``store_quantity`` and
        ``latest_location``, plus a summary block of store totals.
        """
        counter_qty = MedicalStoreMedicine.objects.filter(
            medical_store=store, medicine=OuterRef('pk'),
        ).values('quantity')[:1]
        latest_location = MedicineLocation.objects.filter(
            medical_store=store, medicine=OuterRef('pk'),
        ).order_by('-created_at').values('location')[:1]

        medicines = (
            Medicine.objects
            .filter(company__medical_store=store)
            .select_related('company', 'supplier')
            .annotate(
                store_quantity=Coalesce(Subquery(counter_qty), Value(0)),
                latest_location=Subquery(latest_location),
            )
        )
        summary = {
            'total': medicines.count(),
            'active': medicines.filter(is_active=True).count(),
            'low_stock': MedicineService.get_low_stock(store).count(),
        }
        return medicines, summary

    @staticmethod
    def get_batches(medicine, store=None):
        """Batches of a medicine oldest first, with instances (and store locations)."""
        instances = MedicineInstance.objects.order_by('created_at')
        if store is not None:
            instances = instances.prefetch_related(
                Prefetch(
                    'locations',
                    queryset=MedicineLocation.objects.filter(medical_store=store),
                ),
            )
        return (
            Batch.objects
            .filter(variation__medicine=medicine)
            .select_related('variation')
            .prefetch_related(Prefetch('instances', queryset=instances))
            .order_by('mfg_date', 'created_at')
        )

    @staticmethod
    def get_near_expiry(store, today=None):
        """Instances with stock expiring inside the configured window."""
        today = today or timezone.now().date()
        start = today + timedelta(days=settings.NEAR_EXPIRY_WINDOW_START_DAYS)
        end = today + timedelta(days=settings.NEAR_EXPIRY_WINDOW_END_DAYS)
        return (
            MedicineInstance.objects
            .filter(
                pk__in=_located_in(store),
                quantity__gt=0,
                expiry_date__gte=start,
                expiry_date__lte=end,
            )
            .select_related('medicine', 'batch', 'variation')
            .order_by('expiry_date', 'created_at')
        )

    @staticmethod
    def get_low_stock(store):
        """Store counters at or below their medicine's reorder threshold."""
        return (
            MedicalStoreMedicine.objects
            .filter(medical_store=store, quantity__lte=F('medicine__min_quantity'))
            .select_related('medicine')
            .order_by('quantity', 'medicine__name')
        )

    @staticmethod
    def get_fifo_candidates(store, today=None) -> list[dict]:
        """
        For every medicine with sellable stock, the instance a sale would
        draw from next, with stock counts.
        """
        today = today or timezone.now().date()
        sellable = (
            MedicineInstance.objects
            .filter(pk__in=_located_in(store), quantity__gt=0, expiry_date__gt=today)
            .select_related('medicine', 'batch', 'variation')
            .annotate(available_units=Count('subunits', filter=Q(
                subunits__is_sold=False, subunits__is_returned_to_supplier=False,
            )))
        )
        if settings.INVENTORY_DISPENSING_GRANULARITY.upper() == 'INSTANCE':
            sellable = sellable.order_by('medicine__name', 'medicine_id', 'expiry_date', 'created_at', 'pk')
        else:
            sellable = sellable.order_by('medicine__name', 'medicine_id', 'batch__mfg_date', 'created_at', 'pk')

        counters = dict(
            MedicalStoreMedicine.objects
            .filter(medical_store=store)
            .values_list('medicine_id', 'quantity')
        )
        candidates: dict = {}
        for instance in sellable:
            entry = candidates.get(instance.medicine_id)
            if entry is None:
                available = instance.available_units
                if settings.INVENTORY_DISPENSING_GRANULARITY.upper() == 'INSTANCE':
                    available = instance.quantity
                candidates[instance.medicine_id] = {
                    'medicine': instance.medicine,
                    'instance': instance,
                    'available_units': available,
                    'total_quantity': counters.get(instance.medicine_id, 0),
                    'batch_count': 1,
                }
            else:
                entry['batch_count'] += 1
        return list(candidates.values())

    @staticmethod
    @transaction.atomic
    def update_medicine(*, store, medicine_id, actor=None, location=None, **fields) -> Medicine:
        """Edit description, formula or threshold, and relabel the latest location."""
        try:
            medicine = Medicine.objects.select_for_update().select_related('company').get(pk=medicine_id)
        except Medicine.DoesNotExist:
            raise ResourceNotFoundError(detail='Medicine not found.')
        if medicine.company.medical_store_id != store.pk:
            raise OwnershipMismatchError(detail='Medicine does not belong to this medical store.')

        if 'min_quantity' in fields and (fields['min_quantity'] is None or fields['min_quantity'] <= 0):
            raise BusinessRuleViolation(detail='min_quantity must be greater than zero.')

        old_snapshot = AuditService.snapshot(medicine, fields=list(EDITABLE_FIELDS))
        for field, value in fields.items():
            if field in EDITABLE_FIELDS:
                setattr(medicine, field, value)
        medicine.updated_by = actor
        medicine.save()

        new_values = AuditService.snapshot(medicine, fields=list(EDITABLE_FIELDS))
        if location:
            latest = (
                MedicineLocation.objects
                .select_for_update()
                .filter(medical_store=store, medicine=medicine)
                .order_by('-created_at')
                .first()
            )
            if latest is None:
                raise BusinessRuleViolation(detail='Medicine has no shelf location in this store yet.')
            old_snapshot['location'] = latest.location
            latest.location = location
            latest.updated_by = actor
            latest.save(update_fields=['location', 'updated_by', 'updated_at'])
            new_values['location'] = location

        AuditService.log(
            actor=actor,
            action=AUDIT_ACTION_UPDATE,
            entity='Medicine',
            entity_id=medicine.pk,
            description=f'Updated medicine {medicine.name}.',
            old_values=old_snapshot,
            new_values=new_values,
        )
        logger.info('Medicine %s updated by %s', medicine.pk, actor)
        return medicine
