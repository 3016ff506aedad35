"""
Stock — Dispensing Strategies

How the ledger finds and materialises stock at each granularity:

* ``UNIT``: every pack of an instance is a SubUnit row. Sales and company
  returns flag individual sub-units and produce one draw per unit.
* ``INSTANCE``: no sub-units. Sales draw partial quantities straight from
  instances and produce one draw per instance touched.

Strategies only select and lock rows. Counter updates, ledger rows and
auditing are applied uniformly by ``stock.services.InventoryLedger``.

@file stock/dispensing.py
"""

from dataclasses import dataclass

from django.db.models import Count, Max, Q
from django.utils import timezone

from core.exceptions import InsufficientStockError
from core.services import to_money
from medicines.models import MedicineInstance, MedicineLocation, SubUnit

UNIT = 'UNIT'
INSTANCE = 'INSTANCE'

ELIGIBLE_SUBUNITS = Q(is_sold=False, is_returned_to_supplier=False)


@dataclass
class Draw:
    """A quantity taken from (or put back into) one instance."""

    instance: MedicineInstance
    quantity: int
    subunit: SubUnit | None = None


class BaseDispenser:
    granularity: str = ''

    def __init__(self, using):
        self.using = using

    def _located_instance_ids(self, store, medicine):
        return MedicineLocation.objects.using(self.using).filter(
            medical_store=store, medicine=medicine,
        ).values('instance_id')

    def _instances(self):
        return MedicineInstance.objects.using(self.using)

    def create_stock(self, instance, quantity, *, returned_by_customer=False):
        """Materialise ``quantity`` new packs on ``instance``; returns the draws."""
        raise NotImplementedError

    def select_for_sale(self, store, medicine, quantity):
        raise NotImplementedError

    def select_for_company_return(self, store, medicine, quantity, batch_id=None):
        raise NotImplementedError

    def consume(self, draws, *, returned_to_supplier=False):
        """Flip terminal flags on consumed rows, where the granularity has any."""


class UnitDispenser(BaseDispenser):
    granularity = UNIT

    def create_stock(self, instance, quantity, *, returned_by_customer=False):
        units_per_pack = instance.variation.units_per_pack
        last = SubUnit.objects.using(self.using).filter(
            instance=instance,
        ).aggregate(last=Max('sequence'))['last'] or 0
        unit_price = to_money(instance.selling_price / units_per_pack)
        subunits = SubUnit.objects.using(self.using).bulk_create([
            SubUnit(
                instance=instance,
                sequence=last + offset,
                sub_unit_count=units_per_pack,
                sub_unit_price=unit_price,
                is_returned_by_customer=returned_by_customer,
                created_by=instance.created_by,
            )
            for offset in range(1, quantity + 1)
        ])
        return [Draw(instance=instance, quantity=1, subunit=subunit) for subunit in subunits]

    def _eligible_subunits(self):
        return (
            SubUnit.objects.using(self.using)
            .select_for_update(of=('self',))
            .select_related('instance', 'instance__batch', 'instance__variation')
            .filter(ELIGIBLE_SUBUNITS)
        )

    def select_for_sale(self, store, medicine, quantity):
        today = timezone.now().date()
        subunits = list(
            self._eligible_subunits()
            .filter(
                instance__medicine=medicine,
                instance__in=self._located_instance_ids(store, medicine),
                instance__quantity__gt=0,
                instance__expiry_date__gt=today,
            )
            .order_by('instance__batch__mfg_date', 'instance__created_at', 'instance_id', 'sequence')[:quantity]
        )
        if len(subunits) < quantity:
            raise InsufficientStockError(
                detail=f'Insufficient available units: requested {quantity}, found {len(subunits)}.',
            )
        return [Draw(instance=s.instance, quantity=1, subunit=s) for s in subunits]

    def select_for_company_return(self, store, medicine, quantity, batch_id=None):
        candidates = (
            self._instances()
            .filter(
                medicine=medicine,
                pk__in=self._located_instance_ids(store, medicine),
                quantity__gte=quantity,
            )
            .annotate(eligible=Count('subunits', filter=Q(
                subunits__is_sold=False, subunits__is_returned_to_supplier=False,
            )))
            .filter(eligible__gte=quantity)
            .order_by('batch__mfg_date', 'created_at', 'pk')
        )
        if batch_id is not None:
            candidates = candidates.filter(batch_id=batch_id)

        for candidate_id in candidates.values_list('pk', flat=True):
            subunits = list(
                self._eligible_subunits()
                .filter(instance_id=candidate_id, instance__quantity__gte=quantity)
                .order_by('sequence')[:quantity]
            )
            if len(subunits) == quantity:
                return [Draw(instance=s.instance, quantity=1, subunit=s) for s in subunits]

        raise InsufficientStockError(
            detail=f'No instance holds {quantity} units eligible for return to the supplier.',
        )

    def consume(self, draws, *, returned_to_supplier=False):
        ids = [draw.subunit.pk for draw in draws]
        flag = 'is_returned_to_supplier' if returned_to_supplier else 'is_sold'
        updated = SubUnit.objects.using(self.using).filter(
            ELIGIBLE_SUBUNITS, pk__in=ids,
        ).update(**{flag: True})
        if updated != len(ids):
            raise InsufficientStockError(
                detail='Some selected units were consumed by a concurrent operation.',
            )
        for draw in draws:
            setattr(draw.subunit, flag, True)


class InstanceDispenser(BaseDispenser):
    granularity = INSTANCE

    def create_stock(self, instance, quantity, *, returned_by_customer=False):
        return [Draw(instance=instance, quantity=quantity)]

    def select_for_sale(self, store, medicine, quantity):
        today = timezone.now().date()
        instances = (
            self._instances()
            .select_for_update(of=('self',))
            .select_related('batch', 'variation')
            .filter(
                medicine=medicine,
                pk__in=self._located_instance_ids(store, medicine),
                quantity__gt=0,
                expiry_date__gt=today,
            )
            .order_by('expiry_date', 'created_at', 'pk')
        )
        draws = []
        remaining = quantity
        for instance in instances:
            take = min(instance.quantity, remaining)
            draws.append(Draw(instance=instance, quantity=take))
            remaining -= take
            if remaining == 0:
                return draws
        raise InsufficientStockError(
            detail=f'Insufficient available stock: requested {quantity}, found {quantity - remaining}.',
        )

    def select_for_company_return(self, store, medicine, quantity, batch_id=None):
        instances = (
            self._instances()
            .select_for_update(of=('self',))
            .select_related('batch', 'variation')
            .filter(
                medicine=medicine,
                pk__in=self._located_instance_ids(store, medicine),
                quantity__gte=quantity,
            )
            .order_by('batch__mfg_date', 'created_at', 'pk')
        )
        if batch_id is not None:
            instances = instances.filter(batch_id=batch_id)
        instance = instances.first()
        if instance is None:
            raise InsufficientStockError(
                detail=f'No instance holds {quantity} units for return to the supplier.',
            )
        return [Draw(instance=instance, quantity=quantity)]


DISPENSERS = {
    UNIT: UnitDispenser,
    INSTANCE: InstanceDispenser,
}
