"""
Stock — Inventory Ledger

The only writer of stock counters. Each public operation runs in one
atomic block on the ledger's database alias, locks the store counter row
before reading any decision input, writes one audit row and either commits
every counter change or none of them.

Counters kept in step by every movement:
  instance quantity, location quantity, store counter (MedicalStoreMedicine),
  sub-unit flags (UNIT granularity), signed StockTransaction rows and
  SoldItem / ReturnedItem rows.

@file stock/services.py
"""

import hashlib
import logging
from collections import defaultdict
from decimal import Decimal, InvalidOperation

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from django.db import DEFAULT_DB_ALIAS, connections, transaction
from django.db.models import F
from django.utils import timezone
from django.utils.dateparse import parse_date

from core.constants import AUDIT_ACTION_CREATE, AUDIT_ACTION_RETURN, AUDIT_ACTION_SALE, AUDIT_ACTION_UPDATE
from core.exceptions import (
    BusinessRuleViolation,
    DuplicateResourceError,
    InsufficientStockError,
    OwnershipMismatchError,
    ResourceNotFoundError,
)
from core.services import AuditService, to_money
from medicines.models import (
    DEFAULT_LOCATION_CODE,
    DEFAULT_VARIATION_LABEL,
    Batch,
    MedicalStoreMedicine,
    Medicine,
    MedicineExpiry,
    MedicineInstance,
    MedicineLocation,
    Variation,
)
from sales.models import Order, ReturnedItem, SoldItem
from stores.models import Company, MedicalStore, Supplier

from .dispensing import DISPENSERS, Draw
from .models import StockTransaction

logger = logging.getLogger('medistock')

CUSTOMER_RETURN = ReturnedItem.ReturnType.CUSTOMER_RETURN
COMPANY_RETURN = ReturnedItem.ReturnType.COMPANY_RETURN

VARIATION_FIELDS = ('potency', 'packaging', 'unit_type', 'units_per_pack')
BATCH_FIELDS = ('batch_no', 'purchase_price', 'selling_price', 'mfg_date', 'expiry_date', 'price')


def _advisory_lock_key(store_id, medicine_id) -> int:
    """Stable bigint key for PostgreSQL advisory lock (same store+medicine = same key)."""
    raw = f'{store_id}:{medicine_id}'.encode()
    h = hashlib.sha256(raw).digest()[:8]
    return int.from_bytes(h, 'big') % (2**63)


def _present(value) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip() != ''
    return True


def _decimal(value, field: str) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise BusinessRuleViolation(detail=f'{field} must be a number.')
    if not amount.is_finite():
        raise BusinessRuleViolation(detail=f'{field} must be a number.')
    if amount < 0:
        raise BusinessRuleViolation(detail=f'{field} must not be negative.')
    return to_money(amount)


def _date(value, field: str):
    if isinstance(value, str):
        parsed = parse_date(value)
        if parsed is None:
            raise BusinessRuleViolation(detail=f'{field} must be a date (YYYY-MM-DD).')
        return parsed
    return value


def _positive_int(value, field: str) -> int:
    if isinstance(value, bool):
        raise BusinessRuleViolation(detail=f'{field} must be a positive integer.')
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise BusinessRuleViolation(detail=f'{field} must be a positive integer.')
    if number != value and str(number) != str(value).strip():
        raise BusinessRuleViolation(detail=f'{field} must be a positive integer.')
    if number <= 0:
        raise BusinessRuleViolation(detail=f'{field} must be a positive integer.')
    return number


def _clean_batch(data: dict, position: int | None = None) -> dict:
    """Validate one batch payload; returns normalised values."""
    label = 'batch' if position is None else f'batches[{position}]'
    missing = [f for f in ('quantity',) + BATCH_FIELDS if not _present(data.get(f))]
    if missing:
        raise BusinessRuleViolation(
            detail=f'{label} is missing required fields: {", ".join(missing)}.',
        )
    batch_no = data['batch_no']
    if not isinstance(batch_no, str):
        raise BusinessRuleViolation(detail=f'{label}.batch_no must be a non-empty string.')

    mfg_date = _date(data['mfg_date'], f'{label}.mfg_date')
    expiry_date = _date(data['expiry_date'], f'{label}.expiry_date')
    if expiry_date <= mfg_date:
        raise BusinessRuleViolation(detail=f'{label}.expiry_date must be after mfg_date.')

    return {
        'batch_no': batch_no.strip(),
        'quantity': _positive_int(data['quantity'], f'{label}.quantity'),
        'purchase_price': _decimal(data['purchase_price'], f'{label}.purchase_price'),
        'selling_price': _decimal(data['selling_price'], f'{label}.selling_price'),
        'price': _decimal(data['price'], f'{label}.price'),
        'mfg_date': mfg_date,
        'expiry_date': expiry_date,
        'location': (data.get('location') or DEFAULT_LOCATION_CODE).strip(),
        'rank': (data.get('rank') or '').strip(),
    }


class InventoryLedger:
    """
    Stock-ledger operations for one database alias.

    ``granularity`` picks the dispensing strategy (``UNIT`` or
    ``INSTANCE``); it defaults to ``settings.INVENTORY_DISPENSING_GRANULARITY``.
    """

    def __init__(self, using: str = DEFAULT_DB_ALIAS, granularity: str | None = None):
        self.using = using
        self.granularity = (granularity or settings.INVENTORY_DISPENSING_GRANULARITY).upper()
        try:
            self.dispenser = DISPENSERS[self.granularity](using)
        except KeyError:
            raise ImproperlyConfigured(
                f'Unknown dispensing granularity {self.granularity!r}; '
                f'expected one of {", ".join(DISPENSERS)}.',
            )

    def __repr__(self):
        return f'<InventoryLedger using={self.using} granularity={self.granularity}>'

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _objects(self, model):
        return model.objects.using(self.using)

    def _get_store(self, store_id) -> MedicalStore:
        try:
            return self._objects(MedicalStore).get(pk=store_id)
        except MedicalStore.DoesNotExist:
            raise ResourceNotFoundError(detail='Medical store not found.')

    def _get_medicine(self, store, medicine_id) -> Medicine:
        try:
            medicine = self._objects(Medicine).select_related('company').get(pk=medicine_id)
        except Medicine.DoesNotExist:
            raise ResourceNotFoundError(detail='Medicine not found.')
        if medicine.company.medical_store_id != store.pk:
            raise OwnershipMismatchError(detail='Medicine does not belong to this medical store.')
        return medicine

    def _get_variation(self, medicine, variation_id=None) -> Variation:
        variations = self._objects(Variation).filter(medicine=medicine)
        if variation_id is not None:
            try:
                return variations.get(pk=variation_id)
            except Variation.DoesNotExist:
                raise ResourceNotFoundError(detail='Variation not found for this medicine.')
        variation = variations.order_by('created_at').first()
        if variation is None:
            variation = self._create_default_variation(medicine)
        return variation

    def _get_order(self, store, order_id, *, open_only=False) -> Order:
        try:
            order = self._objects(Order).select_for_update().get(pk=order_id)
        except Order.DoesNotExist:
            raise ResourceNotFoundError(detail='Order not found.')
        if order.medical_store_id != store.pk:
            raise OwnershipMismatchError(detail='Order does not belong to this medical store.')
        if open_only and order.status == Order.StatusChoices.PAID:
            raise BusinessRuleViolation(detail='Order is already paid; open a new order to sell more.')
        return order

    def _lock_counter(self, store, medicine, *, create=False) -> MedicalStoreMedicine:
        """Lock the store counter row; every ledger decision happens behind it."""
        connection = connections[self.using]
        if connection.vendor == 'postgresql':
            with connection.cursor() as cursor:
                cursor.execute(
                    'SELECT pg_advisory_xact_lock(%s)',
                    [_advisory_lock_key(store.pk, medicine.pk)],
                )
        try:
            return self._objects(MedicalStoreMedicine).select_for_update().get(
                medical_store=store, medicine=medicine,
            )
        except MedicalStoreMedicine.DoesNotExist:
            if not create:
                raise ResourceNotFoundError(detail='Medicine is not stocked in this medical store.')
            return self._objects(MedicalStoreMedicine).create(
                medical_store=store, medicine=medicine, quantity=0,
            )

    # ------------------------------------------------------------------
    # Shared write steps
    # ------------------------------------------------------------------

    def _create_default_variation(self, medicine, actor=None) -> Variation:
        return self._objects(Variation).create(
            medicine=medicine,
            potency=DEFAULT_VARIATION_LABEL,
            packaging=DEFAULT_VARIATION_LABEL,
            unit_type=Variation.UnitTypeChoices.TABLET,
            units_per_pack=1,
            created_by=actor,
        )

    def _record_transactions(self, store, medicine, draws, transaction_type, sign, *, reference_id, actor):
        self._objects(StockTransaction).bulk_create([
            StockTransaction(
                medical_store=store,
                medicine=medicine,
                instance=draw.instance,
                transaction_type=transaction_type,
                quantity=sign * draw.quantity,
                reference_id=reference_id,
                created_by=actor,
            )
            for draw in draws
        ])

    def _intake_batch(self, store, medicine, variation, data, *, actor) -> MedicineInstance:
        if self._objects(Batch).filter(variation=variation, batch_no=data['batch_no']).exists():
            raise DuplicateResourceError(
                detail=f'Batch {data["batch_no"]} already exists for this variation.',
            )
        batch = self._objects(Batch).create(
            variation=variation,
            batch_no=data['batch_no'],
            mfg_date=data['mfg_date'],
            expiry_date=data['expiry_date'],
            quantity=data['quantity'],
            price=data['price'],
            created_by=actor,
        )
        instance = self._objects(MedicineInstance).create(
            medicine=medicine,
            variation=variation,
            batch=batch,
            quantity=data['quantity'],
            purchase_price=data['purchase_price'],
            selling_price=data['selling_price'],
            expiry_date=data['expiry_date'],
            created_by=actor,
        )
        self.dispenser.create_stock(instance, data['quantity'])
        self._objects(MedicineLocation).create(
            medical_store=store,
            medicine=medicine,
            instance=instance,
            location=data['location'],
            rank=data['rank'],
            quantity=data['quantity'],
            created_by=actor,
        )
        self._record_transactions(
            store, medicine,
            [Draw(instance=instance, quantity=data['quantity'])],
            StockTransaction.TransactionType.INTAKE, 1,
            reference_id=None, actor=actor,
        )
        return instance

    def _take_from_instances(self, store, draws):
        """Decrement instance and location quantities for outbound draws."""
        per_instance = defaultdict(int)
        for draw in draws:
            per_instance[draw.instance.pk] += draw.quantity

        locked = {
            instance.pk: instance
            for instance in self._objects(MedicineInstance)
            .select_for_update()
            .filter(pk__in=per_instance.keys())
        }
        for instance_id, amount in per_instance.items():
            if locked[instance_id].quantity < amount:
                raise InsufficientStockError(
                    detail=f'Instance {instance_id} holds {locked[instance_id].quantity}, '
                           f'{amount} requested.',
                )
            self._objects(MedicineInstance).filter(pk=instance_id).update(
                quantity=F('quantity') - amount,
                updated_at=timezone.now(),
            )
            self._take_from_locations(store, instance_id, amount)

        for draw in draws:
            draw.instance.quantity = locked[draw.instance.pk].quantity - per_instance[draw.instance.pk]

    def _take_from_locations(self, store, instance_id, amount):
        remaining = amount
        locations = (
            self._objects(MedicineLocation)
            .select_for_update()
            .filter(medical_store=store, instance_id=instance_id, quantity__gt=0)
            .order_by('created_at', 'pk')
        )
        for location in locations:
            take = min(location.quantity, remaining)
            location.quantity -= take
            location.save(update_fields=['quantity', 'updated_at'])
            remaining -= take
            if remaining == 0:
                return
        raise InsufficientStockError(
            detail=f'Shelf locations for instance {instance_id} hold {amount - remaining} '
                   f'of the {amount} requested.',
        )

    def _put_back_into_instance(self, store, medicine, instance, quantity, location_code, *, actor):
        self._objects(MedicineInstance).filter(pk=instance.pk).update(
            quantity=F('quantity') + quantity,
            updated_at=timezone.now(),
        )
        instance.quantity += quantity
        location = (
            self._objects(MedicineLocation)
            .select_for_update()
            .filter(medical_store=store, instance=instance)
            .order_by('created_at', 'pk')
            .first()
        )
        if location is None:
            self._objects(MedicineLocation).create(
                medical_store=store,
                medicine=medicine,
                instance=instance,
                location=location_code or DEFAULT_LOCATION_CODE,
                quantity=quantity,
                created_by=actor,
            )
        else:
            location.quantity += quantity
            location.save(update_fields=['quantity', 'updated_at'])

    @staticmethod
    def _unit_price(instance) -> Decimal:
        return to_money(instance.selling_price / instance.variation.units_per_pack)

    @staticmethod
    def _unit_cost(instance) -> Decimal:
        return instance.purchase_price / instance.variation.units_per_pack

    def _save_counter(self, counter, delta):
        counter.quantity += delta
        counter.save(update_fields=['quantity', 'updated_at'])

    def _refresh_order_totals(self, order):
        """Recompute header totals from the order's sold and returned rows."""
        items_cost = selling_price = profit = Decimal('0')
        for retail, discount, quantity, margin in self._objects(SoldItem).filter(
            order=order,
        ).values_list('retail_price', 'discount_price', 'quantity', 'margin'):
            items_cost += (retail + (discount or 0)) * quantity
            selling_price += retail * quantity
            profit += margin
        for retail, quantity, margin in self._objects(ReturnedItem).filter(
            order=order, return_type=CUSTOMER_RETURN,
        ).values_list('retail_price', 'quantity', 'margin'):
            selling_price -= retail * quantity
            profit -= margin

        order.items_cost = to_money(items_cost)
        order.selling_price = to_money(selling_price)
        order.profit = to_money(profit)
        order.bill = order.selling_price
        order.save(update_fields=['items_cost', 'selling_price', 'profit', 'bill', 'updated_at'])

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_medicine(
        self,
        *,
        store_id,
        company_id,
        name: str,
        min_quantity,
        supplier_id=None,
        formula: str = '',
        description: str = '',
        quantity=0,
        variation: dict | None = None,
        batch: dict | None = None,
        actor=None,
    ) -> Medicine:
        """
        Create a medicine with its variation and store counter and, when
        batch fields are given, its first batch of stock.
        """
        if not _present(name):
            raise BusinessRuleViolation(detail='name is required.')
        min_quantity = _positive_int(min_quantity, 'min_quantity')

        variation = {k: v for k, v in (variation or {}).items() if k in VARIATION_FIELDS}
        given = [f for f in VARIATION_FIELDS if _present(variation.get(f))]
        if given and len(given) != len(VARIATION_FIELDS):
            raise BusinessRuleViolation(
                detail='All variation fields (potency, packaging, unit_type, units_per_pack) are required.',
            )
        if given:
            variation['units_per_pack'] = _positive_int(variation['units_per_pack'], 'units_per_pack')
            if variation['unit_type'] not in Variation.UnitTypeChoices.values:
                raise BusinessRuleViolation(detail=f'Unknown unit_type {variation["unit_type"]!r}.')

        batch = dict(batch or {})
        batch_given = [f for f in BATCH_FIELDS if _present(batch.get(f))]
        batch_data = None
        if batch_given:
            if len(batch_given) != len(BATCH_FIELDS):
                missing = [f for f in BATCH_FIELDS if f not in batch_given]
                raise BusinessRuleViolation(
                    detail=f'Incomplete batch: missing {", ".join(missing)}.',
                )
            batch_data = _clean_batch({**batch, 'quantity': quantity})
        elif quantity not in (None, 0, '0'):
            raise BusinessRuleViolation(detail='quantity requires batch details.')

        with transaction.atomic(using=self.using):
            store = self._get_store(store_id)
            try:
                company = self._objects(Company).get(pk=company_id)
            except Company.DoesNotExist:
                raise ResourceNotFoundError(detail='Company not found.')
            if company.medical_store_id != store.pk:
                raise OwnershipMismatchError(detail='Company does not belong to this medical store.')

            supplier = None
            if supplier_id is not None:
                try:
                    supplier = self._objects(Supplier).get(pk=supplier_id)
                except Supplier.DoesNotExist:
                    raise ResourceNotFoundError(detail='Supplier not found.')
                if supplier.medical_store_id != store.pk:
                    raise OwnershipMismatchError(detail='Supplier does not belong to this medical store.')

            medicine = self._objects(Medicine).create(
                name=name.strip(),
                formula=formula or '',
                description=description or '',
                min_quantity=min_quantity,
                company=company,
                supplier=supplier,
                created_by=actor,
            )
            if given:
                medicine_variation = self._objects(Variation).create(
                    medicine=medicine, created_by=actor, **variation,
                )
            else:
                medicine_variation = self._create_default_variation(medicine, actor)

            counter = self._lock_counter(store, medicine, create=True)
            if batch_data is not None:
                self._intake_batch(store, medicine, medicine_variation, batch_data, actor=actor)
                self._save_counter(counter, batch_data['quantity'])
                self.refresh_alerts(store=store, medicine=medicine, counter=counter)

            AuditService.log(
                actor=actor,
                action=AUDIT_ACTION_CREATE,
                entity='Medicine',
                entity_id=medicine.pk,
                description=f'Registered medicine {medicine.name} in store {store.name}.',
                new_values={
                    'store': str(store.pk),
                    'quantity': counter.quantity,
                    'batch_no': batch_data['batch_no'] if batch_data else None,
                },
                using=self.using,
            )

        logger.info(
            'Medicine %s registered in store %s with quantity %s',
            medicine.pk, store.pk, counter.quantity,
        )
        return medicine

    # ------------------------------------------------------------------
    # Stock addition
    # ------------------------------------------------------------------

    def add_stock(
        self,
        *,
        store_id,
        medicine_id,
        batches: list[dict],
        quantity=None,
        variation_id=None,
        actor=None,
    ) -> list[MedicineInstance]:
        """Append one or more batches; the store counter grows by their sum."""
        if not batches:
            raise BusinessRuleViolation(detail='At least one batch is required.')
        cleaned = [_clean_batch(b, position=i) for i, b in enumerate(batches)]
        total = sum(b['quantity'] for b in cleaned)
        if quantity is not None and _positive_int(quantity, 'quantity') != total:
            raise BusinessRuleViolation(
                detail=f'quantity ({quantity}) does not match the sum of batch quantities ({total}).',
            )
        numbers = [b['batch_no'] for b in cleaned]
        if len(set(numbers)) != len(numbers):
            raise BusinessRuleViolation(detail='Batch numbers must be unique within one request.')

        with transaction.atomic(using=self.using):
            store = self._get_store(store_id)
            medicine = self._get_medicine(store, medicine_id)
            counter = self._lock_counter(store, medicine, create=True)
            variation = self._get_variation(medicine, variation_id)

            instances = [
                self._intake_batch(store, medicine, variation, data, actor=actor)
                for data in cleaned
            ]
            before = counter.quantity
            self._save_counter(counter, total)
            self.refresh_alerts(store=store, medicine=medicine, counter=counter)

            AuditService.log(
                actor=actor,
                action=AUDIT_ACTION_UPDATE,
                entity='MedicalStoreMedicine',
                entity_id=counter.pk,
                description=f'Added {total} units of {medicine.name} in {len(cleaned)} batch(es).',
                old_values={'quantity': before},
                new_values={'quantity': counter.quantity, 'batches': numbers},
                using=self.using,
            )

        logger.info(
            'Stock added: medicine=%s store=%s qty=%s batches=%s',
            medicine.pk, store.pk, total, len(cleaned),
        )
        return instances

    # ------------------------------------------------------------------
    # Sale
    # ------------------------------------------------------------------

    def sell(
        self,
        *,
        store_id,
        medicine_id,
        order_id,
        quantity,
        discount_price=None,
        discount_rate=None,
        actor=None,
    ) -> list[SoldItem]:
        """
        Sell ``quantity`` units oldest stock first. ``discount_price`` is the
        unit price charged instead of the list price; ``discount_rate`` is a
        percentage taken off each draw's list price.
        """
        quantity = _positive_int(quantity, 'quantity')
        if discount_price is not None and discount_rate is not None:
            raise BusinessRuleViolation(detail='Give either discount_price or discount_rate, not both.')
        if discount_price is not None:
            discount_price = _decimal(discount_price, 'discount_price')
        if discount_rate is not None:
            discount_rate = _decimal(discount_rate, 'discount_rate')
            if discount_rate > 100:
                raise BusinessRuleViolation(detail='discount_rate must be between 0 and 100.')

        with transaction.atomic(using=self.using):
            store = self._get_store(store_id)
            medicine = self._get_medicine(store, medicine_id)
            order = self._get_order(store, order_id, open_only=True)
            counter = self._lock_counter(store, medicine)
            if counter.quantity < quantity:
                raise InsufficientStockError(
                    detail=f'Insufficient stock for {medicine.name}: '
                           f'available {counter.quantity}, requested {quantity}.',
                )

            draws = self.dispenser.select_for_sale(store, medicine, quantity)
            self.dispenser.consume(draws)
            self._take_from_instances(store, draws)
            self._record_transactions(
                store, medicine, draws, StockTransaction.TransactionType.SALE, -1,
                reference_id=order.pk, actor=actor,
            )

            sold = []
            for draw in draws:
                instance = draw.instance
                list_price = draw.subunit.sub_unit_price if draw.subunit else self._unit_price(instance)
                if discount_price is not None:
                    retail = discount_price
                elif discount_rate is not None:
                    retail = to_money(list_price * (100 - discount_rate) / 100)
                else:
                    retail = list_price
                discount_amount = to_money(list_price - retail) if retail != list_price else None
                sold.append(SoldItem(
                    order=order,
                    medical_store=store,
                    medicine=medicine,
                    batch_id=instance.batch_id,
                    instance=instance,
                    subunit=draw.subunit,
                    quantity=draw.quantity,
                    retail_price=retail,
                    discount_price=discount_amount,
                    margin=to_money((retail - self._unit_cost(instance)) * draw.quantity),
                    created_by=actor,
                ))
            self._objects(SoldItem).bulk_create(sold)

            before = counter.quantity
            self._save_counter(counter, -quantity)
            self._refresh_order_totals(order)
            self.refresh_alerts(store=store, medicine=medicine, counter=counter)

            AuditService.log(
                actor=actor,
                action=AUDIT_ACTION_SALE,
                entity='Order',
                entity_id=order.pk,
                description=f'Sold {quantity} units of {medicine.name}.',
                old_values={'quantity': before},
                new_values={
                    'quantity': counter.quantity,
                    'medicine': str(medicine.pk),
                    'rows': len(sold),
                },
                using=self.using,
            )

        logger.info(
            'Sale: order=%s medicine=%s store=%s qty=%s rows=%s',
            order.pk, medicine.pk, store.pk, quantity, len(sold),
        )
        return sold

    # ------------------------------------------------------------------
    # Returns
    # ------------------------------------------------------------------

    def process_return(
        self,
        *,
        store_id,
        medicine_id,
        return_type: str,
        quantity,
        retail_price=None,
        discount_price=None,
        order_id=None,
        batch_id=None,
        batch_no: str | None = None,
        expiry_date=None,
        variation_id=None,
        location: str | None = None,
        actor=None,
    ) -> list[ReturnedItem]:
        """
        CUSTOMER_RETURN puts stock back (onto a resolved or new batch);
        COMPANY_RETURN sends stock from one instance back to the supplier.
        """
        if return_type not in ReturnedItem.ReturnType.values:
            raise BusinessRuleViolation(
                detail=f'return_type must be {CUSTOMER_RETURN} or {COMPANY_RETURN}.',
            )
        quantity = _positive_int(quantity, 'quantity')
        if return_type == CUSTOMER_RETURN and not _present(retail_price):
            raise BusinessRuleViolation(detail='retail_price is required for a customer return.')
        if _present(retail_price):
            retail_price = _decimal(retail_price, 'retail_price')
        if discount_price is not None:
            discount_price = _decimal(discount_price, 'discount_price')
        expiry_date = _date(expiry_date, 'expiry_date') if _present(expiry_date) else None

        with transaction.atomic(using=self.using):
            store = self._get_store(store_id)
            medicine = self._get_medicine(store, medicine_id)
            order = self._get_order(store, order_id) if order_id is not None else None

            if return_type == CUSTOMER_RETURN:
                counter = self._lock_counter(store, medicine, create=True)
                draws = self._customer_return(
                    store, medicine, quantity, retail_price,
                    batch_id=batch_id, batch_no=batch_no, expiry_date=expiry_date,
                    variation_id=variation_id, location=location, actor=actor,
                )
                sign, transaction_type = 1, StockTransaction.TransactionType.CUSTOMER_RETURN
            else:
                counter = self._lock_counter(store, medicine)
                if counter.quantity < quantity:
                    raise InsufficientStockError(
                        detail=f'Insufficient stock for {medicine.name}: '
                               f'available {counter.quantity}, requested {quantity}.',
                    )
                draws = self.dispenser.select_for_company_return(store, medicine, quantity, batch_id)
                self.dispenser.consume(draws, returned_to_supplier=True)
                self._take_from_instances(store, draws)
                sign, transaction_type = -1, StockTransaction.TransactionType.COMPANY_RETURN

            self._record_transactions(
                store, medicine, draws, transaction_type, sign,
                reference_id=order.pk if order else None, actor=actor,
            )

            if discount_price is not None and retail_price is not None:
                margin_total = (retail_price - discount_price) * quantity
            else:
                margin_total = Decimal('0')
            returned = [
                ReturnedItem(
                    order=order,
                    return_type=return_type,
                    medical_store=store,
                    medicine=medicine,
                    batch_id=draw.instance.batch_id,
                    instance=draw.instance,
                    subunit=draw.subunit,
                    quantity=draw.quantity,
                    retail_price=retail_price if retail_price is not None else to_money(
                        self._unit_cost(draw.instance),
                    ),
                    discount_price=discount_price,
                    margin=to_money(margin_total * draw.quantity / quantity),
                    created_by=actor,
                )
                for draw in draws
            ]
            self._objects(ReturnedItem).bulk_create(returned)

            before = counter.quantity
            self._save_counter(counter, sign * quantity)
            if order is not None:
                self._refresh_order_totals(order)
            self.refresh_alerts(store=store, medicine=medicine, counter=counter)

            AuditService.log(
                actor=actor,
                action=AUDIT_ACTION_RETURN,
                entity='MedicalStoreMedicine',
                entity_id=counter.pk,
                description=f'{return_type}: {quantity} units of {medicine.name}.',
                old_values={'quantity': before},
                new_values={'quantity': counter.quantity, 'rows': len(returned)},
                using=self.using,
            )

        logger.info(
            'Return %s: medicine=%s store=%s qty=%s',
            return_type, medicine.pk, store.pk, quantity,
        )
        return returned

    def _resolve_return_instance(self, medicine, *, batch_id, batch_no, expiry_date):
        instances = (
            self._objects(MedicineInstance)
            .select_for_update()
            .filter(medicine=medicine)
            .order_by('created_at', 'pk')
        )
        if batch_id is not None:
            instance = instances.filter(batch_id=batch_id).first()
            if instance is None:
                raise ResourceNotFoundError(detail='Batch not found for this medicine.')
            return instance
        if _present(batch_no):
            instance = instances.filter(batch__batch_no=batch_no.strip()).first()
            if instance is not None:
                return instance
        if expiry_date is not None:
            return instances.filter(expiry_date=expiry_date).first()
        return None

    def _customer_return(
        self, store, medicine, quantity, retail_price, *,
        batch_id, batch_no, expiry_date, variation_id, location, actor,
    ) -> list[Draw]:
        instance = self._resolve_return_instance(
            medicine, batch_id=batch_id, batch_no=batch_no, expiry_date=expiry_date,
        )
        if instance is None:
            if not _present(batch_no) or expiry_date is None:
                raise BusinessRuleViolation(
                    detail='batch_no and expiry_date are required to return stock of an unknown batch.',
                )
            variation = self._get_variation(medicine, variation_id)
            mfg_date = timezone.now().date()
            if expiry_date <= mfg_date:
                raise BusinessRuleViolation(detail='Returned stock must not be expired.')
            pack_price = to_money(retail_price * variation.units_per_pack)
            batch = self._objects(Batch).create(
                variation=variation,
                batch_no=batch_no.strip(),
                mfg_date=mfg_date,
                expiry_date=expiry_date,
                quantity=0,
                price=to_money(retail_price * quantity),
                created_by=actor,
            )
            instance = self._objects(MedicineInstance).create(
                medicine=medicine,
                variation=variation,
                batch=batch,
                quantity=0,
                purchase_price=pack_price,
                selling_price=pack_price,
                expiry_date=expiry_date,
                created_by=actor,
            )
        draws = self.dispenser.create_stock(instance, quantity, returned_by_customer=True)
        self._put_back_into_instance(store, medicine, instance, quantity, location, actor=actor)
        return draws

    # ------------------------------------------------------------------
    # Alerts
    # ------------------------------------------------------------------

    def refresh_alerts(self, *, store, medicine, counter=None) -> list[MedicineExpiry]:
        """
        When the store counter is at or below the reorder threshold, flag
        every expiry date still holding stock. Flags are never cleared here.
        """
        with transaction.atomic(using=self.using):
            if counter is None:
                counter = self._lock_counter(store, medicine)
            if counter.quantity > medicine.min_quantity:
                return []
            expiry_dates = (
                self._objects(MedicineInstance)
                .filter(medicine=medicine, quantity__gt=0)
                .order_by('expiry_date')
                .values_list('expiry_date', flat=True)
                .distinct()
            )
            flags = [
                self._objects(MedicineExpiry).update_or_create(
                    medicine=medicine,
                    expiry_date=expiry_date,
                    defaults={'is_near_expiry': True},
                )[0]
                for expiry_date in expiry_dates
            ]

        if flags:
            logger.info(
                'Low stock: medicine=%s store=%s qty=%s min=%s flagged=%s',
                medicine.pk, store.pk, counter.quantity, medicine.min_quantity, len(flags),
            )
        return flags


def get_ledger(using: str = DEFAULT_DB_ALIAS) -> InventoryLedger:
    """Ledger bound to ``using`` with the configured granularity."""
    return InventoryLedger(using=using)
