"""
Tests — InventoryLedger: registration, stock addition, FIFO sale, customer
and company returns, low-stock flagging. Both dispensing granularities.
Every failure path must leave counters exactly as they were.

@file stock/tests/test_services.py
"""

import uuid
from datetime import timedelta
from decimal import Decimal

import pytest
from django.core.exceptions import ImproperlyConfigured
from django.utils import timezone

from core.exceptions import (
    BusinessRuleViolation,
    DuplicateResourceError,
    InsufficientStockError,
    OwnershipMismatchError,
    ResourceNotFoundError,
)
from core.models import AuditLog
from medicines.models import (
    Batch,
    MedicalStoreMedicine,
    Medicine,
    MedicineExpiry,
    MedicineInstance,
    MedicineLocation,
    SubUnit,
    Variation,
)
from medicines.services import MedicineService
from sales.models import Order, ReturnedItem, SoldItem
from sales.services import OrderService
from stock.models import StockTransaction
from stock.services import InventoryLedger, get_ledger
from tests.factories import CompanyFactory, MedicalStoreFactory, OrderFactory, SupplierFactory


pytestmark = pytest.mark.django_db

CUSTOMER = ReturnedItem.ReturnType.CUSTOMER_RETURN
COMPANY = ReturnedItem.ReturnType.COMPANY_RETURN


def _today():
    return timezone.now().date()


def _counter(store, medicine):
    return MedicalStoreMedicine.objects.get(medical_store=store, medicine=medicine).quantity


def _instance_quantities(medicine):
    return sorted(MedicineInstance.objects.filter(medicine=medicine).values_list('quantity', flat=True))


def _location_quantities(store, medicine):
    return sorted(
        MedicineLocation.objects.filter(medical_store=store, medicine=medicine)
        .values_list('quantity', flat=True)
    )


def _snapshot(store, medicine):
    return (
        _counter(store, medicine),
        _instance_quantities(medicine),
        _location_quantities(store, medicine),
        SubUnit.objects.filter(instance__medicine=medicine, is_sold=True).count(),
        SoldItem.objects.filter(medicine=medicine).count(),
        StockTransaction.objects.filter(medicine=medicine).count(),
    )


def _register_empty(ledger, store, company, actor=None, **kwargs):
    kwargs.setdefault('min_quantity', 5)
    return ledger.register_medicine(
        store_id=store.pk,
        company_id=company.pk,
        name=kwargs.pop('name', 'Brufen'),
        actor=actor,
        **kwargs,
    )


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

class TestLedgerConfiguration:

    def test_default_granularity_from_settings(self, settings):
        settings.INVENTORY_DISPENSING_GRANULARITY = 'instance'
        assert get_ledger().granularity == 'INSTANCE'

    def test_unknown_granularity_rejected(self):
        with pytest.raises(ImproperlyConfigured):
            InventoryLedger(granularity='CARTON')


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------

class TestRegisterMedicine:

    def test_register_with_batch_creates_stock(self, stocked_medicine, store, store_owner):
        assert _counter(store, stocked_medicine) == 10
        instance = MedicineInstance.objects.get(medicine=stocked_medicine)
        assert instance.quantity == 10
        assert instance.batch.batch_no == 'B-0001'
        assert SubUnit.objects.filter(instance=instance).count() == 10
        assert _location_quantities(store, stocked_medicine) == [10]
        location = MedicineLocation.objects.get(instance=instance)
        assert location.location == 'Default'
        log = AuditLog.objects.get(entity='Medicine', entity_id=str(stocked_medicine.pk))
        assert log.action == AuditLog.ActionChoices.CREATE
        assert log.actor == store_owner

    def test_register_without_batch(self, ledger, store, company):
        medicine = _register_empty(ledger, store, company)
        assert _counter(store, medicine) == 0
        variation = Variation.objects.get(medicine=medicine)
        assert variation.potency == 'Default'
        assert variation.units_per_pack == 1
        assert not Batch.objects.filter(variation__medicine=medicine).exists()

    def test_register_with_full_variation(self, ledger, store, company):
        medicine = _register_empty(
            ledger, store, company,
            variation={
                'potency': '250mg', 'packaging': 'Bottle',
                'unit_type': Variation.UnitTypeChoices.SYRUP, 'units_per_pack': 1,
            },
        )
        assert Variation.objects.get(medicine=medicine).potency == '250mg'

    def test_partial_variation_rejected(self, ledger, store, company):
        with pytest.raises(BusinessRuleViolation):
            _register_empty(ledger, store, company, variation={'potency': '250mg'})
        assert not Medicine.objects.exists()

    def test_partial_batch_rejected(self, ledger, store, company, make_batch):
        batch = make_batch()
        del batch['selling_price']
        with pytest.raises(BusinessRuleViolation):
            _register_empty(ledger, store, company, quantity=batch.pop('quantity'), batch=batch)
        assert not Medicine.objects.exists()
        assert not Batch.objects.exists()

    def test_blank_batch_number_rejected(self, ledger, store, company, make_batch):
        batch = make_batch(batch_no='   ')
        with pytest.raises(BusinessRuleViolation):
            _register_empty(ledger, store, company, quantity=batch.pop('quantity'), batch=batch)
        assert not Medicine.objects.exists()

    def test_quantity_without_batch_rejected(self, ledger, store, company):
        with pytest.raises(BusinessRuleViolation):
            _register_empty(ledger, store, company, quantity=5)

    def test_company_of_other_store_forbidden(self, ledger, store):
        foreign = CompanyFactory(medical_store=MedicalStoreFactory())
        with pytest.raises(OwnershipMismatchError):
            _register_empty(ledger, store, foreign)
        assert not Medicine.objects.exists()

    def test_supplier_of_other_store_forbidden(self, ledger, store, company):
        supplier = SupplierFactory()
        with pytest.raises(OwnershipMismatchError):
            _register_empty(ledger, store, company, supplier_id=supplier.pk)
        assert not Medicine.objects.exists()

    def test_unknown_company_not_found(self, ledger, store):
        with pytest.raises(ResourceNotFoundError):
            ledger.register_medicine(
                store_id=store.pk, company_id=uuid.uuid4(), name='X', min_quantity=1,
            )

    def test_min_quantity_must_be_positive(self, ledger, store, company):
        with pytest.raises(BusinessRuleViolation):
            _register_empty(ledger, store, company, min_quantity=0)


# ---------------------------------------------------------------------------
# Stock addition
# ---------------------------------------------------------------------------

class TestAddStock:

    def test_add_two_batches(self, ledger, stocked_medicine, store, make_batch):
        instances = ledger.add_stock(
            store_id=store.pk,
            medicine_id=stocked_medicine.pk,
            batches=[make_batch(quantity=5), make_batch(quantity=3)],
            quantity=8,
        )
        assert len(instances) == 2
        assert _counter(store, stocked_medicine) == 18
        assert _instance_quantities(stocked_medicine) == [3, 5, 10]
        assert SubUnit.objects.filter(instance__medicine=stocked_medicine).count() == 18
        intakes = StockTransaction.objects.filter(
            medicine=stocked_medicine, transaction_type=StockTransaction.TransactionType.INTAKE,
        )
        assert sum(intakes.values_list('quantity', flat=True)) == 18

    def test_quantity_mismatch_rejected(self, ledger, stocked_medicine, store, make_batch):
        with pytest.raises(BusinessRuleViolation, match='9'):
            ledger.add_stock(
                store_id=store.pk,
                medicine_id=stocked_medicine.pk,
                batches=[make_batch(quantity=5), make_batch(quantity=3)],
                quantity=9,
            )
        assert Batch.objects.filter(variation__medicine=stocked_medicine).count() == 1
        assert _counter(store, stocked_medicine) == 10

    def test_missing_price_rejected(self, ledger, stocked_medicine, store, make_batch):
        batch = make_batch()
        batch['price'] = None
        with pytest.raises(BusinessRuleViolation):
            ledger.add_stock(store_id=store.pk, medicine_id=stocked_medicine.pk, batches=[batch])

    def test_negative_price_rejected(self, ledger, stocked_medicine, store, make_batch):
        with pytest.raises(BusinessRuleViolation):
            ledger.add_stock(
                store_id=store.pk,
                medicine_id=stocked_medicine.pk,
                batches=[make_batch(price=Decimal('-1.00'))],
            )

    def test_expiry_before_mfg_rejected(self, ledger, stocked_medicine, store, make_batch):
        with pytest.raises(BusinessRuleViolation):
            ledger.add_stock(
                store_id=store.pk,
                medicine_id=stocked_medicine.pk,
                batches=[make_batch(expiry_date=_today() - timedelta(days=60))],
            )

    def test_duplicate_batch_numbers_in_request(self, ledger, stocked_medicine, store, make_batch):
        with pytest.raises(BusinessRuleViolation):
            ledger.add_stock(
                store_id=store.pk,
                medicine_id=stocked_medicine.pk,
                batches=[make_batch(batch_no='DUP'), make_batch(batch_no='DUP')],
            )

    def test_existing_batch_number_rolls_back(self, ledger, stocked_medicine, store, make_batch):
        existing = Batch.objects.get(variation__medicine=stocked_medicine).batch_no
        before = _snapshot(store, stocked_medicine)
        with pytest.raises(DuplicateResourceError):
            ledger.add_stock(
                store_id=store.pk,
                medicine_id=stocked_medicine.pk,
                batches=[make_batch(quantity=4), make_batch(batch_no=existing)],
            )
        assert _snapshot(store, stocked_medicine) == before
        assert Batch.objects.filter(variation__medicine=stocked_medicine).count() == 1

    def test_medicine_of_other_store_forbidden(self, ledger, stocked_medicine, make_batch):
        other = MedicalStoreFactory()
        with pytest.raises(OwnershipMismatchError):
            ledger.add_stock(store_id=other.pk, medicine_id=stocked_medicine.pk, batches=[make_batch()])

    def test_unknown_variation_not_found(self, ledger, stocked_medicine, store, make_batch):
        with pytest.raises(ResourceNotFoundError):
            ledger.add_stock(
                store_id=store.pk,
                medicine_id=stocked_medicine.pk,
                batches=[make_batch()],
                variation_id=uuid.uuid4(),
            )

    def test_creates_counter_when_absent(self, ledger, store, company, make_batch):
        medicine = _register_empty(ledger, store, company)
        MedicalStoreMedicine.objects.filter(medicine=medicine).delete()
        ledger.add_stock(store_id=store.pk, medicine_id=medicine.pk, batches=[make_batch(quantity=6)])
        assert _counter(store, medicine) == 6

    def test_audited_once(self, ledger, stocked_medicine, store, make_batch):
        ledger.add_stock(
            store_id=store.pk,
            medicine_id=stocked_medicine.pk,
            batches=[make_batch(quantity=2), make_batch(quantity=2)],
        )
        logs = AuditLog.objects.filter(entity='MedicalStoreMedicine', action=AuditLog.ActionChoices.UPDATE)
        assert logs.count() == 1
        assert logs.get().new_values['quantity'] == 14


# ---------------------------------------------------------------------------
# Sale (UNIT granularity)
# ---------------------------------------------------------------------------

class TestSell:

    def test_sell_updates_every_counter(self, ledger, stocked_medicine, store):
        order = OrderFactory(medical_store=store)
        sold = ledger.sell(store_id=store.pk, medicine_id=stocked_medicine.pk, order_id=order.pk, quantity=4)

        assert len(sold) == 4
        assert all(item.quantity == 1 for item in sold)
        assert _counter(store, stocked_medicine) == 6
        assert _instance_quantities(stocked_medicine) == [6]
        assert _location_quantities(store, stocked_medicine) == [6]
        assert SubUnit.objects.filter(instance__medicine=stocked_medicine, is_sold=True).count() == 4
        sales = StockTransaction.objects.filter(
            medicine=stocked_medicine, transaction_type=StockTransaction.TransactionType.SALE,
        )
        assert sales.count() == 4
        assert set(sales.values_list('quantity', flat=True)) == {-1}
        assert set(sales.values_list('reference_id', flat=True)) == {order.pk}

    def test_prices_margin_and_order_totals(self, ledger, stocked_medicine, store):
        order = OrderFactory(medical_store=store)
        sold = ledger.sell(store_id=store.pk, medicine_id=stocked_medicine.pk, order_id=order.pk, quantity=4)
        assert sold[0].retail_price == Decimal('15.00')
        assert sold[0].discount_price is None
        assert sold[0].margin == Decimal('5.00')

        order.refresh_from_db()
        assert order.items_cost == Decimal('60.00')
        assert order.selling_price == Decimal('60.00')
        assert order.profit == Decimal('20.00')
        assert order.bill == Decimal('60.00')

    def test_unit_priced_from_pack_price(self, ledger, store, company, make_batch):
        batch = make_batch(quantity=20)
        medicine = _register_empty(
            ledger, store, company, name='Disprin',
            variation={
                'potency': '300mg', 'packaging': 'Strip',
                'unit_type': Variation.UnitTypeChoices.TABLET, 'units_per_pack': 10,
            },
            quantity=batch.pop('quantity'),
            batch=batch,
        )
        order = OrderFactory(medical_store=store)
        sold = ledger.sell(store_id=store.pk, medicine_id=medicine.pk, order_id=order.pk, quantity=2)

        assert [item.retail_price for item in sold] == [Decimal('1.50'), Decimal('1.50')]
        assert sold[0].margin == Decimal('0.50')
        order.refresh_from_db()
        assert order.bill == Decimal('3.00')
        assert _counter(store, medicine) == 18

    def test_paid_order_takes_no_more_sales(self, ledger, stocked_medicine, store):
        order = OrderFactory(medical_store=store)
        ledger.sell(store_id=store.pk, medicine_id=stocked_medicine.pk, order_id=order.pk, quantity=1)
        OrderService.mark_paid(store_id=store.pk, order_id=order.pk)

        with pytest.raises(BusinessRuleViolation):
            ledger.sell(store_id=store.pk, medicine_id=stocked_medicine.pk, order_id=order.pk, quantity=3)

        order.refresh_from_db()
        assert order.status == Order.StatusChoices.PAID
        assert order.bill == Decimal('15.00')
        assert order.sold_items.count() == 1
        assert _counter(store, stocked_medicine) == 9

    def test_paid_order_still_takes_customer_returns(self, ledger, stocked_medicine, store):
        order = OrderFactory(medical_store=store)
        ledger.sell(store_id=store.pk, medicine_id=stocked_medicine.pk, order_id=order.pk, quantity=2)
        OrderService.mark_paid(store_id=store.pk, order_id=order.pk)
        batch = Batch.objects.get(variation__medicine=stocked_medicine)

        returned = ledger.process_return(
            store_id=store.pk, medicine_id=stocked_medicine.pk, return_type='CUSTOMER_RETURN',
            quantity=1, retail_price=Decimal('15.00'), order_id=order.pk, batch_id=batch.pk,
        )
        assert len(returned) == 1
        assert _counter(store, stocked_medicine) == 9

    def test_discount_price(self, ledger, stocked_medicine, store):
        order = OrderFactory(medical_store=store)
        sold = ledger.sell(
            store_id=store.pk, medicine_id=stocked_medicine.pk, order_id=order.pk,
            quantity=2, discount_price=Decimal('12.00'),
        )
        assert sold[0].retail_price == Decimal('12.00')
        assert sold[0].discount_price == Decimal('3.00')
        assert sold[0].margin == Decimal('2.00')
        order.refresh_from_db()
        assert order.items_cost == Decimal('30.00')
        assert order.bill == Decimal('24.00')
        assert order.profit == Decimal('4.00')

    def test_discount_rate(self, ledger, stocked_medicine, store):
        order = OrderFactory(medical_store=store)
        sold = ledger.sell(
            store_id=store.pk, medicine_id=stocked_medicine.pk, order_id=order.pk,
            quantity=1, discount_rate=Decimal('10'),
        )
        assert sold[0].retail_price == Decimal('13.50')
        assert sold[0].discount_price == Decimal('1.50')

    def test_both_discounts_rejected(self, ledger, stocked_medicine, store):
        order = OrderFactory(medical_store=store)
        with pytest.raises(BusinessRuleViolation):
            ledger.sell(
                store_id=store.pk, medicine_id=stocked_medicine.pk, order_id=order.pk,
                quantity=1, discount_price=Decimal('1'), discount_rate=Decimal('1'),
            )

    def test_fifo_by_manufacture_date(self, ledger, stocked_medicine, store, make_batch):
        today = _today()
        ledger.add_stock(
            store_id=store.pk,
            medicine_id=stocked_medicine.pk,
            batches=[
                make_batch(quantity=2, batch_no='OLD', mfg_date=today - timedelta(days=90)),
                make_batch(quantity=4, batch_no='NEW', mfg_date=today - timedelta(days=5)),
            ],
        )
        order = OrderFactory(medical_store=store)
        sold = ledger.sell(store_id=store.pk, medicine_id=stocked_medicine.pk, order_id=order.pk, quantity=3)

        assert [item.batch.batch_no for item in sold] == ['OLD', 'OLD', 'B-0001']
        remaining = dict(
            MedicineInstance.objects.filter(medicine=stocked_medicine)
            .values_list('batch__batch_no', 'quantity')
        )
        assert remaining == {'OLD': 0, 'B-0001': 9, 'NEW': 4}

    def test_exceeding_stock_mutates_nothing(self, ledger, stocked_medicine, store):
        order = OrderFactory(medical_store=store)
        before = _snapshot(store, stocked_medicine)
        with pytest.raises(InsufficientStockError):
            ledger.sell(store_id=store.pk, medicine_id=stocked_medicine.pk, order_id=order.pk, quantity=11)
        assert _snapshot(store, stocked_medicine) == before
        order.refresh_from_db()
        assert order.bill == Decimal('0.00')

    def test_expired_units_not_sellable(self, ledger, stocked_medicine, store, make_batch):
        today = _today()
        ledger.add_stock(
            store_id=store.pk,
            medicine_id=stocked_medicine.pk,
            batches=[make_batch(
                quantity=5,
                mfg_date=today - timedelta(days=400),
                expiry_date=today - timedelta(days=5),
            )],
        )
        assert _counter(store, stocked_medicine) == 15
        order = OrderFactory(medical_store=store)
        before = _snapshot(store, stocked_medicine)
        with pytest.raises(InsufficientStockError):
            ledger.sell(store_id=store.pk, medicine_id=stocked_medicine.pk, order_id=order.pk, quantity=12)
        assert _snapshot(store, stocked_medicine) == before

    def test_sold_unit_never_reselected(self, ledger, stocked_medicine, store):
        order = OrderFactory(medical_store=store)
        first = ledger.sell(store_id=store.pk, medicine_id=stocked_medicine.pk, order_id=order.pk, quantity=4)
        second = ledger.sell(store_id=store.pk, medicine_id=stocked_medicine.pk, order_id=order.pk, quantity=6)

        units = [item.subunit_id for item in first + second]
        assert len(set(units)) == 10
        with pytest.raises(InsufficientStockError):
            ledger.sell(store_id=store.pk, medicine_id=stocked_medicine.pk, order_id=order.pk, quantity=1)

    def test_sold_unit_not_returned_to_company(self, ledger, stocked_medicine, store):
        order = OrderFactory(medical_store=store)
        sold = ledger.sell(store_id=store.pk, medicine_id=stocked_medicine.pk, order_id=order.pk, quantity=8)
        returned = ledger.process_return(
            store_id=store.pk, medicine_id=stocked_medicine.pk,
            return_type=COMPANY, quantity=2,
        )
        assert not {item.subunit_id for item in sold} & {item.subunit_id for item in returned}
        with pytest.raises(InsufficientStockError):
            ledger.process_return(
                store_id=store.pk, medicine_id=stocked_medicine.pk,
                return_type=COMPANY, quantity=1,
            )

    def test_order_of_other_store_forbidden(self, ledger, stocked_medicine, store):
        order = OrderFactory()
        with pytest.raises(OwnershipMismatchError):
            ledger.sell(store_id=store.pk, medicine_id=stocked_medicine.pk, order_id=order.pk, quantity=1)
        assert _counter(store, stocked_medicine) == 10

    def test_unknown_order_not_found(self, ledger, stocked_medicine, store):
        with pytest.raises(ResourceNotFoundError):
            ledger.sell(store_id=store.pk, medicine_id=stocked_medicine.pk, order_id=uuid.uuid4(), quantity=1)

    def test_non_positive_quantity_rejected(self, ledger, stocked_medicine, store):
        order = OrderFactory(medical_store=store)
        with pytest.raises(BusinessRuleViolation):
            ledger.sell(store_id=store.pk, medicine_id=stocked_medicine.pk, order_id=order.pk, quantity=0)

    def test_sale_audited_once(self, ledger, stocked_medicine, store, store_owner):
        order = OrderFactory(medical_store=store)
        ledger.sell(
            store_id=store.pk, medicine_id=stocked_medicine.pk, order_id=order.pk,
            quantity=3, actor=store_owner,
        )
        log = AuditLog.objects.get(action=AuditLog.ActionChoices.SALE)
        assert log.entity_id == str(order.pk)
        assert log.old_values == {'quantity': 10}
        assert log.new_values['quantity'] == 7

    def test_added_minus_sold_balance(self, ledger, stocked_medicine, store, make_batch):
        order = OrderFactory(medical_store=store)
        added = sold = 0
        for step in range(1, 6):
            ledger.add_stock(
                store_id=store.pk, medicine_id=stocked_medicine.pk,
                batches=[make_batch(quantity=step + 2)],
            )
            added += step + 2
            ledger.sell(
                store_id=store.pk, medicine_id=stocked_medicine.pk,
                order_id=order.pk, quantity=step,
            )
            sold += step
        assert _counter(store, stocked_medicine) == 10 + added - sold
        assert sum(_instance_quantities(stocked_medicine)) == 10 + added - sold
        assert sum(_location_quantities(store, stocked_medicine)) == 10 + added - sold


# ---------------------------------------------------------------------------
# Returns (UNIT granularity)
# ---------------------------------------------------------------------------

class TestReturns:

    def test_register_sell_return_round_trip(self, ledger, stocked_medicine, store):
        def listed_quantity():
            medicines, _ = MedicineService.list_store_medicines(store)
            return medicines.get(pk=stocked_medicine.pk).store_quantity

        assert listed_quantity() == 10
        order = OrderFactory(medical_store=store)
        ledger.sell(store_id=store.pk, medicine_id=stocked_medicine.pk, order_id=order.pk, quantity=4)
        assert listed_quantity() == 6

        batch = Batch.objects.get(variation__medicine=stocked_medicine)
        returned = ledger.process_return(
            store_id=store.pk, medicine_id=stocked_medicine.pk, return_type=CUSTOMER,
            quantity=2, retail_price=Decimal('15.00'), order_id=order.pk, batch_id=batch.pk,
        )
        assert listed_quantity() == 8
        assert len(returned) == 2
        assert _instance_quantities(stocked_medicine) == [8]
        assert _location_quantities(store, stocked_medicine) == [8]
        assert SubUnit.objects.filter(instance__medicine=stocked_medicine, is_returned_by_customer=True).count() == 2

        order.refresh_from_db()
        assert order.selling_price == Decimal('30.00')

    def test_customer_then_company_return_restores_counter(self, ledger, stocked_medicine, store):
        batch = Batch.objects.get(variation__medicine=stocked_medicine)
        ledger.process_return(
            store_id=store.pk, medicine_id=stocked_medicine.pk, return_type=CUSTOMER,
            quantity=3, retail_price=Decimal('15.00'), batch_id=batch.pk,
        )
        assert _counter(store, stocked_medicine) == 13
        returned = ledger.process_return(
            store_id=store.pk, medicine_id=stocked_medicine.pk, return_type=COMPANY,
            quantity=3, batch_id=batch.pk,
        )
        assert _counter(store, stocked_medicine) == 10
        assert all(item.subunit.is_returned_to_supplier for item in returned)
        kinds = StockTransaction.objects.filter(medicine=stocked_medicine).values_list('transaction_type', 'quantity')
        assert sorted(q for t, q in kinds if t != StockTransaction.TransactionType.INTAKE) == [-1, -1, -1, 1, 1, 1]

    def test_customer_return_matches_expiry_date(self, ledger, stocked_medicine, store):
        instance = MedicineInstance.objects.get(medicine=stocked_medicine)
        ledger.process_return(
            store_id=store.pk, medicine_id=stocked_medicine.pk, return_type=CUSTOMER,
            quantity=1, retail_price=Decimal('15.00'), expiry_date=instance.expiry_date,
        )
        instance.refresh_from_db()
        assert instance.quantity == 11
        assert MedicineInstance.objects.filter(medicine=stocked_medicine).count() == 1

    def test_customer_return_of_unknown_batch_creates_it(self, ledger, stocked_medicine, store):
        expiry = _today() + timedelta(days=100)
        returned = ledger.process_return(
            store_id=store.pk, medicine_id=stocked_medicine.pk, return_type=CUSTOMER,
            quantity=2, retail_price=Decimal('14.00'), batch_no='RET-1', expiry_date=expiry,
        )
        batch = Batch.objects.get(batch_no='RET-1')
        assert batch.mfg_date == _today()
        assert batch.quantity == 0
        instance = MedicineInstance.objects.get(batch=batch)
        assert instance.quantity == 2
        assert instance.selling_price == Decimal('14.00')
        assert returned[0].batch_id == batch.pk
        assert _counter(store, stocked_medicine) == 12

    def test_unknown_batch_needs_number_and_expiry(self, ledger, stocked_medicine, store):
        with pytest.raises(BusinessRuleViolation):
            ledger.process_return(
                store_id=store.pk, medicine_id=stocked_medicine.pk, return_type=CUSTOMER,
                quantity=1, retail_price=Decimal('15.00'), batch_no='NOPE',
            )
        assert _counter(store, stocked_medicine) == 10

    def test_customer_return_requires_retail_price(self, ledger, stocked_medicine, store):
        with pytest.raises(BusinessRuleViolation):
            ledger.process_return(
                store_id=store.pk, medicine_id=stocked_medicine.pk,
                return_type=CUSTOMER, quantity=1,
            )

    def test_unknown_return_type_rejected(self, ledger, stocked_medicine, store):
        with pytest.raises(BusinessRuleViolation):
            ledger.process_return(
                store_id=store.pk, medicine_id=stocked_medicine.pk,
                return_type='EXCHANGE', quantity=1, retail_price=Decimal('1'),
            )

    def test_return_margin_split_across_rows(self, ledger, stocked_medicine, store):
        batch = Batch.objects.get(variation__medicine=stocked_medicine)
        returned = ledger.process_return(
            store_id=store.pk, medicine_id=stocked_medicine.pk, return_type=CUSTOMER,
            quantity=2, retail_price=Decimal('15.00'), discount_price=Decimal('12.00'),
            batch_id=batch.pk,
        )
        assert [item.margin for item in returned] == [Decimal('3.00'), Decimal('3.00')]

    def test_company_return_needs_single_instance(self, ledger, stocked_medicine, store, make_batch):
        ledger.add_stock(store_id=store.pk, medicine_id=stocked_medicine.pk, batches=[make_batch(quantity=5)])
        before = _snapshot(store, stocked_medicine)
        with pytest.raises(InsufficientStockError):
            ledger.process_return(
                store_id=store.pk, medicine_id=stocked_medicine.pk,
                return_type=COMPANY, quantity=12,
            )
        assert _snapshot(store, stocked_medicine) == before
        assert not SubUnit.objects.filter(is_returned_to_supplier=True).exists()

    def test_company_return_exceeding_aggregate(self, ledger, stocked_medicine, store):
        with pytest.raises(InsufficientStockError):
            ledger.process_return(
                store_id=store.pk, medicine_id=stocked_medicine.pk,
                return_type=COMPANY, quantity=11,
            )

    def test_company_return_uses_unit_cost_without_price(self, ledger, stocked_medicine, store):
        returned = ledger.process_return(
            store_id=store.pk, medicine_id=stocked_medicine.pk,
            return_type=COMPANY, quantity=1,
        )
        assert returned[0].retail_price == Decimal('10.00')
        assert returned[0].margin == Decimal('0.00')

    def test_return_audited(self, ledger, stocked_medicine, store):
        ledger.process_return(
            store_id=store.pk, medicine_id=stocked_medicine.pk,
            return_type=COMPANY, quantity=2,
        )
        log = AuditLog.objects.get(action=AuditLog.ActionChoices.RETURN)
        assert log.old_values == {'quantity': 10}
        assert log.new_values['quantity'] == 8


# ---------------------------------------------------------------------------
# Low stock & expiry flags
# ---------------------------------------------------------------------------

class TestLowStockFlags:

    def _twelve_in_two_batches(self, ledger, store, company, make_batch):
        medicine = _register_empty(ledger, store, company, min_quantity=10)
        today = _today()
        ledger.add_stock(
            store_id=store.pk,
            medicine_id=medicine.pk,
            batches=[
                make_batch(quantity=8, mfg_date=today - timedelta(days=60), expiry_date=today + timedelta(days=300)),
                make_batch(quantity=4, mfg_date=today - timedelta(days=10), expiry_date=today + timedelta(days=200)),
            ],
            quantity=12,
        )
        return medicine

    def test_sale_below_threshold_flags_every_expiry(self, ledger, store, company, make_batch):
        medicine = self._twelve_in_two_batches(ledger, store, company, make_batch)
        assert not MedicineExpiry.objects.filter(medicine=medicine).exists()

        order = OrderFactory(medical_store=store)
        ledger.sell(store_id=store.pk, medicine_id=medicine.pk, order_id=order.pk, quantity=5)

        assert _counter(store, medicine) == 7
        expiry_dates = set(
            MedicineInstance.objects.filter(medicine=medicine, quantity__gt=0)
            .values_list('expiry_date', flat=True)
        )
        flags = MedicineExpiry.objects.filter(medicine=medicine)
        assert set(flags.values_list('expiry_date', flat=True)) == expiry_dates
        assert len(expiry_dates) == 2
        assert all(flag.is_near_expiry for flag in flags)

    def test_flags_not_duplicated(self, ledger, store, company, make_batch):
        medicine = self._twelve_in_two_batches(ledger, store, company, make_batch)
        order = OrderFactory(medical_store=store)
        ledger.sell(store_id=store.pk, medicine_id=medicine.pk, order_id=order.pk, quantity=5)
        ledger.sell(store_id=store.pk, medicine_id=medicine.pk, order_id=order.pk, quantity=1)
        assert MedicineExpiry.objects.filter(medicine=medicine).count() == 2

    def test_restock_does_not_clear_flags(self, ledger, store, company, make_batch):
        medicine = self._twelve_in_two_batches(ledger, store, company, make_batch)
        order = OrderFactory(medical_store=store)
        ledger.sell(store_id=store.pk, medicine_id=medicine.pk, order_id=order.pk, quantity=5)
        ledger.add_stock(store_id=store.pk, medicine_id=medicine.pk, batches=[make_batch(quantity=20)])
        assert _counter(store, medicine) == 27
        assert MedicineExpiry.objects.filter(medicine=medicine, is_near_expiry=True).count() == 2

    def test_above_threshold_no_flags(self, ledger, stocked_medicine, store):
        flags = ledger.refresh_alerts(store=store, medicine=stocked_medicine)
        assert flags == []


# ---------------------------------------------------------------------------
# INSTANCE granularity
# ---------------------------------------------------------------------------

class TestInstanceGranularity:

    def _stock(self, ledger, store, company, make_batch):
        medicine = _register_empty(ledger, store, company)
        today = _today()
        ledger.add_stock(
            store_id=store.pk,
            medicine_id=medicine.pk,
            batches=[
                make_batch(quantity=10, batch_no='LATE', mfg_date=today - timedelta(days=90),
                           expiry_date=today + timedelta(days=300)),
                make_batch(quantity=5, batch_no='SOON', mfg_date=today - timedelta(days=10),
                           expiry_date=today + timedelta(days=100)),
            ],
        )
        return medicine

    def test_no_subunits_created(self, instance_ledger, store, company, make_batch):
        medicine = self._stock(instance_ledger, store, company, make_batch)
        assert _counter(store, medicine) == 15
        assert not SubUnit.objects.filter(instance__medicine=medicine).exists()

    def test_sale_draws_earliest_expiry_first(self, instance_ledger, store, company, make_batch):
        medicine = self._stock(instance_ledger, store, company, make_batch)
        order = OrderFactory(medical_store=store)
        sold = instance_ledger.sell(store_id=store.pk, medicine_id=medicine.pk, order_id=order.pk, quantity=12)

        assert [(item.batch.batch_no, item.quantity) for item in sold] == [('SOON', 5), ('LATE', 7)]
        assert sold[0].subunit_id is None
        assert sold[1].margin == Decimal('35.00')
        assert _counter(store, medicine) == 3
        assert _instance_quantities(medicine) == [0, 3]
        assert _location_quantities(store, medicine) == [0, 3]
        rows = StockTransaction.objects.filter(
            medicine=medicine, transaction_type=StockTransaction.TransactionType.SALE,
        )
        assert sorted(rows.values_list('quantity', flat=True)) == [-7, -5]

    def test_insufficient_sale_mutates_nothing(self, instance_ledger, store, company, make_batch):
        medicine = self._stock(instance_ledger, store, company, make_batch)
        order = OrderFactory(medical_store=store)
        before = _snapshot(store, medicine)
        with pytest.raises(InsufficientStockError):
            instance_ledger.sell(store_id=store.pk, medicine_id=medicine.pk, order_id=order.pk, quantity=16)
        assert _snapshot(store, medicine) == before

    def test_customer_return_single_row(self, instance_ledger, store, company, make_batch):
        medicine = self._stock(instance_ledger, store, company, make_batch)
        batch = Batch.objects.get(batch_no='SOON')
        returned = instance_ledger.process_return(
            store_id=store.pk, medicine_id=medicine.pk, return_type=CUSTOMER,
            quantity=4, retail_price=Decimal('15.00'), batch_id=batch.pk,
        )
        assert len(returned) == 1
        assert returned[0].quantity == 4
        assert MedicineInstance.objects.get(batch=batch).quantity == 9
        assert _counter(store, medicine) == 19

    def test_company_return_from_one_instance(self, instance_ledger, store, company, make_batch):
        medicine = self._stock(instance_ledger, store, company, make_batch)
        returned = instance_ledger.process_return(
            store_id=store.pk, medicine_id=medicine.pk, return_type=COMPANY, quantity=6,
        )
        assert len(returned) == 1
        assert returned[0].batch.batch_no == 'LATE'
        assert _counter(store, medicine) == 9

    def test_round_trip_restores_counter(self, instance_ledger, store, company, make_batch):
        medicine = self._stock(instance_ledger, store, company, make_batch)
        batch = Batch.objects.get(batch_no='SOON')
        instance_ledger.process_return(
            store_id=store.pk, medicine_id=medicine.pk, return_type=CUSTOMER,
            quantity=2, retail_price=Decimal('15.00'), batch_id=batch.pk,
        )
        instance_ledger.process_return(
            store_id=store.pk, medicine_id=medicine.pk, return_type=COMPANY,
            quantity=2, batch_id=batch.pk,
        )
        assert _counter(store, medicine) == 15
