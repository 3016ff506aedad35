"""
Tests — MedicineService read models and catalogue edits.

@file medicines/tests/test_services.py
"""

import uuid
from datetime import timedelta

import pytest
from django.utils import timezone

from core.exceptions import BusinessRuleViolation, OwnershipMismatchError, ResourceNotFoundError
from core.models import AuditLog
from medicines.models import MedicineLocation
from medicines.services import MedicineService
from tests.factories import CompanyFactory, MedicalStoreFactory, MedicineFactory, OrderFactory


pytestmark = pytest.mark.django_db


def _today():
    return timezone.now().date()


class TestStoreMedicineLookup:

    def test_own_medicine(self, stocked_medicine, store):
        assert MedicineService.get_store_medicine(store, stocked_medicine.pk) == stocked_medicine

    def test_other_store_forbidden(self, stocked_medicine):
        with pytest.raises(OwnershipMismatchError):
            MedicineService.get_store_medicine(MedicalStoreFactory(), stocked_medicine.pk)

    def test_unknown_not_found(self, store):
        with pytest.raises(ResourceNotFoundError):
            MedicineService.get_store_medicine(store, uuid.uuid4())


class TestListStoreMedicines:

    def test_quantities_locations_and_summary(self, stocked_medicine, store, company):
        MedicineFactory(company=company, is_active=False, min_quantity=3)
        MedicineFactory(company=CompanyFactory())

        medicines, summary = MedicineService.list_store_medicines(store)
        by_name = {m.name: m for m in medicines}
        assert by_name['Panadol'].store_quantity == 10
        assert by_name['Panadol'].latest_location == 'Default'
        assert summary == {'total': 2, 'active': 1, 'low_stock': 0}

    def test_medicine_without_counter_reports_zero(self, store, company):
        medicine = MedicineFactory(company=company)
        medicines, _ = MedicineService.list_store_medicines(store)
        assert medicines.get(pk=medicine.pk).store_quantity == 0


class TestBatchesAndAlerts:

    def test_batches_oldest_first(self, ledger, stocked_medicine, store, make_batch):
        ledger.add_stock(
            store_id=store.pk,
            medicine_id=stocked_medicine.pk,
            batches=[make_batch(batch_no='EARLY', mfg_date=_today() - timedelta(days=100))],
        )
        batches = list(MedicineService.get_batches(stocked_medicine, store=store))
        assert [b.batch_no for b in batches] == ['EARLY', 'B-0001']
        assert batches[0].instances.all()[0].locations.all()[0].quantity == 10

    def test_near_expiry_window(self, ledger, stocked_medicine, store, make_batch):
        ledger.add_stock(
            store_id=store.pk,
            medicine_id=stocked_medicine.pk,
            batches=[make_batch(batch_no='SOON', expiry_date=_today() + timedelta(days=200))],
        )
        near = MedicineService.get_near_expiry(store)
        assert [i.batch.batch_no for i in near] == ['SOON']

    def test_low_stock(self, ledger, stocked_medicine, store):
        order = OrderFactory(medical_store=store)
        assert not MedicineService.get_low_stock(store).exists()
        ledger.sell(store_id=store.pk, medicine_id=stocked_medicine.pk, order_id=order.pk, quantity=5)
        low = MedicineService.get_low_stock(store)
        assert [c.medicine_id for c in low] == [stocked_medicine.pk]

    def test_fifo_candidate(self, ledger, stocked_medicine, store, make_batch):
        ledger.add_stock(
            store_id=store.pk,
            medicine_id=stocked_medicine.pk,
            batches=[make_batch(quantity=3, batch_no='FIRST', mfg_date=_today() - timedelta(days=200))],
        )
        candidates = MedicineService.get_fifo_candidates(store)
        assert len(candidates) == 1
        candidate = candidates[0]
        assert candidate['instance'].batch.batch_no == 'FIRST'
        assert candidate['available_units'] == 3
        assert candidate['total_quantity'] == 13
        assert candidate['batch_count'] == 2


class TestUpdateMedicine:

    def test_update_fields_and_audit(self, stocked_medicine, store, store_owner):
        medicine = MedicineService.update_medicine(
            store=store, medicine_id=stocked_medicine.pk, actor=store_owner,
            description='Pain relief', min_quantity=8,
        )
        assert medicine.min_quantity == 8
        log = AuditLog.objects.get(entity='Medicine', action=AuditLog.ActionChoices.UPDATE)
        assert log.old_values['min_quantity'] == 5
        assert log.new_values['description'] == 'Pain relief'

    def test_relabel_latest_location(self, stocked_medicine, store):
        MedicineService.update_medicine(store=store, medicine_id=stocked_medicine.pk, location='Shelf A2')
        assert MedicineLocation.objects.get(medicine=stocked_medicine).location == 'Shelf A2'

    def test_location_without_stock_rejected(self, store, company):
        medicine = MedicineFactory(company=company)
        with pytest.raises(BusinessRuleViolation):
            MedicineService.update_medicine(store=store, medicine_id=medicine.pk, location='Shelf B')

    def test_zero_threshold_rejected(self, stocked_medicine, store):
        with pytest.raises(BusinessRuleViolation):
            MedicineService.update_medicine(store=store, medicine_id=stocked_medicine.pk, min_quantity=0)

    def test_other_store_forbidden(self, stocked_medicine):
        with pytest.raises(OwnershipMismatchError):
            MedicineService.update_medicine(
                store=MedicalStoreFactory(), medicine_id=stocked_medicine.pk, formula='X',
            )
