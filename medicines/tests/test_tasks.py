"""
Tests — periodic low-stock reconciliation task.

@file medicines/tests/test_tasks.py
"""

import pytest

from medicines.models import MedicalStoreMedicine, MedicineExpiry
from medicines.tasks import reconcile_low_stock_flags


pytestmark = pytest.mark.django_db


class TestReconcileLowStockFlags:

    def test_nothing_low(self, stocked_medicine):
        assert reconcile_low_stock_flags() == {'checked': 0, 'flagged': 0}

    def test_flags_low_counters(self, stocked_medicine):
        MedicalStoreMedicine.objects.filter(medicine=stocked_medicine).update(quantity=3)
        result = reconcile_low_stock_flags.delay().get()
        assert result == {'checked': 1, 'flagged': 1}
        assert MedicineExpiry.objects.filter(medicine=stocked_medicine, is_near_expiry=True).count() == 1
