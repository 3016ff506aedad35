"""
MediStock — Root conftest for pytest

Shared fixtures available to all test modules.

@file conftest.py
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone
from rest_framework.test import APIClient

from stock.dispensing import INSTANCE, UNIT
from stock.services import InventoryLedger
from tests.factories import (
    CompanyFactory,
    MedicalStoreFactory,
    SuperuserFactory,
    UserFactory,
)
from users.models import User


@pytest.fixture
def api_client():
    """Unauthenticated DRF test client."""
    return APIClient()


@pytest.fixture
def user(db):
    """Active employee with default password TestPass2026!"""
    return UserFactory()


@pytest.fixture
def admin_user(db):
    """Superuser with default password TestPass2026!"""
    return SuperuserFactory()


@pytest.fixture
def authenticated_client(api_client, user):
    """API client authenticated as a regular user."""
    api_client.force_authenticate(user=user)
    return api_client


@pytest.fixture
def admin_client(api_client, admin_user):
    """API client authenticated as a superuser."""
    api_client.force_authenticate(user=admin_user)
    return api_client


# ---------------------------------------------------------------------------
# Store & inventory
# ---------------------------------------------------------------------------

@pytest.fixture
def store_owner(db):
    return UserFactory(role=User.RoleChoices.ADMIN)


@pytest.fixture
def store(store_owner):
    return MedicalStoreFactory(owner=store_owner)


@pytest.fixture
def clerk(store):
    """Employee attached to ``store``."""
    return UserFactory(medical_store=store)


@pytest.fixture
def company(store):
    return CompanyFactory(medical_store=store)


@pytest.fixture
def store_client(api_client, clerk):
    api_client.force_authenticate(user=clerk)
    return api_client


@pytest.fixture
def owner_client(api_client, store_owner):
    api_client.force_authenticate(user=store_owner)
    return api_client


@pytest.fixture
def ledger(db):
    return InventoryLedger(granularity=UNIT)


@pytest.fixture
def instance_ledger(db):
    return InventoryLedger(granularity=INSTANCE)


@pytest.fixture
def make_batch():
    """
    Builds a complete batch payload. Defaults: manufactured 30 days ago,
    expiring in a year, 10.00 per pack to buy and 15.00 to sell.
    """
    counter = iter(range(1, 10_000))

    def _make(quantity=10, **overrides):
        today = timezone.now().date()
        data = {
            'batch_no': f'B-{next(counter):04d}',
            'quantity': quantity,
            'purchase_price': Decimal('10.00'),
            'selling_price': Decimal('15.00'),
            'price': Decimal('10.00') * quantity,
            'mfg_date': today - timedelta(days=30),
            'expiry_date': today + timedelta(days=365),
        }
        data.update(overrides)
        return data

    return _make


@pytest.fixture
def stocked_medicine(ledger, store, company, store_owner, make_batch):
    """A registered medicine (threshold 5) holding one batch of 10 units."""
    batch = make_batch(quantity=10)
    return ledger.register_medicine(
        store_id=store.pk,
        company_id=company.pk,
        name='Panadol',
        min_quantity=5,
        quantity=batch.pop('quantity'),
        batch=batch,
        actor=store_owner,
    )
