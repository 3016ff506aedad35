"""
MediStock — Test Factories

Factory Boy factories for generating test data. Used across all test
modules. Stock itself is created through the inventory ledger, never by
factories, so counters stay consistent.

@file tests/factories.py
"""

import uuid
from decimal import Decimal

import factory

from core.models import AuditLog
from medicines.models import Medicine, Variation
from sales.models import Order
from stores.models import Company, MedicalStore, Supplier
from users.models import User


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

class UserFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = User
        skip_postgeneration_save = True

    email = factory.Sequence(lambda n: f'user-{n}@medistock.test')
    first_name = factory.Faker('first_name')
    last_name = factory.Faker('last_name')
    phone = factory.Sequence(lambda n: f'+92300{n:07d}')
    role = User.RoleChoices.EMPLOYEE
    is_active = True

    @factory.post_generation
    def password(self, create, extracted, **kwargs):
        password = extracted or 'TestPass2026!'
        self.set_password(password)
        if create:
            self.save(update_fields=['password'])


class SuperuserFactory(UserFactory):
    role = User.RoleChoices.SUPERADMIN
    is_staff = True
    is_superuser = True


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------

class MedicalStoreFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = MedicalStore

    name = factory.Sequence(lambda n: f'Store-{n}')
    address = factory.Faker('street_address')
    license_number = factory.Sequence(lambda n: f'LIC-{n:06d}')
    phone = factory.Sequence(lambda n: f'042{n:07d}')
    owner = None
    is_active = True


class CompanyFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Company

    medical_store = factory.SubFactory(MedicalStoreFactory)
    company_code = factory.Sequence(lambda n: f'CMP-{n:04d}')
    name = factory.Faker('company')
    distributor_code = factory.Sequence(lambda n: f'DST-{n:04d}')
    is_active = True


class SupplierFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Supplier

    company = factory.SubFactory(CompanyFactory)
    medical_store = factory.SelfAttribute('company.medical_store')
    supplier_code = factory.Sequence(lambda n: f'SUP-{n:04d}')
    name = factory.Faker('company')
    email = factory.Sequence(lambda n: f'supplier-{n}@medistock.test')
    is_active = True


# ---------------------------------------------------------------------------
# Medicines
# ---------------------------------------------------------------------------

class MedicineFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Medicine

    name = factory.Sequence(lambda n: f'Medicine-{n}')
    formula = 'Paracetamol'
    description = factory.Faker('sentence')
    min_quantity = 5
    company = factory.SubFactory(CompanyFactory)
    supplier = None
    is_active = True


class VariationFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Variation

    medicine = factory.SubFactory(MedicineFactory)
    potency = '500mg'
    packaging = 'Strip of 10'
    unit_type = Variation.UnitTypeChoices.TABLET
    units_per_pack = 1


# ---------------------------------------------------------------------------
# Sales
# ---------------------------------------------------------------------------

class OrderFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Order

    medical_store = factory.SubFactory(MedicalStoreFactory)
    customer_name = factory.Faker('name')
    payment_method = Order.PaymentMethod.CASH
    discount = Decimal('0.00')


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------

class AuditLogFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = AuditLog

    actor = factory.SubFactory(UserFactory)
    action = AuditLog.ActionChoices.CREATE
    entity = 'Medicine'
    entity_id = factory.LazyFunction(lambda: str(uuid.uuid4()))
