"""
Stores — Service Layer

Registration and maintenance of medical stores, companies and suppliers.
Codes are unique per store; a supplier's company must belong to the same
store. Every write is audited.

@file stores/services.py
"""

import logging

from django.db import DEFAULT_DB_ALIAS, transaction

from core.constants import AUDIT_ACTION_CREATE, AUDIT_ACTION_STATUS_CHANGE, AUDIT_ACTION_UPDATE
from core.exceptions import (
    DuplicateResourceError,
    OwnershipMismatchError,
    ResourceNotFoundError,
)
from core.services import AuditService

from .models import Company, MedicalStore, Supplier

logger = logging.getLogger('medistock')


def get_store(store_id, using=DEFAULT_DB_ALIAS) -> MedicalStore:
    try:
        return MedicalStore.objects.using(using).get(pk=store_id)
    except MedicalStore.DoesNotExist:
        raise ResourceNotFoundError(detail='Medical store not found.')


def _apply(instance, fields, read_only):
    for key in read_only:
        fields.pop(key, None)
    for field, value in fields.items():
        if hasattr(instance, field):
            setattr(instance, field, value)


class StoreService:
    """Medical store creation and updates."""

    @staticmethod
    @transaction.atomic
    def create_store(*, actor=None, **fields) -> MedicalStore:
        license_number = fields.get('license_number')
        if MedicalStore.objects.filter(license_number=license_number).exists():
            raise DuplicateResourceError(
                detail=f'A store with licence number {license_number} already exists.',
            )
        if actor is not None and getattr(actor, 'is_authenticated', False):
            fields.setdefault('owner', actor)
        store = MedicalStore(**fields)
        store.created_by = actor
        store.full_clean()
        store.save()

        AuditService.log(
            actor=actor,
            action=AUDIT_ACTION_CREATE,
            entity='MedicalStore',
            entity_id=store.pk,
            description=f'Registered medical store {store.name}.',
            new_values=AuditService.snapshot(store),
        )
        logger.info('Medical store %s registered (licence %s)', store.pk, store.license_number)
        return store

    @staticmethod
    @transaction.atomic
    def update_store(*, store_id, actor=None, **fields) -> MedicalStore:
        try:
            store = MedicalStore.objects.select_for_update().get(pk=store_id)
        except MedicalStore.DoesNotExist:
            raise ResourceNotFoundError(detail='Medical store not found.')

        old_snapshot = AuditService.snapshot(store)
        _apply(store, fields, read_only={'id', 'license_number', 'owner'})
        store.updated_by = actor
        store.full_clean()
        store.save()

        AuditService.log(
            actor=actor,
            action=AUDIT_ACTION_UPDATE,
            entity='MedicalStore',
            entity_id=store.pk,
            description=f'Updated medical store {store.name}.',
            old_values=old_snapshot,
            new_values=AuditService.snapshot(store),
        )
        return store


class CompanyService:
    """Manufacturer registration scoped to a store."""

    @staticmethod
    @transaction.atomic
    def create_company(*, store: MedicalStore, actor=None, **fields) -> Company:
        code = fields.get('company_code')
        if Company.objects.filter(medical_store=store, company_code=code).exists():
            raise DuplicateResourceError(
                detail=f'Company code {code} is already registered in this store.',
            )
        company = Company(medical_store=store, **fields)
        company.created_by = actor
        company.full_clean()
        company.save()

        AuditService.log(
            actor=actor,
            action=AUDIT_ACTION_CREATE,
            entity='Company',
            entity_id=company.pk,
            description=f'Registered company {company.name} in store {store.name}.',
            new_values=AuditService.snapshot(company),
        )
        return company

    @staticmethod
    def _get_for_update(store, company_id) -> Company:
        try:
            company = Company.objects.select_for_update().get(pk=company_id)
        except Company.DoesNotExist:
            raise ResourceNotFoundError(detail='Company not found.')
        if company.medical_store_id != store.pk:
            raise OwnershipMismatchError(detail='Company does not belong to this medical store.')
        return company

    @staticmethod
    @transaction.atomic
    def update_company(*, store: MedicalStore, company_id, actor=None, **fields) -> Company:
        company = CompanyService._get_for_update(store, company_id)
        new_code = fields.get('company_code')
        if new_code and new_code != company.company_code and Company.objects.filter(
            medical_store=store, company_code=new_code,
        ).exists():
            raise DuplicateResourceError(
                detail=f'Company code {new_code} is already registered in this store.',
            )

        old_snapshot = AuditService.snapshot(company)
        _apply(company, fields, read_only={'id', 'medical_store', 'is_active'})
        company.updated_by = actor
        company.full_clean()
        company.save()

        AuditService.log(
            actor=actor,
            action=AUDIT_ACTION_UPDATE,
            entity='Company',
            entity_id=company.pk,
            description=f'Updated company {company.name}.',
            old_values=old_snapshot,
            new_values=AuditService.snapshot(company),
        )
        return company

    @staticmethod
    @transaction.atomic
    def deactivate_company(*, store: MedicalStore, company_id, actor=None) -> Company:
        company = CompanyService._get_for_update(store, company_id)
        company.is_active = False
        company.updated_by = actor
        company.save(update_fields=['is_active', 'updated_by', 'updated_at'])

        AuditService.log(
            actor=actor,
            action=AUDIT_ACTION_STATUS_CHANGE,
            entity='Company',
            entity_id=company.pk,
            description=f'Deactivated company {company.name}.',
            old_values={'is_active': True},
            new_values={'is_active': False},
        )
        return company


class SupplierService:
    """Supplier registration scoped to a store and one of its companies."""

    @staticmethod
    def _check_company(store, company):
        if company.medical_store_id != store.pk:
            raise OwnershipMismatchError(
                detail='Supplier company does not belong to this medical store.',
            )

    @staticmethod
    @transaction.atomic
    def create_supplier(*, store: MedicalStore, actor=None, **fields) -> Supplier:
        SupplierService._check_company(store, fields['company'])
        code = fields.get('supplier_code') or ''
        if code and Supplier.objects.filter(medical_store=store, supplier_code=code).exists():
            raise DuplicateResourceError(
                detail=f'Supplier code {code} is already registered in this store.',
            )
        supplier = Supplier(medical_store=store, **fields)
        supplier.created_by = actor
        supplier.full_clean()
        supplier.save()

        AuditService.log(
            actor=actor,
            action=AUDIT_ACTION_CREATE,
            entity='Supplier',
            entity_id=supplier.pk,
            description=f'Registered supplier {supplier.name} in store {store.name}.',
            new_values=AuditService.snapshot(supplier),
        )
        return supplier

    @staticmethod
    def _get_for_update(store, supplier_id) -> Supplier:
        try:
            supplier = Supplier.objects.select_for_update().get(pk=supplier_id)
        except Supplier.DoesNotExist:
            raise ResourceNotFoundError(detail='Supplier not found.')
        if supplier.medical_store_id != store.pk:
            raise OwnershipMismatchError(detail='Supplier does not belong to this medical store.')
        return supplier

    @staticmethod
    @transaction.atomic
    def update_supplier(*, store: MedicalStore, supplier_id, actor=None, **fields) -> Supplier:
        supplier = SupplierService._get_for_update(store, supplier_id)
        if 'company' in fields:
            SupplierService._check_company(store, fields['company'])
        new_code = fields.get('supplier_code')
        if new_code and new_code != supplier.supplier_code and Supplier.objects.filter(
            medical_store=store, supplier_code=new_code,
        ).exists():
            raise DuplicateResourceError(
                detail=f'Supplier code {new_code} is already registered in this store.',
            )

        old_snapshot = AuditService.snapshot(supplier)
        _apply(supplier, fields, read_only={'id', 'medical_store', 'is_active'})
        supplier.updated_by = actor
        supplier.full_clean()
        supplier.save()

        AuditService.log(
            actor=actor,
            action=AUDIT_ACTION_UPDATE,
            entity='Supplier',
            entity_id=supplier.pk,
            description=f'Updated supplier {supplier.name}.',
            old_values=old_snapshot,
            new_values=AuditService.snapshot(supplier),
        )
        return supplier

    @staticmethod
    @transaction.atomic
    def deactivate_supplier(*, store: MedicalStore, supplier_id, actor=None) -> Supplier:
        supplier = SupplierService._get_for_update(store, supplier_id)
        supplier.is_active = False
        supplier.updated_by = actor
        supplier.save(update_fields=['is_active', 'updated_by', 'updated_at'])

        AuditService.log(
            actor=actor,
            action=AUDIT_ACTION_STATUS_CHANGE,
            entity='Supplier',
            entity_id=supplier.pk,
            description=f'Deactivated supplier {supplier.name}.',
            old_values={'is_active': True},
            new_values={'is_active': False},
        )
        return supplier
