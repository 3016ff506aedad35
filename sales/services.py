"""
Sales — Service Layer

Order lifecycle: open an order, check out several medicines through the
inventory ledger in one transaction, mark an order paid, and list sold
items. Stock is only ever moved by ``stock.services.InventoryLedger``.

@file sales/services.py
"""

import logging

from django.db import DEFAULT_DB_ALIAS, transaction

from core.constants import AUDIT_ACTION_CREATE, AUDIT_ACTION_STATUS_CHANGE
from core.exceptions import BusinessRuleViolation, OwnershipMismatchError, ResourceNotFoundError
from core.services import AuditService
from stock.services import get_ledger
from stores.services import get_store

from .models import Order, SoldItem

logger = logging.getLogger('medistock')

ORDER_FIELDS = ('customer_name', 'customer_contact', 'payment_method', 'discount')


class OrderService:
    """Order headers and multi-medicine checkout."""

    @staticmethod
    def get_order(store, order_id, using=DEFAULT_DB_ALIAS) -> Order:
        try:
            order = Order.objects.using(using).get(pk=order_id)
        except Order.DoesNotExist:
            raise ResourceNotFoundError(detail='Order not found.')
        if order.medical_store_id != store.pk:
            raise OwnershipMismatchError(detail='Order does not belong to this medical store.')
        return order

    @staticmethod
    def create_order(*, store_id, actor=None, using=DEFAULT_DB_ALIAS, **fields) -> Order:
        with transaction.atomic(using=using):
            store = get_store(store_id, using=using)
            order = Order(
                medical_store=store,
                created_by=actor,
                **{k: v for k, v in fields.items() if k in ORDER_FIELDS},
            )
            order.full_clean()
            order.save(using=using)

            AuditService.log(
                actor=actor,
                action=AUDIT_ACTION_CREATE,
                entity='Order',
                entity_id=order.pk,
                description=f'Opened order in store {store.name}.',
                new_values=AuditService.snapshot(order, fields=list(ORDER_FIELDS)),
                using=using,
            )
        return order

    @staticmethod
    def _merge_items(items: list[dict]) -> list[dict]:
        """
        One entry per medicine, in medicine-id order. Concurrent checkouts
        then take the per-medicine ledger locks in the same order.
        """
        merged: dict[str, dict] = {}
        for position, item in enumerate(items):
            if item.get('medicine') is None or item.get('quantity') is None:
                raise BusinessRuleViolation(
                    detail=f'items[{position}] needs a medicine and a quantity.',
                )
            key = str(item['medicine'])
            if key in merged:
                merged[key]['quantity'] += item['quantity']
            else:
                merged[key] = {'medicine': item['medicine'], 'quantity': item['quantity']}
        return [merged[key] for key in sorted(merged)]

    @staticmethod
    def checkout(
        *,
        store_id,
        items: list[dict],
        discount_rate=0,
        customer_name: str = '',
        customer_contact: str = '',
        payment_method: str = Order.PaymentMethod.CASH,
        actor=None,
        ledger=None,
    ) -> Order:
        """
        Create an order and sell every item FIFO in one transaction. Each
        item is ``{'medicine': <id>, 'quantity': <n>}``; the discount rate
        (percent) applies to every unit. Repeated medicines are sold as one
        line. Any failure sells nothing.
        """
        if not items:
            raise BusinessRuleViolation(detail='At least one item is required.')
        items = OrderService._merge_items(items)
        ledger = ledger or get_ledger()

        with transaction.atomic(using=ledger.using):
            order = OrderService.create_order(
                store_id=store_id,
                customer_name=customer_name,
                customer_contact=customer_contact,
                payment_method=payment_method,
                discount=discount_rate or 0,
                actor=actor,
                using=ledger.using,
            )
            for item in items:
                ledger.sell(
                    store_id=store_id,
                    medicine_id=item['medicine'],
                    order_id=order.pk,
                    quantity=item['quantity'],
                    discount_rate=discount_rate or None,
                    actor=actor,
                )
            order.refresh_from_db()
            order.status = Order.StatusChoices.PAID
            order.updated_by = actor
            order.save(update_fields=['status', 'updated_by', 'updated_at'])

        logger.info(
            'Checkout: order=%s store=%s items=%s bill=%s',
            order.pk, store_id, len(items), order.bill,
        )
        return order

    @staticmethod
    def mark_paid(*, store_id, order_id, actor=None, using=DEFAULT_DB_ALIAS) -> Order:
        with transaction.atomic(using=using):
            store = get_store(store_id, using=using)
            OrderService.get_order(store, order_id, using=using)
            order = Order.objects.using(using).select_for_update().get(pk=order_id)
            if order.status == Order.StatusChoices.PAID:
                raise BusinessRuleViolation(detail='Order is already paid.')
            if not order.sold_items.exists():
                raise BusinessRuleViolation(detail='Cannot mark an empty order as paid.')

            order.status = Order.StatusChoices.PAID
            order.updated_by = actor
            order.save(update_fields=['status', 'updated_by', 'updated_at'])

            AuditService.log(
                actor=actor,
                action=AUDIT_ACTION_STATUS_CHANGE,
                entity='Order',
                entity_id=order.pk,
                description='Order marked as paid.',
                old_values={'status': Order.StatusChoices.PENDING},
                new_values={'status': Order.StatusChoices.PAID, 'bill': str(order.bill)},
                using=using,
            )
        return order

    @staticmethod
    def list_sold_items(store):
        """Sold rows of a store, newest first, with medicine, batch and order."""
        return (
            SoldItem.objects
            .filter(medical_store=store)
            .select_related('medicine', 'batch', 'order')
            .order_by('-created_at')
        )
