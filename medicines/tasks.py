"""
Medicines — Celery Tasks

Periodic re-check of low-stock alerts.

@file medicines/tasks.py
"""

import logging

from celery import shared_task
from django.db.models import F

logger = logging.getLogger('medistock')


@shared_task(name='medicines.tasks.reconcile_low_stock_flags')
def reconcile_low_stock_flags():
    """
    Re-run alert flagging for every store counter at or below its
    medicine's threshold. Registered with Celery Beat.
    """
    from stock.services import get_ledger

    from .models import MedicalStoreMedicine

    ledger = get_ledger()
    counters = (
        MedicalStoreMedicine.objects
        .filter(quantity__lte=F('medicine__min_quantity'))
        .select_related('medicine', 'medical_store')
    )
    checked = flagged = 0
    for counter in counters.iterator():
        flags = ledger.refresh_alerts(store=counter.medical_store, medicine=counter.medicine)
        checked += 1
        flagged += len(flags)
    logger.info('reconcile_low_stock_flags completed: %d counters, %d flags.', checked, flagged)
    return {'checked': checked, 'flagged': flagged}
