"""
Core — Audit Service

Provides methods for writing audit log entries from any app.

@file core/services.py
"""

import logging
import uuid
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from django.db import DEFAULT_DB_ALIAS
from django.forms.models import model_to_dict

from core.constants import MONEY_PLACES
from core.models import AuditLog

logger = logging.getLogger('medistock')

MONEY_QUANT = Decimal(1).scaleb(-MONEY_PLACES)


def to_money(value) -> Decimal:
    """Round a price or amount to the stored two-decimal precision."""
    return Decimal(value).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


class AuditService:
    """Centralised audit logging for every write operation."""

    @staticmethod
    def log(
        *,
        actor,
        action: str,
        entity: str,
        entity_id,
        description: str = '',
        old_values: dict[str, Any] | None = None,
        new_values: dict[str, Any] | None = None,
        using: str = DEFAULT_DB_ALIAS,
    ) -> AuditLog:
        if actor is None:
            logger.warning(
                'Audit %s %s:%s recorded without an acting user.',
                action, entity, entity_id,
            )
        return AuditLog.objects.using(using).create(
            actor=actor,
            action=action,
            entity=entity,
            entity_id=str(entity_id),
            description=description,
            old_values=old_values,
            new_values=new_values,
        )

    @staticmethod
    def snapshot(instance, fields=None) -> dict[str, Any]:
        """
        Serialise a model instance to a plain dict suitable for JSON
        storage. Dates are ISO-formatted; UUIDs and Decimals stringified.
        """
        data = model_to_dict(instance, fields=fields)
        cleaned: dict[str, Any] = {}
        for key, value in data.items():
            if value is None:
                cleaned[key] = None
            elif isinstance(value, Decimal):
                cleaned[key] = str(value)
            elif hasattr(value, 'isoformat'):
                cleaned[key] = value.isoformat()
            elif isinstance(value, uuid.UUID):
                cleaned[key] = str(value)
            elif isinstance(value, (list, tuple)):
                cleaned[key] = [str(v.pk) if hasattr(v, 'pk') else v for v in value]
            else:
                cleaned[key] = value
        return cleaned
