"""
Core — Base Models & Audit Infrastructure

Provides reusable abstract models for timestamps, actor tracking and
insert-only ledger rows. Also defines the AuditLog model that records every
mutating inventory operation.

@file core/models.py
"""

import uuid

from django.conf import settings
from django.db import models
from django.utils.translation import gettext_lazy as _


# ---------------------------------------------------------------------------
# Abstract base models (mixins)
# ---------------------------------------------------------------------------

class TimestampMixin(models.Model):
    """Adds created_at / updated_at to any model."""

    created_at = models.DateTimeField(
        _('created at'), auto_now_add=True, db_index=True,
    )
    updated_at = models.DateTimeField(
        _('updated at'), auto_now=True,
    )

    class Meta:
        abstract = True


class AuditFieldsMixin(models.Model):
    """Adds created_by / updated_by foreign keys for actor tracking."""

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True, blank=True,
        on_delete=models.SET_NULL,
        related_name='+',
        verbose_name=_('created by'),
    )
    updated_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True, blank=True,
        on_delete=models.SET_NULL,
        related_name='+',
        verbose_name=_('updated by'),
    )

    class Meta:
        abstract = True


class BaseModel(TimestampMixin, AuditFieldsMixin):
    """
    Standard base for all MediStock models.
    UUID PK + timestamps + actor audit fields.
    """

    id = models.UUIDField(
        primary_key=True, default=uuid.uuid4, editable=False,
    )

    class Meta:
        abstract = True


class InsertOnlyMixin(models.Model):
    """
    Ledger rows (stock transactions, sold and returned items) are written
    once. Updates and deletes raise.
    """

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise NotImplementedError(
                f'{type(self).__name__} is insert-only; updates are not allowed.',
            )
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise NotImplementedError(f'{type(self).__name__} records cannot be deleted.')


# ---------------------------------------------------------------------------
# Audit Log: immutable record of every write operation
# ---------------------------------------------------------------------------

class AuditLog(models.Model):
    """
    Immutable audit trail. One row per mutating operation, written in the
    same transaction as the operation itself.
    """

    class ActionChoices(models.TextChoices):
        CREATE = 'CREATE', _('Create')
        UPDATE = 'UPDATE', _('Update')
        SALE = 'SALE', _('Sale')
        RETURN = 'RETURN', _('Return')
        STATUS_CHANGE = 'STATUS_CHANGE', _('Status Change')

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True, blank=True,
        on_delete=models.SET_NULL,
        related_name='audit_logs',
        verbose_name=_('actor'),
    )
    action = models.CharField(
        _('action'), max_length=20,
        choices=ActionChoices.choices, db_index=True,
    )
    entity = models.CharField(_('entity'), max_length=100, db_index=True)
    entity_id = models.CharField(_('entity ID'), max_length=40, db_index=True)
    description = models.TextField(_('description'), blank=True, default='')

    old_values = models.JSONField(_('old values'), null=True, blank=True)
    new_values = models.JSONField(_('new values'), null=True, blank=True)

    timestamp = models.DateTimeField(_('timestamp'), auto_now_add=True, db_index=True)

    class Meta:
        verbose_name = _('audit log')
        verbose_name_plural = _('audit logs')
        ordering = ['-timestamp']
        indexes = [
            models.Index(fields=['entity', 'entity_id']),
            models.Index(fields=['actor', 'timestamp']),
            models.Index(fields=['action', 'timestamp']),
        ]

    def __str__(self):
        return f'{self.action} {self.entity}:{self.entity_id} by {self.actor_id}'
