"""
Users — Models

Custom User model with UUID PK, email-based login and a single role.
Staff members (ADMIN, EMPLOYEE) are attached to one medical store; the
acting user is recorded on every audited inventory operation.

@file users/models.py
"""

from django.contrib.auth.models import AbstractBaseUser, PermissionsMixin
from django.db import models
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from core.models import BaseModel
from users.managers import UserManager


class User(AbstractBaseUser, PermissionsMixin, BaseModel):
    """
    MediStock user.

    SUPERADMIN operates across stores. ADMIN owns or manages a store and
    registers its companies and suppliers. EMPLOYEE works the counter of
    the store it is attached to.
    """

    class RoleChoices(models.TextChoices):
        SUPERADMIN = 'SUPERADMIN', _('Super admin')
        ADMIN = 'ADMIN', _('Admin')
        EMPLOYEE = 'EMPLOYEE', _('Employee')

    email = models.EmailField(_('email'), unique=True)
    first_name = models.CharField(_('first name'), max_length=100, blank=True)
    last_name = models.CharField(_('last name'), max_length=100, blank=True)
    phone = models.CharField(_('phone'), max_length=20, blank=True)

    role = models.CharField(
        _('role'), max_length=12,
        choices=RoleChoices.choices, default=RoleChoices.EMPLOYEE,
        db_index=True,
    )
    medical_store = models.ForeignKey(
        'stores.MedicalStore',
        null=True, blank=True,
        on_delete=models.SET_NULL,
        related_name='staff',
        verbose_name=_('medical store'),
    )

    is_staff = models.BooleanField(_('staff status'), default=False)
    is_active = models.BooleanField(_('active'), default=True)
    date_joined = models.DateTimeField(_('date joined'), default=timezone.now)

    objects = UserManager()

    USERNAME_FIELD = 'email'
    REQUIRED_FIELDS = []

    class Meta:
        verbose_name = _('user')
        verbose_name_plural = _('users')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['role', 'is_active']),
            models.Index(fields=['medical_store']),
        ]

    def __str__(self):
        return self.get_full_name()

    def get_full_name(self):
        full = f'{self.first_name} {self.last_name}'.strip()
        return full or self.email

    def get_short_name(self):
        return self.first_name or self.email

    def has_role(self, role_name: str) -> bool:
        return self.is_active and self.role == role_name

    def can_access_store(self, store) -> bool:
        """Superusers and SUPERADMINs see every store; others only their own."""
        if self.is_superuser or self.has_role(self.RoleChoices.SUPERADMIN):
            return True
        if store.owner_id == self.pk:
            return True
        return self.medical_store_id is not None and self.medical_store_id == store.pk
