"""
Users — Model Tests

@file users/tests/test_models.py
"""

import pytest

from tests.factories import MedicalStoreFactory, UserFactory
from users.models import User


@pytest.mark.django_db
class TestUserModel:
    def test_create_user(self):
        user = User.objects.create_user(email='Clerk@Example.com', password='Test2026!!')
        assert user.pk is not None
        assert user.email == 'Clerk@example.com'
        assert user.role == User.RoleChoices.EMPLOYEE
        assert user.check_password('Test2026!!')

    def test_create_user_requires_email(self):
        with pytest.raises(ValueError):
            User.objects.create_user(email='', password='x')

    def test_superuser_creation(self):
        user = User.objects.create_superuser(email='root@example.com', password='Super2026!!')
        assert user.is_staff is True
        assert user.is_superuser is True
        assert user.role == User.RoleChoices.SUPERADMIN

    def test_full_name(self):
        user = UserFactory(first_name='Ayesha', last_name='Khan')
        assert user.get_full_name() == 'Ayesha Khan'

    def test_full_name_fallback_to_email(self):
        user = UserFactory(first_name='', last_name='')
        assert user.get_full_name() == user.email

    def test_has_role_requires_active(self):
        user = UserFactory(role=User.RoleChoices.ADMIN, is_active=False)
        assert user.has_role('ADMIN') is False


@pytest.mark.django_db
class TestStoreAccess:
    def test_member_can_access_own_store(self):
        store = MedicalStoreFactory()
        user = UserFactory(medical_store=store)
        assert user.can_access_store(store) is True

    def test_member_cannot_access_other_store(self):
        user = UserFactory(medical_store=MedicalStoreFactory())
        assert user.can_access_store(MedicalStoreFactory()) is False

    def test_owner_can_access(self):
        owner = UserFactory(role=User.RoleChoices.ADMIN)
        store = MedicalStoreFactory(owner=owner)
        assert owner.can_access_store(store) is True

    def test_superadmin_can_access_any(self):
        user = UserFactory(role=User.RoleChoices.SUPERADMIN)
        assert user.can_access_store(MedicalStoreFactory()) is True
