"""
Users — DRF Permission Classes

Role-based and store-scoped permission checks for ViewSets.

@file users/permissions.py
"""

from rest_framework.permissions import SAFE_METHODS, BasePermission

from stores.models import MedicalStore


def _resolve_store(view):
    store = getattr(view, '_permission_store', None)
    if store is None:
        store_pk = view.kwargs.get('store_pk')
        if store_pk is None:
            return None
        store = MedicalStore.objects.filter(pk=store_pk).first()
        view._permission_store = store
    return store


class IsActiveUser(BasePermission):
    """Requires user to be authenticated and active."""

    def has_permission(self, request, view):
        return bool(
            request.user
            and request.user.is_authenticated
            and request.user.is_active
        )


class IsStoreMember(BasePermission):
    """
    Store-scoped routes (``store_pk`` in the URL) are open to superusers,
    SUPERADMINs, the store owner and staff attached to the store.
    An unknown store passes here so the view can answer 404.
    """

    message = 'You are not a member of this medical store.'

    def has_permission(self, request, view):
        user = request.user
        if not user or not user.is_authenticated:
            return False
        if 'store_pk' not in view.kwargs:
            return True
        store = _resolve_store(view)
        if store is None:
            return True
        return user.can_access_store(store)


class IsStoreAdmin(BasePermission):
    """Writes need ADMIN, SUPERADMIN or superuser; reads fall through."""

    message = 'Only store administrators can modify this resource.'

    def has_permission(self, request, view):
        if request.method in SAFE_METHODS:
            return True
        user = request.user
        if not user or not user.is_authenticated:
            return False
        if user.is_superuser:
            return True
        return user.has_role('ADMIN') or user.has_role('SUPERADMIN')
