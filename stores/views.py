"""
Stores — Views

DRF ViewSets for medical stores and their companies and suppliers.
Company and supplier routes are nested under ``stores/{store_pk}/``.

@file stores/views.py
"""

from django.db.models import Q
from rest_framework import mixins, status, viewsets
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from users.permissions import IsStoreAdmin, IsStoreMember

from .models import Company, MedicalStore, Supplier
from .serializers import (
    CompanyReadSerializer,
    CompanyWriteSerializer,
    MedicalStoreReadSerializer,
    MedicalStoreWriteSerializer,
    SupplierReadSerializer,
    SupplierWriteSerializer,
)
from .services import CompanyService, StoreService, SupplierService, get_store


class StoreScopedMixin:
    """Resolves ``store_pk`` from the URL once per request."""

    def get_store(self):
        if not hasattr(self, '_store'):
            self._store = get_store(self.kwargs['store_pk'])
        return self._store


class MedicalStoreViewSet(
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    mixins.CreateModelMixin,
    mixins.UpdateModelMixin,
    viewsets.GenericViewSet,
):
    """
    Stores visible to the user. SUPERADMINs see all stores; everyone else
    sees the store they own or are attached to.
    """

    permission_classes = [IsAuthenticated, IsStoreAdmin]
    search_fields = ['name', 'license_number', 'address']
    ordering_fields = ['name', 'created_at']
    ordering = ['name']

    def get_queryset(self):
        user = self.request.user
        qs = MedicalStore.objects.select_related('owner')
        if user.is_superuser or user.has_role('SUPERADMIN'):
            return qs
        return qs.filter(Q(owner=user) | Q(pk=user.medical_store_id))

    def get_serializer_class(self):
        if self.action in ('list', 'retrieve'):
            return MedicalStoreReadSerializer
        return MedicalStoreWriteSerializer

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        store = StoreService.create_store(actor=request.user, **serializer.validated_data)
        return Response(
            MedicalStoreReadSerializer(store, context={'request': request}).data,
            status=status.HTTP_201_CREATED,
        )

    def perform_update(self, serializer):
        store = StoreService.update_store(
            store_id=self.get_object().pk,
            actor=self.request.user,
            **serializer.validated_data,
        )
        serializer.instance = store


class CompanyViewSet(StoreScopedMixin, viewsets.ModelViewSet):
    """Companies of one store. Writes need a store administrator."""

    permission_classes = [IsAuthenticated, IsStoreMember, IsStoreAdmin]
    filterset_fields = ['is_active']
    search_fields = ['name', 'company_code', 'distributor_code']
    ordering_fields = ['name', 'company_code', 'created_at']
    ordering = ['name']

    def get_queryset(self):
        return Company.objects.filter(medical_store=self.get_store())

    def get_serializer_class(self):
        if self.action in ('list', 'retrieve'):
            return CompanyReadSerializer
        return CompanyWriteSerializer

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        company = CompanyService.create_company(
            store=self.get_store(), actor=request.user, **serializer.validated_data,
        )
        return Response(CompanyReadSerializer(company).data, status=status.HTTP_201_CREATED)

    def update(self, request, *args, **kwargs):
        partial = kwargs.pop('partial', False)
        serializer = self.get_serializer(self.get_object(), data=request.data, partial=partial)
        serializer.is_valid(raise_exception=True)
        company = CompanyService.update_company(
            store=self.get_store(), company_id=kwargs['pk'],
            actor=request.user, **serializer.validated_data,
        )
        return Response(CompanyReadSerializer(company).data)

    def perform_destroy(self, instance):
        CompanyService.deactivate_company(
            store=self.get_store(), company_id=instance.pk, actor=self.request.user,
        )


class SupplierViewSet(StoreScopedMixin, viewsets.ModelViewSet):
    """Suppliers of one store. Writes need a store administrator."""

    permission_classes = [IsAuthenticated, IsStoreMember, IsStoreAdmin]
    filterset_fields = ['is_active', 'company']
    search_fields = ['name', 'supplier_code', 'email']
    ordering_fields = ['name', 'created_at']
    ordering = ['name']

    def get_queryset(self):
        return Supplier.objects.filter(medical_store=self.get_store()).select_related('company')

    def get_serializer_class(self):
        if self.action in ('list', 'retrieve'):
            return SupplierReadSerializer
        return SupplierWriteSerializer

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        supplier = SupplierService.create_supplier(
            store=self.get_store(), actor=request.user, **serializer.validated_data,
        )
        return Response(SupplierReadSerializer(supplier).data, status=status.HTTP_201_CREATED)

    def update(self, request, *args, **kwargs):
        partial = kwargs.pop('partial', False)
        serializer = self.get_serializer(self.get_object(), data=request.data, partial=partial)
        serializer.is_valid(raise_exception=True)
        supplier = SupplierService.update_supplier(
            store=self.get_store(), supplier_id=kwargs['pk'],
            actor=request.user, **serializer.validated_data,
        )
        return Response(SupplierReadSerializer(supplier).data)

    def perform_destroy(self, instance):
        SupplierService.deactivate_supplier(
            store=self.get_store(), supplier_id=instance.pk, actor=self.request.user,
        )
