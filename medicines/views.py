"""
Medicines — Views

Store-scoped medicine endpoints. Every stock movement is delegated to the
inventory ledger; views only validate request shape and serialise results.

@file medicines/views.py
"""

from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from core.exceptions import OwnershipMismatchError
from stock.services import get_ledger
from stores.services import get_store
from users.permissions import IsStoreAdmin, IsStoreMember

from .models import MedicalStoreMedicine, Medicine
from .serializers import (
    AddStockSerializer,
    BatchReadSerializer,
    ExpiryFlagSerializer,
    FifoCandidateSerializer,
    MedicineInstanceSerializer,
    MedicineReadSerializer,
    MedicineRegisterSerializer,
    MedicineUpdateSerializer,
    ReturnedItemSerializer,
    ReturnSerializer,
    SellSerializer,
    SoldItemSerializer,
    StoreCounterSerializer,
)
from .services import MedicineService


def _store_quantity(store, medicine) -> int:
    return (
        MedicalStoreMedicine.objects
        .filter(medical_store=store, medicine=medicine)
        .values_list('quantity', flat=True)
        .first()
    ) or 0


class StoreMedicineViewSet(
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    viewsets.GenericViewSet,
):
    """
    Medicines of one store: listing with store totals, registration,
    catalogue edits and the stock-ledger actions.
    """

    permission_classes = [IsAuthenticated, IsStoreMember]
    serializer_class = MedicineReadSerializer
    filterset_fields = ['is_active', 'company', 'supplier']
    search_fields = ['name', 'formula', 'description']
    ordering_fields = ['name', 'store_quantity', 'created_at']
    ordering = ['name']

    def get_store(self):
        if not hasattr(self, '_store'):
            self._store = get_store(self.kwargs['store_pk'])
        return self._store

    def get_queryset(self):
        medicines, self._summary = MedicineService.list_store_medicines(self.get_store())
        return medicines.prefetch_related('variations')

    def get_object(self):
        medicine = MedicineService.get_store_medicine(self.get_store(), self.kwargs['pk'])
        self.check_object_permissions(self.request, medicine)
        return medicine

    def list(self, request, *args, **kwargs):
        queryset = self.filter_queryset(self.get_queryset())
        page = self.paginate_queryset(queryset)
        if page is not None:
            ser = self.get_serializer(page, many=True)
            return self.paginator.get_paginated_response(ser.data, summary=self._summary)
        ser = self.get_serializer(queryset, many=True)
        return Response({'success': True, 'data': ser.data, 'meta': {'summary': self._summary}})

    def retrieve(self, request, *args, **kwargs):
        medicine = self.get_object()
        medicine.store_quantity = _store_quantity(self.get_store(), medicine)
        return Response(MedicineReadSerializer(medicine).data)

    def create(self, request, *args, **kwargs):
        ser = MedicineRegisterSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        data = ser.validated_data
        store = self.get_store()
        medicine = get_ledger().register_medicine(
            store_id=store.pk,
            company_id=data['company'],
            supplier_id=data.get('supplier'),
            name=data['name'],
            formula=data['formula'],
            description=data['description'],
            min_quantity=data['min_quantity'],
            quantity=data['quantity'],
            variation=dict(data.get('variation') or {}),
            batch=dict(data.get('batch') or {}),
            actor=request.user,
        )
        medicine.store_quantity = _store_quantity(store, medicine)
        return Response(
            {'success': True, 'data': MedicineReadSerializer(medicine).data},
            status=status.HTTP_201_CREATED,
        )

    def partial_update(self, request, *args, **kwargs):
        ser = MedicineUpdateSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        store = self.get_store()
        medicine = MedicineService.update_medicine(
            store=store,
            medicine_id=kwargs['pk'],
            actor=request.user,
            **ser.validated_data,
        )
        medicine.store_quantity = _store_quantity(store, medicine)
        return Response({'success': True, 'data': MedicineReadSerializer(medicine).data})

    # --- Ledger actions ---

    @action(detail=True, methods=['post'], url_path='stock')
    def stock(self, request, store_pk=None, pk=None):
        ser = AddStockSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        instances = get_ledger().add_stock(
            store_id=self.get_store().pk,
            medicine_id=pk,
            batches=ser.normalised_batches(),
            quantity=ser.validated_data.get('quantity') if ser.validated_data.get('batches') else None,
            variation_id=ser.validated_data.get('variation'),
            actor=request.user,
        )
        return Response(
            {
                'success': True,
                'data': {
                    'instances': MedicineInstanceSerializer(instances, many=True).data,
                    'store_quantity': _store_quantity(self.get_store(), pk),
                },
            },
            status=status.HTTP_201_CREATED,
        )

    @action(detail=True, methods=['post'], url_path='sell')
    def sell(self, request, store_pk=None, pk=None):
        ser = SellSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        sold = get_ledger().sell(
            store_id=self.get_store().pk,
            medicine_id=pk,
            order_id=ser.validated_data['order'],
            quantity=ser.validated_data['quantity'],
            discount_price=ser.validated_data.get('discount_price'),
            actor=request.user,
        )
        return Response(
            {
                'success': True,
                'data': {
                    'sold_items': SoldItemSerializer(sold, many=True).data,
                    'store_quantity': _store_quantity(self.get_store(), pk),
                },
            },
            status=status.HTTP_201_CREATED,
        )

    @action(detail=True, methods=['post'], url_path='return')
    def return_stock(self, request, store_pk=None, pk=None):
        ser = ReturnSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        data = ser.validated_data
        returned = get_ledger().process_return(
            store_id=self.get_store().pk,
            medicine_id=pk,
            return_type=data['return_type'],
            quantity=data['quantity'],
            retail_price=data.get('retail_price'),
            discount_price=data.get('discount_price'),
            order_id=data.get('order'),
            batch_id=data.get('batch'),
            batch_no=data.get('batch_no'),
            expiry_date=data.get('expiry_date'),
            variation_id=data.get('variation'),
            location=data.get('location'),
            actor=request.user,
        )
        return Response(
            {
                'success': True,
                'data': {
                    'returned_items': ReturnedItemSerializer(returned, many=True).data,
                    'store_quantity': _store_quantity(self.get_store(), pk),
                },
            },
            status=status.HTTP_201_CREATED,
        )

    @action(
        detail=True, methods=['post'], url_path='refresh-alerts',
        permission_classes=[IsAuthenticated, IsStoreMember, IsStoreAdmin],
    )
    def refresh_alerts(self, request, store_pk=None, pk=None):
        store = self.get_store()
        medicine = self.get_object()
        flags = get_ledger().refresh_alerts(store=store, medicine=medicine)
        return Response({'success': True, 'data': ExpiryFlagSerializer(flags, many=True).data})

    # --- Read models ---

    @action(detail=True, methods=['get'], url_path='batches')
    def batches(self, request, store_pk=None, pk=None):
        medicine = self.get_object()
        batches = MedicineService.get_batches(medicine, store=self.get_store())
        page = self.paginate_queryset(batches)
        if page is not None:
            return self.get_paginated_response(BatchReadSerializer(page, many=True).data)
        return Response({'success': True, 'data': BatchReadSerializer(batches, many=True).data})

    @action(detail=False, methods=['get'], url_path='near-expiry')
    def near_expiry(self, request, store_pk=None):
        instances = MedicineService.get_near_expiry(self.get_store())
        page = self.paginate_queryset(instances)
        if page is not None:
            return self.get_paginated_response(MedicineInstanceSerializer(page, many=True).data)
        return Response({'success': True, 'data': MedicineInstanceSerializer(instances, many=True).data})

    @action(detail=False, methods=['get'], url_path='low-stock')
    def low_stock(self, request, store_pk=None):
        counters = MedicineService.get_low_stock(self.get_store())
        page = self.paginate_queryset(counters)
        if page is not None:
            return self.get_paginated_response(StoreCounterSerializer(page, many=True).data)
        return Response({'success': True, 'data': StoreCounterSerializer(counters, many=True).data})

    @action(detail=False, methods=['get'], url_path='fifo')
    def fifo(self, request, store_pk=None):
        candidates = MedicineService.get_fifo_candidates(self.get_store())
        return Response({'success': True, 'data': FifoCandidateSerializer(candidates, many=True).data})


class MedicineBatchViewSet(viewsets.GenericViewSet):
    """Batches of a medicine across stores, for users allowed in its store."""

    permission_classes = [IsAuthenticated]

    def get_queryset(self):
        return Medicine.objects.select_related('company__medical_store')

    @action(detail=True, methods=['get'], url_path='batches')
    def batches(self, request, pk=None):
        medicine = self.get_object()
        if not request.user.can_access_store(medicine.company.medical_store):
            raise OwnershipMismatchError(detail='You are not a member of this medicine\'s store.')
        batches = MedicineService.get_batches(medicine)
        return Response({'success': True, 'data': BatchReadSerializer(batches, many=True).data})
