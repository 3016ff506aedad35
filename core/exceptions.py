"""
Core — Exception Handling

Domain exceptions raised by the service layer and the DRF exception handler
that renders them in the standard error envelope.

@file core/exceptions.py
"""

import logging

from django.core.exceptions import PermissionDenied, ValidationError
from django.db import IntegrityError
from django.http import Http404
from rest_framework import status
from rest_framework.exceptions import APIException
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger('medistock')


# ---------------------------------------------------------------------------
# Domain exceptions
# ---------------------------------------------------------------------------

class BusinessRuleViolation(APIException):
    """Missing or malformed input detected at the service layer. Nothing is written."""
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Business rule violation.'
    default_code = 'BUSINESS_RULE_VIOLATION'


class InsufficientStockError(APIException):
    """Requested quantity exceeds the store aggregate or the FIFO-eligible units."""
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'Insufficient stock for this operation.'
    default_code = 'INSUFFICIENT_STOCK'


class OwnershipMismatchError(APIException):
    """An entity belongs to a different store or company than the request implies."""
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = 'Resource does not belong to this medical store.'
    default_code = 'OWNERSHIP_MISMATCH'


class DuplicateResourceError(APIException):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'Resource already exists.'
    default_code = 'DUPLICATE_RESOURCE'


class ResourceNotFoundError(APIException):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'Resource not found.'
    default_code = 'RESOURCE_NOT_FOUND'


# ---------------------------------------------------------------------------
# Standard exception handler
# ---------------------------------------------------------------------------

def standard_exception_handler(exc, context):
    """
    Wraps every error response in the standard envelope:
      { "success": false, "errors": {...}, "code": "ERROR_CODE" }
    """
    if isinstance(exc, Http404):
        exc = ResourceNotFoundError()
    elif isinstance(exc, PermissionDenied):
        exc = APIException(detail='Permission denied.', code='PERMISSION_DENIED')
        exc.status_code = status.HTTP_403_FORBIDDEN
    elif isinstance(exc, IntegrityError):
        logger.info('Integrity conflict translated to 409: %s', exc)
        exc = DuplicateResourceError()
    elif isinstance(exc, ValidationError):
        data = {
            'success': False,
            'errors': exc.message_dict if hasattr(exc, 'message_dict') else {'detail': exc.messages},
            'code': 'VALIDATION_ERROR',
        }
        return Response(data, status=status.HTTP_400_BAD_REQUEST)

    response = exception_handler(exc, context)

    if response is not None:
        errors = {}
        code = getattr(exc, 'default_code', 'ERROR')

        if isinstance(response.data, dict):
            errors = response.data
            code = response.data.pop('code', code) if 'code' in response.data else code
        elif isinstance(response.data, list):
            errors = {'detail': response.data}
        else:
            errors = {'detail': [str(response.data)]}

        response.data = {
            'success': False,
            'errors': errors,
            'code': code,
        }

    if response is None:
        logger.exception('Unhandled exception in view: %s', exc)
        return Response(
            {'success': False, 'errors': {'detail': ['Internal server error.']}, 'code': 'INTERNAL_ERROR'},
            status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    return response
