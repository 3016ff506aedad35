"""
Core — Pagination

Standard paginator with configurable page_size and hard max cap. List
endpoints may attach a summary block (store totals) that the renderer
moves into the response meta.

@file core/pagination.py
"""

from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response

from core.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE


class StandardPagination(PageNumberPagination):
    page_size = DEFAULT_PAGE_SIZE
    page_size_query_param = 'page_size'
    max_page_size = MAX_PAGE_SIZE

    def get_paginated_response(self, data, summary=None):
        payload = {
            'count': self.page.paginator.count,
            'next': self.get_next_link(),
            'previous': self.get_previous_link(),
            'results': data,
        }
        if summary is not None:
            payload['summary'] = summary
        return Response(payload)
