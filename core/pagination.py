"""
Page-number pagination that wraps results in the standard envelope.
"""
import math

from rest_framework.pagination import PageNumberPagination

from .responses import FETCHED, success_response


class EnvelopePagination(PageNumberPagination):
    """
    ?page=N&limit=M pagination.

    Views may set `list_message` to customize the envelope message.
    """
    page_size_query_param = 'limit'
    max_page_size = 100

    def paginate_queryset(self, queryset, request, view=None):
        self.view = view
        return super().paginate_queryset(queryset, request, view)

    def get_paginated_response(self, data):
        total = self.page.paginator.count
        page_size = self.page.paginator.per_page
        return success_response(
            data,
            getattr(self.view, 'list_message', FETCHED),
            pagination={
                'page': self.page.number,
                'page_size': page_size,
                'total': total,
                'total_pages': math.ceil(total / page_size) if page_size else 0,
                'has_next': self.page.has_next(),
                'has_previous': self.page.has_previous(),
            },
        )
