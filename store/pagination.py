from django.conf import settings
from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response


class HistoryPagination(PageNumberPagination):
    """Page/limit pagination that reports totals next to the rows."""

    page_query_param = "page"
    page_size_query_param = "limit"
    max_page_size = 200

    def get_page_size(self, request):
        self.page_size = int(getattr(settings, "STORE_HISTORY_PAGE_SIZE", 20))
        return super().get_page_size(request)

    def get_paginated_response(self, data):
        paginator = self.page.paginator
        return Response(
            {
                "results": data,
                "pagination": {
                    "total": paginator.count,
                    "page": self.page.number,
                    "limit": paginator.per_page,
                    "total_pages": paginator.num_pages,
                    "has_more": self.page.has_next(),
                },
            }
        )

    def get_paginated_response_schema(self, schema):
        return {
            "type": "object",
            "properties": {
                "results": schema,
                "pagination": {
                    "type": "object",
                    "properties": {
                        "total": {"type": "integer"},
                        "page": {"type": "integer"},
                        "limit": {"type": "integer"},
                        "total_pages": {"type": "integer"},
                        "has_more": {"type": "boolean"},
                    },
                },
            },
        }
