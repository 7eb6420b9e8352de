from typing import Any, Optional

from rest_framework.response import Response


class APIResponse:
    """Standardized success envelope; errors go through the exception handler."""

    @staticmethod
    def success(
        data: Any = None,
        message: str = "Success",
        status_code: int = 200,
        meta: Optional[dict] = None,
    ) -> Response:
        response_data = {
            "success": True,
            "message": message,
        }
        if data is not None:
            response_data["data"] = data
        if meta:
            response_data["meta"] = meta
        return Response(response_data, status=status_code)

    @staticmethod
    def created(data: Any = None, message: str = "Created") -> Response:
        return APIResponse.success(data=data, message=message, status_code=201)

    @staticmethod
    def paginated(
        data: Any,
        page: int,
        page_size: int,
        total: int,
        message: str = "Success",
    ) -> Response:
        total_pages = (total + page_size - 1) // page_size if page_size > 0 else 1
        return APIResponse.success(
            data=data,
            message=message,
            meta={
                "pagination": {
                    "page": page,
                    "page_size": page_size,
                    "total": total,
                    "total_pages": total_pages,
                }
            },
        )
