"""Translation of service failures into HTTP errors."""

from fastapi import HTTPException, status

from storefront.application.compensation_service import CompensationResult

ERROR_STATUS_CODES: dict[str, int] = {
    "NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "INVALID_QUANTITY": status.HTTP_400_BAD_REQUEST,
    "CANCEL_FAIL": status.HTTP_409_CONFLICT,
    "INVALID_STATE": status.HTTP_409_CONFLICT,
    "LEDGER_CONFLICT": status.HTTP_409_CONFLICT,
    "INVARIANT_VIOLATION": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def status_for(error_code: str | None) -> int:
    """HTTP status for a service error code; unknown codes are server errors."""
    return ERROR_STATUS_CODES.get(error_code or "", status.HTTP_500_INTERNAL_SERVER_ERROR)


def raise_for_result(result: CompensationResult) -> None:
    """Raise the HTTPException matching a failed compensation result.

    Raises:
        HTTPException: If the result is not successful.
    """
    if result.success:
        return
    raise HTTPException(
        status_code=status_for(result.error_code),
        detail={
            "error_code": result.error_code or "COMPENSATION_FAILED",
            "message": result.error or f"{result.operation} failed",
            "details": result.error_details,
        },
    )
