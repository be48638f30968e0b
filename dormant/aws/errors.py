"""Translation of botocore failures into the Dormant error taxonomy.

Only the adapters in this package see botocore exceptions; everything above
them deals in NotFoundError and UpstreamError.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from botocore.exceptions import BotoCoreError, ClientError

from dormant.exceptions import DormantError, NotFoundError, UpstreamError

NOT_FOUND_CODES = frozenset({
    "InvalidInstanceID.NotFound",
    "InvalidVolume.NotFound",
    "InvalidAMIID.NotFound",
    "ParameterNotFound",
})


def error_code(exc: BaseException) -> str:
    """Return the AWS error code of a ClientError, or an empty string."""
    if isinstance(exc, ClientError):
        return exc.response.get("Error", {}).get("Code", "")
    return ""


def translate(exc: ClientError | BotoCoreError, operation: str) -> DormantError:
    if isinstance(exc, ClientError):
        code = error_code(exc)
        message = exc.response.get("Error", {}).get("Message", "") or str(exc)
        if code in NOT_FOUND_CODES:
            return NotFoundError(f"{operation}: {message}")
        return UpstreamError(f"{operation} failed ({code}): {message}")
    return UpstreamError(f"{operation} failed: {exc}")


@contextmanager
def upstream_errors(operation: str) -> Iterator[None]:
    """Re-raise botocore errors from ``operation`` as Dormant errors."""
    try:
        yield
    except (ClientError, BotoCoreError) as e:
        raise translate(e, operation) from e
