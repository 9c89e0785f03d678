"""Single transport call and response classification."""

import logging

from gated_dispatch.core.outcome import (
    Failure,
    HttpFailure,
    Outcome,
    Success,
    TransportFailure,
)
from gated_dispatch.ports.http import HttpRequest, TransportPort, TransportResponse

__all__ = ["classify_response", "execute"]

logger = logging.getLogger(__name__)


def classify_response(request: HttpRequest, response: TransportResponse) -> Outcome:
    """Map a raw response to an outcome.

    Args:
        request: The request that produced the response.
        response: Raw transport response.

    Returns:
        Success with the body (True when empty) for 2xx, Failure otherwise.
    """
    if 200 <= response.status < 300:
        body = response.body
        return Success(body=True if body is None or body == "" else body, status=response.status)
    return Failure(
        HttpFailure(
            url=request.url,
            status=response.status,
            body=response.body,
            headers=response.headers,
        )
    )


async def execute(transport: TransportPort, request: HttpRequest) -> Outcome:
    """Send one request through the transport and classify the result.

    No retry happens here: a request is only ever retried because the gate
    held it back, never because the call itself failed.

    Args:
        transport: Transport performing the call.
        request: Request to send.

    Returns:
        Classified outcome. Transport exceptions become TransportFailure;
        cancellation propagates.
    """
    try:
        response = await transport.send(request)
    except Exception as e:  # noqa: BLE001
        outcome: Outcome = Failure(TransportFailure(url=request.url, cause=e))
    else:
        outcome = classify_response(request, response)

    if isinstance(outcome, Success):
        logger.debug(
            f"{request.method.value} {request.url} <ok> "
            f"params={request.params!r} headers={request.headers!r} body={outcome.body!r}"
        )
    else:
        logger.debug(
            f"{request.method.value} {request.url} <failed> "
            f"params={request.params!r} headers={request.headers!r} "
            f"error={outcome.error.to_dict()!r}"
        )
    return outcome
