"""SimplePay inbound endpoints: browser returns and IPN."""

import structlog
from fastapi import APIRouter, HTTPException, Request, status
from fastapi.responses import RedirectResponse, Response

from simplepay_gateway.api.dependencies import IpnHandlerDep, ReturnHandlerDep
from simplepay_gateway.clients.processor_client import SIGNATURE_HEADER
from simplepay_gateway.domain.flows import IPN_PATH, OFFSITE_RETURN_PATH, RETURN_PATH
from simplepay_gateway.models.exceptions import GatewayError

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["simplepay"])


def _bad_request(e: GatewayError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.get(RETURN_PATH)
def simplepay_return(request: Request, handler: ReturnHandlerDep) -> RedirectResponse:
    """Shared listener the processor redirects the donor's browser to."""
    try:
        redirect_url = handler.handle_listener_request(request.query_params)
    except GatewayError as e:
        logger.warning("return_rejected", error_kind=e.kind.value, error=str(e))
        raise _bad_request(e) from e

    return RedirectResponse(redirect_url, status_code=status.HTTP_302_FOUND)


@router.get(OFFSITE_RETURN_PATH)
def simplepay_offsite_return(request: Request, handler: ReturnHandlerDep) -> RedirectResponse:
    """Signed return route of the offsite redirect flow."""
    try:
        redirect_url = handler.handle_offsite_return(request.query_params)
    except GatewayError as e:
        logger.warning("offsite_return_rejected", error_kind=e.kind.value, error=str(e))
        raise _bad_request(e) from e

    return RedirectResponse(redirect_url, status_code=status.HTTP_302_FOUND)


@router.post(IPN_PATH)
async def simplepay_ipn(request: Request, handler: IpnHandlerDep) -> Response:
    """
    Server-to-server payment notification.

    The raw body is read before anything else so the signature is checked
    over the exact bytes SimplePay sent.
    """
    raw_body = await request.body()

    try:
        ack = handler.handle(raw_body, request.headers.get(SIGNATURE_HEADER))
    except GatewayError as e:
        logger.warning("ipn_rejected", error_kind=e.kind.value, error=str(e))
        raise _bad_request(e) from e

    return Response(content=ack.body, media_type="application/json", headers=ack.headers)
