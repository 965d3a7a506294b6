from fastapi import APIRouter, Depends, Request, status
from checkout_core.auth.dependencies import get_current_user
from checkout_core.checkout.models import StartCheckoutIn
from checkout_core.common.constants import request_id_ctx
from checkout_core.common.utils import build_error, build_success, json_error, json_ok
from checkout_core.payments.constants import TRIGGER_CLIENT
from checkout_core.payments.models import ConfirmPaymentIn, ReconcileResult

checkout_router = APIRouter()

_CONFIRM_FAILURE_STATUS = {
    "forbidden": status.HTTP_403_FORBIDDEN,
    "session_not_found": status.HTTP_404_NOT_FOUND,
    "payment_not_found": status.HTTP_404_NOT_FOUND,
    "invalid_payment_id": status.HTTP_400_BAD_REQUEST,
    "session_expired": status.HTTP_410_GONE,
}


def _confirm_response(result: ReconcileResult):
    rid = request_id_ctx.get()
    if result.ok:
        return json_ok(build_success(result.model_dump(mode="json"), request_id=rid))
    if result.retryable:
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    else:
        code = _CONFIRM_FAILURE_STATUS.get(result.status, status.HTTP_409_CONFLICT)
    payload = build_error(code=result.error_code or result.status, details=result.model_dump(mode="json"), request_id=rid)
    return json_error(payload, status_code=code)


@checkout_router.post("/start")
async def start_checkout(request: Request, body: StartCheckoutIn, user_id: str = Depends(get_current_user)):
    manager = request.app.state.checkout_manager
    result = await manager.start_checkout(
        user_id,
        [it.model_dump() for it in body.items],
        body.address.model_dump(),
        body.payment_method_id,
    )
    rid = request_id_ctx.get()
    if not result.ok:
        payload = build_error(code=result.reason, details=result.model_dump(mode="json"), request_id=rid)
        return json_error(payload, status_code=status.HTTP_409_CONFLICT)
    return json_ok(build_success(result.model_dump(mode="json"), request_id=rid), status_code=status.HTTP_201_CREATED)


# the provider redirect carries payment_id back to the storefront, which posts it here
@checkout_router.post("/confirm")
async def confirm_payment(request: Request, body: ConfirmPaymentIn, user_id: str = Depends(get_current_user)):
    result = await request.app.state.reconciler.reconcile(body.payment_id, TRIGGER_CLIENT, expected_user_id=user_id)
    return _confirm_response(result)


@checkout_router.get("/{token}")
async def get_checkout_session(request: Request, token: str, user_id: str = Depends(get_current_user)):
    view = await request.app.state.checkout_manager.get_session(user_id, token)
    return json_ok(build_success(view.model_dump(mode="json"), request_id=request_id_ctx.get()))


@checkout_router.post("/{token}/payment-link")
async def renew_payment_link(request: Request, token: str, user_id: str = Depends(get_current_user)):
    redirect_url = await request.app.state.checkout_manager.retry_payment_link(user_id, token)
    return json_ok(build_success({"token": token, "redirect_url": redirect_url}, request_id=request_id_ctx.get()))
