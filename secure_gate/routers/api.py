"""
secure_gate/routers/api.py - Public JSON endpoints called by the gate page
Endpoints: /api/check-device-cooldown, /api/send-to-telegram
POST only; a bare OPTIONS answers 200 with an empty body.
"""

from typing import Any

from fastapi import APIRouter, Body, Depends, Request, Response, status
from fastapi.responses import JSONResponse
from loguru import logger

from secure_gate.core.errors import RequestValidationFailure
from secure_gate.core.rate_limiter import limiter, RATE_LIMITS
from secure_gate.deps import get_form_schemas, get_ledger, get_notification_sink
from secure_gate.models import CooldownAction, CooldownRequest, FormSchema
from secure_gate.services.cooldown_ledger import CooldownLedger
from secure_gate.services.notifier import NotificationSink, forward_submission
from secure_gate.utils.timezone import isoformat_z

router = APIRouter()


# ──────────────────────────────────────────────────────────────────────────────
# POST /api/check-device-cooldown - ledger check / submit
# ──────────────────────────────────────────────────────────────────────────────

@router.options("/check-device-cooldown", include_in_schema=False)
@router.options("/send-to-telegram", include_in_schema=False)
def preflight() -> Response:
    return Response(status_code=status.HTTP_200_OK)


@router.post("/check-device-cooldown")
@limiter.limit(RATE_LIMITS["cooldown"])
def device_cooldown(
    request: Request,
    body: CooldownRequest,
    ledger: CooldownLedger = Depends(get_ledger),
) -> Any:
    """
    action=check  -> 200 {inCooldown, remaining[, lastSubmission]}
    action=submit -> 200 {success, cooldownUntil} or 403 while cooling down
    """
    device_id = (body.device_id or "").strip()
    logger.info(f"Device cooldown request: action={body.action!r}")
    if not device_id:
        raise RequestValidationFailure("Device ID is required")

    if body.action == CooldownAction.CHECK.value:
        state = ledger.check(device_id)
        if not state.in_cooldown:
            return {"inCooldown": False, "remaining": 0}
        return {
            "inCooldown": True,
            "remaining": state.remaining_ms,
            "lastSubmission": isoformat_z(state.last_submission),
        }

    if body.action == CooldownAction.SUBMIT.value:
        result = ledger.submit(device_id, name=body.name, user_id_field=body.user_id_field)
        if not result.success:
            return JSONResponse(
                status_code=status.HTTP_403_FORBIDDEN,
                content={
                    "success": False,
                    "inCooldown": True,
                    "remaining": result.remaining_ms,
                    "message": "Device is in cooldown period",
                },
            )
        return {
            "success": True,
            "message": "Submission recorded",
            "cooldownUntil": isoformat_z(result.cooldown_until),
        }

    raise RequestValidationFailure("Invalid action")


# ──────────────────────────────────────────────────────────────────────────────
# POST /api/send-to-telegram - notification sink
# ──────────────────────────────────────────────────────────────────────────────

@router.post("/send-to-telegram")
@limiter.limit(RATE_LIMITS["notify"])
def send_to_telegram(
    request: Request,
    payload: dict[str, Any] = Body(...),
    sink: NotificationSink = Depends(get_notification_sink),
    schemas: dict[str, FormSchema] = Depends(get_form_schemas),
) -> dict[str, Any]:
    """Forward {name, id} or {subjectName, name, id, weekNumber} to the sink."""
    forward_submission(sink, payload, schemas)
    return {"success": True, "message": "Data sent successfully"}
