"""
secure_gate/models.py - All Pydantic data schemas
Ledger records, cooldown state, access states, the Outcome result type,
endpoint request bodies and the pluggable form schemas.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


# ──────────────────────────────────────────────────────────────────────────────
# Enumerations
# ──────────────────────────────────────────────────────────────────────────────

class AccessState(str, Enum):
    CHECKING = "checking"
    VALIDATING = "validating"
    GRANTED = "granted"
    DENIED = "denied"
    EXPIRED = "expired"
    COOLDOWN = "cooldown"


class CooldownAction(str, Enum):
    CHECK = "check"
    SUBMIT = "submit"


class TokenReason(str, Enum):
    VALID = "VALID"
    NO_TOKEN_PROVIDED = "NO_TOKEN_PROVIDED"
    INVALID_FORMAT = "INVALID_FORMAT"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"


class OutcomeTag(str, Enum):
    OK = "ok"
    REJECTED = "rejected"
    FAILED = "failed"


# ──────────────────────────────────────────────────────────────────────────────
# Ledger
# ──────────────────────────────────────────────────────────────────────────────

class SubmissionRecord(BaseModel):
    device_id: str
    submitted_at: datetime
    name: Optional[str] = None
    user_id_field: Optional[str] = None


class CooldownState(BaseModel):
    in_cooldown: bool = False
    remaining_ms: int = Field(default=0, ge=0)
    last_submission: Optional[datetime] = None

    @classmethod
    def clear(cls) -> "CooldownState":
        return cls()


class SubmitResult(BaseModel):
    success: bool
    in_cooldown: bool = False
    remaining_ms: int = 0
    cooldown_until: Optional[datetime] = None


# ──────────────────────────────────────────────────────────────────────────────
# Tokens + session
# ──────────────────────────────────────────────────────────────────────────────

class TokenValidation(BaseModel):
    valid: bool
    reason: TokenReason
    issued_at: Optional[datetime] = None


class SessionMarker(BaseModel):
    created_at: datetime
    expires_at: datetime


class FingerprintResult(BaseModel):
    visitor_id: str
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)


# ──────────────────────────────────────────────────────────────────────────────
# Outcome - keeps policy rejection apart from infrastructure failure
# ──────────────────────────────────────────────────────────────────────────────

class Outcome(BaseModel):
    tag: OutcomeTag
    reason: Optional[str] = None
    cause: Optional[str] = None
    remaining_ms: int = 0
    cooldown_until: Optional[datetime] = None

    @classmethod
    def ok(cls, cooldown_until: Optional[datetime] = None) -> "Outcome":
        return cls(tag=OutcomeTag.OK, cooldown_until=cooldown_until)

    @classmethod
    def rejected(cls, reason: str, remaining_ms: int = 0) -> "Outcome":
        return cls(tag=OutcomeTag.REJECTED, reason=reason, remaining_ms=max(0, remaining_ms))

    @classmethod
    def failed(cls, cause: str) -> "Outcome":
        return cls(tag=OutcomeTag.FAILED, cause=cause)

    @property
    def is_ok(self) -> bool:
        return self.tag == OutcomeTag.OK

    @property
    def is_rejected(self) -> bool:
        return self.tag == OutcomeTag.REJECTED

    @property
    def is_failed(self) -> bool:
        return self.tag == OutcomeTag.FAILED


# ──────────────────────────────────────────────────────────────────────────────
# HTTP request bodies
# Fields are optional so missing values become 400s with a clear message
# instead of pydantic 422s.
# ──────────────────────────────────────────────────────────────────────────────

class CooldownRequest(BaseModel):
    device_id: Optional[str] = None
    action: Optional[str] = None
    name: Optional[str] = None
    user_id_field: Optional[str] = None


# ──────────────────────────────────────────────────────────────────────────────
# Form schemas - one admission flow, different field sets
# ──────────────────────────────────────────────────────────────────────────────

class FormField(BaseModel):
    key: str
    label: str
    max_length: int


class FormSchema(BaseModel):
    name: str
    fields: list[FormField]

    @property
    def keys(self) -> list[str]:
        return [f.key for f in self.fields]

    def missing_fields(self, payload: dict[str, Any]) -> list[str]:
        """Keys that are absent, non-string or blank after trimming."""
        missing = []
        for f in self.fields:
            value = payload.get(f.key)
            if not isinstance(value, str) or not value.strip():
                missing.append(f.key)
        return missing

    def sanitize(self, payload: dict[str, Any]) -> dict[str, str]:
        """Trim and truncate every declared field. Undeclared keys are dropped."""
        return {
            f.key: str(payload.get(f.key, "")).strip()[: f.max_length]
            for f in self.fields
        }


def build_form_schemas(
    max_name_length: int = 100,
    max_id_length: int = 50,
    max_week_length: int = 20,
) -> dict[str, FormSchema]:
    """Built-in form shapes keyed by schema name."""
    basic = FormSchema(
        name="basic",
        fields=[
            FormField(key="name", label="Name", max_length=max_name_length),
            FormField(key="id", label="ID", max_length=max_id_length),
        ],
    )
    extended = FormSchema(
        name="extended",
        fields=[
            FormField(key="subjectName", label="Subject", max_length=max_name_length),
            FormField(key="name", label="Name", max_length=max_name_length),
            FormField(key="id", label="ID", max_length=max_id_length),
            FormField(key="weekNumber", label="Week", max_length=max_week_length),
        ],
    )
    return {"basic": basic, "extended": extended}
