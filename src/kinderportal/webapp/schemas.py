"""Request payloads accepted by the JSON API.

Fields accept both camelCase (``childId``) and snake_case names.
"""
from __future__ import annotations

from datetime import date, datetime
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from ..models import AttendanceStatus, ConsentStatus, PaymentStatus

NonEmptyStr = Annotated[str, Field(min_length=1)]


class Payload(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
    )


class LoginPayload(Payload):
    email: NonEmptyStr
    password: NonEmptyStr


class ChildCreate(Payload):
    name: NonEmptyStr
    surname: NonEmptyStr
    parent_id: NonEmptyStr
    birth_date: Optional[date] = None
    group_id: Optional[str] = None


class ChildUpdate(Payload):
    name: Optional[NonEmptyStr] = None
    surname: Optional[NonEmptyStr] = None
    birth_date: Optional[date] = None
    group_id: Optional[str] = None


class AttendanceCreate(Payload):
    child_id: NonEmptyStr
    day: date
    status: AttendanceStatus = AttendanceStatus.PRESENT
    reason: Optional[str] = None


class AttendanceUpdate(Payload):
    status: Optional[AttendanceStatus] = None
    reason: Optional[str] = None


class ConsentCreate(Payload):
    child_id: NonEmptyStr
    consent_type: NonEmptyStr
    status: ConsentStatus = ConsentStatus.PENDING
    expiry_date: Optional[date] = None


class ConsentUpdate(Payload):
    status: Optional[ConsentStatus] = None
    expiry_date: Optional[date] = None


class PaymentCreate(Payload):
    child_id: NonEmptyStr
    amount_cents: int = Field(gt=0)
    description: NonEmptyStr
    due_date: date
    status: PaymentStatus = PaymentStatus.PENDING


class PaymentUpdate(Payload):
    status: Optional[PaymentStatus] = None
    paid_date: Optional[date] = None
    amount_cents: Optional[int] = Field(default=None, gt=0)
    description: Optional[NonEmptyStr] = None
    due_date: Optional[date] = None


class _DateRange(Payload):
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @model_validator(mode="after")
    def _check_range(self) -> "_DateRange":
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class MedicationCreate(_DateRange):
    child_id: NonEmptyStr
    name: NonEmptyStr
    dosage: NonEmptyStr
    frequency: Optional[str] = None
    notes: Optional[str] = None


class MedicationUpdate(_DateRange):
    name: Optional[NonEmptyStr] = None
    dosage: Optional[NonEmptyStr] = None
    frequency: Optional[str] = None
    notes: Optional[str] = None


class ChronicDiseaseCreate(Payload):
    child_id: NonEmptyStr
    name: NonEmptyStr
    diagnosed_date: Optional[date] = None
    notes: Optional[str] = None


class ChronicDiseaseUpdate(Payload):
    name: Optional[NonEmptyStr] = None
    diagnosed_date: Optional[date] = None
    notes: Optional[str] = None


class BehavioralInfoCreate(Payload):
    child_id: NonEmptyStr
    day: date
    category: NonEmptyStr
    description: NonEmptyStr


class BehavioralInfoUpdate(Payload):
    day: Optional[date] = None
    category: Optional[NonEmptyStr] = None
    description: Optional[NonEmptyStr] = None


class PickupRecordCreate(Payload):
    child_id: NonEmptyStr
    pickup_date: date
    pickup_time: datetime
    authorized_person: NonEmptyStr
    verification_method: Optional[str] = None
    notes: Optional[str] = None


class PickupRecordUpdate(Payload):
    pickup_date: Optional[date] = None
    pickup_time: Optional[datetime] = None
    authorized_person: Optional[NonEmptyStr] = None
    verification_method: Optional[str] = None
    notes: Optional[str] = None


class AuthorizedPersonFields(Payload):
    name: NonEmptyStr
    surname: NonEmptyStr
    relation: NonEmptyStr
    phone: Optional[str] = None
    id_number: Optional[str] = None


class AuthorizedPersonCreate(AuthorizedPersonFields):
    child_id: NonEmptyStr


class AuthorizedPersonUpdate(Payload):
    name: Optional[NonEmptyStr] = None
    surname: Optional[NonEmptyStr] = None
    relation: Optional[NonEmptyStr] = None
    phone: Optional[str] = None
    id_number: Optional[str] = None
    is_active: Optional[bool] = None


class PickupVerifyPayload(Payload):
    code: str
    child_id: NonEmptyStr
    authorized_person: Optional[str] = None


class GroupAssignment(Payload):
    group_id: Optional[str] = None


__all__ = [
    "AttendanceCreate",
    "AttendanceUpdate",
    "AuthorizedPersonCreate",
    "AuthorizedPersonFields",
    "AuthorizedPersonUpdate",
    "BehavioralInfoCreate",
    "BehavioralInfoUpdate",
    "ChildCreate",
    "ChildUpdate",
    "ChronicDiseaseCreate",
    "ChronicDiseaseUpdate",
    "ConsentCreate",
    "ConsentUpdate",
    "GroupAssignment",
    "LoginPayload",
    "MedicationCreate",
    "MedicationUpdate",
    "PaymentCreate",
    "PaymentUpdate",
    "PickupRecordCreate",
    "PickupRecordUpdate",
    "PickupVerifyPayload",
]
