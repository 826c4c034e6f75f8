from __future__ import annotations

import logging
from datetime import date
from typing import Any, Mapping, Optional, Sequence

from ..common.validators import optional_text, parse_date, require_non_empty
from ..core.enums import Gender
from ..core.exceptions import ValidationError
from ..enrollments.repository import AssociationStore
from .model import Child, ChildDetails, ChildStats

logger = logging.getLogger(__name__)

_STATUS_FILTERS = {"active": True, "archived": False, "all": None}


class ChildService:
    """Use cases: register and edit children."""

    def __init__(self, store: AssociationStore):
        self._store = store

    @staticmethod
    def details_from_payload(data: Mapping[str, Any], *, today: Optional[date] = None) -> ChildDetails:
        first_name = require_non_empty(data.get("first_name", ""), "First name")
        last_name = require_non_empty(data.get("last_name", ""), "Last name")
        birth_date = parse_date(data.get("birth_date"), "Birth date")
        if birth_date > (today or date.today()):
            raise ValidationError("Birth date cannot be in the future")

        gender = None
        raw_gender = optional_text(data.get("gender"))
        if raw_gender:
            try:
                gender = Gender(raw_gender.lower())
            except ValueError:
                raise ValidationError("Gender must be 'male' or 'female'")

        return ChildDetails(
            first_name=first_name,
            last_name=last_name,
            birth_date=birth_date,
            gender=gender,
            medical_info=optional_text(data.get("medical_info")),
            allergies=optional_text(data.get("allergies")),
            emergency_contact_name=optional_text(data.get("emergency_contact_name")),
            emergency_contact_phone=optional_text(data.get("emergency_contact_phone")),
        )

    def create_child(self, data: Mapping[str, Any]) -> Child:
        child = self._store.create_child(self.details_from_payload(data))
        logger.info("child %s registered", child.child_id)
        return child

    def update_child(self, child_id: int, data: Mapping[str, Any]) -> Child:
        # Partial updates: missing keys keep their current value.
        current = ChildDetails.of(self._store.find_child(child_id))
        merged = {
            "first_name": current.first_name,
            "last_name": current.last_name,
            "birth_date": current.birth_date,
            "gender": current.gender.value if current.gender else None,
            "medical_info": current.medical_info,
            "allergies": current.allergies,
            "emergency_contact_name": current.emergency_contact_name,
            "emergency_contact_phone": current.emergency_contact_phone,
        }
        merged.update({k: v for k, v in data.items() if k in merged})
        return self._store.update_child(child_id, self.details_from_payload(merged))

    def get_child(self, child_id: int) -> Child:
        return self._store.find_child(child_id)

    def list_children(self, status: str = "active") -> Sequence[Child]:
        key = (status or "active").strip().lower()
        if key not in _STATUS_FILTERS:
            raise ValidationError("status must be one of: active, archived, all")
        return self._store.list_children(active=_STATUS_FILTERS[key])

    def stats(self, today: Optional[date] = None) -> ChildStats:
        return self._store.child_stats(today or date.today())
