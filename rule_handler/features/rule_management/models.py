import base64
import json
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from rule_handler.core_api.exceptions import InvalidParameterError


class RuleActionType(str, Enum):
    ADD_LABEL = "ADD_LABEL"
    ARCHIVE = "ARCHIVE"
    MARK_AS_READ = "MARK_AS_READ"
    SEND_NOTIFICATION = "SEND_NOTIFICATION"


class RuleAction(BaseModel):
    type: RuleActionType
    params: List[str] = Field(default_factory=list)


class Rule(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    user_id: Optional[str] = Field(default=None, alias="userId")
    name: str
    filter: str = ""
    actions: List[RuleAction] = Field(default_factory=list)  # Empty is allowed, it's a no-op
    description: Optional[str] = None
    enabled: bool = True
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")


class SearchFilter(BaseModel):
    subscription_filter: Optional[str] = None


class EventData(BaseModel):
    """The page change notification a rule evaluation pass is triggered by."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[str] = None
    subscription: Optional[str] = None
    user_id: Optional[str] = Field(default=None, alias="userId")

    @classmethod
    def from_pubsub_message(cls, envelope: Dict[str, Any]) -> "EventData":
        """
        Decodes a Pub/Sub push envelope ({"message": {"data": <base64 JSON>}})
        into EventData. Raises InvalidParameterError if the envelope is malformed.
        """
        message = envelope.get("message") if isinstance(envelope, dict) else None
        if not isinstance(message, dict) or not message.get("data"):
            raise InvalidParameterError("Pub/Sub envelope has no message data.")
        if not isinstance(message["data"], str):
            raise InvalidParameterError("Pub/Sub message data must be a base64 string.")
        try:
            payload = json.loads(base64.b64decode(message["data"]).decode("utf-8"))
        except (ValueError, TypeError) as e:  # binascii, unicode and JSON errors are ValueErrors
            raise InvalidParameterError(
                f"Could not decode Pub/Sub message data: {e}", original_exception=e
            )
        try:
            return cls.model_validate(payload)
        except ValidationError as e:
            raise InvalidParameterError(
                f"Pub/Sub message data is not a valid event: {e.errors()}",
                original_exception=e,
            )
