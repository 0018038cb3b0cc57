"""
Wire protocol for the propagation channel.

Client -> server:
    {"type": "join_tenant", "tenantId": "..."}
    {"type": "leave_tenant"}

Server -> client:
    {"type": "rbac_updated"}
    {"type": "joined", "tenantId": "..."}
    {"type": "join_rejected", "tenantId": "..."}

rbac_updated carries no payload: it only means "re-resolve now".
Unknown or malformed messages are ignored. Clients may also send the
snake_case "tenant_id" key.
"""

import json
import logging
from enum import Enum
from typing import Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

logger = logging.getLogger(__name__)


class MessageType(str, Enum):
    JOIN_TENANT = "join_tenant"
    LEAVE_TENANT = "leave_tenant"
    RBAC_UPDATED = "rbac_updated"
    JOINED = "joined"
    JOIN_REJECTED = "join_rejected"


# =============================================================================
# Client Messages
# =============================================================================


class JoinTenant(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["join_tenant"] = "join_tenant"
    tenant_id: str = Field(..., min_length=1, alias="tenantId")


class LeaveTenant(BaseModel):
    type: Literal["leave_tenant"] = "leave_tenant"


ClientMessage = Union[JoinTenant, LeaveTenant]

_CLIENT_MESSAGES = {
    MessageType.JOIN_TENANT.value: JoinTenant,
    MessageType.LEAVE_TENANT.value: LeaveTenant,
}


# =============================================================================
# Server Messages
# =============================================================================


class RbacUpdated(BaseModel):
    type: Literal["rbac_updated"] = "rbac_updated"


class Joined(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["joined"] = "joined"
    tenant_id: str = Field(..., alias="tenantId")


class JoinRejected(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["join_rejected"] = "join_rejected"
    tenant_id: str = Field(..., alias="tenantId")


RBAC_UPDATED: Dict[str, Any] = RbacUpdated().model_dump()


def parse_client_message(raw: Union[str, bytes, Dict[str, Any]]) -> Optional[ClientMessage]:
    """
    Parse a message received from a client.

    Returns None for anything that is not a well-formed known message.
    """
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError:
            logger.debug("Ignoring non-JSON channel message")
            return None

    if not isinstance(raw, dict):
        return None

    model = _CLIENT_MESSAGES.get(raw.get("type"))
    if model is None:
        return None

    try:
        return model.model_validate(raw)
    except PydanticValidationError:
        logger.debug(f"Ignoring malformed {raw.get('type')} message")
        return None


def is_rbac_updated(raw: Union[str, bytes, Dict[str, Any]]) -> bool:
    """Check whether a server message is an rbac_updated push."""
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError:
            return False
    return isinstance(raw, dict) and raw.get("type") == MessageType.RBAC_UPDATED.value
