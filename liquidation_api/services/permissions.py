"""
Actor + role -> capability table.

Routes build an ``Actor`` from the JWT claims and pass it to every service
call explicitly; services never reach for a request-global user.
"""

from dataclasses import dataclass, field
from typing import Optional
import uuid

# Capabilities
SUBMIT_LIQUIDATION = "submit_liquidation"
ENDORSE_TO_ACCOUNTING = "endorse_to_accounting"
RETURN_APPLICATION = "return_application"
ENDORSE_TO_COA = "endorse_to_coa"
RETURN_TO_RC = "return_to_rc"
CREATE_LIQUIDATION = "create_liquidation"
EDIT_LIQUIDATION = "edit_liquidation"
DELETE_LIQUIDATION = "delete_liquidation"
VIEW_LIQUIDATION = "view_liquidation"
MANAGE_ALL_LIQUIDATIONS = "manage_all_liquidations"
MANAGE_RUNNING_DATA = "manage_running_data"
BULK_IMPORT_LIQUIDATIONS = "bulk_import_liquidations"
REGION_SCOPED = "region_scoped"
MANAGE_REFERENCE_DATA = "manage_reference_data"
VIEW_ACTIVITY_LOGS = "view_activity_logs"

ROLE_SUPER_ADMIN = "super_admin"
ROLE_ADMIN = "admin"
ROLE_HEI = "hei"
ROLE_REGIONAL_COORDINATOR = "regional_coordinator"
ROLE_ACCOUNTANT = "accountant"

_ADMIN_CAPABILITIES = frozenset({
    SUBMIT_LIQUIDATION,
    ENDORSE_TO_ACCOUNTING,
    RETURN_APPLICATION,
    ENDORSE_TO_COA,
    RETURN_TO_RC,
    CREATE_LIQUIDATION,
    EDIT_LIQUIDATION,
    DELETE_LIQUIDATION,
    VIEW_LIQUIDATION,
    MANAGE_ALL_LIQUIDATIONS,
    MANAGE_RUNNING_DATA,
    BULK_IMPORT_LIQUIDATIONS,
    MANAGE_REFERENCE_DATA,
    VIEW_ACTIVITY_LOGS,
})

ROLE_CAPABILITIES: dict[str, frozenset[str]] = {
    ROLE_SUPER_ADMIN: _ADMIN_CAPABILITIES,
    ROLE_ADMIN: _ADMIN_CAPABILITIES,
    # HEI users create only for their own HEI (enforced in create_liquidation)
    ROLE_HEI: frozenset({
        CREATE_LIQUIDATION,
        SUBMIT_LIQUIDATION,
        EDIT_LIQUIDATION,
        VIEW_LIQUIDATION,
    }),
    ROLE_REGIONAL_COORDINATOR: frozenset({
        CREATE_LIQUIDATION,
        EDIT_LIQUIDATION,
        DELETE_LIQUIDATION,
        VIEW_LIQUIDATION,
        ENDORSE_TO_ACCOUNTING,
        RETURN_APPLICATION,
        MANAGE_RUNNING_DATA,
        BULK_IMPORT_LIQUIDATIONS,
        REGION_SCOPED,
    }),
    ROLE_ACCOUNTANT: frozenset({
        VIEW_LIQUIDATION,
        ENDORSE_TO_COA,
        RETURN_TO_RC,
    }),
}


@dataclass(frozen=True)
class Actor:
    user_id: uuid.UUID
    role: str
    name: str
    email: Optional[str] = None
    hei_id: Optional[uuid.UUID] = None
    region_id: Optional[uuid.UUID] = None
    extra_capabilities: frozenset[str] = field(default_factory=frozenset)

    @property
    def capabilities(self) -> frozenset[str]:
        return ROLE_CAPABILITIES.get(self.role, frozenset()) | self.extra_capabilities


def has_capability(actor: Actor, capability: str) -> bool:
    return capability in actor.capabilities
