"""Closed set of principal roles and the departments they belong to.
Never rename a role value silently: it is persisted in role_records and in issued tokens.
"""
from __future__ import annotations
from enum import Enum
from types import MappingProxyType
from typing import Mapping


class Role(str, Enum):
    ADMIN = 'Admin'
    READ_ONLY_ADMIN = 'ReadOnlyAdmin'
    WAREHOUSE_STAFF = 'WarehouseStaff'
    HEAD_OF_OPERATIONS = 'HeadOfOperations'
    MAIN_DIRECTOR = 'MainDirector'
    PRODUCTION_MANAGER = 'ProductionManager'
    PACKING_AREA_MANAGER = 'PackingAreaManager'
    FINISHED_GOODS_STORE_MANAGER = 'FinishedGoodsStoreManager'
    PACKING_MATERIALS_STORE_MANAGER = 'PackingMaterialsStoreManager'
    DATA_ENTRY = 'DataEntry'

    @classmethod
    def parse(cls, raw) -> 'Role':
        """Accept a Role or its string value; raise ValueError otherwise."""
        if isinstance(raw, cls):
            return raw
        return cls(str(raw))


DEFAULT_DEPARTMENTS: Mapping[Role, str] = MappingProxyType({
    Role.ADMIN: 'Admin',
    Role.READ_ONLY_ADMIN: 'Admin',
    Role.WAREHOUSE_STAFF: 'WarehouseOperations',
    Role.HEAD_OF_OPERATIONS: 'HeadOfOperations',
    Role.MAIN_DIRECTOR: 'MainDirector',
    Role.PRODUCTION_MANAGER: 'Production',
    Role.PACKING_AREA_MANAGER: 'PackingArea',
    Role.FINISHED_GOODS_STORE_MANAGER: 'FinishedGoodsStore',
    Role.PACKING_MATERIALS_STORE_MANAGER: 'PackingMaterialsStore',
    Role.DATA_ENTRY: 'DataEntry',
})

# Role record status values
STATUS_ACTIVE = 'active'
STATUS_INACTIVE = 'inactive'
# Assigned by the fail-closed identity fallback; limits access to the landing page
STATUS_RESTRICTED = 'restricted'
ALL_STATUSES = (STATUS_ACTIVE, STATUS_INACTIVE, STATUS_RESTRICTED)

APPROVER_ROLES = frozenset({Role.HEAD_OF_OPERATIONS, Role.MAIN_DIRECTOR})

__all__ = ['Role', 'DEFAULT_DEPARTMENTS', 'STATUS_ACTIVE', 'STATUS_INACTIVE', 'STATUS_RESTRICTED', 'ALL_STATUSES', 'APPROVER_ROLES']
