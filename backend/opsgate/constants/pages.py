"""Page catalog and per-role default grants (the PCS templates).
Extend cautiously; a page path referenced by a template must exist in the catalog.
"""
from __future__ import annotations
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, FrozenSet, List, Mapping, Tuple

from opsgate.constants.roles import Role

LANDING_PAGE = '/dashboard'


@dataclass(frozen=True)
class Page:
    path: str
    name: str
    category: str
    description: str = ''

    def to_json(self):
        return {'path': self.path, 'name': self.name, 'category': self.category, 'description': self.description}


# (path, name, description) grouped by category, in menu order
_CATALOG_SOURCE: Dict[str, List[Tuple[str, str, str]]] = {
    'General': [
        (LANDING_PAGE, 'Dashboard', 'Main dashboard view'),
    ],
    'Admin': [
        ('/admin/users', 'User Management', 'Manage system users'),
        ('/admin/users/add', 'Add User', 'Add new users'),
        ('/admin/suppliers', 'Supplier Management', 'Manage suppliers'),
        ('/admin/suppliers/add', 'Add Supplier', 'Add new suppliers'),
        ('/admin/products', 'Product Management', 'Manage products'),
        ('/admin/materials', 'Material Management', 'Manage materials'),
        ('/admin/data-entry', 'Data Entry', 'Data entry dashboard'),
        ('/admin/data-entry/add-product', 'Add Product', 'Add new products'),
        ('/admin/data-entry/add-material', 'Add Material', 'Add new materials'),
        ('/admin/data-entry/material-types', 'Material Types', 'Manage material types'),
        ('/admin/system/data-override', 'System Override', 'System data override'),
        ('/admin/pcs', 'Permission Control', 'Manage user permissions'),
        ('/admin/pcs/sales-history', 'Sales Approval History', 'View sales approval history'),
    ],
    'Admin Reports': [
        ('/admin/reports/supplier-performance', 'Supplier Performance', 'Supplier performance reports'),
        ('/admin/reports/stock-analysis', 'Stock Analysis', 'Stock analysis reports'),
        ('/admin/reports/sales-performance', 'Sales Performance', 'Sales performance reports'),
        ('/admin/reports/packing-material-requests', 'Packing Material Status', 'Packing material request status'),
    ],
    'Warehouse': [
        ('/warehouse/raw-materials', 'Raw Materials', 'Raw materials inventory'),
        ('/warehouse/raw-materials/request', 'Request Raw Materials', 'Request raw materials'),
        ('/warehouse/raw-materials/requests', 'Raw Material Requests', 'View raw material requests'),
        ('/warehouse/packing-materials', 'Packing Materials', 'Packing materials inventory'),
        ('/warehouse/packing-materials/request', 'Request Packing Materials', 'Request packing materials'),
        ('/warehouse/packing-materials/requests', 'Packing Material Requests', 'View packing material requests'),
        ('/warehouse/purchase-orders', 'Purchase Orders', 'Manage purchase orders'),
        ('/warehouse/goods-receipts', 'Goods Receipts', 'Manage goods receipts'),
        ('/warehouse/invoices', 'Invoices & Payments', 'Manage invoices and payments'),
        ('/warehouse/purchase-preparation', 'Purchase Preparation', 'Purchase preparation table'),
        ('/warehouse/qc/grn-list', 'GRN Quality Control', 'GRN quality control'),
        ('/warehouse/production-requests', 'Production Requests', 'Production material requests'),
    ],
    'Production': [
        ('/production/store', 'Production Store', 'Production store inventory'),
        ('/production/batches', 'Batch Management', 'Manage production batches'),
        ('/production/monitor', 'Active Monitor', 'Monitor active batches'),
        ('/production/raw-material-requests', 'Raw Material Requests', 'Raw material requests'),
        ('/production/products/create', 'Create Product', 'Create new products'),
        ('/production/create-batch', 'Create Batch', 'Create production batch'),
        ('/production/handover', 'Handover to Packing', 'Handover to packing area'),
        ('/production/qc-records', 'QC Records', 'Quality control records'),
        ('/production/reports', 'Production Reports', 'Production reports'),
        ('/production/batch-table', 'Batch Table', 'Batch data table'),
        ('/production/products', 'Product Details', 'Product details view'),
        ('/production/products-table', 'Products Table', 'Products data table'),
    ],
    'Packing Area': [
        ('/packing-area/stock', 'Product Stock', 'Packing area stock'),
        ('/packing-area/send-to-fg', 'Send to FG Store', 'Send to finished goods store'),
        ('/packing-area/package-products', 'Package Products', 'Convert bulk to units'),
        ('/packing-area/variants', 'Product Variants', 'Define packaging variants'),
        ('/packing-area/dispatch-history', 'Dispatch History', 'Dispatch history'),
        ('/packing-area/request-materials', 'Request Materials', 'Request packing materials'),
        ('/packing-area/request-products', 'Request Products', 'Request products from production'),
    ],
    'Finished Goods': [
        ('/finished-goods/inventory', 'Inventory', 'Finished goods inventory'),
        ('/finished-goods/storage-locations', 'Storage Locations', 'Storage location management'),
        ('/finished-goods/claim-dispatches', 'Claim Dispatches', 'Claim dispatches from packing'),
        ('/finished-goods/direct-shop-requests', 'Direct Shop Requests', 'Process direct shop requests'),
        ('/finished-goods/pricing', 'Product Pricing', 'Manage product prices'),
        ('/finished-goods/external-dispatches', 'External Dispatches', 'Track external dispatches'),
        ('/finished-goods/price-history', 'Price History', 'View product price history'),
        ('/finished-goods/dispatch-tracking', 'Dispatch Tracking', 'Track all dispatches by recipient'),
        ('/finished-goods/recipient-analytics', 'Recipient Analytics', 'View recipient dispatch analytics'),
        ('/finished-goods/approved-sales', 'Approved Sales Requests', 'Send approved sales to recipients'),
        ('/finished-goods/mobile-requests', 'Mobile App Requests', 'Manage requests from mobile app'),
        ('/finished-goods/stock-movements', 'Stock Movements', 'View detailed stock movement history'),
        ('/finished-goods/expiry-management', 'Expiry Management', 'Manage product expiry dates and alerts'),
        ('/finished-goods/quality-control', 'Quality Control', 'Quality control for finished goods'),
        ('/finished-goods/batch-tracking', 'Batch Tracking', 'Track products by batch numbers'),
        ('/finished-goods/location-management', 'Location Management', 'Advanced storage location management'),
        ('/finished-goods/dispatch-reports', 'Dispatch Reports', 'Generate dispatch reports'),
    ],
    'Packing Materials Store': [
        ('/packing-materials/stock', 'Stock List', 'Packing materials stock'),
        ('/packing-materials/send', 'Send to Packing', 'Send materials to packing area'),
        ('/packing-materials/request-from-warehouse', 'Request from Warehouse', 'Request from warehouse'),
        ('/packing-materials/requests/internal', 'Internal Requests', 'Internal material requests'),
        ('/packing-materials/requests/history', 'Request History', 'Request history'),
        ('/packing-materials/dispatches', 'Dispatch History', 'Dispatch history'),
    ],
    'Head of Operations': [
        ('/approvals', 'Approval Queue', 'Approval queue'),
        ('/approvals/history', 'Request History', 'Request history'),
        ('/approvals/supplier-monitoring', 'Supplier Monitoring', 'Supplier monitoring'),
        ('/approvals/direct-shop-requests', 'Direct Shop Requests', 'Approve direct shop requests'),
    ],
    'Reports': [
        ('/reports', 'Reports', 'General reports view'),
    ],
    'Main Director': [
        ('/direct-shop-requests', 'Direct Shop Requests', 'Review direct shop requests from mobile app'),
    ],
    'Data Entry': [
        ('/data-entry', 'Data Entry Dashboard', 'Data entry dashboard'),
        ('/data-entry/add-product', 'Add Product', 'Add new product'),
        ('/data-entry/add-material', 'Add Material', 'Add new material'),
        ('/data-entry/material-types', 'Material Types', 'Manage material types'),
    ],
}


def build_page_catalog() -> Tuple[Page, ...]:
    pages: List[Page] = []
    for category, entries in _CATALOG_SOURCE.items():
        for path, name, description in entries:
            pages.append(Page(path=path, name=name, category=category, description=description))
    return tuple(pages)


PAGE_CATALOG: Tuple[Page, ...] = build_page_catalog()
CATALOG_PATHS: FrozenSet[str] = frozenset(p.path for p in PAGE_CATALOG)

# Role -> pages granted when a PCS entry is first created. Admin is absent: it bypasses PCS.
ROLE_DEFAULT_PAGES: Mapping[Role, FrozenSet[str]] = MappingProxyType({
    Role.READ_ONLY_ADMIN: frozenset({
        LANDING_PAGE, '/admin/users', '/admin/suppliers', '/reports',
    }),
    Role.WAREHOUSE_STAFF: frozenset({
        LANDING_PAGE,
        '/warehouse/raw-materials', '/warehouse/raw-materials/request', '/warehouse/raw-materials/requests',
        '/warehouse/packing-materials', '/warehouse/packing-materials/request', '/warehouse/packing-materials/requests',
        '/warehouse/purchase-orders', '/warehouse/goods-receipts', '/warehouse/invoices',
        '/warehouse/purchase-preparation', '/warehouse/qc/grn-list', '/warehouse/production-requests',
        '/approvals/history',
    }),
    Role.PRODUCTION_MANAGER: frozenset({
        LANDING_PAGE,
        '/production/store', '/production/batches', '/production/monitor', '/production/raw-material-requests',
        '/production/products/create', '/production/create-batch', '/production/handover', '/production/qc-records',
        '/production/reports', '/production/batch-table', '/production/products', '/production/products-table',
    }),
    Role.PACKING_MATERIALS_STORE_MANAGER: frozenset({
        LANDING_PAGE,
        '/packing-materials/stock', '/packing-materials/requests/internal', '/packing-materials/send',
        '/packing-materials/request-from-warehouse', '/packing-materials/requests/history',
        '/packing-materials/dispatches', '/approvals/history',
    }),
    Role.PACKING_AREA_MANAGER: frozenset({
        LANDING_PAGE,
        '/packing-area/stock', '/packing-area/send-to-fg', '/packing-area/package-products', '/packing-area/variants',
        '/packing-area/dispatch-history', '/packing-area/request-materials', '/packing-area/request-products',
    }),
    Role.FINISHED_GOODS_STORE_MANAGER: frozenset({
        LANDING_PAGE,
        '/finished-goods/inventory', '/finished-goods/storage-locations', '/finished-goods/claim-dispatches',
        '/finished-goods/direct-shop-requests', '/finished-goods/pricing', '/finished-goods/external-dispatches',
        '/finished-goods/price-history', '/finished-goods/dispatch-tracking', '/finished-goods/recipient-analytics',
        '/finished-goods/approved-sales', '/finished-goods/mobile-requests', '/finished-goods/stock-movements',
        '/finished-goods/expiry-management', '/finished-goods/quality-control', '/finished-goods/batch-tracking',
        '/finished-goods/location-management', '/finished-goods/dispatch-reports',
    }),
    Role.HEAD_OF_OPERATIONS: frozenset({
        LANDING_PAGE,
        '/approvals', '/approvals/history', '/approvals/supplier-monitoring', '/approvals/direct-shop-requests',
        '/warehouse/production-requests', '/reports', '/admin/reports/packing-material-requests',
        '/production/products', '/admin/pcs/sales-history',
    }),
    Role.MAIN_DIRECTOR: frozenset({
        LANDING_PAGE,
        '/approvals', '/approvals/history', '/direct-shop-requests', '/reports',
        '/admin/reports/supplier-performance', '/admin/reports/packing-material-requests',
        '/admin/pcs', '/admin/pcs/sales-history',
    }),
    Role.DATA_ENTRY: frozenset({
        LANDING_PAGE,
        '/data-entry', '/data-entry/add-product', '/data-entry/add-material', '/data-entry/material-types',
    }),
})


def default_pages_for(role: Role) -> FrozenSet[str]:
    """Template grants for role; unknown roles get the landing page only."""
    return ROLE_DEFAULT_PAGES.get(role, frozenset({LANDING_PAGE})) | {LANDING_PAGE}


__all__ = [
    'LANDING_PAGE', 'Page', 'PAGE_CATALOG', 'CATALOG_PATHS', 'ROLE_DEFAULT_PAGES',
    'build_page_catalog', 'default_pages_for',
]
