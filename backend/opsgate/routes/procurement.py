from flask import Blueprint, request
from opsgate.decorators.auth import require_page
from opsgate.services.workflow import preparations
from opsgate.utils.listing import pagination_args, build_list_payload

proc_bp = Blueprint('procurement', __name__)


@proc_bp.get('/preparations')
@require_page('/warehouse/purchase-preparation', '/approvals')
def list_preparations():
    limit, offset = pagination_args()
    rows, total = preparations(status=request.args.get('status'), limit=limit, offset=offset)
    return build_list_payload([p.to_json() for p in rows], total, limit, offset)
