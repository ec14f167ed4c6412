from flask import Blueprint, request
from flask_jwt_extended import jwt_required
from opsgate import get_db
from opsgate.services import notifications as notification_service
from opsgate.services.policy import current_context
from opsgate.utils.listing import pagination_args, build_list_payload

ntf_bp = Blueprint('notifications', __name__)


@ntf_bp.get('')
@jwt_required()
def list_notifications():
    limit, offset = pagination_args()
    unread = (request.args.get('unread') or '').lower() in ('1', 'true', 'yes')
    rows, total = notification_service.list_for(get_db(), current_context().user_id, unread_only=unread, limit=limit, offset=offset)
    return build_list_payload([n.to_json() for n in rows], total, limit, offset)


@ntf_bp.post('/<int:notification_id>/read')
@jwt_required()
def mark_read(notification_id: int):
    n = notification_service.mark_read(get_db(), current_context().user_id, notification_id)
    return n.to_json()
