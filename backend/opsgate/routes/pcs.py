from flask import Blueprint, request, abort, current_app
from flask_jwt_extended import jwt_required
from sqlalchemy import select
from opsgate import get_db
from opsgate.constants.pages import PAGE_CATALOG, LANDING_PAGE
from opsgate.constants.roles import Role
from opsgate.decorators.audit import audit_log
from opsgate.decorators.auth import require_page
from opsgate.errors import NotFound, ValidationError
from opsgate.models.authz import RoleRecord
from opsgate.services.pcs import PermissionStore, channel
from opsgate.services.policy import current_context, current_evaluator
from opsgate.services.realtime import hub
from opsgate.utils.listing import version_etag, if_none_match, not_modified

pcs_bp = Blueprint('pcs', __name__)

ADMIN_PAGE = '/admin/pcs'


def _me_payload(ctx, evaluator):
    snapshot = evaluator.snapshot
    return {
        'user_id': ctx.user_id,
        'role': ctx.role.value,
        'status': ctx.status,
        'version': snapshot.version if snapshot else 0,
        'landing_page': LANDING_PAGE,
        'pages': evaluator.permissions(),
    }


@pcs_bp.get('/me')
@jwt_required()
def my_permissions():
    """Effective permissions of the session.

    With ?wait=<seconds> and If-None-Match carrying the current ETag the call
    long-polls until the entry changes (capped by PCS_WATCH_MAX_SECONDS) and
    answers 304 when nothing changed.
    """
    ctx = current_context()
    evaluator = current_evaluator()
    payload = _me_payload(ctx, evaluator)
    etag = version_etag('pcs', payload['version'])
    if if_none_match() == etag:
        try:
            wait = float(request.args.get('wait') or 0)
        except ValueError:
            abort(400, description='wait must be a number of seconds')
        wait = max(0.0, min(wait, float(current_app.config.get('PCS_WATCH_MAX_SECONDS', 25))))
        if wait and not (ctx.is_admin or ctx.is_restricted):
            with hub.subscribe(channel(ctx.user_id), replay=False) as sub:
                evaluator.sync()
                if evaluator.snapshot is None or evaluator.snapshot.version == payload['version']:
                    sub.wait(timeout=wait)
            evaluator.sync()
            payload = _me_payload(ctx, evaluator)
            etag = version_etag('pcs', payload['version'])
        if if_none_match() == etag:
            return not_modified(etag)
    return payload, 200, {'ETag': f'"{etag}"'}


@pcs_bp.get('/me/pages')
@jwt_required()
def my_pages():
    evaluator = current_evaluator()
    return {'data': [p.to_json() for p in evaluator.accessible_pages()]}


@pcs_bp.get('/check')
@jwt_required()
def check_page():
    page = request.args.get('page')
    if not page:
        abort(400, description='page query parameter required')
    return {'page': page, 'allowed': current_evaluator().has_page_permission(page)}


@pcs_bp.get('/catalog')
@jwt_required()
def catalog():
    return {'data': [p.to_json() for p in PAGE_CATALOG]}


# --- Administration ---

def _actor() -> str:
    return str(current_context().user_id)


def _target_store(user_id: int) -> PermissionStore:
    """Store with the target's entry present (created from its role template if needed)."""
    session = get_db()
    record = session.execute(select(RoleRecord).where(RoleRecord.user_id == user_id)).scalar_one_or_none()
    if record is None:
        raise NotFound(f'user {user_id} has no role record')
    if record.role == Role.ADMIN.value:
        raise ValidationError('Admin accounts bypass page permissions')
    store = PermissionStore(session)
    store.ensure_entry(user_id, record.role, actor=_actor())
    return store


def _page_arg() -> str:
    page = (request.json or {}).get('page')
    if not page:
        abort(400, description='page required')
    return page


@pcs_bp.get('/matrix')
@require_page(ADMIN_PAGE)
def matrix():
    return {'data': PermissionStore().matrix()}


@pcs_bp.get('/users/<int:user_id>')
@require_page(ADMIN_PAGE)
def get_user_permissions(user_id: int):
    snapshot = PermissionStore().get(user_id)
    if snapshot is None:
        raise NotFound(f'no PCS entry for user {user_id}')
    return snapshot.to_json()


@pcs_bp.put('/users/<int:user_id>')
@require_page(ADMIN_PAGE)
@audit_log('PCS.REPLACE', entity='PermissionEntry', entity_id_arg='user_id',
           meta_builder=lambda data, rv, a, kw: {'version': data.get('version'), 'count': len(data.get('pages', {}))})
def replace_permissions(user_id: int):
    pages = (request.json or {}).get('pages')
    if not isinstance(pages, dict):
        abort(400, description='pages object required')
    return _target_store(user_id).replace(user_id, pages, _actor()).to_json()


@pcs_bp.post('/users/<int:user_id>/grant')
@require_page(ADMIN_PAGE)
@audit_log('PCS.GRANT', entity='PermissionEntry', entity_id_arg='user_id',
           meta_builder=lambda data, rv, a, kw: {'page': (request.json or {}).get('page'), 'version': data.get('version')})
def grant_page(user_id: int):
    page = _page_arg()
    return _target_store(user_id).grant(user_id, page, _actor()).to_json()


@pcs_bp.post('/users/<int:user_id>/revoke')
@require_page(ADMIN_PAGE)
@audit_log('PCS.REVOKE', entity='PermissionEntry', entity_id_arg='user_id',
           meta_builder=lambda data, rv, a, kw: {'page': (request.json or {}).get('page'), 'version': data.get('version')})
def revoke_page(user_id: int):
    page = _page_arg()
    return _target_store(user_id).revoke(user_id, page, _actor()).to_json()


@pcs_bp.post('/users/<int:user_id>/reset')
@require_page(ADMIN_PAGE)
@audit_log('PCS.RESET', entity='PermissionEntry', entity_id_arg='user_id', meta_keys=['role', 'version'])
def reset_permissions(user_id: int):
    return _target_store(user_id).reset_to_defaults(user_id, _actor()).to_json()


@pcs_bp.post('/bulk')
@require_page(ADMIN_PAGE)
@audit_log('PCS.BULK', entity='PermissionEntry',
           meta_builder=lambda data, rv, a, kw: {'users': [s['user_id'] for s in data.get('data', [])]})
def bulk_update():
    updates = (request.json or {}).get('updates')
    if not isinstance(updates, list) or not updates:
        abort(400, description='updates list required')
    for item in updates:
        if not isinstance(item, dict) or not isinstance(item.get('user_id'), int):
            raise ValidationError('each update needs an integer user_id')
        _target_store(item['user_id'])
    snapshots = PermissionStore().bulk_update(updates, _actor())
    return {'data': [s.to_json() for s in snapshots]}
