import time
from flask import Blueprint, request, abort, current_app
from flask_jwt_extended import jwt_required
from opsgate.decorators.auth import require_page
from opsgate.services.policy import current_context, current_evaluator
from opsgate.services.workflow import ApprovalEngine, ACTION_APPROVE, ACTION_REJECT
from opsgate.utils.listing import pagination_args, build_list_payload, version_etag, if_none_match, if_match_version, not_modified

req_bp = Blueprint('requests', __name__)


def _engine() -> ApprovalEngine:
    return ApprovalEngine(evaluator_factory=lambda ctx: current_evaluator())


def _flag(name: str) -> bool:
    return (request.args.get(name) or '').lower() in ('1', 'true', 'yes')


@req_bp.post('')
@jwt_required()
def create_request():
    data = request.json or {}
    domain = data.get('domain')
    if not domain:
        abort(400, description='domain required')
    req = _engine().create_request(
        current_context(), domain, data.get('items'),
        priority=data.get('priority') or 'normal', notes=data.get('notes'),
    )
    return req.to_json(include_audit=True), 201


@req_bp.get('')
@jwt_required()
def list_requests():
    limit, offset = pagination_args()
    rows, total = _engine().list_requests(
        current_context(),
        domain=request.args.get('domain'),
        status=request.args.get('status'),
        mine=_flag('mine'),
        limit=limit, offset=offset,
    )
    return build_list_payload([r.to_json() for r in rows], total, limit, offset)


@req_bp.get('/history')
@jwt_required()
def history():
    limit, offset = pagination_args()
    rows, total = _engine().history(
        current_context(), domain=request.args.get('domain'), mine=_flag('mine'), limit=limit, offset=offset,
    )
    return build_list_payload([r.to_json(include_audit=True) for r in rows], total, limit, offset)


@req_bp.get('/queue')
@require_page('/approvals')
def queue():
    """Requests awaiting the caller's decision; supports ?wait= long polling with If-None-Match."""
    ctx = current_context()
    engine = _engine()
    snap = engine.queue_snapshot(ctx.role)
    etag = version_etag('queue', snap.version)
    if if_none_match() == etag:
        try:
            wait = float(request.args.get('wait') or 0)
        except ValueError:
            abort(400, description='wait must be a number of seconds')
        wait = max(0.0, min(wait, float(current_app.config.get('PCS_WATCH_MAX_SECONDS', 25))))
        if wait:
            deadline = time.monotonic() + wait
            with engine.subscribe_queue(ctx.role) as sub:
                latest = sub.wait(timeout=wait)
                while latest is not None and latest.version <= snap.version and time.monotonic() < deadline:
                    latest = sub.wait(timeout=deadline - time.monotonic())
            snap = engine.queue_snapshot(ctx.role)
            etag = version_etag('queue', snap.version)
        if if_none_match() == etag:
            return not_modified(etag)
    return snap.to_json(), 200, {'ETag': f'"{etag}"'}


@req_bp.get('/<int:request_id>')
@jwt_required()
def get_request(request_id: int):
    req = _engine().get(current_context(), request_id)
    return req.to_json(include_audit=True), 200, {'ETag': f'"{version_etag("request", req.version)}"'}


def _decide(request_id: int, action: str):
    data = request.json or {}
    req = _engine().transition(
        current_context(), request_id, action,
        comments=data.get('comments'), reason=data.get('reason'),
        expected_version=if_match_version(),
    )
    return req.to_json(include_audit=True), 200, {'ETag': f'"{version_etag("request", req.version)}"'}


@req_bp.post('/<int:request_id>/approve')
@jwt_required()
def approve(request_id: int):
    return _decide(request_id, ACTION_APPROVE)


@req_bp.post('/<int:request_id>/reject')
@jwt_required()
def reject(request_id: int):
    return _decide(request_id, ACTION_REJECT)
