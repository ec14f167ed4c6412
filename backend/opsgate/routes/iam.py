from flask import Blueprint, request, abort, current_app
from flask_jwt_extended import create_access_token, jwt_required
from sqlalchemy import select, func
from opsgate import get_db
from opsgate.constants.roles import Role, DEFAULT_DEPARTMENTS, ALL_STATUSES, STATUS_ACTIVE, STATUS_INACTIVE
from opsgate.decorators.audit import audit_log
from opsgate.decorators.auth import require_role
from opsgate.errors import NotFound, PermissionDenied, ValidationError
from opsgate.models.audit import AuditLog
from opsgate.models.authz import User, RoleRecord
from opsgate.services.identity import IdentityResolver, Principal, SessionContext
from opsgate.services.pcs import PermissionStore
from opsgate.services.policy import current_context, current_evaluator, evaluators
from opsgate.utils.listing import pagination_args, build_list_payload

iam_bp = Blueprint('iam', __name__)


def _parse_role(raw) -> Role:
    try:
        return Role.parse(raw)
    except ValueError:
        raise ValidationError(f'unknown role {raw}')


@iam_bp.post('/auth/login')
def login():
    data = request.json or {}
    email = data.get('email'); password = data.get('password')
    if not email or not password:
        abort(400, description='email & password required')
    session = get_db()
    user = session.execute(select(User).where(User.email == email)).scalar_one_or_none()
    if not user or not user.verify_password(password):
        abort(401, description='invalid credentials')
    if not user.is_active:
        raise PermissionDenied('account disabled')
    principal = Principal(user.id, user.email, user.name)
    resolver = IdentityResolver.from_config(current_app.config, session=session)
    record = resolver.resolve(principal)
    if record.status == STATUS_INACTIVE:
        raise PermissionDenied('account inactive, contact an administrator')
    ctx = SessionContext.from_record(principal, record)
    # JWT identity must be a string (flask-jwt-extended v4 requirement)
    token = create_access_token(identity=str(user.id), additional_claims=ctx.claims())
    return {'access_token': token, 'user': {'id': user.id, **ctx.claims()}}


@iam_bp.get('/auth/me')
@jwt_required()
def me():
    ctx = current_context()
    evaluator = current_evaluator()
    return {
        'id': ctx.user_id,
        **ctx.claims(),
        'pages': evaluator.permissions(),
    }


@iam_bp.post('/auth/logout')
@jwt_required()
def logout():
    evaluators.drop(current_context().user_id)
    return {'status': 'ok'}


# --- User administration ---

@iam_bp.get('/users')
@require_role(Role.ADMIN, Role.READ_ONLY_ADMIN)
def list_users():
    session = get_db()
    limit, offset = pagination_args()
    total = session.execute(select(func.count(User.id))).scalar_one()
    rows = session.execute(select(User).order_by(User.id.asc()).offset(offset).limit(limit)).scalars().all()
    return build_list_payload([u.to_json() for u in rows], total, limit, offset)


@iam_bp.post('/users')
@require_role(Role.ADMIN)
@audit_log('USER.CREATE', entity='User', entity_id_key='id', meta_keys=['email', 'role'])
def create_user():
    data = request.json or {}
    email = (data.get('email') or '').strip().lower()
    password = data.get('password')
    name = (data.get('name') or '').strip()
    if not email or not password or not name:
        abort(400, description='name, email & password required')
    session = get_db()
    if session.execute(select(User).where(User.email == email)).scalar_one_or_none():
        abort(400, description='email already registered')
    role = _parse_role(data['role']) if data.get('role') else None
    user = User(name=name, email=email)
    user.set_password(password)
    if role is not None:
        user.role_record = RoleRecord(
            role=role.value, department=data.get('department') or DEFAULT_DEPARTMENTS[role],
            status=STATUS_ACTIVE, name=name,
        )
    session.add(user)
    session.commit()
    if role is not None and role != Role.ADMIN:
        PermissionStore(session).ensure_entry(user.id, role, actor=str(current_context().user_id))
    return user.to_json(), 201


@iam_bp.put('/users/<int:user_id>/role')
@require_role(Role.ADMIN)
@audit_log(
    'USER.ROLE.SET',
    entity='User',
    entity_id_arg='user_id',
    meta_builder=lambda data, rv, a, kw: {k: data.get(k) for k in ('role', 'department', 'status', 'previous_role')},
)
def set_user_role(user_id: int):
    data = request.json or {}
    session = get_db()
    user = session.get(User, user_id)
    if user is None:
        raise NotFound('user not found')
    role = _parse_role(data.get('role'))
    status = data.get('status') or STATUS_ACTIVE
    if status not in ALL_STATUSES:
        raise ValidationError(f'unknown status {status}')
    department = data.get('department') or DEFAULT_DEPARTMENTS[role]
    record = session.execute(select(RoleRecord).where(RoleRecord.user_id == user_id)).scalar_one_or_none()
    previous = record.role if record else None
    if record is None:
        record = RoleRecord(user_id=user_id, name=user.name, role=role.value, department=department, status=status)
        session.add(record)
    else:
        record.role, record.department, record.status = role.value, department, status
    session.commit()
    actor = str(current_context().user_id)
    store = PermissionStore(session)
    if role != Role.ADMIN:
        snapshot = store.ensure_entry(user_id, role, actor=actor)
        # the stored map still carries the previous role's template pages
        retemplate = snapshot.role != role.value and not data.get('keep_permissions')
        if data.get('reset_permissions') or retemplate:
            store.reset_to_defaults(user_id, actor, role=role)
    # live sessions of that user keep their token claims until re-login
    evaluators.drop(user_id)
    return {'id': user_id, 'previous_role': previous, **record.to_json()}


@iam_bp.get('/audit/logs')
@require_role(Role.ADMIN, Role.READ_ONLY_ADMIN)
def list_audit_logs():
    session = get_db()
    limit, offset = pagination_args()
    stmt = select(AuditLog)
    action = request.args.get('action')
    if action:
        stmt = stmt.where(AuditLog.action == action)
    entity_id = request.args.get('entity_id')
    if entity_id:
        stmt = stmt.where(AuditLog.entity_id == entity_id)
    total = session.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
    rows = session.execute(stmt.order_by(AuditLog.id.desc()).offset(offset).limit(limit)).scalars().all()
    return build_list_payload([r.to_json() for r in rows], total, limit, offset)
