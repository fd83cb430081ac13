"""
Tenant Blueprint — the caller's own tenant profile and address.

  GET  /api/v1/tenant
  PUT  /api/v1/tenant
  GET  /api/v1/tenant/address
  PUT  /api/v1/tenant/address          (create or update)
  POST /api/v1/tenant/confirm-email    { "token": "..." }
"""

from flask import Blueprint

from qahub.middleware.permission_required import require_permission
from qahub.services import tenant_service
from qahub.utils.errors import api_ok
from qahub.utils.helpers import db_commit_or_error, json_body, request_scope

tenant_bp = Blueprint("tenant", __name__, url_prefix="/api/v1/tenant")


@tenant_bp.route("", methods=["GET"])
def get_tenant():
    tenant_id, _ = request_scope()
    return api_ok(tenant_service.get_tenant(tenant_id).to_dict())


@tenant_bp.route("", methods=["PUT"])
@require_permission("tenant.manage")
def update_tenant():
    tenant_id, actor_id = request_scope()
    tenant = tenant_service.update_tenant(tenant_id, actor_id, json_body())
    err = db_commit_or_error()
    if err:
        return err
    return api_ok(tenant.to_dict())


@tenant_bp.route("/address", methods=["GET"])
def get_address():
    tenant_id, _ = request_scope()
    address = tenant_service.get_address(tenant_id)
    return api_ok(address.to_dict() if address else None)


@tenant_bp.route("/address", methods=["PUT"])
@require_permission("tenant.manage")
def put_address():
    tenant_id, actor_id = request_scope()
    address = tenant_service.upsert_address(tenant_id, actor_id, json_body())
    err = db_commit_or_error()
    if err:
        return err
    return api_ok(address.to_dict())


@tenant_bp.route("/confirm-email", methods=["POST"])
@require_permission("tenant.manage")
def confirm_email():
    tenant_id, _ = request_scope()
    token = json_body().get("token")
    tenant = tenant_service.confirm_tenant_email(tenant_id, token)
    err = db_commit_or_error()
    if err:
        return err
    return api_ok(tenant.to_dict())
