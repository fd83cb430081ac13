"""
Testing Blueprint — suites, folders, test cases, runs and results.

Suites    GET/POST /projects/<project_id>/testsuites
          GET/PUT/DELETE /testsuites/<suite_id>, POST /testsuites/<suite_id>/restore
Folders   GET/POST /projects/<project_id>/testfolders
          GET/PUT/DELETE /testfolders/<folder_id>
Cases     GET/POST /testsuites/<suite_id>/testcases
          GET/PUT/DELETE /testcases/<case_id>
          GET /testsuites/<suite_id>/testcases/export      (CSV download)
          POST /testsuites/<suite_id>/testcases/import     (CSV upload)
          POST /testcases/<case_id>/copy, POST /testcases/<case_id>/move
Runs      GET/POST /projects/<project_id>/testruns
          GET/PUT/DELETE /testruns/<run_id>
Results   GET/POST /testruns/<run_id>/results, PUT /testruns/<run_id>/results/bulk
          GET/PUT /testrunresults/<result_id>

All paths are under /api/v1.
"""

from flask import Blueprint, Response, request

from qahub.core.exceptions import ValidationError
from qahub.middleware.permission_required import require_permission
from qahub.services import (
    test_case_service,
    test_folder_service,
    test_run_result_service,
    test_run_service,
    test_suite_service,
)
from qahub.services.scope_resolver import (
    case_scope,
    folder_scope,
    project_arg,
    result_scope,
    run_scope,
    suite_scope,
)
from qahub.utils.errors import api_ok, api_page
from qahub.utils.helpers import (
    db_commit_or_error,
    json_body,
    pagination_args,
    request_scope,
    uploaded_text,
)

testing_bp = Blueprint("testing", __name__, url_prefix="/api/v1")

project_scope = project_arg("project_id")


def _committed(payload, status=200):
    err = db_commit_or_error()
    if err:
        return err
    return api_ok(payload, status=status)


# ═════════════════════════════════════════════════════════════════════════════
# TEST SUITES
# ═════════════════════════════════════════════════════════════════════════════

@testing_bp.route("/projects/<project_id>/testsuites", methods=["GET"])
@require_permission("testsuites.view", scope=project_scope)
def list_suites(project_id):
    tenant_id, _ = request_scope()
    limit, offset = pagination_args()
    items, total = test_suite_service.list_suites(
        tenant_id, project_id, parent_suite_id=request.args.get("parent_suite_id"),
        limit=limit, offset=offset,
    )
    return api_page(items, total, limit, offset)


@testing_bp.route("/projects/<project_id>/testsuites", methods=["POST"])
@require_permission("testsuites.manage", scope=project_scope)
def create_suite(project_id):
    tenant_id, actor_id = request_scope()
    suite = test_suite_service.create_suite(tenant_id, actor_id, project_id, json_body())
    return _committed(suite.to_dict(), status=201)


@testing_bp.route("/testsuites/<suite_id>", methods=["GET"])
@require_permission("testsuites.view", scope=suite_scope)
def get_suite(suite_id):
    tenant_id, _ = request_scope()
    return api_ok(test_suite_service.get_suite(tenant_id, suite_id).to_dict())


@testing_bp.route("/testsuites/<suite_id>", methods=["PUT"])
@require_permission("testsuites.manage", scope=suite_scope)
def update_suite(suite_id):
    tenant_id, actor_id = request_scope()
    suite = test_suite_service.update_suite(tenant_id, actor_id, suite_id, json_body())
    return _committed(suite.to_dict())


@testing_bp.route("/testsuites/<suite_id>", methods=["DELETE"])
@require_permission("testsuites.manage", scope=suite_scope)
def delete_suite(suite_id):
    tenant_id, actor_id = request_scope()
    changed = test_suite_service.delete_suite(tenant_id, actor_id, suite_id)
    return _committed({"id": suite_id, "deleted": True, "changed": changed})


@testing_bp.route("/testsuites/<suite_id>/restore", methods=["POST"])
@require_permission("testsuites.manage", scope=suite_scope)
def restore_suite(suite_id):
    tenant_id, actor_id = request_scope()
    suite = test_suite_service.restore_suite(tenant_id, actor_id, suite_id)
    return _committed(suite.to_dict())


# ═════════════════════════════════════════════════════════════════════════════
# TEST FOLDERS
# ═════════════════════════════════════════════════════════════════════════════

@testing_bp.route("/projects/<project_id>/testfolders", methods=["GET"])
@require_permission("testsuites.view", scope=project_scope)
def list_folders(project_id):
    tenant_id, _ = request_scope()
    limit, offset = pagination_args()
    items, total = test_folder_service.list_folders(tenant_id, project_id, limit=limit, offset=offset)
    return api_page(items, total, limit, offset)


@testing_bp.route("/projects/<project_id>/testfolders", methods=["POST"])
@require_permission("testsuites.manage", scope=project_scope)
def create_folder(project_id):
    tenant_id, actor_id = request_scope()
    folder = test_folder_service.create_folder(tenant_id, actor_id, project_id, json_body())
    return _committed(folder.to_dict(), status=201)


@testing_bp.route("/testfolders/<folder_id>", methods=["GET"])
@require_permission("testsuites.view", scope=folder_scope)
def get_folder(folder_id):
    tenant_id, _ = request_scope()
    return api_ok(test_folder_service.get_folder(tenant_id, folder_id).to_dict())


@testing_bp.route("/testfolders/<folder_id>", methods=["PUT"])
@require_permission("testsuites.manage", scope=folder_scope)
def update_folder(folder_id):
    tenant_id, actor_id = request_scope()
    folder = test_folder_service.update_folder(tenant_id, actor_id, folder_id, json_body())
    return _committed(folder.to_dict())


@testing_bp.route("/testfolders/<folder_id>", methods=["DELETE"])
@require_permission("testsuites.manage", scope=folder_scope)
def delete_folder(folder_id):
    tenant_id, actor_id = request_scope()
    changed = test_folder_service.delete_folder(tenant_id, actor_id, folder_id)
    return _committed({"id": folder_id, "deleted": True, "changed": changed})


# ═════════════════════════════════════════════════════════════════════════════
# TEST CASES
# ═════════════════════════════════════════════════════════════════════════════

@testing_bp.route("/testsuites/<suite_id>/testcases", methods=["GET"])
@require_permission("testcases.view", scope=suite_scope)
def list_test_cases(suite_id):
    tenant_id, _ = request_scope()
    limit, offset = pagination_args()
    items, total = test_case_service.list_test_cases(
        tenant_id, suite_id,
        folder_id=request.args.get("folder_id"),
        priority=request.args.get("priority"),
        tag=request.args.get("tag"),
        limit=limit, offset=offset,
    )
    return api_page(items, total, limit, offset)


@testing_bp.route("/testsuites/<suite_id>/testcases", methods=["POST"])
@require_permission("testcases.manage", scope=suite_scope)
def create_test_case(suite_id):
    tenant_id, actor_id = request_scope()
    case = test_case_service.create_test_case(tenant_id, actor_id, suite_id, json_body())
    return _committed(case.to_dict(), status=201)


@testing_bp.route("/testsuites/<suite_id>/testcases/export", methods=["GET"])
@require_permission("testcases.view", scope=suite_scope)
def export_test_cases(suite_id):
    tenant_id, _ = request_scope()
    content = test_case_service.export_test_cases_csv(tenant_id, suite_id)
    return Response(
        content,
        mimetype="text/csv",
        headers={"Content-Disposition": f"attachment; filename=testcases_{suite_id}.csv"},
    )


@testing_bp.route("/testsuites/<suite_id>/testcases/import", methods=["POST"])
@require_permission("testcases.manage", scope=suite_scope)
def import_test_cases(suite_id):
    tenant_id, actor_id = request_scope()
    content = uploaded_text()
    if not content:
        raise ValidationError("CSV file is required", details={"file": "upload a file or send csv_content"})
    cases = test_case_service.import_test_cases_csv(tenant_id, actor_id, suite_id, content)
    err = db_commit_or_error()
    if err:
        return err
    return api_ok([c.to_dict() for c in cases], status=201, meta={"total": len(cases)})


@testing_bp.route("/testcases/<case_id>", methods=["GET"])
@require_permission("testcases.view", scope=case_scope)
def get_test_case(case_id):
    tenant_id, _ = request_scope()
    return api_ok(test_case_service.get_test_case(tenant_id, case_id).to_dict())


@testing_bp.route("/testcases/<case_id>", methods=["PUT"])
@require_permission("testcases.manage", scope=case_scope)
def update_test_case(case_id):
    tenant_id, actor_id = request_scope()
    case = test_case_service.update_test_case(tenant_id, actor_id, case_id, json_body())
    return _committed(case.to_dict())


@testing_bp.route("/testcases/<case_id>", methods=["DELETE"])
@require_permission("testcases.manage", scope=case_scope)
def delete_test_case(case_id):
    tenant_id, actor_id = request_scope()
    changed = test_case_service.delete_test_case(tenant_id, actor_id, case_id)
    return _committed({"id": case_id, "deleted": True, "changed": changed})


@testing_bp.route("/testcases/<case_id>/copy", methods=["POST"])
@require_permission("testcases.manage", scope=case_scope)
def copy_test_case(case_id):
    tenant_id, actor_id = request_scope()
    copy = test_case_service.copy_test_case(tenant_id, actor_id, case_id, json_body())
    return _committed(copy.to_dict(), status=201)


@testing_bp.route("/testcases/<case_id>/move", methods=["POST"])
@require_permission("testcases.manage", scope=case_scope)
def move_test_case(case_id):
    tenant_id, actor_id = request_scope()
    case = test_case_service.move_test_case(tenant_id, actor_id, case_id, json_body())
    return _committed(case.to_dict())


# ═════════════════════════════════════════════════════════════════════════════
# TEST RUNS
# ═════════════════════════════════════════════════════════════════════════════

@testing_bp.route("/projects/<project_id>/testruns", methods=["GET"])
@require_permission("testruns.view", scope=project_scope)
def list_runs(project_id):
    tenant_id, _ = request_scope()
    limit, offset = pagination_args()
    items, total = test_run_service.list_runs(
        tenant_id, project_id, assigned_tester_id=request.args.get("assigned_tester_id"),
        limit=limit, offset=offset,
    )
    return api_page(items, total, limit, offset)


@testing_bp.route("/projects/<project_id>/testruns", methods=["POST"])
@require_permission("testruns.manage", scope=project_scope)
def create_run(project_id):
    tenant_id, actor_id = request_scope()
    run = test_run_service.create_run(tenant_id, actor_id, project_id, json_body())
    return _committed(run.to_dict(), status=201)


@testing_bp.route("/testruns/<run_id>", methods=["GET"])
@require_permission("testruns.view", scope=run_scope)
def get_run(run_id):
    tenant_id, _ = request_scope()
    return api_ok(test_run_service.get_run(tenant_id, run_id).to_dict())


@testing_bp.route("/testruns/<run_id>", methods=["PUT"])
@require_permission("testruns.manage", scope=run_scope)
def update_run(run_id):
    tenant_id, actor_id = request_scope()
    run = test_run_service.update_run(tenant_id, actor_id, run_id, json_body())
    return _committed(run.to_dict())


@testing_bp.route("/testruns/<run_id>", methods=["DELETE"])
@require_permission("testruns.manage", scope=run_scope)
def delete_run(run_id):
    tenant_id, actor_id = request_scope()
    changed = test_run_service.delete_run(tenant_id, actor_id, run_id)
    return _committed({"id": run_id, "deleted": True, "changed": changed})


# ═════════════════════════════════════════════════════════════════════════════
# TEST RUN RESULTS
# ═════════════════════════════════════════════════════════════════════════════

@testing_bp.route("/testruns/<run_id>/results", methods=["GET"])
@require_permission("testruns.view", scope=run_scope)
def list_results(run_id):
    tenant_id, _ = request_scope()
    limit, offset = pagination_args()
    items, total = test_run_result_service.list_results(
        tenant_id, run_id, status=request.args.get("status"), limit=limit, offset=offset,
    )
    return api_page(items, total, limit, offset)


@testing_bp.route("/testruns/<run_id>/results", methods=["POST"])
@require_permission("testruns.execute", scope=run_scope)
def record_result(run_id):
    tenant_id, actor_id = request_scope()
    result = test_run_result_service.record_result(tenant_id, actor_id, run_id, json_body())
    return _committed(result.to_dict(), status=201)


@testing_bp.route("/testruns/<run_id>/results/bulk", methods=["PUT"])
@require_permission("testruns.execute", scope=run_scope)
def bulk_update_results(run_id):
    """Body: {"results": [{"id": .., "status": .., "comments": ..}, ...]}"""
    tenant_id, actor_id = request_scope()
    results = test_run_result_service.bulk_update_results(
        tenant_id, actor_id, run_id, json_body().get("results"),
    )
    return _committed([r.to_dict() for r in results])


@testing_bp.route("/testrunresults/<result_id>", methods=["GET"])
@require_permission("testruns.view", scope=result_scope)
def get_result(result_id):
    tenant_id, _ = request_scope()
    return api_ok(test_run_result_service.get_result(tenant_id, result_id).to_dict())


@testing_bp.route("/testrunresults/<result_id>", methods=["PUT"])
@require_permission("testruns.execute", scope=result_scope)
def update_result(result_id):
    tenant_id, actor_id = request_scope()
    result = test_run_result_service.update_result(tenant_id, actor_id, result_id, json_body())
    return _committed(result.to_dict())
