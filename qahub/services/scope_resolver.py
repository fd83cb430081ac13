"""
Scope resolvers — map a request to the project an operation targets.

``require_permission`` accepts an optional resolver; a resolver is called
as ``resolver(tenant_id, view_kwargs)`` and returns a project id, or None
for a tenant-level target.

    @require_permission("testcases.manage", scope=project_of(TestCase, "case_id"))
    def update_case(case_id): ...

Lookups include soft-deleted rows so restore endpoints resolve the same
project as the delete did. An unknown id resolves to None, which only a
tenant-wide role covers; the handler then answers 404.
"""

from flask import request

from qahub.core.exceptions import NotFoundError
from qahub.models.project import Project
from qahub.models.requirement import Requirement
from qahub.models.testing import Defect, TestCase, TestFolder, TestRun, TestRunResult, TestSuite
from qahub.services import defect_service
from qahub.services.helpers.scoped_queries import get_scoped


def _lookup(model, pk, tenant_id):
    try:
        return get_scoped(model, pk, tenant_id=tenant_id, include_deleted=True)
    except NotFoundError:
        return None


def _project_id(tenant_id, obj):
    if obj is None:
        return None
    if isinstance(obj, Project):
        return obj.id
    if isinstance(obj, TestCase):
        return _project_id(tenant_id, _lookup(TestSuite, obj.test_suite_id, tenant_id))
    if isinstance(obj, TestRunResult):
        return _project_id(tenant_id, _lookup(TestRun, obj.test_run_id, tenant_id))
    if isinstance(obj, Defect):
        return defect_service.project_id_of(tenant_id, obj)
    # TestSuite, TestFolder, TestRun, Requirement
    return getattr(obj, "project_id", None)


def project_arg(arg="project_id"):
    """The project id is a URL argument."""
    def resolve(tenant_id, view_kwargs):
        return view_kwargs.get(arg)
    return resolve


def project_of(model, arg):
    """The project owning the ``model`` row whose id is URL argument ``arg``."""
    def resolve(tenant_id, view_kwargs):
        return _project_id(tenant_id, _lookup(model, view_kwargs.get(arg), tenant_id))
    return resolve


def defect_target(tenant_id, view_kwargs):
    """Project of a defect being created, taken from the links in the body."""
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        return None
    case_id = body.get("test_case_id")
    if isinstance(case_id, str):
        project_id = _project_id(tenant_id, _lookup(TestCase, case_id, tenant_id))
        if project_id:
            return project_id
    result_id = body.get("test_run_result_id")
    if isinstance(result_id, str):
        return _project_id(tenant_id, _lookup(TestRunResult, result_id, tenant_id))
    return None


suite_scope = project_of(TestSuite, "suite_id")
folder_scope = project_of(TestFolder, "folder_id")
case_scope = project_of(TestCase, "case_id")
run_scope = project_of(TestRun, "run_id")
result_scope = project_of(TestRunResult, "result_id")
defect_scope = project_of(Defect, "defect_id")
requirement_scope = project_of(Requirement, "requirement_id")
