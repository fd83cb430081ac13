"""
Blueprint registry.
"""


def register_blueprints(app):
    from qahub.blueprints.admin_bp import admin_bp
    from qahub.blueprints.audit_bp import audit_bp
    from qahub.blueprints.auth_bp import auth_bp, login_bp
    from qahub.blueprints.defects_bp import defects_bp
    from qahub.blueprints.health_bp import health_bp
    from qahub.blueprints.projects_bp import projects_bp
    from qahub.blueprints.requirements_bp import requirements_bp
    from qahub.blueprints.search_bp import search_bp
    from qahub.blueprints.tenant_bp import tenant_bp
    from qahub.blueprints.testing_bp import testing_bp
    from qahub.blueprints.users_bp import users_bp

    for bp in (
        health_bp,
        login_bp,
        auth_bp,
        tenant_bp,
        users_bp,
        projects_bp,
        testing_bp,
        defects_bp,
        requirements_bp,
        search_bp,
        admin_bp,
        audit_bp,
    ):
        app.register_blueprint(bp)
