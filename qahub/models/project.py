"""
Project Models — projects and user/project memberships.
"""

from qahub.models import db
from qahub.models.base import TenantModel
from qahub.models.soft_delete import live_unique_index


class Project(TenantModel):
    __tablename__ = "projects"

    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text)

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "description": self.description,
            **self.stamps_dict(),
        }


class UserProject(TenantModel):
    """Membership of a user in a project, with free-form preferences."""

    __tablename__ = "user_projects"
    __table_args__ = (
        live_unique_index("uq_user_projects_live", "user_id", "project_id"),
    )

    user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False, index=True)
    project_id = db.Column(db.String(36), db.ForeignKey("projects.id"), nullable=False, index=True)
    preferences = db.Column(db.JSON, default=dict)

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "project_id": self.project_id,
            "preferences": self.preferences or {},
            **self.stamps_dict(),
        }
