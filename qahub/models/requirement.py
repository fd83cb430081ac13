"""
Requirement Models — requirement tree and traceability links.

    Requirement            self-referencing via parent_requirement_id
    RequirementTestCase    weighted link to a test case
    RequirementTestSuite   plain link to a test suite
"""

from qahub.models import db
from qahub.models.base import TenantModel
from qahub.models.soft_delete import live_unique_index


class Requirement(TenantModel):
    __tablename__ = "requirements"

    project_id = db.Column(db.String(36), db.ForeignKey("projects.id"), nullable=False, index=True)
    parent_requirement_id = db.Column(
        db.String(36), db.ForeignKey("requirements.id"), nullable=True, index=True,
    )
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    tags = db.Column(db.JSON, default=list)

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "parent_requirement_id": self.parent_requirement_id,
            "title": self.title,
            "description": self.description,
            "tags": self.tags or [],
            **self.stamps_dict(),
        }


class RequirementTestCase(TenantModel):
    __tablename__ = "requirement_test_cases"
    __table_args__ = (
        live_unique_index("uq_requirement_test_cases_live", "requirement_id", "test_case_id"),
    )

    requirement_id = db.Column(
        db.String(36), db.ForeignKey("requirements.id"), nullable=False, index=True,
    )
    test_case_id = db.Column(db.String(36), db.ForeignKey("test_cases.id"), nullable=False, index=True)
    weight = db.Column(db.Integer, nullable=True, comment="Traceability weight")

    def to_dict(self):
        return {
            "requirement_id": self.requirement_id,
            "test_case_id": self.test_case_id,
            "weight": self.weight,
        }


class RequirementTestSuite(TenantModel):
    __tablename__ = "requirement_test_suites"
    __table_args__ = (
        live_unique_index("uq_requirement_test_suites_live", "requirement_id", "test_suite_id"),
    )

    requirement_id = db.Column(
        db.String(36), db.ForeignKey("requirements.id"), nullable=False, index=True,
    )
    test_suite_id = db.Column(
        db.String(36), db.ForeignKey("test_suites.id"), nullable=False, index=True,
    )

    def to_dict(self):
        return {
            "requirement_id": self.requirement_id,
            "test_suite_id": self.test_suite_id,
        }
