from sqlalchemy.orm import Session

from planrx.models.entities import Assignment
from planrx.models.results import Baseline
from planrx.storage.database import AssignmentModel, BaselineModel


class BaselineRepository:
    def __init__(self, db: Session):
        self.db = db

    def save(self, baseline: Baseline) -> None:
        model = BaselineModel(
            id=baseline.id,
            project_id=baseline.project_id,
            version=baseline.version,
            tasks=[
                {
                    "task_id": entry.task_id,
                    "start": entry.start.isoformat() if entry.start else None,
                    "end": entry.end.isoformat() if entry.end else None,
                    "sequence": entry.sequence,
                    "duration": entry.duration,
                }
                for entry in baseline.tasks.values()
            ],
            created_at=baseline.created_at,
        )
        self.db.merge(model)
        self.db.commit()


class AssignmentRepository:
    def __init__(self, db: Session):
        self.db = db

    def save(self, assignment: Assignment) -> None:
        model = AssignmentModel(
            id=assignment.id,
            project_id=assignment.project_id,
            resource_id=assignment.resource_id,
            task_id=assignment.task_id,
            start=assignment.start,
            end=assignment.end,
            amount=assignment.amount,
            daily_amount=assignment.daily_amount,
            total=assignment.total,
            cost=assignment.cost,
            over_allocated=assignment.over_allocated,
        )
        self.db.add(model)
        self.db.commit()

    def delete(self, assignment_id: str) -> None:
        self.db.query(AssignmentModel).filter(AssignmentModel.id == assignment_id).delete()
        self.db.commit()
