from app.models.material_request import (  # noqa: F401
    MaterialRequest,
    MaterialRequestItem,
    MaterialRequestStatus,
    MaterialRequestUrgency,
)
from app.models.person import Person  # noqa: F401
from app.models.projects import Project, ProjectTask, ProjectTaskAssignee  # noqa: F401
from app.models.task_message import TaskMessage  # noqa: F401
