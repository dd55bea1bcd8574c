from sqlalchemy.orm import Session, joinedload, selectinload

from app.models.projects import ProjectTask, ProjectTaskAssignee
from app.schemas.task_message import TaskChatRead, UserRef
from app.services.common import get_or_404


class ProjectTasks:
    @staticmethod
    def get(db: Session, task_id) -> ProjectTask:
        return get_or_404(
            db,
            ProjectTask,
            task_id,
            detail="Task not found",
            code="task_not_found",
            options=[
                joinedload(ProjectTask.created_by),
                selectinload(ProjectTask.assignees).joinedload(ProjectTaskAssignee.person),
            ],
        )

    @staticmethod
    def chat_payload(task: ProjectTask) -> TaskChatRead:
        creator = None
        if task.created_by is not None:
            creator = UserRef(user_id=task.created_by.id, name=task.created_by.name)
        assigned = [
            UserRef(user_id=assignee.person.id, name=assignee.person.name)
            for assignee in task.assignees
            if assignee.person is not None and assignee.person.is_active
        ]
        return TaskChatRead(
            id=task.id,
            name=task.name,
            project_id=task.project_id,
            creator=creator,
            assigned_user_details=assigned,
        )


project_tasks = ProjectTasks()
