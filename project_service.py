from sqlalchemy import func, or_, select
from sqlalchemy.orm import joinedload, selectinload
from models import db, commit_or_rollback, insert_links, User, Project, ProjectCollaborator, Issue, IssueAssignee
from errors import NotFound, Forbidden, ValidationError
from serializers import project_to_dict, user_brief
import access_control
import notifications
import logging

logger = logging.getLogger(__name__)


def resolve_user_ids(user_ids):
    """
    去除重複並確認所有使用者都存在

    Returns:
        list: 保留原本順序的 user id

    Raises:
        ValidationError: 有不存在的 user id
    """
    ids = list(dict.fromkeys(user_ids or []))
    if not ids:
        return []

    found = set(db.session.scalars(select(User.id).where(User.id.in_(ids))))
    missing = [uid for uid in ids if uid not in found]
    if missing:
        raise ValidationError('Unknown user ids', details={'userIds': missing})

    return ids


class ProjectService:
    """
    專案 CRUD 和 collaborator 管理

    所有寫入成功後透過 broadcaster 廣播事件
    """

    def __init__(self, broadcaster=None):
        self.broadcaster = broadcaster or notifications.NullBroadcaster()

    # ============================================
    # 輔助函數
    # ============================================

    def _load_project(self, project_id):
        return db.session.get(Project, project_id, options=[
            joinedload(Project.owner),
            selectinload(Project.collaborators).joinedload(ProjectCollaborator.user),
            selectinload(Project.issues)
        ])

    def _load_readable(self, user, project_id):
        """
        不存在和沒有讀取權限都回 NotFound,不讓呼叫端知道專案是否存在
        """
        project = self._load_project(project_id)
        if not project or not access_control.can_read_project(user, project):
            raise NotFound('Project not found')
        return project

    def _load_for_owner(self, user, project_id, action):
        project = self._load_readable(user, project_id)
        if not access_control.can_mutate_project(user, project):
            logger.warning(f"User {user.id} tried to {action} project {project_id} without ownership")
            raise Forbidden(f'Only the project owner can {action} this project')
        return project

    # ============================================
    # 查詢
    # ============================================

    def list_projects(self, user):
        """
        我擁有、參與,或有 issue 指派給我的專案

        Returns:
            list: [(project, user_role, assigned_issues_count)]
        """
        collaborating = select(ProjectCollaborator.project_id).where(
            ProjectCollaborator.user_id == user.id
        )
        assigned = select(Issue.project_id).join(
            IssueAssignee, IssueAssignee.issue_id == Issue.id
        ).where(IssueAssignee.user_id == user.id)

        projects = Project.query.filter(
            or_(
                Project.owner_id == user.id,
                Project.id.in_(collaborating),
                Project.id.in_(assigned)
            )
        ).options(
            joinedload(Project.owner),
            selectinload(Project.collaborators).joinedload(ProjectCollaborator.user),
            selectinload(Project.issues)
        ).order_by(Project.created_at.desc(), Project.id.desc()).all()

        # 每個專案裡指派給我的 issue 數量 (一次查完,避免 N+1)
        assigned_counts = dict(db.session.execute(
            select(Issue.project_id, func.count(Issue.id))
            .join(IssueAssignee, IssueAssignee.issue_id == Issue.id)
            .where(IssueAssignee.user_id == user.id)
            .group_by(Issue.project_id)
        ).all())

        results = []
        for project in projects:
            role = access_control.role_of(user, project)
            if role == access_control.NONE:
                role = access_control.ASSIGNEE
            results.append((project, role, assigned_counts.get(project.id, 0)))

        return results

    def get_project(self, user, project_id):
        """
        Returns:
            tuple: (project, user_role)
        """
        project = self._load_readable(user, project_id)
        return project, access_control.role_of(user, project)

    def list_collaborators(self, user, project_id):
        project = self._load_readable(user, project_id)
        return [c.user for c in project.collaborators]

    # ============================================
    # 寫入
    # ============================================

    def create_project(self, user, name, collaborator_ids=None):
        """建立專案,建立者就是 owner,collaborator 在同一個 transaction 裡加入"""
        ids = resolve_user_ids(collaborator_ids)

        project = Project(name=name.strip(), owner_id=user.id)
        db.session.add(project)
        db.session.flush()  # 取得 project.id 但不 commit

        for uid in ids:
            db.session.add(ProjectCollaborator(project_id=project.id, user_id=uid))

        commit_or_rollback('Project creation')

        logger.info(f"Project created: {project.name} with {len(ids)} collaborators by user {user.email}")

        project = self._load_project(project.id)
        self.broadcaster.publish(notifications.PROJECT_CREATED, project_to_dict(project))
        return project

    def delete_project(self, user, project_id):
        """只有 owner 能刪除,issues / assignees / collaborators 會一起刪掉"""
        project = self._load_for_owner(user, project_id, 'delete')
        project_name = project.name

        db.session.delete(project)
        commit_or_rollback('Project deletion')

        logger.info(f"Project deleted: {project_name} by user {user.email}")

        self.broadcaster.publish(notifications.PROJECT_DELETED, {'id': project_id})

    def add_collaborators(self, user, project_id, user_ids):
        """
        owner 或現有 collaborator 可以加人

        已經是 collaborator 的會直接略過
        """
        project = self._load_readable(user, project_id)
        if not access_control.can_add_collaborators(user, project):
            raise Forbidden('Not allowed to add collaborators to this project')

        ids = resolve_user_ids(user_ids)
        existing = project.collaborator_ids
        new_ids = [uid for uid in ids if uid not in existing]

        insert_links(ProjectCollaborator, [{'project_id': project.id, 'user_id': uid} for uid in new_ids])

        commit_or_rollback('Adding collaborators')

        logger.info(f"Added {len(new_ids)} collaborators to project {project_id} by user {user.email}")

        project = self._load_project(project_id)
        self.broadcaster.publish(notifications.PROJECT_COLLABORATORS_ADDED, project_to_dict(project))
        return project

    def remove_collaborators(self, user, project_id, user_ids):
        """
        只有 owner 能移除 collaborator

        Returns:
            list: 實際被移除的使用者
        """
        project = self._load_for_owner(user, project_id, 'remove collaborators from')

        targets = set(user_ids or [])
        removed = [c for c in project.collaborators if c.user_id in targets]
        removed_users = [user_brief(c.user) for c in removed]

        for collaborator in removed:
            project.collaborators.remove(collaborator)

        commit_or_rollback('Removing collaborators')

        logger.info(f"Removed {len(removed)} collaborators from project {project_id} by user {user.email}")

        project = self._load_project(project_id)
        payload = project_to_dict(project)
        payload['removedCollaborators'] = removed_users
        self.broadcaster.publish(notifications.PROJECT_COLLABORATORS_REMOVED, payload)
        return removed_users
