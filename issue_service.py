from sqlalchemy import or_, select
from sqlalchemy.orm import joinedload, selectinload
from models import db, commit_or_rollback, insert_links, Project, Issue, IssueAssignee, ISSUE_STATUSES, ISSUE_PRIORITIES
from errors import NotFound, Forbidden, ValidationError
from serializers import issue_to_dict, user_brief
from project_service import resolve_user_ids
from datetime import datetime
import access_control
import notifications
import logging

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ('title', 'description', 'status', 'priority')


def _issue_options():
    return [
        joinedload(Issue.project).selectinload(Project.collaborators),
        selectinload(Issue.assignees).joinedload(IssueAssignee.user)
    ]


class IssueService:
    """
    Issue CRUD 和 assignee 管理

    所有寫入只有專案 owner 可以做,成功後廣播完整的 issue
    """

    def __init__(self, broadcaster=None):
        self.broadcaster = broadcaster or notifications.NullBroadcaster()

    # ============================================
    # 輔助函數
    # ============================================

    def _load_issue(self, issue_id):
        return db.session.get(Issue, issue_id, options=_issue_options())

    def _load_for_owner(self, user, issue_id, action):
        """
        看不到的 issue 一律 NotFound,看得到但不是 owner 就 Forbidden
        """
        issue = self._load_issue(issue_id)
        if not issue or not access_control.can_read_issue(user, issue):
            raise NotFound('Issue not found')

        if not access_control.can_mutate_issue(user, issue):
            logger.warning(f"User {user.id} tried to {action} issue {issue_id} without project ownership")
            raise Forbidden(f'Only the project owner can {action} issues')

        return issue

    def _publish(self, event, issue_id, extra=None):
        issue = self._load_issue(issue_id)
        payload = issue_to_dict(issue)
        if extra:
            payload.update(extra)
        self.broadcaster.publish(event, payload)
        return issue

    @staticmethod
    def _replace_assignees(issue, user_ids):
        # 先全部刪掉再重建,不是做差集
        issue.assignees.clear()
        db.session.flush()
        for uid in user_ids:
            issue.assignees.append(IssueAssignee(user_id=uid))

    # ============================================
    # 查詢
    # ============================================

    def list_issues(self, user, project_id=None, status=None, priority=None, search=None):
        """
        我擁有的專案裡的 issue,或指派給我的 issue

        search 比對 title (不分大小寫的子字串),最新的排前面
        """
        if status and status not in ISSUE_STATUSES:
            raise ValidationError('Invalid status', details={'status': [f'Must be one of: {", ".join(ISSUE_STATUSES)}']})
        if priority and priority not in ISSUE_PRIORITIES:
            raise ValidationError('Invalid priority', details={'priority': [f'Must be one of: {", ".join(ISSUE_PRIORITIES)}']})

        assigned_to_me = select(IssueAssignee.issue_id).where(IssueAssignee.user_id == user.id)

        query = Issue.query.join(Project, Project.id == Issue.project_id).filter(
            or_(
                Project.owner_id == user.id,
                Issue.id.in_(assigned_to_me)
            )
        ).options(*_issue_options())

        if project_id is not None:
            query = query.filter(Issue.project_id == project_id)

        if status:
            query = query.filter(Issue.status == status)

        if priority:
            query = query.filter(Issue.priority == priority)

        if search:
            query = query.filter(Issue.title.icontains(search, autoescape=True))

        return query.order_by(Issue.created_at.desc(), Issue.id.desc()).all()

    # ============================================
    # 寫入
    # ============================================

    def create_issue(self, user, project_id, title, description=None, priority=None, assignee_ids=None):
        """
        在專案中建立 issue (只有 owner)

        預設 priority = medium, status = open,assignees 在同一個 transaction 建立
        """
        project = db.session.get(Project, project_id, options=[selectinload(Project.collaborators)])
        if not project or not access_control.can_read_project(user, project):
            raise NotFound('Project not found')

        if not access_control.can_mutate_project(user, project):
            logger.warning(f"User {user.id} tried to create an issue in project {project_id} without ownership")
            raise Forbidden('Only the project owner can create issues')

        ids = resolve_user_ids(assignee_ids)

        issue = Issue(
            title=title.strip(),
            description=description,
            priority=priority or 'medium',
            status='open',
            project_id=project.id
        )
        db.session.add(issue)
        db.session.flush()  # 取得 issue.id

        for uid in ids:
            issue.assignees.append(IssueAssignee(user_id=uid))

        commit_or_rollback('Issue creation')

        logger.info(f"Issue created: {issue.title} in project {project_id} by user {user.email}")

        return self._publish(notifications.ISSUE_CREATED, issue.id)

    def update_issue(self, user, issue_id, patch):
        """
        更新 issue

        patch 裡有的欄位才覆蓋,assignee_ids 存在時整組取代
        """
        issue = self._load_for_owner(user, issue_id, 'update')

        for field in UPDATABLE_FIELDS:
            if field in patch:
                setattr(issue, field, patch[field])

        if 'title' in patch:
            issue.title = patch['title'].strip()

        if 'assignee_ids' in patch:
            ids = resolve_user_ids(patch['assignee_ids'])
            self._replace_assignees(issue, ids)

        issue.updated_at = datetime.utcnow()

        commit_or_rollback('Issue update')

        logger.info(f"Issue {issue_id} updated by user {user.email}")

        return self._publish(notifications.ISSUE_UPDATED, issue_id)

    def assign(self, user, issue_id, user_ids):
        """新增 assignees,已經指派的直接略過"""
        issue = self._load_for_owner(user, issue_id, 'assign users to')

        ids = resolve_user_ids(user_ids)
        existing = issue.assignee_ids
        new_ids = [uid for uid in ids if uid not in existing]

        insert_links(IssueAssignee, [{'issue_id': issue.id, 'user_id': uid} for uid in new_ids])

        if new_ids:
            issue.updated_at = datetime.utcnow()

        commit_or_rollback('Issue assignment')

        logger.info(f"Assigned {len(new_ids)} users to issue {issue_id} by user {user.email}")

        return self._publish(notifications.ISSUE_ASSIGNED, issue_id)

    def unassign(self, user, issue_id, user_ids=None):
        """
        移除指定的 assignees,沒給 user_ids 就全部移除

        Returns:
            tuple: (issue, removed_users)
        """
        issue = self._load_for_owner(user, issue_id, 'unassign users from')

        if user_ids:
            targets = set(user_ids)
            removed = [a for a in issue.assignees if a.user_id in targets]
        else:
            removed = list(issue.assignees)

        removed_users = [user_brief(a.user) for a in removed]

        for assignment in removed:
            issue.assignees.remove(assignment)

        if removed:
            issue.updated_at = datetime.utcnow()

        commit_or_rollback('Issue unassignment')

        logger.info(f"Removed {len(removed)} assignees from issue {issue_id} by user {user.email}")

        issue = self._publish(notifications.ISSUE_UNASSIGNED, issue_id,
                              extra={'removedAssignees': removed_users})
        return issue, removed_users

    def delete_issue(self, user, issue_id):
        issue = self._load_for_owner(user, issue_id, 'delete')
        issue_title = issue.title
        project_id = issue.project_id

        db.session.delete(issue)
        commit_or_rollback('Issue deletion')

        logger.info(f"Issue deleted: {issue_title} by user {user.email}")

        self.broadcaster.publish(notifications.ISSUE_DELETED, {'id': issue_id, 'projectId': project_id})
