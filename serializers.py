# ============================================
# Model -> JSON dict
# API 和 Socket.IO 事件共用同一個形狀,client 不需要再查一次
# ============================================


def _isoformat(value):
    return value.isoformat() if value else None


def user_brief(user):
    return {
        'id': user.id,
        'name': user.name,
        'email': user.email
    }


def user_to_dict(user):
    return {
        'id': user.id,
        'name': user.name,
        'email': user.email,
        'createdAt': _isoformat(user.created_at)
    }


def issue_to_dict(issue):
    """完整的 issue (含專案名稱和 assignees)"""
    return {
        'id': issue.id,
        'title': issue.title,
        'description': issue.description,
        'status': issue.status,
        'priority': issue.priority,
        'projectId': issue.project_id,
        'project': {
            'id': issue.project.id,
            'name': issue.project.name
        },
        'assignees': [user_brief(a.user) for a in issue.assignees],
        'createdAt': _isoformat(issue.created_at),
        'updatedAt': _isoformat(issue.updated_at)
    }


def project_to_dict(project, user_role=None, assigned_issues_count=None, include_issues=False):
    data = {
        'id': project.id,
        'name': project.name,
        'ownerId': project.owner_id,
        'owner': user_brief(project.owner),
        'collaborators': [user_brief(c.user) for c in project.collaborators],
        'issueCount': len(project.issues),
        'createdAt': _isoformat(project.created_at)
    }

    if user_role is not None:
        data['userRole'] = user_role

    if assigned_issues_count is not None:
        data['assignedIssuesCount'] = assigned_issues_count

    if include_issues:
        data['issues'] = [
            issue_to_dict(issue)
            for issue in sorted(project.issues, key=lambda i: (i.created_at, i.id), reverse=True)
        ]

    return data
