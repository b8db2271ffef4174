"""
權限判斷

全部都是純函數,只讀取傳進來的 user / project / issue,不做任何寫入。
每次請求都要用剛從資料庫載入的物件重新判斷,不要快取結果。
"""

OWNER = 'owner'
COLLABORATOR = 'collaborator'
ASSIGNEE = 'assignee'
NONE = 'none'


def _user_id(user):
    return getattr(user, 'id', user)


def role_of(user, project):
    """
    取得使用者在專案中的角色

    Owner 優先: 同時是 owner 又被加成 collaborator 時仍回傳 owner

    Returns:
        str: 'owner' | 'collaborator' | 'none'
    """
    user_id = _user_id(user)
    if project.owner_id == user_id:
        return OWNER
    if user_id in project.collaborator_ids:
        return COLLABORATOR
    return NONE


def can_read_project(user, project):
    return role_of(user, project) in (OWNER, COLLABORATOR)


def can_mutate_project(user, project):
    """刪除專案、移除 collaborator 只有 owner 可以"""
    return role_of(user, project) == OWNER


def can_add_collaborators(user, project):
    return can_read_project(user, project)


def can_read_issue(user, issue):
    """專案 owner / collaborator,或是這個 issue 的 assignee"""
    if can_read_project(user, issue.project):
        return True
    return _user_id(user) in issue.assignee_ids


def can_mutate_issue(user, issue):
    # assignee 不能編輯、刪除或重新指派,只有專案 owner 可以
    return can_mutate_project(user, issue.project)
