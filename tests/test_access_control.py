"""Tests for the pure permission functions."""

from types import SimpleNamespace

import pytest

import access_control


def make_project(owner_id, collaborator_ids=()):
    return SimpleNamespace(owner_id=owner_id, collaborator_ids=set(collaborator_ids))


def make_issue(project, assignee_ids=()):
    return SimpleNamespace(project=project, assignee_ids=set(assignee_ids))


OWNER = SimpleNamespace(id=1)
COLLABORATOR = SimpleNamespace(id=2)
ASSIGNEE = SimpleNamespace(id=3)
STRANGER = SimpleNamespace(id=4)


@pytest.fixture
def project():
    return make_project(owner_id=1, collaborator_ids=[2])


@pytest.fixture
def issue(project):
    return make_issue(project, assignee_ids=[3])


class TestRoleOf:

    def test_roles(self, project):
        assert access_control.role_of(OWNER, project) == 'owner'
        assert access_control.role_of(COLLABORATOR, project) == 'collaborator'
        assert access_control.role_of(STRANGER, project) == 'none'

    def test_owner_listed_as_collaborator_is_still_owner(self):
        project = make_project(owner_id=1, collaborator_ids=[1, 2])

        assert access_control.role_of(OWNER, project) == 'owner'

    def test_accepts_raw_user_id(self, project):
        assert access_control.role_of(2, project) == 'collaborator'


class TestProjectPermissions:

    @pytest.mark.parametrize('user, can_read, can_mutate', [
        (OWNER, True, True),
        (COLLABORATOR, True, False),
        (STRANGER, False, False),
    ])
    def test_project_permissions(self, project, user, can_read, can_mutate):
        assert access_control.can_read_project(user, project) is can_read
        assert access_control.can_mutate_project(user, project) is can_mutate
        assert access_control.can_add_collaborators(user, project) is can_read


class TestIssuePermissions:

    @pytest.mark.parametrize('user, can_read, can_mutate', [
        (OWNER, True, True),
        (COLLABORATOR, True, False),
        (ASSIGNEE, True, False),
        (STRANGER, False, False),
    ])
    def test_issue_permissions(self, issue, user, can_read, can_mutate):
        assert access_control.can_read_issue(user, issue) is can_read
        assert access_control.can_mutate_issue(user, issue) is can_mutate

    def test_decisions_follow_current_state(self, project, issue):
        assert access_control.can_read_issue(STRANGER, issue) is False

        project.collaborator_ids.add(STRANGER.id)

        assert access_control.can_read_issue(STRANGER, issue) is True
