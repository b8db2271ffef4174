from flask import Blueprint, request, jsonify, current_app
from flask_jwt_extended import jwt_required
from marshmallow import Schema, fields, validate, EXCLUDE
from models import ISSUE_STATUSES, ISSUE_PRIORITIES
from auth import get_current_user, validate_request_data, not_blank
from serializers import issue_to_dict
import logging

issues_bp = Blueprint('issues', __name__)
logger = logging.getLogger(__name__)

# ============================================
# Input Validation Schemas
# ============================================

class IssueQuerySchema(Schema):
    """GET /issues 的查詢參數"""
    class Meta:
        unknown = EXCLUDE

    project_id = fields.Int(data_key='projectId')
    status = fields.Str(validate=validate.OneOf(ISSUE_STATUSES))
    priority = fields.Str(validate=validate.OneOf(ISSUE_PRIORITIES))
    search = fields.Str()

class CreateIssueSchema(Schema):
    """建立 issue 驗證"""
    title = fields.Str(
        required=True,
        validate=[not_blank, validate.Length(min=1, max=255)],
        error_messages={'required': 'Title is required.'}
    )
    project_id = fields.Int(
        required=True,
        strict=True,
        data_key='projectId',
        error_messages={'required': 'projectId is required.'}
    )
    description = fields.Str(allow_none=True, validate=validate.Length(max=5000))
    priority = fields.Str(validate=validate.OneOf(ISSUE_PRIORITIES), load_default='medium')
    assignee_ids = fields.List(fields.Int(strict=True), data_key='assigneeIds', load_default=list)

class UpdateIssueSchema(Schema):
    """更新 issue 驗證 (只有出現的欄位會被更新)"""
    title = fields.Str(validate=[not_blank, validate.Length(min=1, max=255)])
    description = fields.Str(allow_none=True, validate=validate.Length(max=5000))
    status = fields.Str(validate=validate.OneOf(ISSUE_STATUSES))
    priority = fields.Str(validate=validate.OneOf(ISSUE_PRIORITIES))
    assignee_ids = fields.List(fields.Int(strict=True), data_key='assigneeIds', allow_none=True)

class AssignSchema(Schema):
    user_ids = fields.List(
        fields.Int(strict=True),
        required=True,
        data_key='userIds',
        validate=validate.Length(min=1, error='userIds array is required.'),
        error_messages={'required': 'userIds array is required.'}
    )

class UnassignSchema(Schema):
    # 沒有 userIds 代表全部移除
    user_ids = fields.List(fields.Int(strict=True), data_key='userIds', allow_none=True)

# ============================================
# 輔助函數
# ============================================

def get_issue_service():
    return current_app.extensions['issue_service']

# ============================================
# Issue CRUD
# ============================================

@issues_bp.route('', methods=['GET'])
@jwt_required()
def get_issues():
    """
    查詢 issue 列表

    篩選: projectId, status, priority, search (title 子字串,不分大小寫)
    """
    current_user = get_current_user()

    filters = validate_request_data(IssueQuerySchema, request.args.to_dict())

    issues = get_issue_service().list_issues(
        current_user,
        project_id=filters.get('project_id'),
        status=filters.get('status'),
        priority=filters.get('priority'),
        search=filters.get('search')
    )

    return jsonify([issue_to_dict(issue) for issue in issues]), 200


@issues_bp.route('', methods=['POST'])
@jwt_required()
def create_issue():
    """建立 issue (只有專案 owner)"""
    current_user = get_current_user()

    result = validate_request_data(CreateIssueSchema, request.get_json(silent=True))

    issue = get_issue_service().create_issue(
        current_user,
        result['project_id'],
        result['title'],
        description=result.get('description'),
        priority=result['priority'],
        assignee_ids=result['assignee_ids']
    )

    return jsonify(issue_to_dict(issue)), 201


@issues_bp.route('/<int:issue_id>', methods=['PATCH'])
@jwt_required()
def update_issue(issue_id):
    """
    更新 issue

    assigneeIds 會整組取代原本的 assignees
    """
    current_user = get_current_user()

    patch = validate_request_data(UpdateIssueSchema, request.get_json(silent=True))
    if 'assignee_ids' in patch and patch['assignee_ids'] is None:
        patch['assignee_ids'] = []

    issue = get_issue_service().update_issue(current_user, issue_id, patch)

    return jsonify(issue_to_dict(issue)), 200


@issues_bp.route('/<int:issue_id>', methods=['DELETE'])
@jwt_required()
def delete_issue(issue_id):
    current_user = get_current_user()

    get_issue_service().delete_issue(current_user, issue_id)

    return '', 204

# ============================================
# Assignee 管理
# ============================================

@issues_bp.route('/<int:issue_id>/assign', methods=['POST'])
@jwt_required()
def assign_users(issue_id):
    """新增 assignees (已指派的會略過)"""
    current_user = get_current_user()

    result = validate_request_data(AssignSchema, request.get_json(silent=True))

    issue = get_issue_service().assign(current_user, issue_id, result['user_ids'])

    return jsonify({
        'message': 'Users assigned successfully',
        'issue': issue_to_dict(issue)
    }), 200


@issues_bp.route('/<int:issue_id>/unassign', methods=['POST'])
@jwt_required()
def unassign_users(issue_id):
    """移除 assignees,沒給 userIds 就全部移除"""
    current_user = get_current_user()

    result = validate_request_data(UnassignSchema, request.get_json(silent=True) or {})

    issue, removed = get_issue_service().unassign(current_user, issue_id, result.get('user_ids'))

    return jsonify({
        'message': 'Users unassigned successfully',
        'issue': issue_to_dict(issue),
        'removedAssignees': removed
    }), 200
