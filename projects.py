from flask import Blueprint, request, jsonify, current_app
from flask_jwt_extended import jwt_required
from marshmallow import Schema, fields, validate
from auth import get_current_user, validate_request_data, not_blank
from serializers import project_to_dict, user_to_dict
import logging

projects_bp = Blueprint('projects', __name__)
logger = logging.getLogger(__name__)

# ============================================
# Input Validation Schemas
# ============================================

class CreateProjectSchema(Schema):
    """建立專案驗證"""
    name = fields.Str(
        required=True,
        validate=[not_blank, validate.Length(min=1, max=255)],
        error_messages={'required': 'Project name is required.'}
    )
    collaborator_ids = fields.List(fields.Int(strict=True), data_key='collaboratorIds', load_default=list)

class UserIdsSchema(Schema):
    """加入 / 移除 collaborator 驗證"""
    user_ids = fields.List(
        fields.Int(strict=True),
        required=True,
        data_key='userIds',
        validate=validate.Length(min=1, error='User IDs array is required'),
        error_messages={'required': 'User IDs array is required'}
    )

# ============================================
# 輔助函數
# ============================================

def get_project_service():
    return current_app.extensions['project_service']

# ============================================
# 專案 CRUD
# ============================================

@projects_bp.route('', methods=['GET'])
@jwt_required()
def get_my_projects():
    """
    查詢我擁有、參與,或有 issue 指派給我的專案

    每個專案附上 userRole 和 assignedIssuesCount
    """
    current_user = get_current_user()

    projects = get_project_service().list_projects(current_user)

    return jsonify([
        project_to_dict(project, user_role=role, assigned_issues_count=count)
        for project, role, count in projects
    ]), 200


@projects_bp.route('', methods=['POST'])
@jwt_required()
def create_project():
    """建立新專案 (可以同時加入 collaborators)"""
    current_user = get_current_user()

    result = validate_request_data(CreateProjectSchema, request.get_json(silent=True))

    project = get_project_service().create_project(
        current_user,
        result['name'],
        result['collaborator_ids']
    )

    return jsonify(project_to_dict(project, user_role='owner', assigned_issues_count=0)), 201


@projects_bp.route('/<int:project_id>', methods=['GET'])
@jwt_required()
def get_project(project_id):
    """
    查詢專案詳細資訊

    不存在或沒有權限都回 404
    """
    current_user = get_current_user()

    project, role = get_project_service().get_project(current_user, project_id)

    return jsonify(project_to_dict(project, user_role=role, include_issues=True)), 200


@projects_bp.route('/<int:project_id>', methods=['DELETE'])
@jwt_required()
def delete_project(project_id):
    """刪除專案 (只有 owner 可以)"""
    current_user = get_current_user()

    get_project_service().delete_project(current_user, project_id)

    return jsonify({'message': 'Project deleted successfully'}), 200

# ============================================
# Collaborator 管理
# ============================================

@projects_bp.route('/<int:project_id>/assign', methods=['POST'])
@jwt_required()
def assign_collaborators(project_id):
    """把使用者加成 collaborator (owner 或 collaborator 可以)"""
    current_user = get_current_user()

    result = validate_request_data(UserIdsSchema, request.get_json(silent=True))

    project = get_project_service().add_collaborators(current_user, project_id, result['user_ids'])

    return jsonify(project_to_dict(project)), 200


@projects_bp.route('/<int:project_id>/unassign', methods=['POST'])
@jwt_required()
def unassign_collaborators(project_id):
    """移除 collaborator (只有 owner)"""
    current_user = get_current_user()

    result = validate_request_data(UserIdsSchema, request.get_json(silent=True))

    removed = get_project_service().remove_collaborators(current_user, project_id, result['user_ids'])

    return jsonify({
        'message': 'Users removed from project successfully',
        'removedCollaborators': removed
    }), 200


@projects_bp.route('/<int:project_id>/collaborators', methods=['GET'])
@jwt_required()
def get_project_collaborators(project_id):
    current_user = get_current_user()

    collaborators = get_project_service().list_collaborators(current_user, project_id)

    return jsonify([user_to_dict(u) for u in collaborators]), 200
