from flask import Blueprint, request, jsonify, current_app
from flask_jwt_extended import jwt_required, get_jwt_identity
from marshmallow import Schema, fields, validate, ValidationError as SchemaValidationError
from models import db, User
from errors import ValidationError, AuthenticationError
from serializers import user_brief, user_to_dict
from extensions import limiter
import logging

auth_bp = Blueprint('auth', __name__)
logger = logging.getLogger(__name__)


# ============================================
# Input Validation Schemas (用 marshmallow)
# ============================================

def not_blank(value):
    """只有空白的字串視為沒填"""
    if not value.strip():
        raise SchemaValidationError('Must not be blank.')


class SignupSchema(Schema):
    """註冊輸入驗證"""
    name = fields.Str(
        required=True,
        validate=[not_blank, validate.Length(min=1, max=100, error='Name must be 1-100 characters')],
        error_messages={'required': 'Name is required'}
    )
    email = fields.Email(required=True, error_messages={
        'required': 'Email is required',
        'invalid': 'Invalid email format'
    })
    password = fields.Str(
        required=True,
        validate=validate.Length(min=6, max=128, error='Password must be 6-128 characters'),
        error_messages={'required': 'Password is required'}
    )

class LoginSchema(Schema):
    """登入輸入驗證"""
    email = fields.Str(required=True, validate=validate.Length(min=1))
    password = fields.Str(required=True, validate=validate.Length(min=1))

class ForgotPasswordSchema(Schema):
    email = fields.Str(required=True, validate=validate.Length(min=1))

class VerifyOtpSchema(Schema):
    """OTP 驗證 + 新密碼"""
    email = fields.Str(required=True, validate=validate.Length(min=1))
    otp = fields.Str(required=True, validate=validate.Length(min=1, max=12))
    new_password = fields.Str(
        required=True,
        data_key='newPassword',
        validate=validate.Length(min=6, max=128, error='Password must be 6-128 characters')
    )

# ============================================
# Helper Functions (供其他模組使用)
# ============================================

def validate_request_data(schema_class, data):
    """
    統一的輸入驗證函數

    Raises:
        ValidationError: body 不是 JSON 或驗證失敗
    """
    if data is None:
        raise ValidationError('Request body must be JSON')

    try:
        return schema_class().load(data)
    except SchemaValidationError as err:
        raise ValidationError('Validation failed', details=err.messages)


def get_credential_service():
    return current_app.extensions['credential_service']


def get_current_user():
    """
    取得當前登入的使用者

    token 有效但使用者已經不存在時視為未登入
    """
    user_id = get_jwt_identity()
    user = db.session.get(User, int(user_id)) if user_id else None
    if not user:
        logger.warning(f"Token valid but user not found: {user_id}")
        raise AuthenticationError('User for this token no longer exists')
    return user

# ============================================
# 註冊 / 登入
# ============================================

@auth_bp.route('/signup', methods=['POST'])
@limiter.limit("5 per hour")
def signup():
    """使用者註冊"""
    result = validate_request_data(SignupSchema, request.get_json(silent=True))

    user = get_credential_service().signup(result['name'], result['email'], result['password'])

    return jsonify({
        'message': 'User created successfully!',
        'user': user_brief(user)
    }), 201


@auth_bp.route('/login', methods=['POST'])
@limiter.limit("10 per minute")
def login():
    """使用者登入 (access token 有效 1 小時)"""
    result = validate_request_data(LoginSchema, request.get_json(silent=True))

    token, user = get_credential_service().login(result['email'], result['password'])

    return jsonify({
        'message': 'Logged in successfully!',
        'token': token,
        'user': user_brief(user)
    }), 200

# ============================================
# 忘記密碼 / OTP
# ============================================

@auth_bp.route('/forgot-password', methods=['POST'])
@limiter.limit("5 per hour")
def forgot_password():
    """
    寄送 OTP

    不管 email 是否存在都回一樣的訊息,避免帳號枚舉
    """
    result = validate_request_data(ForgotPasswordSchema, request.get_json(silent=True))

    get_credential_service().request_password_reset(result['email'])

    return jsonify({
        'message': 'If a user with that email exists, an OTP has been sent.'
    }), 200


@auth_bp.route('/verify-otp', methods=['POST'])
@limiter.limit("10 per minute")
def verify_otp():
    """驗證 OTP 並重設密碼"""
    result = validate_request_data(VerifyOtpSchema, request.get_json(silent=True))

    get_credential_service().verify_reset(result['email'], result['otp'], result['new_password'])

    return jsonify({'message': 'Password has been reset successfully.'}), 200

# ============================================
# 使用者資訊 / 查詢 (指派用)
# ============================================

@auth_bp.route('/me', methods=['GET'])
@jwt_required()
def get_me():
    """取得當前登入使用者的資訊"""
    return jsonify(user_to_dict(get_current_user())), 200


@auth_bp.route('/users', methods=['GET'])
@jwt_required()
def list_users():
    get_current_user()
    users = get_credential_service().list_users()

    logger.info(f"Retrieved {len(users)} users for assignment")
    return jsonify([user_to_dict(u) for u in users]), 200


@auth_bp.route('/users/search', methods=['GET'])
@jwt_required()
def search_users():
    """用 name 或 email 搜尋 (不分大小寫)"""
    get_current_user()
    q = request.args.get('q', '')
    users = get_credential_service().search_users(q)

    logger.info(f"Search found {len(users)} users for query: '{q}'")
    return jsonify([user_to_dict(u) for u in users]), 200


@auth_bp.route('/users/find-by-email', methods=['GET'])
@jwt_required()
def find_user_by_email():
    get_current_user()
    user = get_credential_service().find_by_email(request.args.get('email', ''))
    return jsonify(user_to_dict(user)), 200


@auth_bp.route('/users/find-by-name', methods=['GET'])
@jwt_required()
def find_users_by_name():
    get_current_user()
    name = request.args.get('name', '')
    users = get_credential_service().find_by_name(name)

    logger.info(f"Found {len(users)} users with name: '{name}'")
    return jsonify([user_to_dict(u) for u in users]), 200
