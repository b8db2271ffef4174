# ============================================
# 統一的錯誤類別
# service 層只 raise,HTTP 轉換在 app.py 的 errorhandler
# ============================================


class ServiceError(Exception):
    status_code = 500
    error = 'service_error'
    message = 'An unexpected error occurred'

    def __init__(self, message=None, details=None):
        super().__init__(message or self.message)
        self.message = message or self.message
        self.details = details

    def to_dict(self):
        payload = {'error': self.error, 'message': self.message}
        if self.details:
            payload['details'] = self.details
        return payload


class ValidationError(ServiceError):
    """缺少必填欄位或格式錯誤"""
    status_code = 400
    error = 'validation_error'
    message = 'Validation failed'


class DuplicateEmail(ServiceError):
    status_code = 400
    error = 'duplicate_email'
    message = 'User with this email already exists'


class InvalidCredentials(ServiceError):
    # 不區分 email 不存在或密碼錯誤
    status_code = 400
    error = 'invalid_credentials'
    message = 'Invalid credentials'


class InvalidOrExpiredCode(ServiceError):
    status_code = 400
    error = 'invalid_or_expired_code'
    message = 'Invalid or expired OTP'


class AuthenticationError(ServiceError):
    status_code = 401
    error = 'authentication_required'
    message = 'Authentication required'


class Forbidden(ServiceError):
    """看得到資源,但沒有權限做這個動作"""
    status_code = 403
    error = 'forbidden'
    message = 'Permission denied'


class NotFound(ServiceError):
    """資源不存在,或使用者沒有讀取權限 (刻意不區分)"""
    status_code = 404
    error = 'not_found'
    message = 'Resource not found'


class Conflict(ServiceError):
    status_code = 409
    error = 'conflict'
    message = 'The request conflicts with the current state'


class InternalError(ServiceError):
    status_code = 500
    error = 'internal_error'
    message = 'An internal error occurred'
