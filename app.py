from flask import Flask, request, jsonify
from flask_cors import CORS
from config import get_config
from models import db
from errors import ServiceError
from extensions import bcrypt, jwt, limiter, socketio
from mailer import Mailer
from auth_service import CredentialService
from project_service import ProjectService
from issue_service import IssueService
from notifications import SocketIOBroadcaster
from sqlalchemy import text
from werkzeug.exceptions import HTTPException
from datetime import datetime
import logging
from logging.handlers import RotatingFileHandler
import click
import os

# ============================================
# Logging 設定
# ============================================

def setup_logging(app):
    """
    info 和 error 分開寫檔,RotatingFileHandler 避免 log 檔案過大
    """
    log_dir = app.config.get('LOG_DIR', 'logs')
    if not os.path.exists(log_dir):
        os.mkdir(log_dir)

    formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )

    info_handler = RotatingFileHandler(
        os.path.join(log_dir, 'app.log'),
        maxBytes=10240000,  # 10MB
        backupCount=10
    )
    info_handler.setLevel(logging.INFO)
    info_handler.setFormatter(formatter)

    error_handler = RotatingFileHandler(
        os.path.join(log_dir, 'error.log'),
        maxBytes=10240000,  # 10MB
        backupCount=10
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(formatter)

    # 掛在 root logger,各模組的 logging.getLogger(__name__) 都會寫進來
    root_logger = logging.getLogger()
    root_logger.addHandler(info_handler)
    root_logger.addHandler(error_handler)
    root_logger.setLevel(app.config.get('LOG_LEVEL', 'INFO'))

    app.logger.info('Application startup')

# ============================================
# JWT 錯誤處理
# ============================================

def register_jwt_handlers(app):

    @jwt.expired_token_loader
    def expired_token_callback(jwt_header, jwt_payload):
        app.logger.warning(f"Expired token attempt from: {request.remote_addr}")
        return jsonify({
            'error': 'token_expired',
            'message': 'The token has expired. Please login again.'
        }), 401

    @jwt.invalid_token_loader
    def invalid_token_callback(error):
        app.logger.warning(f"Invalid token attempt from: {request.remote_addr}, error: {error}")
        return jsonify({
            'error': 'invalid_token',
            'message': 'Token validation failed. Please provide a valid token.'
        }), 401

    @jwt.unauthorized_loader
    def unauthorized_callback(error):
        app.logger.warning(f"Unauthorized access attempt from: {request.remote_addr}, error: {error}")
        return jsonify({
            'error': 'authorization_required',
            'message': 'Access token is required. Please provide an authorization token.'
        }), 401

# ============================================
# 全域錯誤處理
# ============================================

def register_error_handlers(app):

    @app.errorhandler(ServiceError)
    def handle_service_error(error):
        """service 層丟出的錯誤 -> 對應的 HTTP status"""
        db.session.rollback()
        if error.status_code >= 500:
            app.logger.error(f"Service error on {request.method} {request.path}: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(400)
    def bad_request(error):
        return jsonify({
            'error': 'bad_request',
            'message': 'The request is malformed or invalid',
            'status': 400
        }), 400

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({
            'error': 'not_found',
            'message': 'The requested resource does not exist',
            'status': 404
        }), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({
            'error': 'method_not_allowed',
            'message': 'The HTTP method is not allowed for this endpoint',
            'status': 405
        }), 405

    @app.errorhandler(429)
    def rate_limit_exceeded(error):
        app.logger.warning(f"Rate limit exceeded from: {request.remote_addr}")
        return jsonify({
            'error': 'rate_limit_exceeded',
            'message': 'Too many requests. Please try again later.',
            'status': 429
        }), 429

    @app.errorhandler(500)
    def internal_server_error(error):
        """
        不洩漏錯誤細節給前端,完整 stack trace 只寫 log
        """
        db.session.rollback()
        app.logger.error(f"Internal server error: {str(error)}", exc_info=True)

        return jsonify({
            'error': 'internal_server_error',
            'message': 'An internal error occurred.',
            'status': 500
        }), 500

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        """最後的防線,捕捉所有沒被處理的 exception"""
        if isinstance(error, HTTPException):
            return jsonify({
                'error': error.name.lower().replace(' ', '_'),
                'message': error.description,
                'status': error.code
            }), error.code

        db.session.rollback()
        app.logger.error(f"Unexpected error: {str(error)}", exc_info=True)

        return jsonify({
            'error': 'unexpected_error',
            'message': 'An unexpected error occurred. Please try again later.',
            'status': 500
        }), 500

# ============================================
# Request/Response Logging
# ============================================

def register_request_logging(app):

    @app.before_request
    def log_request():
        if not app.debug:
            app.logger.info(f"Request: {request.method} {request.path} from {request.remote_addr}")

    @app.after_request
    def log_response(response):
        if not app.debug:
            app.logger.info(f"Response: {response.status_code} for {request.method} {request.path}")

        # security headers
        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['X-Frame-Options'] = 'DENY'

        return response

# ============================================
# 基本路由
# ============================================

def register_routes(app):

    @app.route('/health', methods=['GET'])
    def health_check():
        """健康檢查 (load balancer / 監控用)"""
        try:
            db.session.execute(text('SELECT 1'))

            return jsonify({
                'status': 'healthy',
                'database': 'connected',
                'timestamp': datetime.utcnow().isoformat()
            }), 200
        except Exception as e:
            app.logger.error(f"Health check failed: {str(e)}")
            return jsonify({
                'status': 'unhealthy',
                'database': 'disconnected',
                'error': 'Database connection failed'
            }), 503

    @app.route('/')
    @limiter.limit("10 per minute")
    def home():
        return jsonify({
            'message': 'Issue Tracker API with real-time support is running!',
            'status': 'healthy',
            'version': app.config['API_VERSION']
        })

# ============================================
# CLI 指令
# ============================================

def register_commands(app):

    @app.cli.command('purge-expired-otps')
    def purge_expired_otps():
        """刪除所有過期的 OTP 紀錄"""
        deleted = app.extensions['credential_service'].purge_expired_otps()
        click.echo(f'Purged {deleted} expired OTP records')

# ============================================
# App Factory
# ============================================

def create_app(config_class=None, broadcaster=None, mailer=None):
    """
    建立 Flask app

    broadcaster / mailer 可以從外面注入 (測試時換成記錄用的版本)
    """
    config_class = config_class or get_config()
    config_class.validate()

    app = Flask(__name__)
    app.config.from_object(config_class)

    # CORS: 不要用 '*',只允許設定的來源
    allowed_origins = app.config['CORS_ORIGINS']
    CORS(app,
         resources={r'/api/*': {'origins': allowed_origins}},
         supports_credentials=True,
         methods=['GET', 'POST', 'PATCH', 'DELETE', 'OPTIONS'],
         allow_headers=['Content-Type', 'Authorization'])

    # 擴展初始化
    db.init_app(app)
    jwt.init_app(app)
    bcrypt.init_app(app)
    limiter.init_app(app)
    socketio.init_app(app,
                      cors_allowed_origins=allowed_origins,
                      async_mode=app.config.get('SOCKETIO_ASYNC_MODE'))

    if not app.debug and not app.testing:
        setup_logging(app)

    # Services (broadcaster 在建立時注入)
    broadcaster = broadcaster or SocketIOBroadcaster(socketio)
    app.extensions['credential_service'] = CredentialService(
        bcrypt,
        mailer or Mailer(app.config),
        otp_length=app.config['OTP_LENGTH'],
        otp_expires=app.config['OTP_EXPIRES']
    )
    app.extensions['project_service'] = ProjectService(broadcaster)
    app.extensions['issue_service'] = IssueService(broadcaster)

    # 註冊 Blueprints (全部在 /api 底下)
    from auth import auth_bp
    app.register_blueprint(auth_bp, url_prefix='/api/auth')

    from projects import projects_bp
    app.register_blueprint(projects_bp, url_prefix='/api/projects')

    from issues import issues_bp
    app.register_blueprint(issues_bp, url_prefix='/api/issues')

    register_jwt_handlers(app)
    register_error_handlers(app)
    register_request_logging(app)
    register_routes(app)
    register_commands(app)

    with app.app_context():
        db.create_all()
        app.logger.info('Database tables created')

    return app

# ============================================
# 啟動應用
# ============================================

if __name__ == '__main__':
    app = create_app()

    socketio.run(
        app,
        host='0.0.0.0',  # 允許外部訪問
        port=app.config['PORT'],
        debug=app.debug,
        allow_unsafe_werkzeug=app.debug
    )
