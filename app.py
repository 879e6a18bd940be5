from flask import Flask, request, jsonify, current_app
from flask_cors import CORS
from werkzeug.exceptions import HTTPException
from config import get_config
from models import db
from extensions import jwt, bcrypt, limiter
from errors import TrackFlowError, InternalError
from sqlalchemy import text
from datetime import datetime
import logging
from logging.handlers import RotatingFileHandler
import os

# ============================================
# Logging 設定
# ============================================

def setup_logging(app):
    """
    設定 logging

    1. 分開 info 和 error logs
    2. 使用 RotatingFileHandler 避免 log 檔案過大
    3. 各模組的 logger 也寫到同一組檔案
    """
    if app.debug or app.testing:
        return

    for path in (app.config['LOG_FILE'], app.config['LOG_ERROR_FILE']):
        log_dir = os.path.dirname(path)
        if log_dir and not os.path.exists(log_dir):
            os.makedirs(log_dir)

    formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )

    info_handler = RotatingFileHandler(
        app.config['LOG_FILE'],
        maxBytes=10240000,  # 10MB
        backupCount=10
    )
    info_handler.setLevel(logging.INFO)
    info_handler.setFormatter(formatter)

    error_handler = RotatingFileHandler(
        app.config['LOG_ERROR_FILE'],
        maxBytes=10240000,  # 10MB
        backupCount=10
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(formatter)

    level = getattr(logging, app.config['LOG_LEVEL'].upper(), logging.INFO)

    app.logger.addHandler(info_handler)
    app.logger.addHandler(error_handler)
    app.logger.setLevel(level)

    # auth / membership / ... 用 logging.getLogger(__name__)
    root_logger = logging.getLogger()
    root_logger.addHandler(info_handler)
    root_logger.addHandler(error_handler)
    root_logger.setLevel(level)

    app.logger.info('Application startup')

# ============================================
# 註冊 Blueprints
# ============================================

def register_blueprints(app):
    from auth import auth_bp
    from users import users_bp
    from projects import projects_bp
    from tasks import tasks_bp
    from teams import teams_bp
    from notifications import notifications_bp
    from activity_logs import activity_logs_bp

    app.register_blueprint(auth_bp, url_prefix='/api/auth')
    app.register_blueprint(users_bp, url_prefix='/api')
    app.register_blueprint(projects_bp, url_prefix='/api/projects')
    app.register_blueprint(tasks_bp, url_prefix='/api')
    app.register_blueprint(teams_bp, url_prefix='/api')
    app.register_blueprint(notifications_bp, url_prefix='/api')
    app.register_blueprint(activity_logs_bp, url_prefix='/api')

# ============================================
# JWT 錯誤處理
# ============================================

def register_jwt_handlers():

    @jwt.expired_token_loader
    def expired_token_callback(jwt_header, jwt_payload):
        """處理 token 過期"""
        current_app.logger.warning(f"Expired token attempt from: {request.remote_addr}")
        return jsonify({
            'error': 'token_expired',
            'message': 'The token has expired. Please login again.'
        }), 401

    @jwt.invalid_token_loader
    def invalid_token_callback(error):
        """處理無效的 token"""
        current_app.logger.warning(f"Invalid token attempt from: {request.remote_addr}, error: {error}")
        return jsonify({
            'error': 'invalid_token',
            'message': 'Token validation failed. Please provide a valid token.'
        }), 401

    @jwt.unauthorized_loader
    def unauthorized_callback(error):
        """處理缺少 token"""
        current_app.logger.warning(f"Unauthorized access attempt from: {request.remote_addr}, error: {error}")
        return jsonify({
            'error': 'authorization_required',
            'message': 'Access token is required. Please provide an authorization token.'
        }), 401

    @jwt.revoked_token_loader
    def revoked_token_callback(jwt_header, jwt_payload):
        return jsonify({
            'error': 'token_revoked',
            'message': 'The token has been revoked. Please login again.'
        }), 401

# ============================================
# 全域錯誤處理
# ============================================

def register_error_handlers(app):

    @app.errorhandler(TrackFlowError)
    def handle_workflow_error(error):
        """
        membership / 其他 service 丟出的錯誤

        500 類的錯誤會 rollback, 細節只有在 EXPOSE_ERROR_DETAILS 時才回傳
        """
        if isinstance(error, InternalError):
            db.session.rollback()
            app.logger.error(f"Internal error: {error.message}, detail: {error.detail}")
        else:
            app.logger.info(f"{error.error}: {error.message} ({request.method} {request.path})")

        include_detail = app.config.get('EXPOSE_ERROR_DETAILS', False)
        return jsonify(error.to_dict(include_detail=include_detail)), error.status_code

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
        """處理 rate limit 超過"""
        app.logger.warning(f"Rate limit exceeded from: {request.remote_addr}")
        return jsonify({
            'error': 'rate_limit_exceeded',
            'message': 'Too many requests. Please try again later.',
            'status': 429
        }), 429

    @app.errorhandler(500)
    def internal_server_error(error):
        """不洩漏錯誤細節給前端, 完整 stack trace 寫到 log"""
        db.session.rollback()
        app.logger.error(f"Internal server error: {str(error)}", exc_info=True)

        return jsonify({
            'error': 'internal_server_error',
            'message': 'An internal error occurred. Our team has been notified.',
            'status': 500
        }), 500

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        """最後的防線, 捕捉所有沒被處理的 exception"""
        # 其他 HTTP 錯誤 (401 / 415 ...) 照原樣回傳
        if isinstance(error, HTTPException):
            return error

        db.session.rollback()
        app.logger.error(f"Unexpected error: {str(error)}", exc_info=True)

        payload = {
            'error': 'unexpected_error',
            'message': 'An unexpected error occurred. Please try again later.',
            'status': 500
        }
        if app.config.get('EXPOSE_ERROR_DETAILS'):
            payload['details'] = str(error)
        return jsonify(payload), 500

# ============================================
# App Factory
# ============================================

def create_app(config_class=None):
    config_class = config_class or get_config()

    app = Flask(__name__)
    app.config.from_object(config_class)

    if not app.testing:
        config_class.validate()

    # 不要用 '*', 來源從 CORS_ORIGINS 讀取
    CORS(app,
         supports_credentials=True,
         origins=app.config['CORS_ORIGINS'],
         methods=['GET', 'POST', 'PATCH', 'DELETE', 'OPTIONS'],
         allow_headers=['Content-Type', 'Authorization'])

    db.init_app(app)
    jwt.init_app(app)
    bcrypt.init_app(app)
    limiter.init_app(app)

    setup_logging(app)

    register_blueprints(app)
    register_jwt_handlers()
    register_error_handlers(app)

    with app.app_context():
        db.create_all()
        app.logger.info('Database tables created')

    # ============================================
    # Request/Response Logging
    # ============================================

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
        response.headers['X-XSS-Protection'] = '1; mode=block'

        return response

    # ============================================
    # Health Check
    # ============================================

    @app.route('/health', methods=['GET'])
    def health_check():
        """給 load balancer 或監控系統檢查服務是否正常"""
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
            'message': 'TrackFlow API',
            'version': app.config['API_VERSION'],
            'endpoints': {
                'health': {'path': '/health', 'methods': ['GET']},
                'auth': {
                    'register': {'path': '/api/auth/register', 'methods': ['POST']},
                    'login': {'path': '/api/auth/login', 'methods': ['POST']},
                    'logout': {'path': '/api/auth/logout', 'methods': ['POST']},
                    'me': {'path': '/api/auth/me', 'methods': ['GET']}
                },
                'teams': {
                    'list': {'path': '/api/teams', 'methods': ['POST']},
                    'search': {'path': '/api/teams/search', 'methods': ['GET']},
                    'detail': {'path': '/api/teams/:id', 'methods': ['GET', 'DELETE']},
                    'members': {'path': '/api/teams/:id/members', 'methods': ['GET']},
                    'join_requests': {'path': '/api/teams/:id/join-requests', 'methods': ['GET', 'POST']},
                    'join_request': {'path': '/api/teams/join-requests/:id', 'methods': ['PATCH']},
                    'leave_requests': {'path': '/api/teams/:id/leave-requests', 'methods': ['GET', 'POST']},
                    'leave_request': {'path': '/api/teams/leave-requests/:id', 'methods': ['PATCH']},
                    'invitations': {'path': '/api/team/invitations', 'methods': ['GET', 'POST']},
                    'invitation': {'path': '/api/team/invitations/:id', 'methods': ['PATCH']},
                    'my_teams': {'path': '/api/my-teams', 'methods': ['GET']},
                    'my_join_requests': {'path': '/api/my-join-requests', 'methods': ['GET']}
                },
                'projects': {
                    'list': {'path': '/api/projects', 'methods': ['GET', 'POST']},
                    'detail': {'path': '/api/projects/:id', 'methods': ['GET', 'PATCH', 'DELETE']},
                    'members': {'path': '/api/projects/:id/members', 'methods': ['GET']},
                    'stats': {'path': '/api/projects/:id/stats', 'methods': ['GET']}
                },
                'tasks': {
                    'list': {'path': '/api/tasks', 'methods': ['GET', 'POST']},
                    'detail': {'path': '/api/tasks/:id', 'methods': ['GET', 'PATCH', 'DELETE']},
                    'comments': {'path': '/api/tasks/:id/comments', 'methods': ['GET', 'POST']}
                },
                'notifications': {
                    'list': {'path': '/api/notifications', 'methods': ['GET', 'DELETE']},
                    'mark_read': {'path': '/api/notifications/:id/read', 'methods': ['PATCH']},
                    'read_all': {'path': '/api/notifications/read-all', 'methods': ['PATCH']}
                },
                'activity_logs': {'path': '/api/activity-logs', 'methods': ['GET']},
                'users': {'path': '/api/users/search', 'methods': ['GET']}
            }
        })

    if app.debug:
        @app.route('/debug/routes')
        def debug_routes():
            """列出所有註冊的路由 (僅開發環境)"""
            routes = []
            for rule in app.url_map.iter_rules():
                routes.append({
                    'endpoint': rule.endpoint,
                    'methods': list(rule.methods),
                    'path': str(rule)
                })
            return jsonify({'routes': routes})

    return app

# ============================================
# 啟動應用
# ============================================

if __name__ == '__main__':
    # production 用 gunicorn "app:create_app()"
    port = int(os.getenv('FLASK_PORT', 8888))

    app = create_app()
    app.run(
        debug=app.config['DEBUG'],
        port=port,
        host='0.0.0.0'
    )
