from flask import Blueprint, request, jsonify
from flask_jwt_extended import (
    create_access_token, jwt_required, get_jwt_identity,
    set_access_cookies, unset_jwt_cookies
)
from marshmallow import Schema, fields, validate, ValidationError
from sqlalchemy.exc import SQLAlchemyError
from datetime import datetime
from models import db, User
from extensions import bcrypt, limiter
import logging

auth_bp = Blueprint('auth', __name__)
logger = logging.getLogger(__name__)


# ============================================
# Input Validation Schemas (用 marshmallow)
# ============================================

class RegisterSchema(Schema):
    """註冊輸入驗證"""
    email = fields.Email(required=True, error_messages={
        'required': 'Email is required',
        'invalid': 'Invalid email format'
    })
    password = fields.Str(
        required=True,
        validate=validate.Length(min=6, max=128, error='Password must be 6-128 characters'),
        error_messages={'required': 'Password is required'}
    )
    name = fields.Str(
        required=True,
        validate=validate.Length(min=2, max=50, error='Name must be 2-50 characters'),
        error_messages={'required': 'Name is required'}
    )
    role = fields.Str(validate=validate.OneOf(['admin', 'member']), load_default='member')

class LoginSchema(Schema):
    """登入輸入驗證"""
    email = fields.Email(required=True)
    password = fields.Str(required=True)

# ============================================
# Helper Functions (供其他模組使用)
# ============================================

def validate_request_data(schema_class, data):
    """
    統一的輸入驗證函數

    Returns:
        tuple: (is_valid, data_or_errors)
    """
    schema = schema_class()
    try:
        validated_data = schema.load(data)
        return True, validated_data
    except ValidationError as err:
        return False, err.messages

def get_current_user():
    """
    取得當前登入的使用者

    Token 有效但使用者不存在或被停用時回傳 None
    """
    user_id = get_jwt_identity()
    if not user_id:
        return None
    try:
        user = db.session.get(User, int(user_id))
    except (TypeError, ValueError):
        logger.warning(f"Malformed token identity: {user_id}")
        return None
    if not user or not user.is_active:
        return None
    return user

def serialize_user(user):
    return {
        'id': user.id,
        'name': user.name,
        'email': user.email,
        'role': user.role,
        'avatar_url': user.avatar_url
    }

# ============================================
# 註冊 API
# ============================================

@auth_bp.route('/register', methods=['POST'])
@limiter.limit("5 per hour")
def register():
    """使用者註冊"""
    data = request.get_json(silent=True)

    if not data:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(RegisterSchema, data)
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    email = result['email'].lower()
    if User.query.filter_by(email=email).first():
        return jsonify({'error': 'Email already exists'}), 409

    user = User(
        email=email,
        name=result['name'].strip(),
        role=result['role'],
        password_hash=bcrypt.generate_password_hash(result['password']).decode('utf-8')
    )

    try:
        db.session.add(user)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        # 不要把 exception 細節洩漏給前端
        logger.error(f"Registration error for {email}: {str(e)}", exc_info=True)
        return jsonify({'error': 'Registration failed due to server error'}), 500

    logger.info(f"New user registered: {user.email}")

    return jsonify({
        'message': 'User registered successfully',
        'user': serialize_user(user)
    }), 201

# ============================================
# 登入 API
# ============================================

@auth_bp.route('/login', methods=['POST'])
@limiter.limit("10 per minute")
def login():
    """
    使用者登入

    token 同時放在回應內容和 auth-token cookie,
    不區分 email / password 錯誤, 避免帳號枚舉攻擊
    """
    data = request.get_json(silent=True)

    if not data:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(LoginSchema, data)
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    user = User.query.filter_by(email=result['email'].lower()).first()

    if not user or not bcrypt.check_password_hash(user.password_hash, result['password']):
        logger.warning(f"Failed login attempt for email: {result['email']}")
        return jsonify({'error': 'Invalid credentials'}), 401

    if not user.is_active:
        logger.warning(f"Inactive user login attempt: {user.email}")
        return jsonify({'error': 'Account is disabled'}), 403

    access_token = create_access_token(identity=str(user.id))

    # 更新最後登入時間, 失敗不影響登入
    try:
        user.last_login = datetime.utcnow()
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Failed to update last_login for {user.email}: {str(e)}")

    logger.info(f"User logged in: {user.email}")

    response = jsonify({
        'message': 'Login successful',
        'access_token': access_token,
        'user': serialize_user(user)
    })
    set_access_cookies(response, access_token)
    return response, 200

# ============================================
# 登出 API
# ============================================

@auth_bp.route('/logout', methods=['POST'])
def logout():
    """登出 (清除 auth-token cookie)"""
    response = jsonify({'message': 'Logout successful'})
    unset_jwt_cookies(response)
    return response, 200

# ============================================
# 取得當前使用者資訊
# ============================================

@auth_bp.route('/me', methods=['GET'])
@jwt_required()
def get_me():
    """取得當前登入使用者的資訊"""
    user = get_current_user()

    if not user:
        logger.warning(f"Token valid but user not found: {get_jwt_identity()}")
        return jsonify({'error': 'Authentication required'}), 401

    return jsonify({
        'user': {
            **serialize_user(user),
            'last_login': user.last_login.isoformat() if user.last_login else None,
            'created_at': user.created_at.isoformat()
        }
    }), 200
