from flask import Blueprint, request, jsonify
from flask_jwt_extended import jwt_required
from sqlalchemy import or_
from models import User
from auth import get_current_user, serialize_user

users_bp = Blueprint('users', __name__)

SEARCH_LIMIT = 10

@users_bp.route('/users/search', methods=['GET'])
@jwt_required()
def search_users():
    """用名字或 email 搜尋使用者 (不含自己), 給邀請成員使用"""
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Authentication required'}), 401

    query = (request.args.get('q') or '').strip()
    if not query:
        return jsonify({'error': "Query parameter 'q' is required"}), 400

    pattern = f'%{query}%'
    users = User.query.filter(
        or_(User.name.ilike(pattern), User.email.ilike(pattern)),
        User.id != current_user.id,
        User.is_active.is_(True)
    ).order_by(User.name).limit(SEARCH_LIMIT).all()

    return jsonify({'users': [serialize_user(u) for u in users]}), 200
