# ============================================
# 通知系統
# create_notification 是其他模組寫入通知的唯一入口
# ============================================

from flask import Blueprint, request, jsonify, current_app
from flask_jwt_extended import jwt_required
from sqlalchemy.exc import SQLAlchemyError
from models import db, Notification
from auth import get_current_user
import logging

notifications_bp = Blueprint('notifications', __name__)
logger = logging.getLogger(__name__)

# ============================================
# 0. 建立通知 (內部使用, 不 commit)
# ============================================

def create_notification(user_id, notification_type, message, data=None):
    """為單一使用者新增一筆通知, 由呼叫端決定何時 commit"""
    notification = Notification(
        user_id=user_id,
        type=notification_type,
        message=message,
        data=data or {}
    )
    db.session.add(notification)
    return notification

def serialize_notification(n):
    return {
        'id': n.id,
        'type': n.type,
        'message': n.message,
        'data': n.data or {},
        'is_read': n.is_read,
        'created_at': n.created_at.isoformat()
    }

# ============================================
# 1. 取得使用者的通知
# ============================================

@notifications_bp.route('/notifications', methods=['GET'])
@jwt_required()
def get_notifications():
    """取得當前使用者的通知 (最新的在前)"""
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Authentication required'}), 401

    unread_only = request.args.get('unread_only', '').lower() in ('1', 'true')
    notification_type = request.args.get('type')
    page = request.args.get('page', 1, type=int)
    per_page = request.args.get('per_page', current_app.config['DEFAULT_PAGE_SIZE'], type=int)
    per_page = min(per_page, current_app.config['MAX_PAGE_SIZE'])

    query = Notification.query.filter_by(user_id=current_user.id)

    if unread_only:
        query = query.filter_by(is_read=False)

    if notification_type:
        query = query.filter_by(type=notification_type)

    query = query.order_by(Notification.created_at.desc(), Notification.id.desc())

    notifications = query.paginate(page=page, per_page=per_page, error_out=False)

    return jsonify({
        'notifications': [serialize_notification(n) for n in notifications.items],
        'total': notifications.total,
        'unread_count': Notification.query.filter_by(user_id=current_user.id, is_read=False).count(),
        'page': page,
        'per_page': per_page,
        'total_pages': notifications.pages
    }), 200

# ============================================
# 2. 標記通知為已讀
# ============================================

@notifications_bp.route('/notifications/<int:notification_id>/read', methods=['PATCH'])
@jwt_required()
def mark_notification_read(notification_id):
    """標記單個通知為已讀"""
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Authentication required'}), 401

    notification = Notification.query.filter_by(
        id=notification_id,
        user_id=current_user.id
    ).first()

    if not notification:
        return jsonify({'error': 'Notification not found'}), 404

    notification.is_read = True

    try:
        db.session.commit()
        return jsonify({'message': 'Notification marked as read'}), 200
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Mark notification read error: {str(e)}", exc_info=True)
        return jsonify({'error': 'Failed to update notification'}), 500

@notifications_bp.route('/notifications/read-all', methods=['PATCH'])
@jwt_required()
def mark_all_notifications_read():
    """標記所有通知為已讀"""
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Authentication required'}), 401

    try:
        modified = Notification.query.filter_by(user_id=current_user.id, is_read=False)\
            .update({'is_read': True}, synchronize_session=False)
        db.session.commit()

        return jsonify({
            'message': 'All notifications marked as read',
            'modified_count': modified
        }), 200
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Mark all notifications read error: {str(e)}", exc_info=True)
        return jsonify({'error': 'Failed to update notifications'}), 500

# ============================================
# 3. 刪除通知
# ============================================

@notifications_bp.route('/notifications/<int:notification_id>', methods=['DELETE'])
@jwt_required()
def delete_notification(notification_id):
    """刪除單個通知 (只能刪自己的)"""
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Authentication required'}), 401

    notification = Notification.query.filter_by(
        id=notification_id,
        user_id=current_user.id
    ).first()

    if not notification:
        return jsonify({'error': 'Notification not found or not yours'}), 404

    try:
        db.session.delete(notification)
        db.session.commit()
        return jsonify({'message': 'Notification deleted'}), 200
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Delete notification error: {str(e)}", exc_info=True)
        return jsonify({'error': 'Failed to delete notification'}), 500

@notifications_bp.route('/notifications', methods=['DELETE'])
@jwt_required()
def delete_all_notifications():
    """清除當前使用者的所有通知"""
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Authentication required'}), 401

    try:
        deleted = Notification.query.filter_by(user_id=current_user.id)\
            .delete(synchronize_session=False)
        db.session.commit()

        return jsonify({
            'message': f'Cleared {deleted} notifications',
            'deleted_count': deleted
        }), 200
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Clear notifications error: {str(e)}", exc_info=True)
        return jsonify({'error': 'Failed to clear notifications'}), 500
