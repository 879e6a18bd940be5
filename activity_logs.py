from flask import Blueprint, request, jsonify, current_app
from flask_jwt_extended import jwt_required
from models import db, ActivityLog
from auth import get_current_user

activity_logs_bp = Blueprint('activity_logs', __name__)


def log_activity(user, activity_type, description, team_id=None, project_id=None,
                 entity_id=None, entity_name=None):
    """新增一筆活動紀錄 (跟著呼叫端的 transaction 一起 commit)"""
    activity = ActivityLog(
        team_id=team_id,
        project_id=project_id,
        user_id=user.id,
        user_name=user.name,
        type=activity_type,
        description=description,
        entity_id=entity_id,
        entity_name=entity_name
    )
    db.session.add(activity)
    return activity


@activity_logs_bp.route('/activity-logs', methods=['GET'])
@jwt_required()
def get_activity_logs():
    """
    取得團隊或專案的最近活動

    Query:
        teamId / projectId: 至少要有一個
        userId: 只看某個使用者
        type: 只看某種活動
        limit: 筆數 (預設 ACTIVITY_LOG_LIMIT)
    """
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Authentication required'}), 401

    team_id = request.args.get('teamId', type=int)
    project_id = request.args.get('projectId', type=int)
    if not team_id and not project_id:
        return jsonify({'error': 'Missing teamId or projectId'}), 400

    query = ActivityLog.query
    if team_id:
        query = query.filter_by(team_id=team_id)
    if project_id:
        query = query.filter_by(project_id=project_id)

    user_id = request.args.get('userId', type=int)
    if user_id:
        query = query.filter_by(user_id=user_id)

    activity_type = request.args.get('type')
    if activity_type:
        query = query.filter_by(type=activity_type)

    limit = request.args.get('limit', current_app.config['ACTIVITY_LOG_LIMIT'], type=int)
    limit = max(1, min(limit, current_app.config['MAX_PAGE_SIZE']))

    activities = query.order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc()).limit(limit).all()

    return jsonify({
        'activities': [{
            'id': a.id,
            'team_id': a.team_id,
            'project_id': a.project_id,
            'user_id': a.user_id,
            'user_name': a.user_name,
            'type': a.type,
            'description': a.description,
            'entity_id': a.entity_id,
            'entity_name': a.entity_name,
            'created_at': a.created_at.isoformat()
        } for a in activities]
    }), 200
