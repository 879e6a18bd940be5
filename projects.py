from flask import Blueprint, request, jsonify, current_app
from flask_jwt_extended import jwt_required
from sqlalchemy.orm import joinedload
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy import func, case, and_
from marshmallow import Schema, fields, validate
from models import db, Project, ProjectMember, ActivityLog, Task, Team
from auth import get_current_user, validate_request_data
from activity_logs import log_activity
from datetime import datetime
import logging

projects_bp = Blueprint('projects', __name__)
logger = logging.getLogger(__name__)

PROJECT_STATUSES = ['not-started', 'in-progress', 'completed', 'on-hold']
PRIORITIES = ['low', 'medium', 'high']

# ============================================
# Input Validation Schemas
# ============================================

class CreateProjectSchema(Schema):
    """建立專案驗證"""
    title = fields.Str(
        required=True,
        validate=validate.Length(min=1, max=255),
        error_messages={'required': 'Project title is required'}
    )
    description = fields.Str(validate=validate.Length(max=2000), load_default='')
    status = fields.Str(validate=validate.OneOf(PROJECT_STATUSES), load_default='not-started')
    priority = fields.Str(validate=validate.OneOf(PRIORITIES), load_default='medium')
    start_date = fields.DateTime(allow_none=True)
    due_date = fields.DateTime(allow_none=True)
    color = fields.Str(validate=validate.Regexp(r'^#[0-9A-Fa-f]{6}$'), load_default='#3B82F6')

class UpdateProjectSchema(Schema):
    """更新專案驗證"""
    title = fields.Str(validate=validate.Length(min=1, max=255))
    description = fields.Str(validate=validate.Length(max=2000))
    status = fields.Str(validate=validate.OneOf(PROJECT_STATUSES))
    priority = fields.Str(validate=validate.OneOf(PRIORITIES))
    progress = fields.Int(validate=validate.Range(min=0, max=100))
    due_date = fields.DateTime(allow_none=True)
    color = fields.Str(validate=validate.Regexp(r'^#[0-9A-Fa-f]{6}$'))

# ============================================
# 輔助函數
# ============================================

def check_project_access(project_id, user_id):
    """
    檢查使用者是否有權限訪問專案

    Returns:
        tuple: (has_access: bool, project: Project|None, role: str|None)
    """
    project = db.session.get(Project, project_id)
    if not project:
        return False, None, None

    if project.owner_id == user_id:
        return True, project, 'owner'

    member = ProjectMember.query.filter_by(
        project_id=project_id,
        user_id=user_id
    ).first()

    if member:
        return True, project, member.role

    return False, project, None

def add_project_member(project_id, user_id, role='member'):
    """
    把使用者加進專案成員集合

    已經是成員時不做任何事 (集合語意, 不會重複)
    """
    existing = ProjectMember.query.filter_by(project_id=project_id, user_id=user_id).first()
    if existing:
        return existing, False

    member = ProjectMember(project_id=project_id, user_id=user_id, role=role)
    db.session.add(member)
    return member, True

def serialize_project(project):
    return {
        'id': project.id,
        'title': project.title,
        'description': project.description,
        'status': project.status,
        'priority': project.priority,
        'progress': project.progress,
        'color': project.color,
        'start_date': project.start_date.isoformat() if project.start_date else None,
        'due_date': project.due_date.isoformat() if project.due_date else None,
        'owner': {
            'id': project.owner.id,
            'name': project.owner.name
        },
        'created_at': project.created_at.isoformat()
    }

# ============================================
# 建立專案
# ============================================

@projects_bp.route('', methods=['POST'])
@jwt_required()
def create_project():
    """建立新專案, 建立者自動成為 owner 成員"""
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Authentication required'}), 401

    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(CreateProjectSchema, data)
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    project = Project(
        title=result['title'],
        description=result.get('description'),
        status=result['status'],
        priority=result['priority'],
        start_date=result.get('start_date'),
        due_date=result.get('due_date'),
        color=result['color'],
        owner_id=current_user.id
    )

    try:
        db.session.add(project)
        db.session.flush()  # 取得 project.id 但不 commit

        add_project_member(project.id, current_user.id, role='owner')

        log_activity(
            current_user,
            'project_created',
            f'{current_user.name} created project {project.title}',
            project_id=project.id,
            entity_id=project.id,
            entity_name=project.title
        )

        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Project creation error: {str(e)}", exc_info=True)
        return jsonify({'error': 'Project creation failed due to server error'}), 500

    logger.info(f"Project created: {project.title} by user {current_user.email}")

    return jsonify({
        'message': 'Project created successfully',
        'project': serialize_project(project)
    }), 201

# ============================================
# 查詢我的所有專案
# ============================================

@projects_bp.route('', methods=['GET'])
@jwt_required()
def get_my_projects():
    """查詢我擁有或參與的所有專案"""
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Authentication required'}), 401

    page = request.args.get('page', 1, type=int)
    per_page = request.args.get('per_page', current_app.config['DEFAULT_PAGE_SIZE'], type=int)
    per_page = min(per_page, current_app.config['MAX_PAGE_SIZE'])

    member_project_ids = db.select(ProjectMember.project_id).where(
        ProjectMember.user_id == current_user.id
    )

    projects = Project.query.options(joinedload(Project.owner)).filter(
        (Project.owner_id == current_user.id) | (Project.id.in_(member_project_ids))
    ).order_by(Project.created_at.desc()).paginate(page=page, per_page=per_page, error_out=False)

    return jsonify({
        'projects': [{
            **serialize_project(p),
            'my_role': 'owner' if p.owner_id == current_user.id else 'member'
        } for p in projects.items],
        'total': projects.total,
        'page': page,
        'per_page': per_page,
        'total_pages': projects.pages
    }), 200

# ============================================
# 查詢單一專案
# ============================================

@projects_bp.route('/<int:project_id>', methods=['GET'])
@jwt_required()
def get_project(project_id):
    """查詢專案詳細資訊 (含成員列表)"""
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Authentication required'}), 401

    has_access, project, role = check_project_access(project_id, current_user.id)
    if not project:
        return jsonify({'error': 'Project not found'}), 404
    if not has_access:
        return jsonify({'error': 'Permission denied'}), 403

    members = ProjectMember.query.filter_by(project_id=project_id).options(
        joinedload(ProjectMember.user)
    ).all()

    return jsonify({
        'project': {
            **serialize_project(project),
            'my_role': role,
            'members': [{
                'id': m.user.id,
                'name': m.user.name,
                'email': m.user.email,
                'role': m.role,
                'joined_at': m.joined_at.isoformat()
            } for m in members],
            'task_count': Task.query.filter_by(project_id=project_id).count()
        }
    }), 200

# ============================================
# 更新專案
# ============================================

@projects_bp.route('/<int:project_id>', methods=['PATCH'])
@jwt_required()
def update_project(project_id):
    """更新專案資訊 (只有 owner)"""
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Authentication required'}), 401

    project = db.session.get(Project, project_id)
    if not project:
        return jsonify({'error': 'Project not found'}), 404

    if project.owner_id != current_user.id:
        return jsonify({'error': 'Only the project owner can update the project'}), 403

    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(UpdateProjectSchema, data)
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    # 記錄變更
    changes = {}
    for field in ['title', 'description', 'status', 'priority', 'progress', 'due_date', 'color']:
        if field in result:
            old_value = getattr(project, field)
            new_value = result[field]
            if old_value != new_value:
                changes[field] = {'old': str(old_value), 'new': str(new_value)}
                setattr(project, field, new_value)

    if not changes:
        return jsonify({'message': 'No changes to update'}), 200

    try:
        log_activity(
            current_user,
            'project_updated',
            f'{current_user.name} updated project {project.title}',
            project_id=project.id,
            entity_id=project.id,
            entity_name=project.title
        )
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Project update error: {str(e)}", exc_info=True)
        return jsonify({'error': 'Project update failed due to server error'}), 500

    logger.info(f"Project {project_id} updated by user {current_user.email}")

    return jsonify({
        'message': 'Project updated successfully',
        'project': serialize_project(project),
        'changes': changes
    }), 200

# ============================================
# 刪除專案
# ============================================

@projects_bp.route('/<int:project_id>', methods=['DELETE'])
@jwt_required()
def delete_project(project_id):
    """
    刪除專案 (只有 owner 可以)

    任務和成員由 cascade 刪除, 團隊保留但解除專案關聯
    """
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Authentication required'}), 401

    project = db.session.get(Project, project_id)
    if not project:
        return jsonify({'error': 'Project not found'}), 404

    if project.owner_id != current_user.id:
        return jsonify({'error': 'Only project owner can delete the project'}), 403

    try:
        project_title = project.title

        Team.query.filter_by(project_id=project_id).update(
            {'project_id': None}, synchronize_session=False
        )
        ActivityLog.query.filter_by(project_id=project_id).delete(synchronize_session=False)

        db.session.delete(project)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Project deletion error: {str(e)}", exc_info=True)
        return jsonify({'error': 'Project deletion failed due to server error'}), 500

    logger.info(f"Project deleted: {project_title} by user {current_user.email}")

    return jsonify({'message': 'Project deleted successfully'}), 200

# ============================================
# 專案成員
# ============================================

@projects_bp.route('/<int:project_id>/members', methods=['GET'])
@jwt_required()
def get_project_members(project_id):
    """取得專案成員列表"""
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Authentication required'}), 401

    has_access, project, role = check_project_access(project_id, current_user.id)
    if not project:
        return jsonify({'error': 'Project not found'}), 404
    if not has_access:
        return jsonify({'error': 'Permission denied'}), 403

    members = ProjectMember.query.filter_by(project_id=project_id).options(
        joinedload(ProjectMember.user)
    ).all()

    return jsonify({
        'members': [{
            'id': m.user.id,
            'name': m.user.name,
            'email': m.user.email,
            'role': m.role,
            'joined_at': m.joined_at.isoformat()
        } for m in members],
        'total': len(members)
    }), 200

# ============================================
# 專案統計
# ============================================

@projects_bp.route('/<int:project_id>/stats', methods=['GET'])
@jwt_required()
def get_project_stats(project_id):
    """取得專案統計資訊 (單一聚合查詢)"""
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Authentication required'}), 401

    has_access, project, role = check_project_access(project_id, current_user.id)
    if not project:
        return jsonify({'error': 'Project not found'}), 404
    if not has_access:
        return jsonify({'error': 'Permission denied'}), 403

    task_stats = db.session.query(
        func.count(Task.id).label('total'),
        func.sum(case((Task.status == 'todo', 1), else_=0)).label('todo'),
        func.sum(case((Task.status == 'in-progress', 1), else_=0)).label('in_progress'),
        func.sum(case((Task.status == 'review', 1), else_=0)).label('review'),
        func.sum(case((Task.status == 'completed', 1), else_=0)).label('completed'),
        func.sum(case((and_(Task.due_date < datetime.utcnow(), Task.status != 'completed'), 1), else_=0)).label('overdue')
    ).filter(Task.project_id == project_id).first()

    member_count = ProjectMember.query.filter_by(project_id=project_id).count()

    return jsonify({
        'tasks': {
            'total': task_stats.total or 0,
            'todo': task_stats.todo or 0,
            'in_progress': task_stats.in_progress or 0,
            'review': task_stats.review or 0,
            'completed': task_stats.completed or 0,
            'overdue': task_stats.overdue or 0
        },
        'members': member_count,
        'completion_rate': round((task_stats.completed or 0) / (task_stats.total or 1) * 100, 2)
    }), 200
