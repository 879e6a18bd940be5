from flask import Blueprint, request, jsonify, current_app
from flask_jwt_extended import jwt_required
from sqlalchemy.orm import joinedload
from sqlalchemy.exc import SQLAlchemyError
from marshmallow import Schema, fields, validate
from models import db, Task, ProjectMember, TaskComment, Subtask, TimeLog
from auth import get_current_user, validate_request_data
from projects import check_project_access
from notifications import create_notification
from activity_logs import log_activity
from datetime import datetime
import logging

tasks_bp = Blueprint('tasks', __name__)
logger = logging.getLogger(__name__)

TASK_STATUSES = ['todo', 'in-progress', 'review', 'completed']

# ============================================
# Input Validation Schemas
# ============================================

class CreateTaskSchema(Schema):
    """建立任務驗證"""
    title = fields.Str(
        required=True,
        validate=validate.Length(min=1, max=255),
        error_messages={'required': 'Task title is required'}
    )
    description = fields.Str(validate=validate.Length(max=5000), load_default='')
    project_id = fields.Int(required=True, error_messages={'required': 'Project is required'})
    status = fields.Str(validate=validate.OneOf(TASK_STATUSES), load_default='todo')
    priority = fields.Str(validate=validate.OneOf(['low', 'medium', 'high']), load_default='medium')
    assignee_id = fields.Int(allow_none=True)
    due_date = fields.DateTime(allow_none=True)
    estimated_hours = fields.Float(validate=validate.Range(min=0), load_default=0)

class UpdateTaskSchema(Schema):
    """更新任務驗證"""
    title = fields.Str(validate=validate.Length(min=1, max=255))
    description = fields.Str(validate=validate.Length(max=5000))
    status = fields.Str(validate=validate.OneOf(TASK_STATUSES))
    priority = fields.Str(validate=validate.OneOf(['low', 'medium', 'high']))
    assignee_id = fields.Int(allow_none=True)
    due_date = fields.DateTime(allow_none=True)
    estimated_hours = fields.Float(validate=validate.Range(min=0))
    actual_hours = fields.Float(validate=validate.Range(min=0))

class CreateCommentSchema(Schema):
    """評論驗證"""
    content = fields.Str(
        required=True,
        validate=validate.Length(min=1, max=2000)
    )

class CreateSubtaskSchema(Schema):
    """建立子任務驗證"""
    title = fields.Str(
        required=True,
        validate=validate.Length(min=1, max=255),
        error_messages={'required': 'Subtask title is required'}
    )
    description = fields.Str(validate=validate.Length(max=2000), load_default='')

class UpdateSubtaskSchema(Schema):
    title = fields.Str(validate=validate.Length(min=1, max=255))
    description = fields.Str(validate=validate.Length(max=2000))
    completed = fields.Bool()

class CreateTimeLogSchema(Schema):
    """工時紀錄驗證"""
    hours = fields.Float(
        required=True,
        validate=validate.Range(min=0, min_inclusive=False, max=24)
    )
    date = fields.DateTime(required=True)
    description = fields.Str(validate=validate.Length(max=1000), allow_none=True)
    subtask_id = fields.Int(allow_none=True)

# ============================================
# 輔助函數
# ============================================

def check_task_access(task_id, user_id):
    """
    檢查使用者是否有權限訪問任務 (必須是任務所屬專案的成員)

    Returns:
        tuple: (has_access, task, role)
    """
    task = db.session.get(Task, task_id)
    if not task:
        return False, None, None

    has_access, project, role = check_project_access(task.project_id, user_id)
    return has_access, task, role

def is_project_member(project_id, user_id):
    return ProjectMember.query.filter_by(project_id=project_id, user_id=user_id).first() is not None

def create_task_notification(task, action_type, actor_user):
    """
    建立任務相關通知

    assigned 只通知負責人, commented / completed 通知負責人和建立者,
    操作者本人不會收到通知
    """
    notification_config = {
        'assigned': ('task_assigned', f'{actor_user.name} assigned you a task: {task.title}'),
        'completed': ('task_completed', f'{actor_user.name} completed a task: {task.title}'),
        'commented': ('comment_added', f'{actor_user.name} commented on a task: {task.title}')
    }

    config = notification_config.get(action_type)
    if not config:
        return []

    notify_users = set()
    if task.assignee_id:
        notify_users.add(task.assignee_id)
    if action_type != 'assigned':
        notify_users.add(task.created_by)
    notify_users.discard(actor_user.id)

    notification_type, message = config
    return [
        create_notification(
            user_id,
            notification_type,
            message,
            data={'task_id': task.id, 'project_id': task.project_id}
        )
        for user_id in sorted(notify_users)
    ]

def serialize_task(task):
    return {
        'id': task.id,
        'title': task.title,
        'description': task.description,
        'status': task.status,
        'priority': task.priority,
        'project_id': task.project_id,
        'assignee': {
            'id': task.assignee.id,
            'name': task.assignee.name
        } if task.assignee_id else None,
        'created_by': {
            'id': task.creator.id,
            'name': task.creator.name
        },
        'estimated_hours': task.estimated_hours,
        'actual_hours': task.actual_hours,
        'due_date': task.due_date.isoformat() if task.due_date else None,
        'completed_at': task.completed_at.isoformat() if task.completed_at else None,
        'created_at': task.created_at.isoformat()
    }

def sync_task_status(task):
    """
    依子任務調整母任務狀態

    全部完成 -> completed, 有未完成而母任務是 completed -> in-progress,
    沒有子任務時不動
    """
    subtasks = Subtask.query.filter_by(task_id=task.id).all()
    if not subtasks:
        return

    all_completed = all(s.completed for s in subtasks)
    if all_completed and task.status != 'completed':
        task.status = 'completed'
        task.completed_at = datetime.utcnow()
    elif not all_completed and task.status == 'completed':
        task.status = 'in-progress'
        task.completed_at = None

def serialize_subtask(subtask):
    return {
        'id': subtask.id,
        'task_id': subtask.task_id,
        'title': subtask.title,
        'description': subtask.description,
        'completed': subtask.completed,
        'assignee_id': subtask.assignee_id,
        'created_at': subtask.created_at.isoformat(),
        'updated_at': subtask.updated_at.isoformat() if subtask.updated_at else None
    }

def serialize_time_log(log):
    return {
        'id': log.id,
        'task_id': log.task_id,
        'subtask_id': log.subtask_id,
        'subtask_title': log.subtask.title if log.subtask else None,
        'user_id': log.user_id,
        'hours': log.hours,
        'date': log.date.isoformat(),
        'description': log.description,
        'created_at': log.created_at.isoformat()
    }

# ============================================
# 建立任務
# ============================================

@tasks_bp.route('/tasks', methods=['POST'])
@jwt_required()
def create_task():
    """在專案中建立任務, 有指派對象時通知負責人"""
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Authentication required'}), 401

    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(CreateTaskSchema, data)
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    project_id = result['project_id']
    has_access, project, role = check_project_access(project_id, current_user.id)
    if not project:
        return jsonify({'error': 'Project not found'}), 404
    if not has_access:
        return jsonify({'error': 'Permission denied'}), 403

    # 負責人必須是專案成員
    if result.get('assignee_id') and not is_project_member(project_id, result['assignee_id']):
        return jsonify({'error': 'Assigned user is not a member of this project'}), 400

    task = Task(
        title=result['title'],
        description=result.get('description'),
        project_id=project_id,
        created_by=current_user.id,
        assignee_id=result.get('assignee_id'),
        status=result['status'],
        priority=result['priority'],
        due_date=result.get('due_date'),
        estimated_hours=result['estimated_hours']
    )
    if task.status == 'completed':
        task.completed_at = datetime.utcnow()

    try:
        db.session.add(task)
        db.session.flush()  # 取得 task.id

        if task.assignee_id:
            create_task_notification(task, 'assigned', current_user)

        log_activity(
            current_user,
            'task_created',
            f'{current_user.name} created task {task.title}',
            project_id=project_id,
            entity_id=task.id,
            entity_name=task.title
        )

        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Task creation error: {str(e)}", exc_info=True)
        return jsonify({'error': 'Task creation failed due to server error'}), 500

    logger.info(f"Task created: {task.title} in project {project_id} by user {current_user.email}")

    return jsonify({
        'message': 'Task created successfully',
        'task': serialize_task(task)
    }), 201

# ============================================
# 查詢我的任務
# ============================================

@tasks_bp.route('/tasks', methods=['GET'])
@jwt_required()
def get_my_tasks():
    """查詢指派給我或我建立的任務"""
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Authentication required'}), 401

    query = Task.query.filter(
        (Task.assignee_id == current_user.id) | (Task.created_by == current_user.id)
    ).options(
        joinedload(Task.creator),
        joinedload(Task.assignee)
    )

    status = request.args.get('status')
    if status:
        query = query.filter_by(status=status)

    project_id = request.args.get('project_id', type=int)
    if project_id:
        query = query.filter_by(project_id=project_id)

    page = request.args.get('page', 1, type=int)
    per_page = request.args.get('per_page', current_app.config['DEFAULT_PAGE_SIZE'], type=int)
    per_page = min(per_page, current_app.config['MAX_PAGE_SIZE'])

    tasks = query.order_by(Task.created_at.desc()).paginate(page=page, per_page=per_page, error_out=False)

    return jsonify({
        'tasks': [serialize_task(t) for t in tasks.items],
        'total': tasks.total,
        'page': page,
        'per_page': per_page,
        'total_pages': tasks.pages
    }), 200

# ============================================
# 查詢單一任務
# ============================================

@tasks_bp.route('/tasks/<int:task_id>', methods=['GET'])
@jwt_required()
def get_task(task_id):
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Authentication required'}), 401

    has_access, task, role = check_task_access(task_id, current_user.id)
    if not task:
        return jsonify({'error': 'Task not found'}), 404
    if not has_access:
        return jsonify({'error': 'Permission denied'}), 403

    return jsonify({
        'task': {
            **serialize_task(task),
            'comment_count': TaskComment.query.filter_by(task_id=task_id).count()
        }
    }), 200

# ============================================
# 更新任務
# ============================================

@tasks_bp.route('/tasks/<int:task_id>', methods=['PATCH'])
@jwt_required()
def update_task(task_id):
    """
    更新任務資訊

    狀態變成 completed 時寫入 completed_at 並通知建立者,
    改派負責人時通知新的負責人
    """
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Authentication required'}), 401

    has_access, task, role = check_task_access(task_id, current_user.id)
    if not task:
        return jsonify({'error': 'Task not found'}), 404
    if not has_access:
        return jsonify({'error': 'Permission denied'}), 403

    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(UpdateTaskSchema, data)
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    if result.get('assignee_id') and not is_project_member(task.project_id, result['assignee_id']):
        return jsonify({'error': 'Assigned user is not a member of this project'}), 400

    changes = {}
    old_status = task.status

    for field in ['title', 'description', 'status', 'priority', 'due_date',
                  'estimated_hours', 'actual_hours', 'assignee_id']:
        if field in result:
            old_value = getattr(task, field)
            new_value = result[field]
            if old_value != new_value:
                changes[field] = {'old': str(old_value), 'new': str(new_value)}
                setattr(task, field, new_value)

    if 'status' in changes:
        if old_status != 'completed' and task.status == 'completed':
            task.completed_at = datetime.utcnow()
        elif old_status == 'completed' and task.status != 'completed':
            task.completed_at = None

    if not changes:
        return jsonify({'message': 'No changes to update'}), 200

    try:
        db.session.flush()

        if 'status' in changes and task.status == 'completed':
            create_task_notification(task, 'completed', current_user)

        if 'assignee_id' in changes and task.assignee_id:
            create_task_notification(task, 'assigned', current_user)

        log_activity(
            current_user,
            'task_completed' if task.status == 'completed' and 'status' in changes else 'task_updated',
            f'{current_user.name} updated task {task.title}',
            project_id=task.project_id,
            entity_id=task.id,
            entity_name=task.title
        )

        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Task update error: {str(e)}", exc_info=True)
        return jsonify({'error': 'Task update failed due to server error'}), 500

    logger.info(f"Task {task_id} updated by user {current_user.email}")

    return jsonify({
        'message': 'Task updated successfully',
        'task': serialize_task(task),
        'changes': changes
    }), 200

# ============================================
# 刪除任務
# ============================================

@tasks_bp.route('/tasks/<int:task_id>', methods=['DELETE'])
@jwt_required()
def delete_task(task_id):
    """刪除任務 (任務建立者或專案 owner)"""
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Authentication required'}), 401

    has_access, task, role = check_task_access(task_id, current_user.id)
    if not task:
        return jsonify({'error': 'Task not found'}), 404
    if not has_access:
        return jsonify({'error': 'Permission denied'}), 403

    if task.created_by != current_user.id and role != 'owner':
        return jsonify({'error': 'Only task creator or project owner can delete task'}), 403

    try:
        task_title = task.title

        # comments 由 cascade 刪除
        db.session.delete(task)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Task deletion error: {str(e)}", exc_info=True)
        return jsonify({'error': 'Task deletion failed due to server error'}), 500

    logger.info(f"Task deleted: {task_title} by user {current_user.email}")

    return jsonify({'message': 'Task deleted successfully'}), 200

# ============================================
# 任務評論
# ============================================

@tasks_bp.route('/tasks/<int:task_id>/comments', methods=['GET'])
@jwt_required()
def get_task_comments(task_id):
    """取得任務評論 (舊的在前)"""
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Authentication required'}), 401

    has_access, task, role = check_task_access(task_id, current_user.id)
    if not task:
        return jsonify({'error': 'Task not found'}), 404
    if not has_access:
        return jsonify({'error': 'Permission denied'}), 403

    comments = TaskComment.query.filter_by(task_id=task_id).options(
        joinedload(TaskComment.author)
    ).order_by(TaskComment.created_at.asc(), TaskComment.id.asc()).all()

    return jsonify({
        'comments': [{
            'id': c.id,
            'content': c.content,
            'author': {
                'id': c.author.id,
                'name': c.author.name,
                'avatar_url': c.author.avatar_url
            },
            'created_at': c.created_at.isoformat()
        } for c in comments]
    }), 200

@tasks_bp.route('/tasks/<int:task_id>/comments', methods=['POST'])
@jwt_required()
def create_task_comment(task_id):
    """新增任務評論"""
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Authentication required'}), 401

    has_access, task, role = check_task_access(task_id, current_user.id)
    if not task:
        return jsonify({'error': 'Task not found'}), 404
    if not has_access:
        return jsonify({'error': 'Permission denied'}), 403

    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(CreateCommentSchema, data)
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    try:
        comment = TaskComment(
            task_id=task_id,
            user_id=current_user.id,
            content=result['content']
        )
        db.session.add(comment)
        db.session.flush()

        create_task_notification(task, 'commented', current_user)

        log_activity(
            current_user,
            'comment_added',
            f'{current_user.name} commented on task {task.title}',
            project_id=task.project_id,
            entity_id=task.id,
            entity_name=task.title
        )

        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Comment creation error: {str(e)}", exc_info=True)
        return jsonify({'error': 'Comment creation failed due to server error'}), 500

    logger.info(f"Comment added to task {task_id} by user {current_user.email}")

    return jsonify({
        'message': 'Comment added successfully',
        'comment': {
            'id': comment.id,
            'content': comment.content,
            'author': {
                'id': current_user.id,
                'name': current_user.name
            },
            'created_at': comment.created_at.isoformat()
        }
    }), 201

# ============================================
# 子任務
# ============================================

def _get_subtask_with_access(subtask_id, user_id):
    """
    Returns:
        tuple: (subtask, task, error_response)
    """
    subtask = db.session.get(Subtask, subtask_id)
    if not subtask:
        return None, None, (jsonify({'error': 'Subtask not found'}), 404)

    has_access, task, role = check_task_access(subtask.task_id, user_id)
    if not has_access:
        return None, None, (jsonify({'error': 'Permission denied'}), 403)

    return subtask, task, None

@tasks_bp.route('/tasks/<int:task_id>/subtasks', methods=['GET'])
@jwt_required()
def get_subtasks(task_id):
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Authentication required'}), 401

    has_access, task, role = check_task_access(task_id, current_user.id)
    if not task:
        return jsonify({'error': 'Task not found'}), 404
    if not has_access:
        return jsonify({'error': 'Permission denied'}), 403

    subtasks = Subtask.query.filter_by(task_id=task_id)\
        .order_by(Subtask.created_at.asc(), Subtask.id.asc()).all()

    return jsonify({'subtasks': [serialize_subtask(s) for s in subtasks]}), 200

@tasks_bp.route('/tasks/<int:task_id>/subtasks', methods=['POST'])
@jwt_required()
def create_subtask(task_id):
    """新增子任務, 母任務已完成時退回 in-progress"""
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Authentication required'}), 401

    has_access, task, role = check_task_access(task_id, current_user.id)
    if not task:
        return jsonify({'error': 'Task not found'}), 404
    if not has_access:
        return jsonify({'error': 'Permission denied'}), 403

    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(CreateSubtaskSchema, data)
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    try:
        subtask = Subtask(
            task_id=task.id,
            title=result['title'],
            description=result['description'],
            completed=False,
            assignee_id=current_user.id
        )
        db.session.add(subtask)
        sync_task_status(task)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Subtask creation error: {str(e)}", exc_info=True)
        return jsonify({'error': 'Subtask creation failed due to server error'}), 500

    logger.info(f"Subtask {subtask.id} added to task {task_id} by user {current_user.email}")

    return jsonify({'subtask': serialize_subtask(subtask)}), 201

@tasks_bp.route('/subtasks/<int:subtask_id>', methods=['PATCH'])
@jwt_required()
def update_subtask(subtask_id):
    """更新子任務, 完成狀態改變時同步母任務"""
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Authentication required'}), 401

    subtask, task, error = _get_subtask_with_access(subtask_id, current_user.id)
    if error:
        return error

    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(UpdateSubtaskSchema, data)
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    for field in ['title', 'description', 'completed']:
        if field in result:
            setattr(subtask, field, result[field])

    try:
        sync_task_status(task)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Subtask update error: {str(e)}", exc_info=True)
        return jsonify({'error': 'Subtask update failed due to server error'}), 500

    return jsonify({
        'subtask': serialize_subtask(subtask),
        'task_status': task.status
    }), 200

@tasks_bp.route('/subtasks/<int:subtask_id>', methods=['DELETE'])
@jwt_required()
def delete_subtask(subtask_id):
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Authentication required'}), 401

    subtask, task, error = _get_subtask_with_access(subtask_id, current_user.id)
    if error:
        return error

    try:
        # 工時紀錄保留, 只解除子任務關聯
        TimeLog.query.filter_by(subtask_id=subtask.id).update(
            {'subtask_id': None}, synchronize_session=False
        )
        db.session.delete(subtask)
        sync_task_status(task)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Subtask deletion error: {str(e)}", exc_info=True)
        return jsonify({'error': 'Subtask deletion failed due to server error'}), 500

    return jsonify({'message': 'Subtask deleted successfully'}), 200

# ============================================
# 工時紀錄
# ============================================

@tasks_bp.route('/tasks/<int:task_id>/timelog', methods=['POST'])
@jwt_required()
def create_time_log(task_id):
    """記錄自己在任務 (或其子任務) 上花的時間"""
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Authentication required'}), 401

    has_access, task, role = check_task_access(task_id, current_user.id)
    if not task:
        return jsonify({'error': 'Task not found'}), 404
    if not has_access:
        return jsonify({'error': 'Permission denied'}), 403

    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(CreateTimeLogSchema, data)
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    subtask_id = result.get('subtask_id')
    if subtask_id:
        subtask = db.session.get(Subtask, subtask_id)
        if not subtask or subtask.task_id != task.id:
            return jsonify({'error': 'Subtask does not belong to this task'}), 400

    try:
        time_log = TimeLog(
            task_id=task.id,
            subtask_id=subtask_id,
            user_id=current_user.id,
            hours=result['hours'],
            date=result['date'],
            description=result.get('description')
        )
        db.session.add(time_log)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Time log creation error: {str(e)}", exc_info=True)
        return jsonify({'error': 'Time log creation failed due to server error'}), 500

    logger.info(f"Time log {time_log.id} ({time_log.hours}h) on task {task_id} by user {current_user.email}")

    return jsonify({'time_log': serialize_time_log(time_log)}), 201

@tasks_bp.route('/timelogs', methods=['GET'])
@jwt_required()
def get_my_time_logs():
    """我的工時紀錄 (新的在前), 可用 task_id 篩選"""
    current_user = get_current_user()
    if not current_user:
        return jsonify({'error': 'Authentication required'}), 401

    query = TimeLog.query.filter_by(user_id=current_user.id).options(joinedload(TimeLog.subtask))

    task_id = request.args.get('task_id', type=int)
    if task_id:
        query = query.filter_by(task_id=task_id)

    logs = query.order_by(TimeLog.date.desc(), TimeLog.id.desc()).all()

    return jsonify({
        'time_logs': [serialize_time_log(log) for log in logs],
        'total_hours': round(sum(log.hours for log in logs), 2)
    }), 200
