"""
團隊成員工作流程

包含成員名冊 (TeamMember) 和三個獨立的狀態機:

    加入申請  JoinRequest   pending -> accepted | declined
    離開申請  LeaveRequest  pending -> accepted | declined
    邀請      Invitation    pending -> accepted | declined

每個狀態機以自己的 id 為鍵, 結束時改動成員名冊並送出一則通知。
審核狀態的轉換一律用條件式更新 (WHERE status = 'pending'),
同一筆申請被處理兩次時第二次是 no-op, 不會重複加入成員或重複通知。

函數不處理 HTTP, 失敗時丟出 errors.py 裡的例外;
資料庫錯誤會 rollback 後轉成 InternalError。
"""

from functools import wraps
from datetime import datetime
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import joinedload
from models import (
    db, User, Team, TeamMember, JoinRequest, LeaveRequest, Invitation,
    Project, ActivityLog
)
from errors import InvalidInput, DuplicatePending, Forbidden, NotFound, InternalError
from notifications import create_notification
from activity_logs import log_activity
from projects import add_project_member
import logging

logger = logging.getLogger(__name__)

DECISIONS = ('accepted', 'declined')
INVITATION_ROLES = ('admin', 'member')
LEAVE_REASON_MIN_LENGTH = 5
TEAM_NAME_MIN_LENGTH = 2


def store_operation(action):
    """把 SQLAlchemy 錯誤轉成 InternalError, 並 rollback 這次的 session"""
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except SQLAlchemyError as e:
                db.session.rollback()
                logger.error(f"{action} failed: {str(e)}", exc_info=True)
                raise InternalError(f'{action} failed due to server error', detail=str(e)) from e
        return wrapper
    return decorator


def _validate_decision(decision):
    if decision not in DECISIONS:
        raise InvalidInput('Invalid status')


def _transition(model, record_id, decision):
    """
    條件式狀態轉換: 只有目前還是 pending 才會更新

    Returns:
        bool: True 表示這次呼叫完成了轉換, False 表示已經被處理過
    """
    updated = model.query.filter_by(id=record_id, status='pending').update(
        {'status': decision, 'updated_at': datetime.utcnow()},
        synchronize_session='fetch'
    )
    return updated == 1


def _get_team_or_404(team_id):
    team = db.session.get(Team, team_id)
    if not team:
        raise NotFound('Team not found')
    return team


def _require_team_creator(team, user, action):
    if team.created_by != user.id:
        raise Forbidden(f'Only the team creator can {action}')

# ============================================
# 成員名冊
# 呼叫端負責維持每個 (team, user) 只有一筆 active
# ============================================

def add_member(team_id, user_id, role='member'):
    member = TeamMember(team_id=team_id, user_id=user_id, role=role, status='active')
    db.session.add(member)
    return member


def remove_member(team_id, user_id):
    """刪除 (team, user) 的成員紀錄, 回傳刪除筆數"""
    return TeamMember.query.filter_by(team_id=team_id, user_id=user_id)\
        .delete(synchronize_session='fetch')


def is_member(team_id, user_id):
    return TeamMember.query.filter_by(
        team_id=team_id, user_id=user_id, status='active'
    ).first() is not None


def list_members(team_id):
    """成員列表, 附上使用者資料"""
    members = TeamMember.query.filter_by(team_id=team_id).options(
        joinedload(TeamMember.user)
    ).order_by(TeamMember.created_at.asc(), TeamMember.id.asc()).all()

    return [{
        'id': m.user.id,
        'name': m.user.name,
        'email': m.user.email,
        'avatar_url': m.user.avatar_url,
        'team_role': m.role,
        'status': m.status,
        'joined_at': m.created_at.isoformat()
    } for m in members]


def count_members(team_id):
    return TeamMember.query.filter_by(team_id=team_id).count()

# ============================================
# 團隊
# ============================================

@store_operation('Team creation')
def create_team(user, name, project_id):
    """建立團隊, 建立者成為 leader"""
    name = (name or '').strip()
    if len(name) < TEAM_NAME_MIN_LENGTH:
        raise InvalidInput('Team name is required')
    if not project_id:
        raise InvalidInput('Project is required')

    project = db.session.get(Project, project_id)
    if not project:
        raise NotFound('Project not found')

    team = Team(name=name, created_by=user.id, project_id=project.id)
    db.session.add(team)
    db.session.flush()

    add_member(team.id, user.id, role='leader')

    log_activity(
        user,
        'team_created',
        f'{user.name} created team {team.name}',
        team_id=team.id,
        entity_id=team.id,
        entity_name=team.name
    )

    db.session.commit()
    logger.info(f"Team created: {team.name} by user {user.email}")
    return team


@store_operation('Team deletion')
def delete_team(team_id, user):
    """
    刪除團隊 (只有建立者)

    一併刪除成員、加入 / 離開申請、邀請和團隊的活動紀錄
    """
    team = _get_team_or_404(team_id)
    _require_team_creator(team, user, 'delete the team')

    team_name = team.name
    TeamMember.query.filter_by(team_id=team.id).delete(synchronize_session=False)
    LeaveRequest.query.filter_by(team_id=team.id).delete(synchronize_session=False)
    JoinRequest.query.filter_by(team_id=team.id).delete(synchronize_session=False)
    Invitation.query.filter_by(workspace_id=team.id).delete(synchronize_session=False)
    ActivityLog.query.filter_by(team_id=team.id).delete(synchronize_session=False)
    db.session.delete(team)

    db.session.commit()
    logger.info(f"Team deleted: {team_name} by user {user.email}")

# ============================================
# 加入申請
# ============================================

@store_operation('Join request submission')
def submit_join_request(user, team_id):
    team = _get_team_or_404(team_id)

    if is_member(team.id, user.id):
        raise InvalidInput('You are already a member of this team.')

    existing = JoinRequest.query.filter_by(
        team_id=team.id, user_id=user.id, status='pending'
    ).first()
    if existing:
        raise DuplicatePending('You have already requested to join this team.')

    join_request = JoinRequest(team_id=team.id, user_id=user.id, status='pending')
    db.session.add(join_request)
    db.session.flush()

    create_notification(
        team.created_by,
        'join_request',
        f'{user.name} has requested to join your team ({team.name}).',
        data={'join_request_id': join_request.id, 'user_id': user.id, 'team_id': team.id}
    )

    db.session.commit()
    logger.info(f"Join request {join_request.id} submitted by user {user.email} for team {team.id}")
    return join_request


@store_operation('Join request listing')
def list_join_requests(team_id, viewer, status=None):
    team = _get_team_or_404(team_id)
    _require_team_creator(team, viewer, 'view join requests')

    query = JoinRequest.query.filter_by(team_id=team.id).options(joinedload(JoinRequest.user))
    if status:
        query = query.filter_by(status=status)
    return query.order_by(JoinRequest.created_at.desc(), JoinRequest.id.desc()).all()


@store_operation('Join request response')
def resolve_join_request(request_id, approver, decision):
    """
    審核加入申請

    Returns:
        tuple: (join_request, applied) applied 為 False 表示之前已經處理過
    """
    _validate_decision(decision)

    join_request = db.session.get(JoinRequest, request_id)
    if not join_request:
        raise NotFound('Join request not found')

    team = _get_team_or_404(join_request.team_id)
    _require_team_creator(team, approver, 'respond to join requests')

    if not _transition(JoinRequest, join_request.id, decision):
        logger.info(f"Join request {request_id} was already processed")
        return join_request, False

    if decision == 'accepted':
        if not is_member(team.id, join_request.user_id):
            add_member(team.id, join_request.user_id, role='member')

        if team.project_id:
            add_project_member(team.project_id, join_request.user_id)

        requester = db.session.get(User, join_request.user_id)
        log_activity(
            requester,
            'member_joined',
            f'{requester.name} joined team {team.name}',
            team_id=team.id,
            entity_id=team.id,
            entity_name=team.name
        )
        message = f'Your request to join the team ({team.name}) was accepted!'
    else:
        message = f'Your request to join the team ({team.name}) was declined.'

    create_notification(
        join_request.user_id,
        'join_request_response',
        message,
        data={'team_id': team.id, 'status': decision}
    )

    db.session.commit()
    logger.info(f"Join request {request_id} {decision} by user {approver.email}")
    return join_request, True

# ============================================
# 離開申請
# ============================================

@store_operation('Leave request submission')
def submit_leave_request(user, team_id, reason):
    reason = (reason or '').strip()
    if len(reason) < LEAVE_REASON_MIN_LENGTH:
        raise InvalidInput('Reason is required and must be at least 5 characters.')

    team = _get_team_or_404(team_id)

    if team.created_by == user.id:
        raise InvalidInput('The team creator cannot leave the team.')

    if not is_member(team.id, user.id):
        raise InvalidInput('You are not a member of this team.')

    existing = LeaveRequest.query.filter_by(
        team_id=team.id, user_id=user.id, status='pending'
    ).first()
    if existing:
        raise DuplicatePending('You have already requested to leave this team.')

    leave_request = LeaveRequest(team_id=team.id, user_id=user.id, reason=reason, status='pending')
    db.session.add(leave_request)
    db.session.flush()

    create_notification(
        team.created_by,
        'leave_request',
        f'{user.name} has requested to leave your team ({team.name}).',
        data={
            'leave_request_id': leave_request.id,
            'user_id': user.id,
            'team_id': team.id,
            'reason': reason
        }
    )

    db.session.commit()
    logger.info(f"Leave request {leave_request.id} submitted by user {user.email} for team {team.id}")
    return leave_request


@store_operation('Leave request listing')
def list_leave_requests(team_id, viewer, status=None):
    team = _get_team_or_404(team_id)
    _require_team_creator(team, viewer, 'view leave requests')

    query = LeaveRequest.query.filter_by(team_id=team.id).options(joinedload(LeaveRequest.user))
    if status:
        query = query.filter_by(status=status)
    return query.order_by(LeaveRequest.created_at.desc(), LeaveRequest.id.desc()).all()


@store_operation('Leave request response')
def resolve_leave_request(request_id, approver, decision):
    """
    審核離開申請, 同意時只刪除申請人在這個團隊的成員紀錄

    Returns:
        tuple: (leave_request, applied)
    """
    _validate_decision(decision)

    leave_request = db.session.get(LeaveRequest, request_id)
    if not leave_request:
        raise NotFound('Leave request not found')

    team = _get_team_or_404(leave_request.team_id)
    _require_team_creator(team, approver, 'respond to leave requests')

    if not _transition(LeaveRequest, leave_request.id, decision):
        logger.info(f"Leave request {request_id} was already processed")
        return leave_request, False

    if decision == 'accepted':
        remove_member(team.id, leave_request.user_id)

        requester = db.session.get(User, leave_request.user_id)
        log_activity(
            requester,
            'member_left',
            f'{requester.name} left team {team.name}',
            team_id=team.id,
            entity_id=team.id,
            entity_name=team.name
        )
        message = f'Your request to leave the team ({team.name}) was accepted.'
    else:
        message = f'Your request to leave the team ({team.name}) was declined.'

    create_notification(
        leave_request.user_id,
        'leave_request_response',
        message,
        data={'team_id': team.id, 'status': decision}
    )

    db.session.commit()
    logger.info(f"Leave request {request_id} {decision} by user {approver.email}")
    return leave_request, True

# ============================================
# 邀請
# ============================================

@store_operation('Invitation creation')
def create_invitation(inviter, workspace_id, user_id, email, role):
    """團隊建立者邀請使用者加入, 被邀請人會收到通知"""
    if role not in INVITATION_ROLES:
        raise InvalidInput('Invalid role')

    team = db.session.get(Team, workspace_id)
    if not team:
        raise InvalidInput('Team does not exist')
    _require_team_creator(team, inviter, 'invite members')

    invitee = db.session.get(User, user_id)
    if not invitee:
        raise InvalidInput('Invited user does not exist')

    if is_member(team.id, invitee.id):
        raise InvalidInput('User is already a member of this team')

    existing = Invitation.query.filter_by(
        workspace_id=team.id, user_id=invitee.id, status='pending'
    ).first()
    if existing:
        raise DuplicatePending('This user already has a pending invitation to the team')

    invitation = Invitation(
        workspace_id=team.id,
        invited_by=inviter.id,
        user_id=invitee.id,
        email=email,
        role=role,
        status='pending'
    )
    db.session.add(invitation)
    db.session.flush()

    create_notification(
        invitee.id,
        'team_invitation',
        f'{inviter.name} invited you to join the team ({team.name}).',
        data={'invitation_id': invitation.id, 'team_id': team.id, 'role': role}
    )

    db.session.commit()
    logger.info(f"Invitation {invitation.id} to team {team.id} created by user {inviter.email}")
    return invitation


@store_operation('Invitation listing')
def list_pending_invitations(user):
    return Invitation.query.filter_by(user_id=user.id, status='pending').options(
        joinedload(Invitation.team),
        joinedload(Invitation.inviter)
    ).order_by(Invitation.created_at.desc(), Invitation.id.desc()).all()


@store_operation('Invitation response')
def respond_to_invitation(invitation_id, user, status):
    """
    被邀請人回覆邀請, 同意時用邀請上的角色加入團隊 (不通知邀請人)

    Returns:
        tuple: (invitation, applied)
    """
    _validate_decision(status)

    invitation = db.session.get(Invitation, invitation_id)
    # 不是寄給自己的邀請一律當作不存在
    if not invitation or invitation.user_id != user.id:
        raise NotFound('Invitation not found')

    team = _get_team_or_404(invitation.workspace_id)

    if not _transition(Invitation, invitation.id, status):
        logger.info(f"Invitation {invitation_id} was already processed")
        return invitation, False

    if status == 'accepted':
        if not is_member(team.id, user.id):
            add_member(team.id, user.id, role=invitation.role)

        log_activity(
            user,
            'member_joined',
            f'{user.name} joined team {team.name}',
            team_id=team.id,
            entity_id=team.id,
            entity_name=team.name
        )

    db.session.commit()
    logger.info(f"Invitation {invitation_id} {status} by user {user.email}")
    return invitation, True
