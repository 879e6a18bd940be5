from flask import Blueprint, request, jsonify
from flask_jwt_extended import jwt_required
from sqlalchemy.orm import joinedload
from marshmallow import Schema, fields, validate
from models import db, Team, TeamMember, JoinRequest
from auth import get_current_user, validate_request_data
from errors import Unauthenticated, NotFound
import membership
import logging

teams_bp = Blueprint('teams', __name__)
logger = logging.getLogger(__name__)

TEAM_SEARCH_LIMIT = 20

# ============================================
# Input Validation Schemas
# ============================================

class CreateTeamSchema(Schema):
    """建立團隊驗證"""
    name = fields.Str(required=True, error_messages={'required': 'Team name is required'})
    project_id = fields.Int(required=True, error_messages={'required': 'Project is required'})

class LeaveRequestSchema(Schema):
    """離開申請驗證 (理由長度由 membership 檢查)"""
    reason = fields.Str(required=True, error_messages={
        'required': 'Reason is required and must be at least 5 characters.'
    })

class DecisionSchema(Schema):
    """審核 / 回覆驗證"""
    status = fields.Str(
        required=True,
        validate=validate.OneOf(membership.DECISIONS, error='Invalid status')
    )

class CreateInvitationSchema(Schema):
    """邀請驗證"""
    email = fields.Email(required=True)
    user_id = fields.Int(required=True)
    role = fields.Str(required=True, validate=validate.OneOf(membership.INVITATION_ROLES))
    workspace_id = fields.Int(required=True)

# ============================================
# 輔助函數
# ============================================

def _require_user():
    """token 有效但使用者不存在或被停用時丟出 Unauthenticated"""
    user = get_current_user()
    if not user:
        raise Unauthenticated('Authentication required')
    return user

def _load_body(schema_class):
    """
    讀取並驗證 JSON body

    Returns:
        tuple: (result, error_response) 兩者只會有一個不是 None
    """
    data = request.get_json(silent=True)
    if not data:
        return None, (jsonify({'error': 'Request body must be JSON'}), 400)

    is_valid, result = validate_request_data(schema_class, data)
    if not is_valid:
        logger.info(f"Validation failed on {request.method} {request.path}: {result}")
        return None, (jsonify({'error': 'Validation failed', 'details': result}), 400)
    return result, None

def serialize_team(team):
    return {
        'id': team.id,
        'name': team.name,
        'created_by': team.created_by,
        'project_id': team.project_id,
        'created_at': team.created_at.isoformat(),
        'updated_at': team.updated_at.isoformat() if team.updated_at else None
    }

def serialize_request(req):
    """JoinRequest / LeaveRequest 共用"""
    data = {
        'id': req.id,
        'team_id': req.team_id,
        'user_id': req.user_id,
        'status': req.status,
        'created_at': req.created_at.isoformat(),
        'updated_at': req.updated_at.isoformat() if req.updated_at else None
    }
    if hasattr(req, 'reason'):
        data['reason'] = req.reason
    return data

def serialize_request_with_user(req):
    return {
        **serialize_request(req),
        'user': {
            'id': req.user.id,
            'name': req.user.name,
            'email': req.user.email
        }
    }

def serialize_invitation(invitation):
    return {
        'id': invitation.id,
        'workspace_id': invitation.workspace_id,
        'invited_by': invitation.invited_by,
        'user_id': invitation.user_id,
        'email': invitation.email,
        'role': invitation.role,
        'status': invitation.status,
        'created_at': invitation.created_at.isoformat(),
        'updated_at': invitation.updated_at.isoformat() if invitation.updated_at else None
    }

# ============================================
# 團隊
# ============================================

@teams_bp.route('/teams', methods=['POST'])
@jwt_required()
def create_team():
    """建立團隊 (建立者成為 leader)"""
    current_user = _require_user()

    result, error = _load_body(CreateTeamSchema)
    if error:
        return error

    team = membership.create_team(current_user, result['name'], result['project_id'])

    return jsonify({
        'message': 'Team created successfully',
        'team': serialize_team(team)
    }), 201

@teams_bp.route('/teams/search', methods=['GET'])
@jwt_required()
def search_teams():
    """用名稱搜尋團隊 (不分大小寫)"""
    query = (request.args.get('q') or '').strip()
    if not query:
        return jsonify({'teams': []}), 200

    teams = Team.query.filter(Team.name.ilike(f'%{query}%'))\
        .order_by(Team.name).limit(TEAM_SEARCH_LIMIT).all()

    return jsonify({
        'teams': [{
            **serialize_team(t),
            'member_count': membership.count_members(t.id)
        } for t in teams]
    }), 200

@teams_bp.route('/teams/<int:team_id>', methods=['GET'])
@jwt_required()
def get_team(team_id):
    """團隊詳細資訊 (含成員)"""
    current_user = _require_user()

    team = Team.query.options(joinedload(Team.project)).filter_by(id=team_id).first()
    if not team:
        raise NotFound('Team not found')

    members = membership.list_members(team.id)

    return jsonify({
        'team': {
            **serialize_team(team),
            'project_title': team.project.title if team.project else None,
            'is_creator': team.created_by == current_user.id,
            'is_member': membership.is_member(team.id, current_user.id),
            'members': members,
            'member_count': len(members)
        }
    }), 200

@teams_bp.route('/teams/<int:team_id>', methods=['DELETE'])
@jwt_required()
def delete_team(team_id):
    """刪除團隊 (只有建立者)"""
    current_user = _require_user()

    membership.delete_team(team_id, current_user)

    return jsonify({'success': True, 'message': 'Team deleted successfully'}), 200

@teams_bp.route('/teams/<int:team_id>/members', methods=['GET'])
@jwt_required()
def get_team_members(team_id):
    _require_user()

    if not db.session.get(Team, team_id):
        raise NotFound('Team not found')

    members = membership.list_members(team_id)
    return jsonify({'members': members, 'total': len(members)}), 200

@teams_bp.route('/my-teams', methods=['GET'])
@jwt_required()
def get_my_teams():
    """我所屬的團隊, 附上角色、成員數和專案名稱"""
    current_user = _require_user()

    memberships = TeamMember.query.filter_by(user_id=current_user.id).options(
        joinedload(TeamMember.team).joinedload(Team.project)
    ).all()

    teams = []
    for m in memberships:
        team = m.team
        teams.append({
            'id': team.id,
            'name': team.name,
            'project_id': team.project_id,
            'project_title': team.project.title if team.project else None,
            'role': m.role,
            'member_count': membership.count_members(team.id),
            'last_updated': team.updated_at.isoformat() if team.updated_at else None
        })

    return jsonify({'teams': teams}), 200

@teams_bp.route('/my-join-requests', methods=['GET'])
@jwt_required()
def get_my_join_requests():
    """我送出的加入申請, 附上團隊名稱和專案名稱"""
    current_user = _require_user()

    join_requests = JoinRequest.query.filter_by(user_id=current_user.id).options(
        joinedload(JoinRequest.team).joinedload(Team.project)
    ).order_by(JoinRequest.created_at.desc(), JoinRequest.id.desc()).all()

    return jsonify({
        'join_requests': [{
            **serialize_request(r),
            'team_name': r.team.name,
            'project_title': r.team.project.title if r.team.project else None
        } for r in join_requests]
    }), 200

# ============================================
# 加入申請
# ============================================

@teams_bp.route('/teams/<int:team_id>/join-requests', methods=['POST'])
@jwt_required()
def submit_join_request(team_id):
    current_user = _require_user()

    join_request = membership.submit_join_request(current_user, team_id)

    return jsonify({'join_request': serialize_request(join_request)}), 201

@teams_bp.route('/teams/<int:team_id>/join-requests', methods=['GET'])
@jwt_required()
def get_join_requests(team_id):
    """團隊的加入申請 (只有建立者可以看)"""
    current_user = _require_user()

    join_requests = membership.list_join_requests(team_id, current_user, request.args.get('status'))

    return jsonify({
        'join_requests': [serialize_request_with_user(r) for r in join_requests]
    }), 200

@teams_bp.route('/teams/join-requests/<int:request_id>', methods=['PATCH'])
@jwt_required()
def respond_join_request(request_id):
    """同意或拒絕加入申請, 已處理過的申請回傳 already_processed"""
    current_user = _require_user()

    result, error = _load_body(DecisionSchema)
    if error:
        return error

    join_request, applied = membership.resolve_join_request(request_id, current_user, result['status'])

    return jsonify({
        'success': True,
        'already_processed': not applied,
        'join_request': serialize_request(join_request)
    }), 200

# ============================================
# 離開申請
# ============================================

@teams_bp.route('/teams/<int:team_id>/leave-requests', methods=['POST'])
@jwt_required()
def submit_leave_request(team_id):
    current_user = _require_user()

    result, error = _load_body(LeaveRequestSchema)
    if error:
        return error

    leave_request = membership.submit_leave_request(current_user, team_id, result['reason'])

    return jsonify({'leave_request': serialize_request(leave_request)}), 201

@teams_bp.route('/teams/<int:team_id>/leave-requests', methods=['GET'])
@jwt_required()
def get_leave_requests(team_id):
    """團隊的離開申請 (只有建立者可以看)"""
    current_user = _require_user()

    leave_requests = membership.list_leave_requests(team_id, current_user, request.args.get('status'))

    return jsonify({
        'leave_requests': [serialize_request_with_user(r) for r in leave_requests]
    }), 200

@teams_bp.route('/teams/leave-requests/<int:request_id>', methods=['PATCH'])
@jwt_required()
def respond_leave_request(request_id):
    current_user = _require_user()

    result, error = _load_body(DecisionSchema)
    if error:
        return error

    leave_request, applied = membership.resolve_leave_request(request_id, current_user, result['status'])

    return jsonify({
        'success': True,
        'already_processed': not applied,
        'leave_request': serialize_request(leave_request)
    }), 200

# ============================================
# 邀請
# ============================================

@teams_bp.route('/team/invitations', methods=['POST'])
@jwt_required()
def create_invitation():
    current_user = _require_user()

    result, error = _load_body(CreateInvitationSchema)
    if error:
        return error

    invitation = membership.create_invitation(
        current_user,
        workspace_id=result['workspace_id'],
        user_id=result['user_id'],
        email=result['email'],
        role=result['role']
    )

    return jsonify({
        'success': True,
        'invitation': serialize_invitation(invitation)
    }), 201

@teams_bp.route('/team/invitations', methods=['GET'])
@jwt_required()
def get_my_invitations():
    """我收到、還沒回覆的邀請"""
    current_user = _require_user()

    invitations = membership.list_pending_invitations(current_user)

    return jsonify({
        'invitations': [{
            **serialize_invitation(i),
            'team_name': i.team.name,
            'invited_by_name': i.inviter.name
        } for i in invitations]
    }), 200

@teams_bp.route('/team/invitations/<int:invitation_id>', methods=['PATCH'])
@jwt_required()
def respond_invitation(invitation_id):
    current_user = _require_user()

    result, error = _load_body(DecisionSchema)
    if error:
        return error

    invitation, applied = membership.respond_to_invitation(invitation_id, current_user, result['status'])

    return jsonify({
        'already_processed': not applied,
        'invitation': serialize_invitation(invitation)
    }), 200
