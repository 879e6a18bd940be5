from models import Notification, TeamMember


def notifications_for(user_id, notification_type=None):
    query = Notification.query.filter_by(user_id=user_id)
    if notification_type:
        query = query.filter_by(type=notification_type)
    return query.order_by(Notification.id.asc()).all()


def membership_count(team_id, user_id):
    return TeamMember.query.filter_by(team_id=team_id, user_id=user_id).count()
