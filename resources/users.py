import logging
from middleware.auth import clerk_required, current_user_id
from flask_restful import Resource
from models import db
from services import identity, conversations, swipes
from utils.errors import CoreError
from utils.response import success_response, error_response, core_error_response

logger = logging.getLogger(__name__)


class CurrentUserResource(Resource):
    """Resource for the authenticated user's account state"""

    @clerk_required
    def get(self):
        """IdentityView of the caller plus unread count and admin capabilities"""
        try:
            user_id = current_user_id()
            state = identity.get_user(user_id)
            data = state.to_dict()
            data['role'] = identity.get_role(user_id)
            data['capabilities'] = sorted(identity.capabilities(user_id))
            data['unread_count'] = conversations.unread(user_id)
            data['swipe_stats'] = swipes.swipe_stats(user_id)
            return success_response(data, "User retrieved successfully")
        except CoreError as e:
            return core_error_response(e)
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error fetching current user: {str(e)}")
            return error_response("Failed to fetch user", 500)
