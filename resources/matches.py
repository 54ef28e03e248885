import logging
from middleware.auth import clerk_required, current_user_id
from middleware.idempotency import idempotent
from flask_restful import Resource
from flask import request
from models import db
from services import swipes
from utils.errors import CoreError
from utils.params import parse_uuid, parse_bool, require
from utils.response import success_response, error_response, core_error_response

logger = logging.getLogger(__name__)


class SwipeResource(Resource):
    """Resource for recording swipes"""

    @clerk_required
    @idempotent('record_swipe')
    def post(self):
        """Record a swipe; a reciprocal like creates the match"""
        try:
            user_id = current_user_id()
            data = request.get_json(silent=True) or {}
            require(data, 'target_user_id', 'direction')

            result = swipes.record_swipe(
                user_id,
                parse_uuid(data['target_user_id'], 'target_user_id'),
                data['direction'],
            )

            message = "It's a match!" if result.match is not None else "Swipe recorded"
            return success_response(result.to_dict(), message, 201)

        except CoreError as e:
            return core_error_response(e)
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error recording swipe: {str(e)}")
            return error_response("Failed to record swipe", 500)


class SwipeStatsResource(Resource):

    @clerk_required
    def get(self):
        try:
            return success_response(swipes.swipe_stats(current_user_id()), "Swipe statistics retrieved")
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error fetching swipe stats: {str(e)}")
            return error_response("Failed to fetch swipe statistics", 500)


class MatchListResource(Resource):
    """Resource for listing the caller's matches"""

    @clerk_required
    def get(self):
        """Active matches by default; ?include_inactive=true lists all"""
        try:
            user_id = current_user_id()
            include_inactive = parse_bool(request.args.get('include_inactive'))
            matches = swipes.list_matches(user_id, active_only=not include_inactive)

            data = []
            for match in matches:
                item = swipes.serialize_match(match)
                item['other_user_id'] = str(match.other_participant(user_id))
                data.append(item)

            return success_response(
                {'matches': data, 'count': len(data)},
                "Matches retrieved successfully"
            )
        except CoreError as e:
            return core_error_response(e)
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error fetching matches: {str(e)}")
            return error_response("Failed to fetch matches", 500)


class MatchResource(Resource):
    """Resource for one match"""

    @clerk_required
    def get(self, match_id):
        try:
            match = swipes.get_match(current_user_id(), match_id)
            return success_response(swipes.serialize_match(match), "Match retrieved successfully")
        except CoreError as e:
            return core_error_response(e)
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error fetching match {match_id}: {str(e)}")
            return error_response("Failed to fetch match", 500)

    @clerk_required
    def delete(self, match_id):
        """Unmatch; the conversation stays readable but closed to new messages"""
        try:
            match = swipes.unmatch(current_user_id(), match_id)
            return success_response(swipes.serialize_match(match), "Unmatched successfully")
        except CoreError as e:
            return core_error_response(e)
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error unmatching {match_id}: {str(e)}")
            return error_response("Failed to unmatch", 500)


class RematchResource(Resource):
    """Consent to restore a match that a lifted sanction ended"""

    @clerk_required
    def post(self, match_id):
        try:
            match = swipes.request_rematch(current_user_id(), match_id)
            message = "Match restored" if match.is_active else "Rematch consent recorded"
            return success_response(swipes.serialize_match(match), message)
        except CoreError as e:
            return core_error_response(e)
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error requesting rematch for {match_id}: {str(e)}")
            return error_response("Failed to request rematch", 500)
