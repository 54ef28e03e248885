import logging
from middleware.auth import clerk_required, current_user_id
from flask_restful import Resource
from flask import request
from models import db
from services import blocks
from utils.errors import CoreError
from utils.params import parse_uuid, require
from utils.response import success_response, error_response, core_error_response

logger = logging.getLogger(__name__)


class BlockListResource(Resource):
    """Resource for the caller's block list"""

    @clerk_required
    def get(self):
        try:
            items = [block.to_dict() for block in blocks.list_blocked(current_user_id())]
            return success_response({'blocks': items, 'count': len(items)}, "Blocked users retrieved")
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error listing blocks: {str(e)}")
            return error_response("Failed to list blocked users", 500)

    @clerk_required
    def post(self):
        try:
            data = request.get_json(silent=True) or {}
            require(data, 'user_id')
            block = blocks.block(
                current_user_id(),
                parse_uuid(data['user_id'], 'user_id'),
                data.get('reason'),
            )
            return success_response(block.to_dict(), "User blocked", 201)
        except CoreError as e:
            return core_error_response(e)
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error blocking user: {str(e)}")
            return error_response("Failed to block user", 500)


class BlockResource(Resource):

    @clerk_required
    def delete(self, user_id):
        try:
            blocks.unblock(current_user_id(), user_id)
            return success_response({'user_id': str(user_id)}, "User unblocked")
        except CoreError as e:
            return core_error_response(e)
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error unblocking {user_id}: {str(e)}")
            return error_response("Failed to unblock user", 500)
