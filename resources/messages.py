import logging
from middleware.auth import clerk_required, current_user_id
from middleware.idempotency import idempotent
from flask_restful import Resource
from flask import request
from models import db
from services import conversations
from utils.errors import CoreError
from utils.params import parse_uuid, parse_datetime, parse_int, require
from utils.response import success_response, error_response, core_error_response

logger = logging.getLogger(__name__)


class MessageResource(Resource):
    """Resource for sending and retrieving messages of a match"""

    @clerk_required
    @idempotent('send_message')
    def post(self, match_id):
        """
        Append a message to the match's conversation.
        The conversation is opened on the first message.
        """
        try:
            user_id = current_user_id()
            data = request.get_json(silent=True)

            if not data:
                return error_response("No data provided", 400)
            require(data, 'type')

            message = conversations.send(
                user_id,
                match_id,
                data['type'],
                data.get('content'),
                attachment_ref=data.get('attachment_ref'),
            )

            logger.info(f"Message {message.id} sent by {user_id} in match {match_id}")
            return success_response(message.to_dict(), "Message sent successfully", 201)

        except CoreError as e:
            return core_error_response(e)
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error sending message: {str(e)}")
            return error_response("Failed to send message", 500)

    @clerk_required
    def get(self, match_id):
        """
        Page through messages.
        Query params: before, after (ISO timestamps), before_seq, after_seq
        (seq of the boundary message), limit, q (text search)
        """
        try:
            user_id = current_user_id()
            messages = conversations.list_messages(
                user_id,
                match_id,
                before=parse_datetime(request.args.get('before'), 'before'),
                after=parse_datetime(request.args.get('after'), 'after'),
                before_seq=parse_int(request.args.get('before_seq'), 'before_seq'),
                after_seq=parse_int(request.args.get('after_seq'), 'after_seq'),
                limit=parse_int(request.args.get('limit'), 'limit'),
                q=request.args.get('q'),
            )

            data = [message.to_dict() for message in messages]
            return success_response(
                {'messages': data, 'count': len(data)},
                "Messages retrieved successfully"
            )

        except CoreError as e:
            return core_error_response(e)
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error fetching messages: {str(e)}")
            return error_response("Failed to fetch messages", 500)


class ConversationListResource(Resource):
    """Resource for the caller's visible conversations"""

    @clerk_required
    def get(self):
        try:
            items = conversations.list_conversations(current_user_id())
            return success_response(
                {'conversations': items, 'count': len(items)},
                "Conversations retrieved successfully"
            )
        except CoreError as e:
            return core_error_response(e)
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error fetching conversations: {str(e)}")
            return error_response("Failed to fetch conversations", 500)


class ConversationResource(Resource):

    @clerk_required
    def delete(self, conversation_id):
        """Hide the conversation for the caller"""
        try:
            removed = conversations.hide_conversation(current_user_id(), conversation_id)
            return success_response(
                {'conversation_id': str(conversation_id), 'removed': removed},
                "Conversation hidden"
            )
        except CoreError as e:
            return core_error_response(e)
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error hiding conversation {conversation_id}: {str(e)}")
            return error_response("Failed to hide conversation", 500)


class MarkReadResource(Resource):
    """Resource for marking a conversation as read"""

    @clerk_required
    def post(self, conversation_id):
        try:
            count = conversations.mark_read(conversation_id, current_user_id())
            return success_response({'marked_count': count}, f"Marked {count} messages as read")
        except CoreError as e:
            return core_error_response(e)
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error marking messages as read: {str(e)}")
            return error_response("Failed to mark messages as read", 500)


class UnreadCountResource(Resource):
    """Resource for getting unread message count"""

    @clerk_required
    def get(self):
        try:
            conversation_id = request.args.get('conversation_id')
            if conversation_id:
                conversation_id = parse_uuid(conversation_id, 'conversation_id')
            count = conversations.unread(current_user_id(), conversation_id)
            return success_response({'unread_count': count}, "Unread count retrieved")
        except CoreError as e:
            return core_error_response(e)
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error getting unread count: {str(e)}")
            return error_response("Failed to get unread count", 500)
