import json
import logging
from flask import request, current_app
from flask_restful import Resource
from svix.webhooks import Webhook, WebhookVerificationError
from models import db, User
from services import identity
from utils.cache import CacheManager

from utils.response import success_response, error_response

logger = logging.getLogger(__name__)


class ClerkWebhook(Resource):
    """Keep the user projection in sync with Clerk user.* events"""

    def post(self):
        """Process Clerk webhook events"""
        try:
            webhook_secret = current_app.config.get("CLERK_WEBHOOK_SECRET")
            if not webhook_secret:
                logger.error("CLERK_WEBHOOK_SECRET is missing")
                return error_response("Server misconfigured", 500)

            payload = request.data
            headers = dict(request.headers)

            # Verify webhook signature
            try:
                wh = Webhook(webhook_secret)
                wh.verify(payload, headers)
            except WebhookVerificationError:
                logger.warning("Webhook signature verification failed")
                return error_response("Invalid signature", 400)

            data = json.loads(payload)
            event_type = data.get("type") or ""
            user_data = data.get("data", {})

            logger.info("Processing Clerk webhook event: %s", event_type)

            handler = getattr(self, f"_handle_{event_type.replace('.', '_')}", None)
            if handler:
                return handler(user_data)
            logger.info("Unhandled event type: %s", event_type)
            return success_response({"status": "ignored"}, "Event ignored")

        except Exception:
            db.session.rollback()
            logger.exception("Unhandled error in Clerk webhook")
            return error_response("Internal server error", 500)

    def _handle_user_created(self, user_data: dict):
        """Handle user.created event"""
        external_id = user_data.get("id")
        if not external_id:
            return error_response("Missing user ID", 400)

        if identity.resolve_external(external_id):
            logger.info("User %s already exists", external_id)
            return success_response({"status": "exists"}, "User already exists")

        user = identity.create_user(
            name=self._extract_name(user_data),
            external_id=external_id,
            email=self._extract_email(user_data) or None,
            avatar_url=user_data.get("image_url") or user_data.get("profile_image_url"),
        )
        db.session.commit()
        logger.info("Created user %s for Clerk subject %s", user.id, external_id)
        return success_response({"status": "created", "id": str(user.id)}, "User created successfully")

    def _handle_user_updated(self, user_data: dict):
        """Handle user.updated event"""
        user = identity.resolve_external(user_data.get("id"))
        if not user:
            logger.warning("User %s not found for update", user_data.get("id"))
            return error_response("User not found", 404)

        user.name = self._extract_name(user_data)
        user.email = self._extract_email(user_data) or user.email
        if user_data.get("image_url") or user_data.get("profile_image_url"):
            user.avatar_url = user_data.get("image_url") or user_data.get("profile_image_url")
        db.session.commit()
        logger.info("Updated user %s", user.id)
        return success_response({"status": "updated"}, "User updated successfully")

    def _handle_user_deleted(self, user_data: dict):
        """Deactivate rather than delete; moderation history stays intact"""
        user = identity.resolve_external(user_data.get("id"))
        if not user:
            return success_response({"status": "already_deleted"}, "User already deleted")

        user.is_active = False
        user.external_id = None
        db.session.commit()
        CacheManager.invalidate_user_cache(user.id)
        logger.info("Deactivated user %s after Clerk deletion", user.id)
        return success_response({"status": "deleted"}, "User deleted successfully")

    def _extract_email(self, user_data: dict) -> str:
        """Extract primary email from user data"""
        if user_data.get("email_addresses"):
            return user_data["email_addresses"][0].get("email_address")
        return ""

    def _extract_name(self, user_data: dict) -> str:
        """Extract full name from user data"""
        first_name = user_data.get("first_name") or ""
        last_name = user_data.get("last_name") or ""
        name = (first_name + " " + last_name).strip()
        return name or user_data.get("username") or "Unknown User"
