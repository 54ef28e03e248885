import logging
from middleware.auth import clerk_required, current_user_id
from middleware.idempotency import idempotent
from flask_restful import Resource
from flask import request
from models import db
from services import ephemeral_photos
from utils.errors import CoreError
from utils.params import parse_bool, parse_int, require
from utils.response import success_response, error_response, core_error_response

logger = logging.getLogger(__name__)


class EphemeralUploadUrlResource(Resource):

    @clerk_required
    def post(self):
        """Signed PUT URL for the photo bytes; register the key afterwards"""
        try:
            data = request.get_json(silent=True) or {}
            result = ephemeral_photos.prepare_upload(current_user_id(), data.get('content_type'))
            return success_response(result, "Upload URL generated", 201)
        except CoreError as e:
            return core_error_response(e)
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error preparing upload: {str(e)}")
            return error_response("Failed to prepare upload", 500)


class EphemeralPhotoListResource(Resource):
    """Resource for the owner's ephemeral photos"""

    @clerk_required
    @idempotent('ephemeral_upload')
    def post(self):
        """
        Register an uploaded photo.
        Returns the access key once; it is never listed again.
        """
        try:
            data = request.get_json(silent=True) or {}
            require(data, 'file_key')

            photo = ephemeral_photos.upload(
                current_user_id(),
                data['file_key'],
                thumbnail_key=data.get('thumbnail_key'),
                max_views=data.get('max_views', 1),
                duration=data.get('duration'),
                content_type=data.get('content_type'),
                file_size=parse_int(data.get('file_size'), 'file_size'),
            )

            result = photo.to_dict()
            result['access_key'] = photo.access_key
            return success_response(result, "Ephemeral photo created", 201)

        except CoreError as e:
            return core_error_response(e)
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error creating ephemeral photo: {str(e)}")
            return error_response("Failed to create ephemeral photo", 500)

    @clerk_required
    def get(self):
        try:
            photos = ephemeral_photos.list_photos(
                current_user_id(),
                active_only=parse_bool(request.args.get('active_only')),
                limit=min(parse_int(request.args.get('limit'), 'limit', 50), 100),
            )
            data = [photo.to_dict() for photo in photos]
            return success_response({'photos': data, 'count': len(data)}, "Photos retrieved successfully")
        except CoreError as e:
            return core_error_response(e)
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error listing ephemeral photos: {str(e)}")
            return error_response("Failed to list photos", 500)


class EphemeralPhotoResource(Resource):

    @clerk_required
    def get(self, photo_id):
        try:
            return success_response(
                ephemeral_photos.get_status(current_user_id(), photo_id),
                "Photo status retrieved"
            )
        except CoreError as e:
            return core_error_response(e)
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error fetching photo {photo_id}: {str(e)}")
            return error_response("Failed to fetch photo", 500)

    @clerk_required
    def delete(self, photo_id):
        try:
            photo = ephemeral_photos.delete(current_user_id(), photo_id)
            return success_response(photo.to_dict(), "Photo deleted")
        except CoreError as e:
            return core_error_response(e)
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error deleting photo {photo_id}: {str(e)}")
            return error_response("Failed to delete photo", 500)


class EphemeralPhotoExpireResource(Resource):

    @clerk_required
    def post(self, photo_id):
        try:
            photo = ephemeral_photos.expire(current_user_id(), photo_id)
            return success_response(photo.to_dict(), "Photo expired")
        except CoreError as e:
            return core_error_response(e)
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error expiring photo {photo_id}: {str(e)}")
            return error_response("Failed to expire photo", 500)


class EphemeralPhotoStatsResource(Resource):

    @clerk_required
    def get(self, photo_id):
        try:
            return success_response(
                ephemeral_photos.view_stats(current_user_id(), photo_id),
                "Photo statistics retrieved"
            )
        except CoreError as e:
            return core_error_response(e)
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error fetching stats for {photo_id}: {str(e)}")
            return error_response("Failed to fetch photo statistics", 500)


class EphemeralPhotoViewResource(Resource):
    """Resource for consuming a view through the access key"""

    @clerk_required
    def post(self, access_key):
        try:
            result = ephemeral_photos.view(
                access_key,
                current_user_id(),
                ip=request.headers.get('X-Forwarded-For', request.remote_addr),
                user_agent=request.headers.get('User-Agent'),
            )
            return success_response(result.to_dict(), "Photo view granted")
        except CoreError as e:
            return core_error_response(e)
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error viewing ephemeral photo: {str(e)}")
            return error_response("Failed to view photo", 500)


class EphemeralPhotoViewDurationResource(Resource):

    @clerk_required
    def post(self, access_key):
        try:
            data = request.get_json(silent=True) or {}
            require(data, 'duration_ms')
            view = ephemeral_photos.record_view_duration(access_key, current_user_id(), data['duration_ms'])
            return success_response(view.to_dict(), "View duration recorded")
        except CoreError as e:
            return core_error_response(e)
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error recording view duration: {str(e)}")
            return error_response("Failed to record view duration", 500)
