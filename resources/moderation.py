import logging
from middleware.auth import clerk_required, current_user_id
from middleware.admin import admin_required
from middleware.idempotency import idempotent
from flask_restful import Resource
from flask import request
from models import db
from services import moderation
from services.identity import CAN_MANAGE_REPORTS, CAN_BAN_USERS
from utils.errors import CoreError
from utils.params import parse_uuid, parse_int, parse_bool, require
from utils.response import success_response, error_response, core_error_response, paginated_response

logger = logging.getLogger(__name__)


def _page_args():
    page = max(1, parse_int(request.args.get('page'), 'page', 1))
    per_page = min(max(1, parse_int(request.args.get('per_page'), 'per_page', 20)), 100)
    return page, per_page


def _sanction_dict(sanction):
    data = sanction.to_dict()
    data['duration'] = moderation.describe_duration(sanction)
    return data


class ReportListResource(Resource):
    """Report intake and the reviewer queue"""

    @clerk_required
    @idempotent('submit_report')
    def post(self):
        try:
            data = request.get_json(silent=True) or {}
            require(data, 'reported_user_id', 'reason')

            report = moderation.submit_report(
                current_user_id(),
                parse_uuid(data['reported_user_id'], 'reported_user_id'),
                data['reason'],
                description=data.get('description'),
                content_ref=data.get('content_ref'),
                evidence=data.get('evidence'),
            )
            return success_response(report.to_dict(), "Report submitted", 201)

        except CoreError as e:
            return core_error_response(e)
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error submitting report: {str(e)}")
            return error_response("Failed to submit report", 500)

    @clerk_required
    @admin_required(CAN_MANAGE_REPORTS)
    def get(self):
        """Reviewer queue, high priority first"""
        try:
            page, per_page = _page_args()
            items, total = moderation.list_reports(
                current_user_id(),
                status=request.args.get('status'),
                limit=per_page,
                offset=(page - 1) * per_page,
            )
            return paginated_response([r.to_dict() for r in items], total, page, per_page)
        except CoreError as e:
            return core_error_response(e)
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error listing reports: {str(e)}")
            return error_response("Failed to list reports", 500)


class ReportResource(Resource):

    @clerk_required
    def get(self, report_id):
        try:
            report = moderation.get_report(current_user_id(), report_id)
            return success_response(report.to_dict(), "Report retrieved")
        except CoreError as e:
            return core_error_response(e)
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error fetching report {report_id}: {str(e)}")
            return error_response("Failed to fetch report", 500)


class ReportReviewResource(Resource):

    @clerk_required
    @admin_required(CAN_MANAGE_REPORTS)
    def post(self, report_id):
        """
        Resolve, dismiss or escalate a report.
        Body: {action, reason, notes?, sanction?: {kind, duration?, reason?}}
        """
        try:
            data = request.get_json(silent=True) or {}
            require(data, 'action', 'reason')
            report = moderation.review(
                report_id,
                current_user_id(),
                data['action'],
                data['reason'],
                notes=data.get('notes'),
                sanction=data.get('sanction'),
            )
            return success_response(report.to_dict(), f"Report {report.status}")
        except CoreError as e:
            return core_error_response(e)
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error reviewing report {report_id}: {str(e)}")
            return error_response("Failed to review report", 500)


class SanctionListResource(Resource):

    @clerk_required
    @admin_required(CAN_MANAGE_REPORTS)
    def post(self):
        """Direct sanction; suspend and ban need can_ban_users"""
        try:
            data = request.get_json(silent=True) or {}
            require(data, 'user_id', 'kind', 'reason')
            sanction = moderation.apply_sanction(
                parse_uuid(data['user_id'], 'user_id'),
                current_user_id(),
                data['kind'],
                data['reason'],
                data.get('duration'),
            )
            return success_response(_sanction_dict(sanction), "Sanction applied", 201)
        except CoreError as e:
            return core_error_response(e)
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error applying sanction: {str(e)}")
            return error_response("Failed to apply sanction", 500)


class UserSanctionsResource(Resource):

    @clerk_required
    def get(self, user_id):
        """A user's own sanctions, or anyone's for moderators"""
        try:
            sanctions = moderation.list_sanctions(
                current_user_id(),
                user_id,
                active_only=parse_bool(request.args.get('active_only')),
            )
            data = [_sanction_dict(s) for s in sanctions]
            return success_response({'sanctions': data, 'count': len(data)}, "Sanctions retrieved")
        except CoreError as e:
            return core_error_response(e)
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error listing sanctions for {user_id}: {str(e)}")
            return error_response("Failed to list sanctions", 500)


class SanctionLiftResource(Resource):

    @clerk_required
    @admin_required(CAN_BAN_USERS)
    def post(self, sanction_id):
        try:
            data = request.get_json(silent=True) or {}
            sanction = moderation.lift_sanction(sanction_id, current_user_id(), data.get('reason'))
            return success_response(_sanction_dict(sanction), "Sanction lifted")
        except CoreError as e:
            return core_error_response(e)
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error lifting sanction {sanction_id}: {str(e)}")
            return error_response("Failed to lift sanction", 500)


class AppealListResource(Resource):
    """Appeal intake and the caller's own appeals"""

    @clerk_required
    @idempotent('submit_appeal')
    def post(self):
        try:
            data = request.get_json(silent=True) or {}
            require(data, 'sanction_id', 'reason', 'description')
            appeal = moderation.submit_appeal(
                current_user_id(),
                parse_uuid(data['sanction_id'], 'sanction_id'),
                data['reason'],
                data['description'],
            )
            return success_response(appeal.to_dict(), "Appeal submitted", 201)
        except CoreError as e:
            return core_error_response(e)
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error submitting appeal: {str(e)}")
            return error_response("Failed to submit appeal", 500)

    @clerk_required
    def get(self):
        try:
            data = [a.to_dict() for a in moderation.my_appeals(current_user_id())]
            return success_response({'appeals': data, 'count': len(data)}, "Appeals retrieved")
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error listing appeals: {str(e)}")
            return error_response("Failed to list appeals", 500)


class AppealQueueResource(Resource):

    @clerk_required
    @admin_required(CAN_BAN_USERS)
    def get(self):
        try:
            page, per_page = _page_args()
            items, total = moderation.list_appeals(
                current_user_id(),
                status=request.args.get('status', 'pending'),
                limit=per_page,
                offset=(page - 1) * per_page,
            )
            return paginated_response([a.to_dict() for a in items], total, page, per_page)
        except CoreError as e:
            return core_error_response(e)
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error listing appeal queue: {str(e)}")
            return error_response("Failed to list appeals", 500)


class AppealReviewResource(Resource):

    @clerk_required
    @admin_required(CAN_BAN_USERS)
    def post(self, appeal_id):
        try:
            data = request.get_json(silent=True) or {}
            require(data, 'approved')
            appeal = moderation.review_appeal(
                appeal_id,
                current_user_id(),
                parse_bool(data['approved']),
                notes=data.get('notes'),
            )
            return success_response(appeal.to_dict(), f"Appeal {appeal.status}")
        except CoreError as e:
            return core_error_response(e)
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error reviewing appeal {appeal_id}: {str(e)}")
            return error_response("Failed to review appeal", 500)
