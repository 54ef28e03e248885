"""Moderation: reports, reviewer workflow, sanctions, appeals and automated thresholds.

Sanction effects on identity and matches run in the same transaction as the
sanction row, so a failure anywhere leaves no partial sanction behind.
"""
import logging
from datetime import timedelta

from flask import current_app
from sqlalchemy import case, func
from sqlalchemy.exc import IntegrityError

from models import db, Report, Sanction, Appeal
from models.reports import REPORT_REASONS, HIGH_PRIORITY_REASONS, OPEN_STATUSES
from models.sanctions import SANCTION_KINDS, EXCLUSIVE_KINDS
from services import identity, events, rate_limit, swipes
from services.identity import SYSTEM_PRINCIPAL, CAN_MANAGE_REPORTS, CAN_BAN_USERS, CAN_ESCALATE
from services.tx import atomic
from utils import clock
from utils.durations import parse_duration, PERMANENT
from utils.errors import InvalidArgument, NotFound, Forbidden, Conflict

logger = logging.getLogger(__name__)

REVIEW_ACTIONS = ('resolve', 'dismiss', 'escalate')


# --- reports -------------------------------------------------------------

def _report_limits():
    config = current_app.config
    return [
        (config['MODERATION_REPORTS_PER_MINUTE'], rate_limit.MINUTE),
        (config['MODERATION_REPORTS_PER_HOUR'], rate_limit.HOUR),
        (config['MODERATION_REPORTS_PER_DAY'], rate_limit.DAY),
    ]


def _priority(reason, open_against):
    if reason in HIGH_PRIORITY_REASONS:
        return 'high'
    if open_against + 1 >= current_app.config['MODERATION_REPORT_THRESHOLD']:
        return 'high'
    if reason == 'other':
        return 'low'
    return 'normal'


def submit_report(reporter_id, reported_id, reason, description=None, content_ref=None, evidence=None) -> Report:
    if reason not in REPORT_REASONS:
        raise InvalidArgument("Invalid report reason", allowed=list(REPORT_REASONS))
    if reporter_id == reported_id:
        raise InvalidArgument("Cannot report yourself")

    identity.ensure_active(reporter_id, "submit reports")
    identity.load_user(reported_id)

    open_report = Report.query.filter(
        Report.reporter_id == reporter_id,
        Report.reported_user_id == reported_id,
        Report.status.in_(OPEN_STATUSES),
    ).first()
    if open_report is not None:
        raise Conflict("You already have an open report for this user", code="report_open", report_id=str(open_report.id))

    with rate_limit.Reservation() as slots:
        slots.enforce(
            'reports', reporter_id, _report_limits(),
            rate_limit.counter_for(lambda: Report.query.filter_by(reporter_id=reporter_id), Report.created_at),
        )
        slots.enforce(
            'reports_pair', f"{reporter_id}:{reported_id}",
            [(current_app.config['MODERATION_REPORTS_PER_PAIR_PER_DAY'], rate_limit.DAY)],
            rate_limit.counter_for(
                lambda: Report.query.filter_by(reporter_id=reporter_id, reported_user_id=reported_id),
                Report.created_at,
            ),
        )

        with atomic('submit_report', reporter_id=reporter_id, reported_id=reported_id):
            now = clock.utcnow()
            open_against = Report.query.filter(
                Report.reported_user_id == reported_id,
                Report.status.in_(OPEN_STATUSES),
            ).count()
            report = Report(
                reporter_id=reporter_id,
                reported_user_id=reported_id,
                reason=reason,
                description=description,
                content_ref=content_ref,
                evidence=evidence,
                priority=_priority(reason, open_against),
                status='pending',
                created_at=now,
                updated_at=now,
            )
            db.session.add(report)
            db.session.flush()

            if open_against + 1 >= current_app.config['MODERATION_REPORT_THRESHOLD']:
                Report.query.filter(
                    Report.reported_user_id == reported_id,
                    Report.status == 'pending',
                    Report.priority != 'high',
                ).update({'priority': 'high', 'updated_at': now}, synchronize_session=False)

            events.record(
                events.REPORT_SUBMITTED, [],
                report_id=str(report.id), reported_user_id=str(reported_id),
                reason=reason, priority=report.priority,
            )

    logger.info(f"Report {report.id} submitted against {reported_id} ({reason})")
    return report


def _annotate(existing, reviewer_id, action, reason, notes):
    line = f"[{action} by {reviewer_id} at {clock.utcnow().isoformat()}] {reason}"
    if notes:
        line = f"{line}: {notes}"
    return f"{existing}\n{line}" if existing else line


def review(report_id, reviewer_id, action, reason, notes=None, sanction=None) -> Report:
    """
    Act on a report as a reviewer.

    resolve  -> resolved, applying `sanction` ({kind, duration, reason?}) if given
    dismiss  -> dismissed, reported user's reputation goes up
    escalate -> escalated, visible to super admins only

    Escalated reports can be picked up again by a super admin.
    """
    if action not in REVIEW_ACTIONS:
        raise InvalidArgument("Invalid review action", allowed=list(REVIEW_ACTIONS))
    if not reason:
        raise InvalidArgument("A review reason is required")
    caps = identity.require_capability(reviewer_id, CAN_MANAGE_REPORTS)
    can_escalate = CAN_ESCALATE in caps
    if action == 'escalate' and not can_escalate:
        raise Forbidden("Only super admins can escalate reports", code="missing_capability", capability=CAN_ESCALATE)
    if sanction is not None and action != 'resolve':
        raise InvalidArgument("Sanctions can only accompany a resolution")

    applied = None
    with atomic('review_report', report_id=report_id, reviewer_id=reviewer_id, action=action):
        report = Report.query.filter_by(id=report_id).with_for_update().first()
        if report is None:
            raise NotFound("Report not found")
        reviewable = report.status == 'pending' or (
            report.status == 'escalated' and can_escalate and action != 'escalate'
        )
        if not reviewable:
            raise Conflict(f"Report is already {report.status}", code="report_not_pending", status=report.status)
        if report.reported_user_id == reviewer_id:
            raise Forbidden("Cannot review a report against yourself")

        now = clock.utcnow()
        report.reviewer_id = reviewer_id
        report.reviewed_at = now
        report.updated_at = now
        report.resolution_notes = _annotate(report.resolution_notes, reviewer_id, action, reason, notes)

        if action == 'dismiss':
            report.status = 'dismissed'
            identity.adjust_reputation(
                report.reported_user_id, current_app.config['MODERATION_DISMISS_REPUTATION_DELTA'],
            )
        elif action == 'escalate':
            report.status = 'escalated'
        else:
            report.status = 'resolved'
            if sanction is not None:
                if not isinstance(sanction, dict) or 'kind' not in sanction:
                    raise InvalidArgument("sanction must include a kind")
                applied = _apply_sanction(
                    report.reported_user_id, reviewer_id, sanction['kind'],
                    sanction.get('reason') or reason,
                    sanction.get('duration'),
                    report_id=report.id,
                )
                report.sanction_id = applied.id

        if report.status in ('resolved', 'dismissed'):
            events.record(
                events.REPORT_RESOLVED, [report.reporter_id],
                report_id=str(report.id), status=report.status,
            )

    logger.info(f"Report {report_id} {report.status} by {reviewer_id}")
    if report.status == 'resolved':
        evaluate_thresholds(report.reported_user_id)
    return report


def list_reports(reviewer_id, status=None, limit=50, offset=0):
    """Reviewer queue: high priority first, then oldest first"""
    caps = identity.require_capability(reviewer_id, CAN_MANAGE_REPORTS)
    can_escalate = CAN_ESCALATE in caps
    if status == 'escalated' and not can_escalate:
        raise Forbidden("Escalated reports are visible to super admins only")

    query = Report.query
    if status:
        query = query.filter(Report.status == status)
    if not can_escalate:
        query = query.filter(Report.status != 'escalated')
    priority_order = case(
        (Report.priority == 'high', 0),
        (Report.priority == 'normal', 1),
        else_=2,
    )
    total = query.count()
    items = query.order_by(priority_order, Report.created_at.asc()).offset(offset).limit(limit).all()
    return items, total


def get_report(viewer_id, report_id) -> Report:
    report = db.session.get(Report, report_id)
    if report is None:
        raise NotFound("Report not found")
    if report.reporter_id == viewer_id:
        return report
    caps = identity.require_capability(viewer_id, CAN_MANAGE_REPORTS)
    if report.status == 'escalated' and CAN_ESCALATE not in caps:
        raise NotFound("Report not found")
    return report


# --- sanctions -----------------------------------------------------------

def _apply_sanction(target_id, issuer_id, kind, reason, duration_token=None,
                    is_automated=False, report_id=None) -> Sanction:
    """Create a sanction and its effects inside the caller's transaction"""
    config = current_app.config
    if kind not in SANCTION_KINDS:
        raise InvalidArgument("Invalid sanction kind", allowed=list(SANCTION_KINDS))
    if not reason:
        raise InvalidArgument("A sanction reason is required")
    if target_id == issuer_id:
        raise InvalidArgument("Cannot sanction yourself")

    identity.load_user(target_id, for_update=True)
    now = clock.utcnow()

    if kind == 'warn':
        token, expires_at = None, None
    else:
        duration = parse_duration(duration_token)
        token, expires_at = duration.token, duration.expires_at(now)
        existing = Sanction.query.filter_by(target_user_id=target_id, kind=kind, is_active=True).first()
        if existing is not None:
            raise Conflict(f"User already has an active {kind}", code="sanction_active", sanction_id=str(existing.id))

    sanction = Sanction(
        target_user_id=target_id,
        issuer_id=issuer_id,
        kind=kind,
        reason=reason,
        duration_token=token,
        expires_at=expires_at,
        is_active=True,
        is_automated=is_automated,
        report_id=report_id,
        created_at=now,
        updated_at=now,
    )
    try:
        with db.session.begin_nested():
            db.session.add(sanction)
    except IntegrityError:
        raise Conflict(f"User already has an active {kind}", code="sanction_active")

    if kind == 'ban':
        identity.apply_ban(target_id)
        identity.adjust_reputation(target_id, config['MODERATION_BAN_REPUTATION_DELTA'])
    elif kind == 'suspend':
        identity.apply_suspension(target_id, until=expires_at)
        identity.adjust_reputation(target_id, config['MODERATION_SUSPEND_REPUTATION_DELTA'])
    else:
        identity.adjust_reputation(target_id, config['MODERATION_WARN_REPUTATION_DELTA'])

    if kind in EXCLUSIVE_KINDS:
        deactivated = swipes.deactivate_user_matches(target_id, 'sanction', actor_id=issuer_id, sanction_id=sanction.id)
        logger.info(f"Deactivated {len(deactivated)} matches of {target_id} for sanction {sanction.id}")

    events.record(
        events.SANCTION_APPLIED, [target_id],
        sanction_id=str(sanction.id), kind=kind, reason=reason,
        duration=token, expires_at=expires_at.isoformat() if expires_at else None,
    )
    return sanction


def apply_sanction(target_id, issuer_id, kind, reason, duration_token=None) -> Sanction:
    """Direct sanction by an admin; suspend and ban need can_ban_users"""
    needed = CAN_MANAGE_REPORTS if kind == 'warn' else CAN_BAN_USERS
    identity.require_capability(issuer_id, needed)
    with atomic('apply_sanction', target_id=target_id, issuer_id=issuer_id, kind=kind):
        sanction = _apply_sanction(target_id, issuer_id, kind, reason, duration_token)
    logger.info(f"Sanction {sanction.id} ({kind}, {sanction.duration_token}) applied to {target_id}")
    return sanction


def _lift(sanction, lifted_by, reason, reactivate_matches=False):
    now = clock.utcnow()
    sanction.is_active = False
    sanction.lifted_at = now
    sanction.lifted_by = lifted_by
    sanction.lift_reason = reason
    sanction.updated_at = now
    db.session.flush()

    if sanction.kind == 'ban':
        identity.lift_ban(sanction.target_user_id, exclude_sanction_id=sanction.id)
    elif sanction.kind == 'suspend':
        identity.lift_suspension(sanction.target_user_id, exclude_sanction_id=sanction.id)

    if reactivate_matches and sanction.kind in EXCLUSIVE_KINDS:
        restored = swipes.reactivate_for_sanction(sanction.id)
        logger.info(f"Reactivated {len(restored)} matches after lifting {sanction.id}")

    events.record(
        events.SANCTION_LIFTED, [sanction.target_user_id],
        sanction_id=str(sanction.id), kind=sanction.kind, reason=reason,
    )


def lift_sanction(sanction_id, admin_id, reason=None) -> Sanction:
    identity.require_capability(admin_id, CAN_BAN_USERS)
    with atomic('lift_sanction', sanction_id=sanction_id, admin_id=admin_id):
        sanction = Sanction.query.filter_by(id=sanction_id).with_for_update().first()
        if sanction is None:
            raise NotFound("Sanction not found")
        if not sanction.is_active:
            raise Conflict("Sanction is not active", code="sanction_inactive")
        _lift(sanction, admin_id, reason or "lifted by admin")
    logger.info(f"Sanction {sanction_id} lifted by {admin_id}")
    return sanction


def list_sanctions(viewer_id, user_id, active_only=False):
    if viewer_id != user_id:
        identity.require_capability(viewer_id, CAN_MANAGE_REPORTS)
    identity.load_user(user_id)
    query = Sanction.query.filter_by(target_user_id=user_id)
    if active_only:
        query = query.filter(Sanction.is_active.is_(True))
    return query.order_by(Sanction.created_at.desc()).all()


# --- appeals -------------------------------------------------------------

def _appeal_limits():
    config = current_app.config
    return [
        (config['MODERATION_APPEALS_PER_MINUTE'], rate_limit.MINUTE),
        (config['MODERATION_APPEALS_PER_HOUR'], rate_limit.HOUR),
        (config['MODERATION_APPEALS_PER_DAY'], rate_limit.DAY),
    ]


def submit_appeal(appellant_id, sanction_id, reason, description) -> Appeal:
    """Appeal a sanction; banned users are allowed to appeal"""
    if not reason or not description:
        raise InvalidArgument("Appeals need a reason and a description")
    identity.load_user(appellant_id)

    sanction = db.session.get(Sanction, sanction_id)
    if sanction is None:
        raise NotFound("Sanction not found")
    if sanction.target_user_id != appellant_id:
        raise Forbidden("Sanction does not target you")
    if not sanction.is_active:
        raise Conflict("Sanction is not active", code="sanction_inactive")
    if Appeal.query.filter_by(appellant_id=appellant_id, status='pending').first():
        raise Conflict("You already have a pending appeal", code="appeal_pending")

    with rate_limit.Reservation() as slots:
        slots.enforce(
            'appeals', appellant_id, _appeal_limits(),
            rate_limit.counter_for(lambda: Appeal.query.filter_by(appellant_id=appellant_id), Appeal.created_at),
        )

        with atomic('submit_appeal', appellant_id=appellant_id, sanction_id=sanction_id):
            now = clock.utcnow()
            appeal = Appeal(
                appellant_id=appellant_id,
                sanction_id=sanction_id,
                reason=reason,
                description=description,
                status='pending',
                created_at=now,
                updated_at=now,
            )
            try:
                with db.session.begin_nested():
                    db.session.add(appeal)
            except IntegrityError:
                raise Conflict("You already have a pending appeal", code="appeal_pending")
            events.record(
                events.APPEAL_SUBMITTED, [appellant_id],
                appeal_id=str(appeal.id), sanction_id=str(sanction_id),
            )

    logger.info(f"Appeal {appeal.id} submitted by {appellant_id} for sanction {sanction_id}")
    return appeal


def review_appeal(appeal_id, reviewer_id, approved, notes=None) -> Appeal:
    identity.require_capability(reviewer_id, CAN_BAN_USERS)
    with atomic('review_appeal', appeal_id=appeal_id, reviewer_id=reviewer_id, approved=approved):
        appeal = Appeal.query.filter_by(id=appeal_id).with_for_update().first()
        if appeal is None:
            raise NotFound("Appeal not found")
        if appeal.status != 'pending':
            raise Conflict(f"Appeal is already {appeal.status}", code="appeal_not_pending")
        if appeal.appellant_id == reviewer_id:
            raise Forbidden("Cannot review your own appeal")

        now = clock.utcnow()
        appeal.reviewer_id = reviewer_id
        appeal.reviewed_at = now
        appeal.review_notes = notes
        appeal.updated_at = now

        if approved:
            appeal.status = 'approved'
            sanction = Sanction.query.filter_by(id=appeal.sanction_id).with_for_update().one()
            if sanction.is_active:
                _lift(
                    sanction, reviewer_id, f"appeal {appeal.id} approved",
                    reactivate_matches=current_app.config['MODERATION_REACTIVATE_MATCHES_ON_APPEAL'],
                )
        else:
            appeal.status = 'rejected'

        events.record(
            events.APPEAL_REVIEWED, [appeal.appellant_id],
            appeal_id=str(appeal.id), status=appeal.status,
        )

    logger.info(f"Appeal {appeal_id} {appeal.status} by {reviewer_id}")
    return appeal


def list_appeals(reviewer_id, status='pending', limit=50, offset=0):
    identity.require_capability(reviewer_id, CAN_BAN_USERS)
    query = Appeal.query
    if status:
        query = query.filter(Appeal.status == status)
    total = query.count()
    items = query.order_by(Appeal.created_at.asc()).offset(offset).limit(limit).all()
    return items, total


def my_appeals(user_id):
    return Appeal.query.filter_by(appellant_id=user_id).order_by(Appeal.created_at.desc()).all()


# --- automated thresholds ------------------------------------------------

def _resolved_reports_since(user_id, since, strict=False):
    reviewed = Report.reviewed_at > since if strict else Report.reviewed_at >= since
    return (
        db.session.query(func.count(func.distinct(Report.id)))
        .filter(
            Report.reported_user_id == user_id,
            Report.status == 'resolved',
            reviewed,
        )
        .scalar()
    ) or 0


def evaluate_thresholds(user_id):
    """
    Apply auto_suspend / auto_ban when resolved reports cross the thresholds.

    Nothing happens while the latest automated sanction is still active. A new
    suspension needs fresh reports since the last automated sanction; a ban
    only needs the window total, unless the last automated sanction was a ban.
    """
    config = current_app.config
    now = clock.utcnow()
    window_start = now - timedelta(seconds=config['MODERATION_THRESHOLD_WINDOW'])

    last_auto = (
        Sanction.query.filter_by(target_user_id=user_id, is_automated=True)
        .order_by(Sanction.created_at.desc())
        .first()
    )
    if last_auto is not None and last_auto.is_active:
        return None

    total = _resolved_reports_since(user_id, window_start)
    since_last = total
    if last_auto is not None and last_auto.created_at > window_start:
        since_last = _resolved_reports_since(user_id, last_auto.created_at, strict=True)

    kind = None
    if total >= config['MODERATION_AUTO_BAN_THRESHOLD'] and (last_auto is None or last_auto.kind != 'ban'):
        kind, duration = 'ban', config['MODERATION_AUTO_BAN_DURATION']
    elif since_last >= config['MODERATION_AUTO_SUSPEND_THRESHOLD']:
        kind, duration = 'suspend', config['MODERATION_AUTO_SUSPEND_DURATION']
    if kind is None:
        return None

    if Sanction.query.filter_by(target_user_id=user_id, kind=kind, is_active=True).first():
        return None
    if kind == 'suspend' and Sanction.query.filter_by(target_user_id=user_id, kind='ban', is_active=True).first():
        return None

    with atomic('auto_sanction', user_id=user_id, kind=kind):
        sanction = _apply_sanction(
            user_id, SYSTEM_PRINCIPAL, kind,
            f"Automatic {kind}: {total} resolved reports within threshold window",
            duration, is_automated=True,
        )
    logger.warning(f"Automatic {kind} {sanction.id} applied to {user_id} ({total} resolved reports)")
    return sanction


# --- sweepers ------------------------------------------------------------

def expire_sanctions(batch_size=100) -> int:
    """Lift time-bounded sanctions whose expiry has passed; permanent ones never expire"""
    with atomic('expire_sanctions'):
        now = clock.utcnow()
        due = (
            Sanction.query.filter(
                Sanction.is_active.is_(True),
                Sanction.expires_at.isnot(None),
                Sanction.expires_at <= now,
            )
            .order_by(Sanction.expires_at.asc())
            .limit(batch_size)
            .with_for_update(skip_locked=True)
            .all()
        )
        for sanction in due:
            _lift(sanction, SYSTEM_PRINCIPAL, "expired")
    if due:
        logger.info(f"Expired {len(due)} sanctions")
    return len(due)


def cleanup_appeals(batch_size=100) -> int:
    """Close pending appeals whose sanction is no longer active"""
    with atomic('cleanup_appeals'):
        now = clock.utcnow()
        stale = (
            Appeal.query.join(Sanction, Sanction.id == Appeal.sanction_id)
            .filter(Appeal.status == 'pending', Sanction.is_active.is_(False))
            .limit(batch_size)
            .all()
        )
        for appeal in stale:
            appeal.status = 'reviewed'
            appeal.reviewed_at = now
            appeal.review_notes = "Sanction is no longer active"
            appeal.updated_at = now
    if stale:
        logger.info(f"Closed {len(stale)} appeals for inactive sanctions")
    return len(stale)


def describe_duration(sanction: Sanction) -> str:
    if sanction.kind == 'warn':
        return 'n/a'
    return sanction.duration_token or PERMANENT
