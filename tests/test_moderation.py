import pytest

from models import db, Report, Sanction
from services import events, identity, moderation
from utils.errors import InvalidArgument, NotFound, Forbidden, Conflict, RateLimited


@pytest.fixture()
def moderator(make_admin):
    return make_admin('moderator')


@pytest.fixture()
def senior(make_admin):
    return make_admin('senior_moderator')


@pytest.fixture()
def super_admin(make_admin):
    return make_admin('super_admin')


def test_ban_appeal_lifecycle(make_user, make_match, moderator, senior, collected_events):
    u1, u2, u3 = make_user("U1"), make_user("U2"), make_user("U3")
    m12 = make_match(u1, u2)
    m23 = make_match(u2, u3)

    report = moderation.submit_report(u1.id, u2.id, 'harassment', 'Sent threatening messages')
    assert report.priority == 'high'

    reviewed = moderation.review(
        report.id, moderator.id, 'resolve', 'verified',
        sanction={'kind': 'ban', 'duration': '7d'},
    )
    assert reviewed.status == 'resolved'
    sanction = db.session.get(Sanction, reviewed.sanction_id)
    assert sanction.kind == 'ban'
    assert sanction.duration_token == '7d'
    assert (sanction.expires_at - sanction.created_at).days == 7

    state = identity.get_user(u2.id)
    assert state.banned and not state.active
    assert state.reputation == 50
    for match in (m12, m23):
        db.session.refresh(match)
        assert not match.is_active
        assert match.deactivation_reason == 'sanction'
        assert match.sanction_id == sanction.id

    appeal = moderation.submit_appeal(u2.id, sanction.id, 'misunderstanding', 'It was a joke between friends')
    assert appeal.status == 'pending'

    decided = moderation.review_appeal(appeal.id, senior.id, approved=True, notes='first offence')
    assert decided.status == 'approved'
    db.session.refresh(sanction)
    assert not sanction.is_active
    assert sanction.lifted_by == senior.id

    state = identity.get_user(u2.id)
    assert not state.banned and state.active
    for match in (m12, m23):
        db.session.refresh(match)
        assert not match.is_active

    kinds = [e.kind for e in collected_events]
    assert events.SANCTION_APPLIED in kinds
    assert events.SANCTION_LIFTED in kinds
    assert events.APPEAL_REVIEWED in kinds


def test_approved_appeal_can_reactivate_matches(app, make_user, make_match, moderator, senior):
    app.config['MODERATION_REACTIVATE_MATCHES_ON_APPEAL'] = True
    u1, u2 = make_user(), make_user()
    match = make_match(u1, u2)

    report = moderation.submit_report(u1.id, u2.id, 'spam')
    reviewed = moderation.review(report.id, moderator.id, 'resolve', 'spam links',
                                 sanction={'kind': 'ban', 'duration': '30d'})
    appeal = moderation.submit_appeal(u2.id, reviewed.sanction_id, 'hacked', 'My account was compromised')
    moderation.review_appeal(appeal.id, senior.id, approved=True)

    db.session.refresh(match)
    assert match.is_active
    assert match.sanction_id is None


def test_daily_report_budget(app, make_user):
    app.config['MODERATION_REPORTS_PER_MINUTE'] = 100
    app.config['MODERATION_REPORTS_PER_HOUR'] = 100
    app.config['MODERATION_REPORTS_PER_DAY'] = 5
    reporter = make_user("Reporter")
    targets = [make_user(f"T{i}") for i in range(6)]

    for target in targets[:5]:
        moderation.submit_report(reporter.id, target.id, 'spam')

    with pytest.raises(RateLimited) as exc:
        moderation.submit_report(reporter.id, targets[5].id, 'spam')
    assert 0 < exc.value.retry_after <= 86400
    assert Report.query.count() == 5


def test_per_pair_report_budget(app, make_user, moderator):
    reporter, target = make_user(), make_user()
    for _ in range(app.config['MODERATION_REPORTS_PER_PAIR_PER_DAY']):
        report = moderation.submit_report(reporter.id, target.id, 'spam')
        moderation.review(report.id, moderator.id, 'dismiss', 'not spam')

    with pytest.raises(RateLimited):
        moderation.submit_report(reporter.id, target.id, 'spam')


def test_report_validation(make_user):
    a, b = make_user(), make_user()
    with pytest.raises(InvalidArgument):
        moderation.submit_report(a.id, b.id, 'rude')
    with pytest.raises(InvalidArgument):
        moderation.submit_report(a.id, a.id, 'spam')


def test_banned_reporter_refused(make_user):
    banned, b = make_user(banned=True), make_user()
    with pytest.raises(Forbidden):
        moderation.submit_report(banned.id, b.id, 'spam')


def test_suspended_or_inactive_reporter_refused(make_user):
    suspended, inactive, b = make_user(suspended=True), make_user(active=False), make_user()
    with pytest.raises(Forbidden) as exc:
        moderation.submit_report(suspended.id, b.id, 'spam')
    assert exc.value.code == 'suspended'
    with pytest.raises(Forbidden) as exc:
        moderation.submit_report(inactive.id, b.id, 'spam')
    assert exc.value.code == 'inactive'
    assert Report.query.count() == 0


def test_one_open_report_per_pair(make_user):
    a, b = make_user(), make_user()
    moderation.submit_report(a.id, b.id, 'spam')
    with pytest.raises(Conflict):
        moderation.submit_report(a.id, b.id, 'fake_profile')


@pytest.mark.parametrize("reason,priority", [
    ('harassment', 'high'),
    ('inappropriate_behavior', 'high'),
    ('spam', 'normal'),
    ('fake_profile', 'normal'),
    ('other', 'low'),
])
def test_report_priority_by_reason(make_user, reason, priority):
    a, b = make_user(), make_user()
    assert moderation.submit_report(a.id, b.id, reason).priority == priority


def test_open_reports_past_threshold_raise_priority(app, make_user):
    target = make_user("Target")
    reporters = [make_user() for _ in range(app.config['MODERATION_REPORT_THRESHOLD'])]

    first = moderation.submit_report(reporters[0].id, target.id, 'other')
    moderation.submit_report(reporters[1].id, target.id, 'spam')
    last = moderation.submit_report(reporters[2].id, target.id, 'spam')

    assert last.priority == 'high'
    db.session.refresh(first)
    assert first.priority == 'high'


def test_dismiss_raises_reputation(make_user, moderator):
    a, b = make_user(), make_user()
    report = moderation.submit_report(a.id, b.id, 'spam')

    reviewed = moderation.review(report.id, moderator.id, 'dismiss', 'no evidence')

    assert reviewed.status == 'dismissed'
    assert identity.get_user(b.id).reputation == 105
    assert 'dismiss' in reviewed.resolution_notes


def test_review_requires_capability(make_user):
    a, b, c = make_user(), make_user(), make_user()
    report = moderation.submit_report(a.id, b.id, 'spam')
    with pytest.raises(Forbidden):
        moderation.review(report.id, c.id, 'dismiss', 'nope')


def test_review_validation(make_user, moderator):
    a, b = make_user(), make_user()
    report = moderation.submit_report(a.id, b.id, 'spam')
    with pytest.raises(InvalidArgument):
        moderation.review(report.id, moderator.id, 'ignore', 'why')
    with pytest.raises(InvalidArgument):
        moderation.review(report.id, moderator.id, 'dismiss', '')
    with pytest.raises(InvalidArgument):
        moderation.review(report.id, moderator.id, 'dismiss', 'no', sanction={'kind': 'warn'})


def test_reviewed_report_cannot_be_reviewed_again(make_user, moderator):
    a, b = make_user(), make_user()
    report = moderation.submit_report(a.id, b.id, 'spam')
    moderation.review(report.id, moderator.id, 'dismiss', 'no evidence')
    with pytest.raises(Conflict):
        moderation.review(report.id, moderator.id, 'resolve', 'changed my mind')


def test_only_super_admin_escalates(make_user, moderator, super_admin):
    a, b = make_user(), make_user()
    report = moderation.submit_report(a.id, b.id, 'harassment')

    with pytest.raises(Forbidden):
        moderation.review(report.id, moderator.id, 'escalate', 'needs legal')

    escalated = moderation.review(report.id, super_admin.id, 'escalate', 'needs legal')
    assert escalated.status == 'escalated'

    items, total = moderation.list_reports(moderator.id)
    assert total == 0 and items == []
    with pytest.raises(NotFound):
        moderation.get_report(moderator.id, report.id)
    with pytest.raises(Forbidden):
        moderation.list_reports(moderator.id, status='escalated')
    with pytest.raises(Conflict):
        moderation.review(report.id, moderator.id, 'resolve', 'taking it')

    assert moderation.get_report(a.id, report.id).id == report.id
    resolved = moderation.review(report.id, super_admin.id, 'resolve', 'handled')
    assert resolved.status == 'resolved'


def test_report_queue_orders_by_priority_then_age(make_user, moderator, frozen_clock):
    target_low, target_normal, target_high = make_user(), make_user(), make_user()
    reporter = make_user()
    low = moderation.submit_report(reporter.id, target_low.id, 'other')
    frozen_clock.advance(minutes=1)
    normal = moderation.submit_report(reporter.id, target_normal.id, 'spam')
    frozen_clock.advance(minutes=1)
    high = moderation.submit_report(reporter.id, target_high.id, 'harassment')

    items, total = moderation.list_reports(moderator.id, status='pending')

    assert total == 3
    assert [r.id for r in items] == [high.id, normal.id, low.id]


def test_apply_sanction_capabilities(make_user, moderator, senior):
    target = make_user()

    warning = moderation.apply_sanction(target.id, moderator.id, 'warn', 'rude bio')
    assert warning.expires_at is None
    assert moderation.describe_duration(warning) == 'n/a'
    assert identity.get_user(target.id).reputation == 90

    with pytest.raises(Forbidden):
        moderation.apply_sanction(target.id, moderator.id, 'suspend', 'repeat', '24h')

    suspension = moderation.apply_sanction(target.id, senior.id, 'suspend', 'repeat', '24h')
    assert identity.get_user(target.id).suspended
    assert moderation.describe_duration(suspension) == '24h'


def test_one_active_ban_at_a_time(make_user, senior):
    target = make_user()
    moderation.apply_sanction(target.id, senior.id, 'ban', 'fraud', 'permanent')
    with pytest.raises(Conflict):
        moderation.apply_sanction(target.id, senior.id, 'ban', 'fraud again', '7d')
    assert Sanction.query.filter_by(target_user_id=target.id, kind='ban').count() == 1


def test_unknown_duration_leaves_nothing_behind(make_user, senior):
    target = make_user()
    with pytest.raises(InvalidArgument):
        moderation.apply_sanction(target.id, senior.id, 'ban', 'fraud', '2w')
    assert Sanction.query.count() == 0
    assert not identity.get_user(target.id).banned


def test_permanent_ban_never_expires(make_user, senior, frozen_clock):
    target = make_user()
    ban = moderation.apply_sanction(target.id, senior.id, 'ban', 'fraud')

    assert ban.expires_at is None
    assert moderation.describe_duration(ban) == 'permanent'

    frozen_clock.advance(days=3650)
    assert moderation.expire_sanctions() == 0
    db.session.refresh(ban)
    assert ban.is_active
    assert identity.get_user(target.id).banned


def test_timed_suspension_expires(make_user, make_match, senior, frozen_clock):
    target, other = make_user(), make_user()
    match = make_match(target, other)
    suspension = moderation.apply_sanction(target.id, senior.id, 'suspend', 'cool off', '1h')
    assert identity.get_user(target.id).suspended

    frozen_clock.advance(minutes=59)
    assert moderation.expire_sanctions() == 0

    frozen_clock.advance(minutes=1)
    assert moderation.expire_sanctions() == 1

    db.session.refresh(suspension)
    assert not suspension.is_active
    assert suspension.lift_reason == 'expired'
    state = identity.get_user(target.id)
    assert not state.suspended and state.active
    db.session.refresh(match)
    assert not match.is_active


def test_lift_sanction(make_user, moderator, senior):
    target = make_user()
    ban = moderation.apply_sanction(target.id, senior.id, 'ban', 'fraud', '30d')

    with pytest.raises(Forbidden):
        moderation.lift_sanction(ban.id, moderator.id)

    moderation.lift_sanction(ban.id, senior.id, 'mistaken identity')
    assert not identity.get_user(target.id).banned
    with pytest.raises(Conflict):
        moderation.lift_sanction(ban.id, senior.id)


def test_sanction_events_carry_sanction_kind(make_user, senior, collected_events):
    target = make_user()
    suspension = moderation.apply_sanction(target.id, senior.id, 'suspend', 'spam', '24h')
    moderation.lift_sanction(suspension.id, senior.id, 'appeal upheld')

    applied, lifted = [e for e in collected_events
                       if e.kind in (events.SANCTION_APPLIED, events.SANCTION_LIFTED)]
    assert applied.kind == events.SANCTION_APPLIED
    assert applied.payload['kind'] == 'suspend'
    assert applied.payload['duration'] == '24h'
    assert applied.recipients == [target.id]
    assert lifted.kind == events.SANCTION_LIFTED
    assert lifted.payload['kind'] == 'suspend'
    assert lifted.payload['reason'] == 'appeal upheld'


def test_list_sanctions_visibility(make_user, moderator, senior):
    target, stranger = make_user(), make_user()
    moderation.apply_sanction(target.id, moderator.id, 'warn', 'rude')
    ban = moderation.apply_sanction(target.id, senior.id, 'ban', 'fraud', '7d')
    moderation.lift_sanction(ban.id, senior.id)

    assert len(moderation.list_sanctions(target.id, target.id)) == 2
    assert len(moderation.list_sanctions(moderator.id, target.id, active_only=True)) == 1
    with pytest.raises(Forbidden):
        moderation.list_sanctions(stranger.id, target.id)


def test_appeal_rules(make_user, senior):
    target, other = make_user(), make_user()
    ban = moderation.apply_sanction(target.id, senior.id, 'ban', 'fraud', '7d')

    with pytest.raises(Forbidden):
        moderation.submit_appeal(other.id, ban.id, 'not me', 'I am appealing for a friend')
    with pytest.raises(InvalidArgument):
        moderation.submit_appeal(target.id, ban.id, 'no description', '')

    moderation.submit_appeal(target.id, ban.id, 'not me', 'Someone used my phone')
    with pytest.raises(Conflict):
        moderation.submit_appeal(target.id, ban.id, 'again', 'Please look again')

    assert [a.sanction_id for a in moderation.my_appeals(target.id)] == [ban.id]
    items, total = moderation.list_appeals(senior.id)
    assert total == 1


def test_rejected_appeal_keeps_sanction(make_user, senior):
    target = make_user()
    ban = moderation.apply_sanction(target.id, senior.id, 'ban', 'fraud', '7d')
    appeal = moderation.submit_appeal(target.id, ban.id, 'not me', 'Someone used my phone')

    decided = moderation.review_appeal(appeal.id, senior.id, approved=False, notes='evidence is clear')

    assert decided.status == 'rejected'
    assert identity.get_user(target.id).banned
    with pytest.raises(Conflict):
        moderation.review_appeal(appeal.id, senior.id, approved=True)


def test_appeal_on_inactive_sanction_refused(make_user, senior):
    target = make_user()
    ban = moderation.apply_sanction(target.id, senior.id, 'ban', 'fraud', '7d')
    moderation.lift_sanction(ban.id, senior.id)
    with pytest.raises(Conflict):
        moderation.submit_appeal(target.id, ban.id, 'late', 'Already lifted')


def test_cleanup_closes_appeals_for_lifted_sanctions(make_user, senior):
    target = make_user()
    ban = moderation.apply_sanction(target.id, senior.id, 'ban', 'fraud', '7d')
    appeal = moderation.submit_appeal(target.id, ban.id, 'not me', 'Someone used my phone')
    moderation.lift_sanction(ban.id, senior.id)

    assert moderation.cleanup_appeals() == 1
    db.session.refresh(appeal)
    assert appeal.status == 'reviewed'
    assert moderation.cleanup_appeals() == 0


def _resolve_reports(target, moderator, make_user, count):
    for _ in range(count):
        reporter = make_user()
        report = moderation.submit_report(reporter.id, target.id, 'spam')
        moderation.review(report.id, moderator.id, 'resolve', 'confirmed')


def test_auto_suspend_after_threshold(app, make_user, moderator, frozen_clock):
    app.config['MODERATION_AUTO_SUSPEND_THRESHOLD'] = 2
    target = make_user()

    _resolve_reports(target, moderator, make_user, 1)
    assert not identity.get_user(target.id).suspended

    _resolve_reports(target, moderator, make_user, 1)
    auto = Sanction.query.filter_by(target_user_id=target.id, is_automated=True).one()
    assert auto.kind == 'suspend'
    assert auto.duration_token == app.config['MODERATION_AUTO_SUSPEND_DURATION']
    assert auto.issuer_id == identity.SYSTEM_PRINCIPAL
    assert identity.get_user(target.id).suspended

    # Re-evaluating while the automatic sanction is active changes nothing
    assert moderation.evaluate_thresholds(target.id) is None

    frozen_clock.advance(days=7, seconds=1)
    assert moderation.expire_sanctions() == 1
    # The same reports do not trigger a second suspension
    assert moderation.evaluate_thresholds(target.id) is None
    assert Sanction.query.filter_by(target_user_id=target.id, is_automated=True).count() == 1


def test_auto_ban_after_threshold(app, make_user, moderator):
    app.config['MODERATION_AUTO_SUSPEND_THRESHOLD'] = 50
    app.config['MODERATION_AUTO_BAN_THRESHOLD'] = 3
    target = make_user()

    _resolve_reports(target, moderator, make_user, 3)

    auto = Sanction.query.filter_by(target_user_id=target.id, is_automated=True).one()
    assert auto.kind == 'ban'
    assert auto.expires_at is None
    assert identity.get_user(target.id).banned


def test_reports_outside_window_do_not_count(app, make_user, moderator, frozen_clock):
    app.config['MODERATION_AUTO_SUSPEND_THRESHOLD'] = 2
    target = make_user()

    _resolve_reports(target, moderator, make_user, 1)
    frozen_clock.advance(seconds=app.config['MODERATION_THRESHOLD_WINDOW'] + 1)
    _resolve_reports(target, moderator, make_user, 1)

    assert Sanction.query.filter_by(target_user_id=target.id).count() == 0


def test_failed_sanction_publishes_nothing(make_user, senior, collected_events):
    target = make_user()
    moderation.apply_sanction(target.id, senior.id, 'ban', 'fraud')
    collected_events.clear()

    with pytest.raises(Conflict):
        moderation.apply_sanction(target.id, senior.id, 'ban', 'fraud')

    assert collected_events == []
