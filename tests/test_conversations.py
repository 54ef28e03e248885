import pytest

from models import db, Conversation, Message
from services import blocks, conversations, ephemeral_photos, events, identity, swipes
from utils import classifier
from utils.classifier import Classification
from utils.errors import Blocked, Expired, Forbidden, InvalidArgument, InvalidContent, RateLimited, Timeout


@pytest.fixture()
def pair(make_user, make_match):
    a, b = make_user("Alice"), make_user("Bob")
    return a, b, make_match(a, b)


def test_first_message_opens_conversation(pair, collected_events):
    a, b, match = pair

    message = conversations.send(a.id, match.id, 'text', {'text': "hello there"})

    conversation = Conversation.query.filter_by(match_id=match.id).one()
    assert message.seq == 1
    assert conversation.initiated_by == a.id
    assert conversation.last_message_id == message.id
    appended = [e for e in collected_events if e.kind == events.MESSAGE_APPENDED]
    assert len(appended) == 1
    assert set(appended[0].recipients) == {a.id, b.id}


def test_plain_string_content_is_accepted_for_text(pair):
    a, b, match = pair
    message = conversations.send(b.id, match.id, 'text', "hi!")
    assert message.content == {'text': "hi!"}


def test_non_participant_cannot_send(pair, make_user):
    a, b, match = pair
    stranger = make_user()
    with pytest.raises(Forbidden):
        conversations.send(stranger.id, match.id, 'text', {'text': "hey"})


def test_inactive_match_refuses_messages(pair):
    a, b, match = pair
    swipes.unmatch(a.id, match.id)
    with pytest.raises(Forbidden) as exc:
        conversations.send(b.id, match.id, 'text', {'text': "wait"})
    assert exc.value.code == 'match_inactive'


def test_block_refuses_messages(pair):
    a, b, match = pair
    blocks.block(b.id, a.id)
    with pytest.raises(Blocked):
        conversations.send(a.id, match.id, 'text', {'text': "hello?"})


def test_text_length_boundary(pair):
    a, b, match = pair
    text = ("hello " * 400)[:2000]
    assert conversations.send(a.id, match.id, 'text', {'text': text}).seq == 1
    with pytest.raises(InvalidContent):
        conversations.send(a.id, match.id, 'text', {'text': text + "x"})


def test_empty_text_is_invalid(pair):
    a, b, match = pair
    with pytest.raises(InvalidArgument):
        conversations.send(a.id, match.id, 'text', {'text': "   "})


@pytest.mark.parametrize("text", [
    "you are a shit person",
    "mail me at someone@example.com",
    "call me at 555-123-4567",
])
def test_screening_rejects_profanity_and_contact_details(pair, text):
    a, b, match = pair
    with pytest.raises(InvalidContent):
        conversations.send(a.id, match.id, 'text', {'text': text})
    assert Message.query.count() == 0


def test_users_cannot_send_system_messages(pair):
    a, b, match = pair
    with pytest.raises(Forbidden):
        conversations.send(a.id, match.id, 'system', {'text': "You matched!"})


def test_system_message_from_system_principal(pair):
    a, b, match = pair
    message = conversations.post_system_message(match.id, "You matched!")
    assert message.sender_id == identity.SYSTEM_PRINCIPAL
    assert conversations.unread(a.id) == 1
    assert conversations.unread(b.id) == 1


def test_seq_and_created_at_are_monotonic(pair, frozen_clock):
    a, b, match = pair
    first = conversations.send(a.id, match.id, 'text', {'text': "one"})
    first_at = first.created_at

    # Clock skew backwards must not reorder the log
    frozen_clock.advance(seconds=-30)
    second = conversations.send(b.id, match.id, 'text', {'text': "two"})

    assert second.seq == 2
    assert second.created_at >= first_at


def test_list_messages_paging(pair, frozen_clock):
    a, b, match = pair
    sent = []
    for i in range(5):
        frozen_clock.advance(seconds=1)
        sent.append(conversations.send(a.id, match.id, 'text', {'text': f"message {i}"}))
    stamps = [m.created_at for m in sent]
    ids = [m.id for m in sent]

    newest = conversations.list_messages(b.id, match.id, limit=2)
    assert [m.id for m in newest] == [ids[4], ids[3]]

    older = conversations.list_messages(b.id, match.id, before=stamps[3], limit=2)
    assert [m.id for m in older] == [ids[2], ids[1]]

    newer = conversations.list_messages(b.id, match.id, after=stamps[2])
    assert [m.id for m in newer] == [ids[3], ids[4]]

    with pytest.raises(InvalidArgument):
        conversations.list_messages(b.id, match.id, before=stamps[1], after=stamps[0])


def test_paging_through_tied_timestamps(pair):
    a, b, match = pair
    # The frozen clock gives every message the same created_at
    sent = [conversations.send(a.id, match.id, 'text', {'text': f"tick {i}"}) for i in range(3)]
    assert len({m.created_at for m in sent}) == 1

    first = conversations.list_messages(b.id, match.id, limit=2)
    assert [m.seq for m in first] == [3, 2]

    boundary = first[-1]
    rest = conversations.list_messages(b.id, match.id, before=boundary.created_at,
                                       before_seq=boundary.seq, limit=2)
    assert [m.seq for m in rest] == [1]

    oldest = rest[-1]
    newer = conversations.list_messages(b.id, match.id, after=oldest.created_at, after_seq=oldest.seq)
    assert [m.seq for m in newer] == [2, 3]

    with pytest.raises(InvalidArgument):
        conversations.list_messages(b.id, match.id, before_seq=2)


def test_list_messages_text_filter(pair):
    a, b, match = pair
    conversations.send(a.id, match.id, 'text', {'text': "Want to grab coffee?"})
    conversations.send(b.id, match.id, 'text', {'text': "Sure, tomorrow"})
    found = conversations.list_messages(a.id, match.id, q="COFFEE")
    assert [m.content['text'] for m in found] == ["Want to grab coffee?"]


def test_mark_read_is_idempotent(pair, collected_events):
    a, b, match = pair
    conversations.send(a.id, match.id, 'text', {'text': "one"})
    conversations.send(a.id, match.id, 'text', {'text': "two"})
    conversations.send(b.id, match.id, 'text', {'text': "mine"})
    conversation = Conversation.query.filter_by(match_id=match.id).one()

    assert conversations.unread(b.id) == 2
    assert conversations.unread(b.id, conversation.id) == 2

    assert conversations.mark_read(conversation.id, b.id) == 2
    assert conversations.mark_read(conversation.id, b.id) == 0
    assert conversations.unread(b.id) == 0
    assert conversations.unread(a.id) == 1
    assert len([e for e in collected_events if e.kind == events.MESSAGES_READ]) == 1


def test_unread_cache_is_invalidated_on_send(pair, fake_redis):
    a, b, match = pair
    conversations.send(a.id, match.id, 'text', {'text': "one"})
    assert conversations.unread(b.id) == 1
    conversations.send(a.id, match.id, 'text', {'text': "two"})
    assert conversations.unread(b.id) == 2


def test_mark_read_by_stranger_is_forbidden(pair, make_user):
    a, b, match = pair
    conversations.send(a.id, match.id, 'text', {'text': "one"})
    conversation = Conversation.query.filter_by(match_id=match.id).one()
    stranger = make_user()
    with pytest.raises(Forbidden):
        conversations.mark_read(conversation.id, stranger.id)


def test_banned_reader_cannot_mark_read(pair):
    a, b, match = pair
    conversations.send(a.id, match.id, 'text', {'text': "one"})
    conversation = Conversation.query.filter_by(match_id=match.id).one()
    identity.apply_ban(b.id)
    db.session.commit()

    with pytest.raises(Forbidden) as exc:
        conversations.mark_read(conversation.id, b.id)

    assert exc.value.to_details()['code'] == 'banned'
    assert Message.query.filter_by(is_read=True).count() == 0


def test_suspended_user_cannot_hide_conversation(pair):
    a, b, match = pair
    conversations.send(a.id, match.id, 'text', {'text': "one"})
    conversation = Conversation.query.filter_by(match_id=match.id).one()
    identity.apply_suspension(a.id)
    db.session.commit()

    with pytest.raises(Forbidden):
        conversations.hide_conversation(a.id, conversation.id)
    db.session.refresh(conversation)
    assert conversation.user1_hidden_at is None and conversation.user2_hidden_at is None


def test_hide_and_reopen(pair):
    a, b, match = pair
    conversations.send(a.id, match.id, 'text', {'text': "hello"})
    conversation_id = Conversation.query.filter_by(match_id=match.id).one().id

    assert conversations.hide_conversation(b.id, conversation_id) is False
    assert conversations.list_conversations(b.id) == []
    assert len(conversations.list_conversations(a.id)) == 1

    conversations.send(a.id, match.id, 'text', {'text': "still there?"})
    listed = conversations.list_conversations(b.id)
    assert len(listed) == 1
    assert listed[0]['unread_count'] == 2
    assert listed[0]['other_user_id'] == str(a.id)


def test_hidden_by_both_removes_log(pair):
    a, b, match = pair
    conversations.send(a.id, match.id, 'text', {'text': "hello"})
    conversation_id = Conversation.query.filter_by(match_id=match.id).one().id

    conversations.hide_conversation(a.id, conversation_id)
    assert conversations.hide_conversation(b.id, conversation_id) is True
    assert db.session.get(Conversation, conversation_id) is None
    assert Message.query.count() == 0


def test_removed_log_clears_both_unread_caches(pair, fake_redis):
    a, b, match = pair
    conversations.send(a.id, match.id, 'text', {'text': "hello"})
    conversations.send(b.id, match.id, 'text', {'text': "hi back"})
    conversation_id = Conversation.query.filter_by(match_id=match.id).one().id

    assert conversations.unread(a.id) == 1
    conversations.hide_conversation(a.id, conversation_id)
    assert conversations.unread(a.id) == 1

    conversations.hide_conversation(b.id, conversation_id)

    assert conversations.unread(a.id) == 0
    assert conversations.unread(b.id) == 0


def test_message_budget(app, pair):
    app.config['CHAT_MESSAGES_PER_MINUTE'] = 2
    a, b, match = pair
    conversations.send(a.id, match.id, 'text', {'text': "one"})
    conversations.send(a.id, match.id, 'text', {'text': "two"})
    with pytest.raises(RateLimited):
        conversations.send(a.id, match.id, 'text', {'text': "three"})
    conversations.send(b.id, match.id, 'text', {'text': "my turn"})


def test_location_validation(pair):
    a, b, match = pair
    message = conversations.send(a.id, match.id, 'location', {'lat': 48.85, 'lng': 2.35, 'description': "Cafe"})
    assert message.content['lat'] == 48.85
    with pytest.raises(InvalidArgument):
        conversations.send(a.id, match.id, 'location', {'lat': 91, 'lng': 0})
    with pytest.raises(InvalidArgument):
        conversations.send(a.id, match.id, 'location', {'lat': 0, 'lng': 0, 'accuracy_m': -1})
    with pytest.raises(InvalidContent):
        conversations.send(a.id, match.id, 'location', {'lat': 0, 'lng': 0, 'description': "x" * 201})


def test_photo_message_needs_owned_approved_photo(pair, approved_photo):
    a, b, match = pair
    photo = approved_photo(a)
    message = conversations.send(a.id, match.id, 'photo', {'caption': "me at the beach"}, attachment_ref=photo.id)
    assert message.attachment_ref == photo.id
    with pytest.raises(InvalidArgument):
        conversations.send(b.id, match.id, 'photo', {}, attachment_ref=photo.id)
    with pytest.raises(InvalidContent):
        conversations.send(a.id, match.id, 'photo', {'caption': "y" * 501}, attachment_ref=photo.id)


def test_ephemeral_photo_message(pair, frozen_clock):
    a, b, match = pair
    photo = ephemeral_photos.upload(a.id, "ephemeral/a/1.jpg", duration=60)
    message = conversations.send(a.id, match.id, 'photo_ephemeral', {}, attachment_ref=photo.id)
    assert message.content['max_views'] == 1

    frozen_clock.advance(seconds=61)
    with pytest.raises(Expired):
        conversations.send(a.id, match.id, 'photo_ephemeral', {}, attachment_ref=photo.id)


def test_gift_message(pair):
    a, b, match = pair
    message = conversations.send(a.id, match.id, 'gift', {'gift_id': "rose", 'message': "for you"})
    assert message.content == {'gift_id': "rose", 'message': "for you"}
    with pytest.raises(InvalidArgument):
        conversations.send(a.id, match.id, 'gift', {})


def test_classifier_outage_flags_message_unverified(app, pair, monkeypatch):
    app.config['CLASSIFIER_ENABLED'] = True

    def unavailable(text):
        raise Timeout("classifier timed out")
    monkeypatch.setattr(classifier, "classify", unavailable)

    a, b, match = pair
    message = conversations.send(a.id, match.id, 'text', {'text': "see you tonight"})
    assert message.is_unverified is True


def test_classifier_rejection(app, pair, monkeypatch):
    app.config['CLASSIFIER_ENABLED'] = True
    monkeypatch.setattr(classifier, "classify", lambda text: Classification(0.9, ['harassment']))
    a, b, match = pair
    with pytest.raises(InvalidContent):
        conversations.send(a.id, match.id, 'text', {'text': "something rude"})


def test_classifier_pass_keeps_message_verified(app, pair, monkeypatch):
    app.config['CLASSIFIER_ENABLED'] = True
    monkeypatch.setattr(classifier, "classify", lambda text: Classification(0.1, []))
    a, b, match = pair
    assert conversations.send(a.id, match.id, 'text', {'text': "good morning"}).is_unverified is False
