from flask import Flask
from flask_cors import CORS
from flask_restful import Api, Resource
from flask_migrate import Migrate
from models import db
from config import Config
from services import events, notifications
from services.jobs import start_sweepers
from utils.cache import init_cache
import logging

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s %(levelname)s %(name)s %(message)s'
)

logger = logging.getLogger(__name__)

migrate = Migrate()

_subscribed = False


class HealthCheck(Resource):
    def get(self):
        return {"status": "ok"}


def _subscribe_handlers():
    global _subscribed
    if _subscribed:
        return
    events.bus.subscribe(events.redis_publisher)
    events.bus.subscribe(notifications.email_subscriber)
    _subscribed = True


def register_routes(api):
    from resources.webhooks import ClerkWebhook
    from resources.users import CurrentUserResource
    from resources.matches import (
        SwipeResource,
        SwipeStatsResource,
        MatchListResource,
        MatchResource,
        RematchResource
    )
    from resources.blocks import BlockListResource, BlockResource
    from resources.messages import (
        MessageResource,
        ConversationListResource,
        ConversationResource,
        MarkReadResource,
        UnreadCountResource
    )
    from resources.ephemeral_photos import (
        EphemeralUploadUrlResource,
        EphemeralPhotoListResource,
        EphemeralPhotoResource,
        EphemeralPhotoExpireResource,
        EphemeralPhotoStatsResource,
        EphemeralPhotoViewResource,
        EphemeralPhotoViewDurationResource
    )
    from resources.moderation import (
        ReportListResource,
        ReportResource,
        ReportReviewResource,
        SanctionListResource,
        UserSanctionsResource,
        SanctionLiftResource,
        AppealListResource,
        AppealQueueResource,
        AppealReviewResource
    )

    api.add_resource(HealthCheck, '/health')
    api.add_resource(ClerkWebhook, '/webhooks/clerk')
    api.add_resource(CurrentUserResource, '/users/me')

    # Swipe and match routes
    api.add_resource(SwipeResource, '/swipes')
    api.add_resource(SwipeStatsResource, '/swipes/stats')
    api.add_resource(MatchListResource, '/matches')
    api.add_resource(MatchResource, '/matches/<uuid:match_id>')
    api.add_resource(RematchResource, '/matches/<uuid:match_id>/rematch')

    # Block routes
    api.add_resource(BlockListResource, '/blocks')
    api.add_resource(BlockResource, '/blocks/<uuid:user_id>')

    # Message routes
    api.add_resource(MessageResource, '/matches/<uuid:match_id>/messages')
    api.add_resource(ConversationListResource, '/conversations')
    api.add_resource(ConversationResource, '/conversations/<uuid:conversation_id>')
    api.add_resource(MarkReadResource, '/conversations/<uuid:conversation_id>/read')
    api.add_resource(UnreadCountResource, '/messages/unread')

    # Ephemeral photo routes
    api.add_resource(EphemeralUploadUrlResource, '/ephemeral-photos/upload-url')
    api.add_resource(EphemeralPhotoListResource, '/ephemeral-photos')
    api.add_resource(EphemeralPhotoResource, '/ephemeral-photos/<uuid:photo_id>')
    api.add_resource(EphemeralPhotoExpireResource, '/ephemeral-photos/<uuid:photo_id>/expire')
    api.add_resource(EphemeralPhotoStatsResource, '/ephemeral-photos/<uuid:photo_id>/stats')
    api.add_resource(EphemeralPhotoViewResource, '/ephemeral-photos/view/<string:access_key>')
    api.add_resource(EphemeralPhotoViewDurationResource, '/ephemeral-photos/view/<string:access_key>/duration')

    # Moderation routes
    api.add_resource(ReportListResource, '/reports')
    api.add_resource(ReportResource, '/reports/<uuid:report_id>')
    api.add_resource(ReportReviewResource, '/reports/<uuid:report_id>/review')
    api.add_resource(SanctionListResource, '/sanctions')
    api.add_resource(UserSanctionsResource, '/users/<uuid:user_id>/sanctions')
    api.add_resource(SanctionLiftResource, '/sanctions/<uuid:sanction_id>/lift')
    api.add_resource(AppealListResource, '/appeals')
    api.add_resource(AppealQueueResource, '/appeals/queue')
    api.add_resource(AppealReviewResource, '/appeals/<uuid:appeal_id>/review')


def create_app(config_object=None):
    app = Flask(__name__)
    app.config.from_object(config_object or Config)

    CORS(app)

    db.init_app(app)
    migrate.init_app(app, db)
    init_cache(app)
    _subscribe_handlers()

    api = Api(app)
    register_routes(api)

    if app.config.get('SWEEPERS_ENABLED'):
        start_sweepers(app)
        logger.info("Background sweepers started")

    return app


if __name__ == '__main__':
    create_app().run(debug=True)
