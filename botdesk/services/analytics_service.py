import logging
from datetime import datetime
from botdesk.core.firebase import get_firestore_client

logger = logging.getLogger(__name__)


class AnalyticsService:
    """
    Product events and error reports stored in Firestore.
    Analytics failures never break the calling operation.
    """

    events_collection = 'analytics_events'
    errors_collection = 'error_reports'

    def __init__(self):
        self._db = None
        self.logger = logging.getLogger(__name__)

    @property
    def db(self):
        if self._db is None:
            self._db = get_firestore_client()
        return self._db

    def _write(self, collection: str, document: dict):
        try:
            self.db.collection(collection).add(document)
        except Exception as e:
            self.logger.error(f"analytics write to {collection} failed - {e}")

    def log_event(self, event_name: str, user_id: str = None, parameters: dict = None):
        """Record a product analytics event"""
        self._write(self.events_collection, {
            'event_name': event_name,
            'user_id': user_id,
            'parameters': parameters or {},
            'timestamp': datetime.utcnow()
        })

    def log_success(self, action: str, user_id: str = None, parameters: dict = None):
        self.log_event(
            event_name=f'{action}_success',
            user_id=user_id,
            parameters={'status': 'success', **(parameters or {})}
        )

    def log_failure(
        self,
        action: str,
        error: str,
        user_id: str = None,
        parameters: dict = None,
        category: str = 'error'
    ):
        """
        Record a failed action both as a product metric and as an error report.

        ``category`` distinguishes hard errors from consistency warnings such as
        webhook events whose customer maps to no user.
        """
        self.log_event(
            event_name=f'{action}_failure',
            user_id=user_id,
            parameters={'status': 'failure', 'error': error, **(parameters or {})}
        )
        self._write(self.errors_collection, {
            'action': action,
            'category': category,
            'user_id': user_id,
            'error_message': error,
            'parameters': parameters or {},
            'timestamp': datetime.utcnow()
        })
