"""
Honeypot alert delivery to the creator of a probed session.

Delivery is at-most-once with no retry: each alert is handed to a worker
thread and the classifier never waits for it. Failures are logged and dropped.
"""

import json
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..models.core import HoneypotAlert
from ..utils.config import HoneypotConfig, config
from ..utils.logging_config import get_logger

logger = get_logger(__name__)

ALERT_EVENT = 'honeypot-alert'


def session_channel(session_id: str) -> str:
    """Name of the live broadcast channel both peers of a session subscribe to."""
    return f'ghost-session-{session_id}'


class AlertDeliveryError(Exception):
    """Custom exception for alert delivery errors."""
    pass


class AlertNotifier(ABC):
    """Transport that pushes an alert onto a session's live channel."""

    @abstractmethod
    def send_alert(self, channel: str, recipient: str, alert: HoneypotAlert) -> None:
        """
        Deliver one alert.

        Args:
            channel: Live channel name of the probed session
            recipient: Creator fingerprint the alert is addressed to
            alert: Generic warning payload

        Raises:
            AlertDeliveryError: If delivery fails
        """


class NullAlertNotifier(AlertNotifier):
    """Used when no live channel is configured; drops alerts."""

    def send_alert(self, channel: str, recipient: str, alert: HoneypotAlert) -> None:
        logger.debug(f'No alert channel configured; dropped {ALERT_EVENT} for {channel[:19]}...')


class SnsAlertNotifier(AlertNotifier):
    """Publish alerts to an Amazon SNS topic that fans out to live session channels."""

    def __init__(self, topic_arn: str, region: str, client: Optional[Any] = None):
        """
        Initialize SNS notifier.

        Args:
            topic_arn: Topic the realtime relay subscribes to
            region: AWS region of the topic
            client: Pre-built boto3 SNS client (optional)
        """
        self.topic_arn = topic_arn
        self.sns = client or boto3.client('sns', region_name=region)
        logger.info('Initialized SNS alert notifier')

    def send_alert(self, channel: str, recipient: str, alert: HoneypotAlert) -> None:
        try:
            self.sns.publish(TopicArn=self.topic_arn,
                             Message=json.dumps({
                                 'type': 'broadcast',
                                 'event': ALERT_EVENT,
                                 'payload': alert.to_payload()
                             }),
                             MessageAttributes={
                                 'channel': {
                                     'DataType': 'String',
                                     'StringValue': channel
                                 },
                                 'recipient': {
                                     'DataType': 'String',
                                     'StringValue': recipient
                                 },
                             })
        except (ClientError, BotoCoreError) as e:
            raise AlertDeliveryError(f'SNS publish failed: {e}')


def create_alert_notifier(honeypot_config: Optional[HoneypotConfig] = None) -> AlertNotifier:
    """Build the configured notifier: SNS when a topic is set, otherwise a no-op."""
    honeypot_config = honeypot_config or config.honeypot
    if honeypot_config.alert_topic_arn:
        return SnsAlertNotifier(honeypot_config.alert_topic_arn, honeypot_config.alert_region)
    return NullAlertNotifier()


class AlertDispatcher:
    """Fire-and-forget delivery of alerts on a small worker pool."""

    def __init__(self, notifier: AlertNotifier, max_workers: int = 2):
        self.notifier = notifier
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix='honeypot-alert')

    def dispatch(self, channel: str, recipient: str, alert: HoneypotAlert) -> Future:
        """Schedule delivery and return immediately. The returned future never raises."""
        return self._executor.submit(self._deliver, channel, recipient, alert)

    def _deliver(self, channel: str, recipient: str, alert: HoneypotAlert) -> bool:
        try:
            self.notifier.send_alert(channel, recipient, alert)
            logger.info('Alert sent to original session owner')
            return True
        except Exception as e:
            logger.debug(f'Alert delivery failed: {e}')
            return False

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
