"""
Amazon DynamoDB session store with conditional writes, retry logic and error handling.
"""

import random
import time
from typing import Any, Dict, Optional, Tuple

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError, ReadTimeoutError
from botocore.exceptions import ConnectionError as BotoConnectionError

from ..models.core import RateLimitBucket, SessionRecord
from ..models.errors import ConflictError, InternalFailureError, UnreachableError
from .config import DynamoDBConfig
from .logging_config import get_logger
from .session_store import SessionStore

logger = get_logger(__name__)

CONDITIONAL_CHECK_FAILED = 'ConditionalCheckFailedException'


def _is_conditional_failure(error: ClientError) -> bool:
    return error.response.get('Error', {}).get('Code') == CONDITIONAL_CHECK_FAILED


def _translate_error(operation: str, error: Exception) -> Exception:
    """Map botocore failures onto the session error taxonomy."""
    if isinstance(error, (BotoConnectionError, ReadTimeoutError)):
        return UnreachableError(f'DynamoDB {operation} unreachable: {error}')
    return InternalFailureError(f'DynamoDB {operation} failed: {error}')


class DynamoDBSessionStore(SessionStore):
    """Session and rate-limit tables in DynamoDB.

    Only idempotent calls (reads, deletes, scans) are retried. Conditional
    writes run once: a retried insert whose first attempt landed would report
    a spurious conflict.
    """

    def __init__(self, config: DynamoDBConfig, client: Optional[Any] = None):
        """
        Initialize DynamoDB store.

        Args:
            config: DynamoDBConfig instance with connection parameters
            client: Pre-built boto3 DynamoDB client (optional)
        """
        self.config = config
        self.sessions_table = config.sessions_table
        self.rate_limits_table = config.rate_limits_table

        if client is None:
            client = boto3.client(
                'dynamodb',
                region_name=config.region,
                endpoint_url=config.endpoint_url,
                config=BotoConfig(
                    connect_timeout=5,
                    read_timeout=5,
                    retries={'max_attempts': 0}  # We handle retries manually
                ))
        self.client = client

        logger.info(f'Initialized DynamoDB session store with tables: {self.sessions_table}, {self.rate_limits_table}')

    def _call_with_retry(self, operation: str, **kwargs) -> Dict[str, Any]:
        """
        Make an idempotent DynamoDB call with retry logic.

        Args:
            operation: Client method name, e.g. ``get_item``
            **kwargs: Request parameters

        Returns:
            Response dictionary from DynamoDB

        Raises:
            UnreachableError: If the endpoint cannot be reached after all attempts
            InternalFailureError: If the call fails for any other reason
        """
        method = getattr(self.client, operation)

        for attempt in range(self.config.retry_attempts):
            try:
                logger.debug(f'DynamoDB {operation} attempt {attempt + 1}/{self.config.retry_attempts}')
                return method(**kwargs)

            except (ClientError, BotoCoreError) as e:
                logger.warning(f'DynamoDB {operation} attempt {attempt + 1}/{self.config.retry_attempts} failed: {e}')

                if attempt < self.config.retry_attempts - 1:
                    # Exponential backoff with jitter
                    delay = self.config.retry_delay * (2**attempt) + random.uniform(0, self.config.retry_delay)
                    time.sleep(delay)
                else:
                    raise _translate_error(operation, e)

            except Exception as e:
                logger.error(f'Unexpected error in DynamoDB {operation}: {e}')
                raise InternalFailureError(f'Unexpected DynamoDB error: {e}')

        raise InternalFailureError(f'DynamoDB {operation} failed after {self.config.retry_attempts} attempts')

    @staticmethod
    def _session_key(session_id: str) -> Dict[str, Any]:
        return {'session_id': {'S': session_id}}

    @staticmethod
    def _record_from_item(item: Dict[str, Any]) -> SessionRecord:
        return SessionRecord(session_id=item['session_id']['S'],
                             host_fingerprint=item.get('host_fingerprint', {}).get('S', ''),
                             created_at=float(item.get('created_at', {}).get('N', '0')),
                             expires_at=float(item['expires_at']['N']))

    def insert_session(self, record: SessionRecord) -> None:
        item = {
            'session_id': {'S': record.session_id},
            'host_fingerprint': {'S': record.host_fingerprint},
            'created_at': {'N': repr(record.created_at)},
            'expires_at': {'N': repr(record.expires_at)},
            # Native TTL attribute; DynamoDB removes the row eventually even if the sweep never runs
            'expires_ttl': {'N': str(int(record.expires_at))},
        }
        try:
            self.client.put_item(TableName=self.sessions_table,
                                 Item=item,
                                 ConditionExpression='attribute_not_exists(session_id)')
        except ClientError as e:
            if _is_conditional_failure(e):
                raise ConflictError('Session identifier already present')
            logger.error(f'DynamoDB put_item failed: {e}')
            raise _translate_error('put_item', e)
        except BotoCoreError as e:
            logger.error(f'DynamoDB put_item failed: {e}')
            raise _translate_error('put_item', e)

    def get_session(self, session_id: str) -> Optional[SessionRecord]:
        response = self._call_with_retry('get_item',
                                         TableName=self.sessions_table,
                                         Key=self._session_key(session_id),
                                         ConsistentRead=True)
        item = response.get('Item')
        if not item:
            return None
        return self._record_from_item(item)

    def extend_session(self, session_id: str, now: float, expires_at: float) -> bool:
        try:
            self.client.update_item(TableName=self.sessions_table,
                                    Key=self._session_key(session_id),
                                    UpdateExpression='SET expires_at = :expires_at, expires_ttl = :ttl',
                                    ConditionExpression='attribute_exists(session_id) AND expires_at > :now',
                                    ExpressionAttributeValues={
                                        ':expires_at': {'N': repr(expires_at)},
                                        ':ttl': {'N': str(int(expires_at))},
                                        ':now': {'N': repr(now)},
                                    })
            return True
        except ClientError as e:
            if _is_conditional_failure(e):
                return False
            logger.error(f'DynamoDB update_item failed: {e}')
            raise _translate_error('update_item', e)
        except BotoCoreError as e:
            logger.error(f'DynamoDB update_item failed: {e}')
            raise _translate_error('update_item', e)

    def delete_session(self, session_id: str) -> None:
        self._call_with_retry('delete_item', TableName=self.sessions_table, Key=self._session_key(session_id))

    def delete_expired_sessions(self, now: float) -> int:
        deleted_count = 0
        for item in self._scan(self.sessions_table,
                               FilterExpression='expires_at <= :now',
                               ProjectionExpression='session_id',
                               ExpressionAttributeValues={':now': {'N': repr(now)}}):
            try:
                # Guard against the row having been replaced since the scan page was read
                self.client.delete_item(TableName=self.sessions_table,
                                        Key={'session_id': item['session_id']},
                                        ConditionExpression='expires_at <= :now',
                                        ExpressionAttributeValues={':now': {'N': repr(now)}})
                deleted_count += 1
            except ClientError as e:
                if not _is_conditional_failure(e):
                    raise _translate_error('delete_item', e)
            except BotoCoreError as e:
                raise _translate_error('delete_item', e)
        return deleted_count

    def increment_bucket(self, bucket: RateLimitBucket, ceiling: int) -> Tuple[bool, int]:
        key = {'bucket_key': {'S': bucket.key}}
        try:
            response = self.client.update_item(
                TableName=self.rate_limits_table,
                Key=key,
                UpdateExpression='SET origin_id = :origin, #action = :action, window_start = :window_start, '
                'expires_ttl = :ttl ADD request_count :one',
                ConditionExpression='attribute_not_exists(request_count) OR request_count < :ceiling',
                ExpressionAttributeNames={'#action': 'action'},
                ExpressionAttributeValues={
                    ':origin': {'S': bucket.origin_id},
                    ':action': {'S': bucket.action},
                    ':window_start': {'N': str(bucket.window_start)},
                    ':ttl': {'N': str(bucket.window_start + 3 * 3600)},
                    ':one': {'N': '1'},
                    ':ceiling': {'N': str(ceiling)},
                },
                ReturnValues='UPDATED_NEW')
            return True, int(response['Attributes']['request_count']['N'])
        except ClientError as e:
            if not _is_conditional_failure(e):
                logger.error(f'DynamoDB rate limit update failed: {e}')
                raise _translate_error('update_item', e)
        except BotoCoreError as e:
            logger.error(f'DynamoDB rate limit update failed: {e}')
            raise _translate_error('update_item', e)

        response = self._call_with_retry('get_item', TableName=self.rate_limits_table, Key=key, ConsistentRead=True)
        count = int(response.get('Item', {}).get('request_count', {}).get('N', str(ceiling)))
        return False, count

    def delete_buckets_before(self, cutoff: float) -> int:
        deleted_count = 0
        for item in self._scan(self.rate_limits_table,
                               FilterExpression='window_start < :cutoff',
                               ProjectionExpression='bucket_key',
                               ExpressionAttributeValues={':cutoff': {'N': str(int(cutoff))}}):
            self._call_with_retry('delete_item', TableName=self.rate_limits_table, Key={'bucket_key': item['bucket_key']})
            deleted_count += 1
        return deleted_count

    def _scan(self, table_name: str, **kwargs):
        """Yield every item of a filtered scan, following pagination."""
        request = dict(TableName=table_name, **kwargs)
        while True:
            response = self._call_with_retry('scan', **request)
            for item in response.get('Items', []):
                yield item
            last_key = response.get('LastEvaluatedKey')
            if not last_key:
                return
            request['ExclusiveStartKey'] = last_key

    def health_check(self) -> bool:
        """
        Perform a health check on the DynamoDB tables.

        Returns:
            True if both tables are reachable, False otherwise
        """
        try:
            for table_name in (self.sessions_table, self.rate_limits_table):
                self.client.describe_table(TableName=table_name)
            return True
        except Exception as e:
            logger.error(f'DynamoDB health check failed: {e}')
            return False
