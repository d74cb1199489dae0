"""
Audit serializers for REST API endpoints.
"""
from datetime import datetime, time, timezone as dt_timezone

from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime
from rest_framework import serializers

# Query parameter name -> AuditService.get_logs keyword
QUERY_PARAMS = {
    'userId': 'user_id',
    'module': 'module',
    'action': 'action',
    'entityType': 'entity_type',
    'entityId': 'entity_id',
    'requestId': 'request_id',
    'startDate': 'start_date',
    'endDate': 'end_date',
    'limit': 'limit',
    'offset': 'offset',
}


def parse_iso_datetime(value):
    """
    Parse an ISO 8601 date or datetime. Naive values are taken as UTC.

    Returns:
        Aware datetime, or None if ``value`` is not ISO 8601
    """
    try:
        parsed = parse_datetime(value)
        if parsed is None:
            day = parse_date(value)
            if day is None:
                return None
            parsed = datetime.combine(day, time.min)
    except ValueError:
        return None

    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed, dt_timezone.utc)
    return parsed


class AuditStatsQuerySerializer(serializers.Serializer):
    """Validates GET /v1/audit/stats query parameters (after renaming to snake_case)."""

    module = serializers.CharField(required=False, max_length=50)
    start_date = serializers.CharField(required=False)
    end_date = serializers.CharField(required=False)

    def _validate_date(self, value, param):
        parsed = parse_iso_datetime(value)
        if parsed is None:
            raise serializers.ValidationError(f"{param} must be a valid ISO 8601 date")
        return parsed

    def validate_start_date(self, value):
        return self._validate_date(value, 'startDate')

    def validate_end_date(self, value):
        return self._validate_date(value, 'endDate')


class AuditLogQuerySerializer(AuditStatsQuerySerializer):
    """Validates GET /v1/audit query parameters (after renaming to snake_case)."""

    user_id = serializers.UUIDField(
        required=False,
        error_messages={'invalid': 'userId must be a valid UUID'}
    )
    action = serializers.CharField(required=False, max_length=100)
    entity_type = serializers.CharField(required=False, max_length=50)
    entity_id = serializers.CharField(required=False, max_length=255)
    request_id = serializers.CharField(required=False, max_length=64)
    limit = serializers.IntegerField(
        required=False,
        min_value=1,
        error_messages={
            'invalid': 'limit must be a positive integer',
            'min_value': 'limit must be a positive integer',
        }
    )
    offset = serializers.IntegerField(
        required=False,
        min_value=0,
        error_messages={
            'invalid': 'offset must be a non-negative integer',
            'min_value': 'offset must be a non-negative integer',
        }
    )


class AuditUserSerializer(serializers.Serializer):
    id = serializers.CharField()
    email = serializers.EmailField()
    name = serializers.CharField()


class AuditLogSerializer(serializers.Serializer):
    """Audit row as returned by AuditService.get_logs."""

    id = serializers.CharField()
    user_id = serializers.CharField(allow_null=True)
    action = serializers.CharField()
    module = serializers.CharField()
    entity_type = serializers.CharField(allow_null=True)
    entity_id = serializers.CharField(allow_null=True)
    old_values = serializers.JSONField(allow_null=True)
    new_values = serializers.JSONField(allow_null=True)
    ip_address = serializers.CharField(allow_null=True)
    user_agent = serializers.CharField(allow_null=True)
    request_id = serializers.CharField(allow_null=True)
    metadata = serializers.JSONField(allow_null=True)
    timestamp = serializers.DateTimeField()
    user = AuditUserSerializer(allow_null=True)


class AuditLogPageSerializer(serializers.Serializer):
    logs = AuditLogSerializer(many=True)
    total = serializers.IntegerField()
    count = serializers.IntegerField()
    limit = serializers.IntegerField()
    offset = serializers.IntegerField()
    has_more = serializers.BooleanField()


class AuditTopUserSerializer(serializers.Serializer):
    user_id = serializers.CharField()
    email = serializers.CharField()
    count = serializers.IntegerField()


class AuditStatsSerializer(serializers.Serializer):
    total_logs = serializers.IntegerField()
    action_breakdown = serializers.DictField(child=serializers.IntegerField())
    module_breakdown = serializers.DictField(child=serializers.IntegerField())
    top_users = AuditTopUserSerializer(many=True)
