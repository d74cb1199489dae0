"""
Audit REST API views.
"""
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import extend_schema, OpenApiExample, OpenApiParameter
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.audit.serializers import (
    QUERY_PARAMS, AuditLogQuerySerializer, AuditStatsQuerySerializer,
    AuditLogPageSerializer, AuditStatsSerializer,
)
from apps.audit.services import AuditService
from apps.core.permissions import HasPermissions, requires_permissions

PARAM_NAMES = {field_name: param for param, field_name in QUERY_PARAMS.items()}


def _validated_query(request, serializer_class):
    """
    Validate query parameters, renamed to snake_case.

    Returns:
        (validated_data, None) on success, (None, error Response) otherwise.
        Error details are keyed by the query parameter name as sent.
    """
    data = {
        field_name: request.query_params[param]
        for param, field_name in QUERY_PARAMS.items()
        if request.query_params.get(param, '') != ''
    }
    serializer = serializer_class(data=data)
    if serializer.is_valid():
        return serializer.validated_data, None

    details = {
        PARAM_NAMES.get(field_name, field_name): messages[0] if isinstance(messages, list) else messages
        for field_name, messages in serializer.errors.items()
    }
    return None, Response(
        {
            'error': 'Validation error',
            'details': details
        },
        status=status.HTTP_400_BAD_REQUEST
    )


@extend_schema(
    tags=['Audit'],
    summary='List audit logs',
    description='''
Filtered, paginated audit trail, newest first.

`limit` defaults to 50 and is capped at 100. An `offset` beyond the total
returns an empty page.

**Required permission**: `audit:view`
    ''',
    parameters=[
        OpenApiParameter('userId', OpenApiTypes.STR, description='Acting user id'),
        OpenApiParameter('module', OpenApiTypes.STR, description='Module (auth, users, roles, permissions)'),
        OpenApiParameter('action', OpenApiTypes.STR, description='Action (login, create, role_assign, ...)'),
        OpenApiParameter('entityType', OpenApiTypes.STR),
        OpenApiParameter('entityId', OpenApiTypes.STR),
        OpenApiParameter('requestId', OpenApiTypes.STR),
        OpenApiParameter('startDate', OpenApiTypes.DATETIME, description='ISO 8601, inclusive'),
        OpenApiParameter('endDate', OpenApiTypes.DATETIME, description='ISO 8601, inclusive'),
        OpenApiParameter('limit', OpenApiTypes.INT),
        OpenApiParameter('offset', OpenApiTypes.INT),
    ],
    responses={
        200: AuditLogPageSerializer,
        400: OpenApiTypes.OBJECT,
        401: OpenApiTypes.OBJECT,
        403: OpenApiTypes.OBJECT,
    },
    examples=[
        OpenApiExample(
            'Invalid Date',
            value={
                'error': 'Validation error',
                'details': {
                    'startDate': 'startDate must be a valid ISO 8601 date'
                }
            },
            response_only=True,
            status_codes=['400']
        )
    ]
)
@requires_permissions('audit:view')
class AuditLogListView(APIView):
    """
    GET /v1/audit

    Required permission: audit:view
    """
    permission_classes = [HasPermissions]

    def get(self, request):
        """List audit logs."""
        filters, error_response = _validated_query(request, AuditLogQuerySerializer)
        if error_response is not None:
            return error_response

        result = AuditService().get_logs(**filters)
        return Response(AuditLogPageSerializer(result).data, status=status.HTTP_200_OK)


@extend_schema(
    tags=['Audit'],
    summary='Audit statistics',
    description='''
Totals by action and module, and the ten most active users.

**Required permission**: `audit:view`
    ''',
    parameters=[
        OpenApiParameter('module', OpenApiTypes.STR),
        OpenApiParameter('startDate', OpenApiTypes.DATETIME),
        OpenApiParameter('endDate', OpenApiTypes.DATETIME),
    ],
    responses={
        200: AuditStatsSerializer,
        400: OpenApiTypes.OBJECT,
        401: OpenApiTypes.OBJECT,
        403: OpenApiTypes.OBJECT,
    }
)
@requires_permissions('audit:view')
class AuditStatsView(APIView):
    """
    GET /v1/audit/stats

    Required permission: audit:view
    """
    permission_classes = [HasPermissions]

    def get(self, request):
        """Aggregate audit statistics."""
        filters, error_response = _validated_query(request, AuditStatsQuerySerializer)
        if error_response is not None:
            return error_response

        stats = AuditService().get_stats(**filters)
        return Response(AuditStatsSerializer(stats).data, status=status.HTTP_200_OK)
