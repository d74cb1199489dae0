"""
Authentication REST API views.

Implements endpoints for:
- User registration
- Login / logout / token refresh
- Password change and reset
- Session management (list, invalidate, close others, close all)
- Current user profile
"""
from rest_framework import status
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated
from django_ratelimit.decorators import ratelimit
from django.utils.decorators import method_decorator
from drf_spectacular.utils import extend_schema, OpenApiExample
from drf_spectacular.types import OpenApiTypes

from apps.core.exceptions import InvalidCredentials, ValidationError, RATE_LIMIT_RETRY_AFTER
from apps.core.logging import SecurityLogger
from apps.core.middleware import get_client_ip, get_user_agent
from apps.events.context import context_from_request
from apps.rbac.services import AuthService, RBACService
from apps.rbac.serializers import (
    RegistrationSerializer, LoginSerializer, ChangePasswordSerializer,
    PasswordResetRequestSerializer, PasswordResetSerializer,
    SessionSerializer, UserSerializer, UserProfileSerializer,
)


def _rate_limited_response(request, endpoint, user_email=None):
    """429 response for a request flagged by django-ratelimit (block=False)."""
    SecurityLogger.log_rate_limit_exceeded(
        endpoint=endpoint,
        ip_address=get_client_ip(request),
        user_email=user_email,
    )
    response = Response(
        {
            'error': 'Rate limit exceeded. Please try again later.',
            'code': 'RATE_LIMIT_EXCEEDED',
            'retry_after': RATE_LIMIT_RETRY_AFTER
        },
        status=status.HTTP_429_TOO_MANY_REQUESTS
    )
    response['Retry-After'] = str(RATE_LIMIT_RETRY_AFTER)
    return response


def _validation_error_response(serializer):
    return Response(
        {
            'error': 'Validation error',
            'details': serializer.errors
        },
        status=status.HTTP_400_BAD_REQUEST
    )


def _current_session_id(request):
    """Session id of the credential that authenticated this request."""
    return getattr(request.auth, 'session_id', None)


def _login_response_data(result):
    return {
        'user': UserSerializer(result.user).data,
        'token': result.token,
        'session_id': result.session_id,
        'expires_at': result.expires_at,
        'permissions': sorted(result.permissions),
    }


@extend_schema(
    tags=['Authentication'],
    summary='Register new user',
    description='''
Register a new user account and sign it in.

The new account has no roles. Password must be 8-100 characters with a
lower-case letter, an upper-case letter and a digit.

**No authentication required** - this is a public endpoint.

**Rate limit**: 3 requests/hour per IP
    ''',
    request=RegistrationSerializer,
    responses={
        201: OpenApiTypes.OBJECT,
        400: OpenApiTypes.OBJECT,
        409: OpenApiTypes.OBJECT,
        429: OpenApiTypes.OBJECT,
    },
    examples=[
        OpenApiExample(
            'Registration Request',
            value={
                'email': 'user@example.com',
                'password': 'SecurePass123',
                'first_name': 'John',
                'last_name': 'Doe'
            },
            request_only=True
        ),
        OpenApiExample(
            'Email Already Exists',
            value={
                'error': 'Email already registered',
                'code': 'CONFLICT'
            },
            response_only=True,
            status_codes=['409']
        )
    ]
)
@method_decorator(ratelimit(key='ip', rate='3/h', method='POST', block=False), name='dispatch')
class RegistrationView(APIView):
    """
    POST /v1/auth/register

    No authentication required.
    Rate limited to 3 requests per hour per IP.
    """
    authentication_classes = []
    permission_classes = []

    def post(self, request):
        """Register and log in a new user."""
        if getattr(request, 'limited', False):
            return _rate_limited_response(request, '/v1/auth/register')

        serializer = RegistrationSerializer(data=request.data)
        if not serializer.is_valid():
            return _validation_error_response(serializer)

        data = serializer.validated_data
        auth = AuthService()
        context = context_from_request(request)

        auth.register_user(
            email=data['email'],
            password=data['password'],
            first_name=data.get('first_name', ''),
            last_name=data.get('last_name', ''),
            context=context,
        )
        result = auth.login(
            email=data['email'],
            password=data['password'],
            ip_address=get_client_ip(request),
            user_agent=get_user_agent(request) or None,
            context=context,
        )

        return Response(
            {
                **_login_response_data(result),
                'message': 'Registration successful'
            },
            status=status.HTTP_201_CREATED
        )


@extend_schema(
    tags=['Authentication'],
    summary='Login',
    description='''
Authenticate with email and password.

Returns a signed token carrying the user's effective permissions at login
time, and registers a session that can be listed and revoked.

Unknown email and wrong password return the same 401 response.

**Rate limit**: 5 requests/minute per IP, 10 requests/hour per email
    ''',
    request=LoginSerializer,
    responses={
        200: OpenApiTypes.OBJECT,
        400: OpenApiTypes.OBJECT,
        401: OpenApiTypes.OBJECT,
        429: OpenApiTypes.OBJECT,
    },
    examples=[
        OpenApiExample(
            'Invalid Credentials',
            value={
                'error': 'Invalid email or password',
                'code': 'INVALID_CREDENTIALS'
            },
            response_only=True,
            status_codes=['401']
        ),
        OpenApiExample(
            'Rate Limit Exceeded',
            value={
                'error': 'Rate limit exceeded. Please try again later.',
                'code': 'RATE_LIMIT_EXCEEDED',
                'retry_after': 60
            },
            response_only=True,
            status_codes=['429']
        )
    ]
)
@method_decorator(ratelimit(key='ip', rate='5/m', method='POST', block=False), name='dispatch')
@method_decorator(ratelimit(key='post:email', rate='10/h', method='POST', block=False), name='dispatch')
class LoginView(APIView):
    """
    POST /v1/auth/login

    No authentication required.
    Rate limited to:
    - 5 requests per minute per IP address
    - 10 requests per hour per email address
    """
    authentication_classes = []
    permission_classes = []

    def post(self, request):
        """Login user."""
        if getattr(request, 'limited', False):
            return _rate_limited_response(request, '/v1/auth/login', user_email=request.data.get('email'))

        serializer = LoginSerializer(data=request.data)
        if not serializer.is_valid():
            return _validation_error_response(serializer)

        ip_address = get_client_ip(request)
        user_agent = get_user_agent(request) or None

        try:
            result = AuthService().login(
                email=serializer.validated_data['email'],
                password=serializer.validated_data['password'],
                ip_address=ip_address,
                user_agent=user_agent,
                context=context_from_request(request),
            )
        except InvalidCredentials:
            SecurityLogger.log_failed_login(
                email=serializer.validated_data['email'],
                ip_address=ip_address,
                user_agent=user_agent,
                reason='Invalid credentials'
            )
            raise

        return Response(
            {
                **_login_response_data(result),
                'message': 'Login successful'
            },
            status=status.HTTP_200_OK
        )


@extend_schema(
    tags=['Authentication'],
    summary='Logout',
    description='''
End the current session.

Deletes the server-side session record. The token remains verifiable until
it expires unless the deployment enforces session registry checks.
    ''',
    request=None,
    responses={200: OpenApiTypes.OBJECT, 401: OpenApiTypes.OBJECT}
)
class LogoutView(APIView):
    """
    POST /v1/auth/logout

    Requires JWT authentication.
    """
    permission_classes = [IsAuthenticated]

    def post(self, request):
        """Logout user."""
        session_id = _current_session_id(request)
        if not session_id:
            raise ValidationError('No session bound to this request')

        AuthService().logout(request.user, session_id, context=context_from_request(request))

        return Response(
            {
                'message': 'Logout successful'
            },
            status=status.HTTP_200_OK
        )


@extend_schema(
    tags=['Authentication'],
    summary='Refresh JWT token',
    description='''
Re-issue the token for the current session with a freshly computed
permission snapshot. The new token expires together with the session.

Fails with 401 if the session was revoked.
    ''',
    request=None,
    responses={
        200: OpenApiTypes.OBJECT,
        401: OpenApiTypes.OBJECT,
    },
    examples=[
        OpenApiExample(
            'Success Response',
            value={
                'token': 'eyJhbGciOiJIUzI1NiIsInR5cCI6IkpXVCJ9...',
                'message': 'Token refreshed successfully'
            },
            response_only=True
        )
    ]
)
class RefreshTokenView(APIView):
    """
    POST /v1/auth/refresh-token

    Requires JWT authentication.
    """
    permission_classes = [IsAuthenticated]

    def post(self, request):
        """Refresh token."""
        session_id = _current_session_id(request)
        if not session_id:
            raise ValidationError('No session bound to this request')

        token = AuthService().refresh_token(request.user, session_id)

        return Response(
            {
                'token': token,
                'message': 'Token refreshed successfully'
            },
            status=status.HTTP_200_OK
        )


@extend_schema(
    tags=['Authentication'],
    summary='Change password',
    description='''
Change the password of the authenticated user.

All other sessions are closed; the current session stays open.
    ''',
    request=ChangePasswordSerializer,
    responses={200: OpenApiTypes.OBJECT, 400: OpenApiTypes.OBJECT, 401: OpenApiTypes.OBJECT}
)
class ChangePasswordView(APIView):
    """
    POST /v1/auth/change-password

    Requires JWT authentication.
    """
    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = ChangePasswordSerializer(data=request.data)
        if not serializer.is_valid():
            return _validation_error_response(serializer)

        closed = AuthService().change_password(
            request.user,
            serializer.validated_data['current_password'],
            serializer.validated_data['new_password'],
            current_session_id=_current_session_id(request),
            context=context_from_request(request),
        )

        return Response(
            {
                'message': 'Password changed successfully',
                'sessions_closed': closed
            },
            status=status.HTTP_200_OK
        )


@extend_schema(
    tags=['Authentication'],
    summary='Request password reset',
    description='''
Request a password reset token for an email address.

Always returns the same response whether or not the address is registered.

**Rate limit**: 3 requests/hour per IP
    ''',
    request=PasswordResetRequestSerializer,
    responses={200: OpenApiTypes.OBJECT, 400: OpenApiTypes.OBJECT, 429: OpenApiTypes.OBJECT}
)
@method_decorator(ratelimit(key='ip', rate='3/h', method='POST', block=False), name='dispatch')
class ForgotPasswordView(APIView):
    """
    POST /v1/auth/forgot-password

    No authentication required.
    Rate limited to 3 requests per hour per IP.
    """
    authentication_classes = []
    permission_classes = []

    def post(self, request):
        if getattr(request, 'limited', False):
            return _rate_limited_response(request, '/v1/auth/forgot-password', user_email=request.data.get('email'))

        serializer = PasswordResetRequestSerializer(data=request.data)
        if not serializer.is_valid():
            return _validation_error_response(serializer)

        AuthService().request_password_reset(
            serializer.validated_data['email'],
            context=context_from_request(request),
        )

        return Response(
            {
                'message': 'If an account exists with this email, a password reset link has been sent.'
            },
            status=status.HTTP_200_OK
        )


@extend_schema(
    tags=['Authentication'],
    summary='Reset password',
    description='''
Set a new password with a reset token. Tokens are single-use and expire
after 24 hours. Every session of the user is closed.

**Rate limit**: 5 requests/hour per IP
    ''',
    request=PasswordResetSerializer,
    responses={200: OpenApiTypes.OBJECT, 400: OpenApiTypes.OBJECT, 429: OpenApiTypes.OBJECT}
)
@method_decorator(ratelimit(key='ip', rate='5/h', method='POST', block=False), name='dispatch')
class ResetPasswordView(APIView):
    """
    POST /v1/auth/reset-password

    No authentication required.
    Rate limited to 5 requests per hour per IP.
    """
    authentication_classes = []
    permission_classes = []

    def post(self, request):
        if getattr(request, 'limited', False):
            return _rate_limited_response(request, '/v1/auth/reset-password')

        serializer = PasswordResetSerializer(data=request.data)
        if not serializer.is_valid():
            return _validation_error_response(serializer)

        AuthService().reset_password(
            serializer.validated_data['token'],
            serializer.validated_data['new_password'],
            context=context_from_request(request),
        )

        return Response(
            {
                'message': 'Password reset successfully'
            },
            status=status.HTTP_200_OK
        )


@extend_schema(
    tags=['Sessions'],
    summary='List active sessions',
    description='''
Active sessions of the authenticated user, current session first.

Each session carries the parsed browser, OS and device type and an
`is_current` flag.
    ''',
    responses={200: SessionSerializer(many=True), 401: OpenApiTypes.OBJECT}
)
class SessionListView(APIView):
    """
    GET /v1/auth/sessions

    Requires JWT authentication.
    """
    permission_classes = [IsAuthenticated]

    def get(self, request):
        sessions = AuthService().list_sessions(request.user, _current_session_id(request))
        return Response(
            {
                'sessions': SessionSerializer(sessions, many=True).data,
                'total': len(sessions)
            },
            status=status.HTTP_200_OK
        )


@extend_schema(
    tags=['Sessions'],
    summary='Invalidate a session',
    description='''
Revoke one of the user's other sessions (another device).

The current session cannot be revoked here; use logout.
    ''',
    request=None,
    responses={200: OpenApiTypes.OBJECT, 400: OpenApiTypes.OBJECT, 401: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT}
)
class SessionDetailView(APIView):
    """
    DELETE /v1/auth/sessions/{session_id}

    Requires JWT authentication.
    """
    permission_classes = [IsAuthenticated]

    def delete(self, request, session_id):
        AuthService().invalidate_session(
            request.user,
            session_id,
            current_session_id=_current_session_id(request),
            ip_address=get_client_ip(request),
        )
        return Response(
            {
                'message': 'Session invalidated'
            },
            status=status.HTTP_200_OK
        )


@extend_schema(
    tags=['Sessions'],
    summary='Close all other sessions',
    request=None,
    responses={200: OpenApiTypes.OBJECT, 401: OpenApiTypes.OBJECT}
)
class CloseOtherSessionsView(APIView):
    """
    POST /v1/auth/sessions/close-others

    Requires JWT authentication.
    """
    permission_classes = [IsAuthenticated]

    def post(self, request):
        session_id = _current_session_id(request)
        if not session_id:
            raise ValidationError('No session bound to this request')

        count = AuthService().close_all_other_sessions(
            request.user, session_id, ip_address=get_client_ip(request)
        )
        return Response(
            {
                'message': f'{count} session(s) closed',
                'count': count
            },
            status=status.HTTP_200_OK
        )


@extend_schema(
    tags=['Sessions'],
    summary='Close all sessions',
    description='Close every session of the user, including the current one, forcing re-authentication.',
    request=None,
    responses={200: OpenApiTypes.OBJECT, 401: OpenApiTypes.OBJECT}
)
class CloseAllSessionsView(APIView):
    """
    POST /v1/auth/sessions/close-all

    Requires JWT authentication.
    """
    permission_classes = [IsAuthenticated]

    def post(self, request):
        count = AuthService().close_all_sessions(request.user, ip_address=get_client_ip(request))
        return Response(
            {
                'message': f'{count} session(s) closed',
                'count': count
            },
            status=status.HTTP_200_OK
        )


@extend_schema(
    tags=['Authentication'],
    summary='Get current user profile',
    description='''
Profile of the authenticated user with assigned roles and current effective
permissions.
    ''',
    responses={
        200: UserProfileSerializer,
        401: OpenApiTypes.OBJECT,
    }
)
class UserProfileView(APIView):
    """
    GET /v1/auth/me

    Requires JWT authentication.
    """
    permission_classes = [IsAuthenticated]

    def get(self, request):
        """Get user profile."""
        rbac = RBACService()
        serializer = UserProfileSerializer(
            request.user,
            context={
                'roles': rbac.get_user_roles_with_permissions(request.user),
                'permissions': rbac.get_effective_permissions(request.user),
            }
        )
        return Response(serializer.data, status=status.HTTP_200_OK)
