"""
URL routing for authentication and session endpoints.
"""
from django.urls import path
from apps.rbac.views_auth import (
    RegistrationView, LoginView, LogoutView, RefreshTokenView,
    ChangePasswordView, ForgotPasswordView, ResetPasswordView,
    SessionListView, SessionDetailView, CloseOtherSessionsView, CloseAllSessionsView,
    UserProfileView,
)

app_name = 'auth'

urlpatterns = [
    # Registration and login
    path('register', RegistrationView.as_view(), name='register'),
    path('login', LoginView.as_view(), name='login'),
    path('logout', LogoutView.as_view(), name='logout'),

    # Token refresh
    path('refresh-token', RefreshTokenView.as_view(), name='refresh-token'),

    # Passwords
    path('change-password', ChangePasswordView.as_view(), name='change-password'),
    path('forgot-password', ForgotPasswordView.as_view(), name='forgot-password'),
    path('reset-password', ResetPasswordView.as_view(), name='reset-password'),

    # Session management
    path('sessions', SessionListView.as_view(), name='session-list'),
    path('sessions/close-others', CloseOtherSessionsView.as_view(), name='session-close-others'),
    path('sessions/close-all', CloseAllSessionsView.as_view(), name='session-close-all'),
    path('sessions/<str:session_id>', SessionDetailView.as_view(), name='session-detail'),

    # Current user profile and effective permissions
    path('me', UserProfileView.as_view(), name='profile'),
]
