"""
URL configuration for Aurora.
"""
from django.urls import path, include
from drf_spectacular.views import SpectacularAPIView, SpectacularSwaggerView

urlpatterns = [
    # API Documentation
    path('schema/', SpectacularAPIView.as_view(), name='schema'),
    path('schema/swagger/', SpectacularSwaggerView.as_view(url_name='schema'), name='swagger-ui'),

    # Authentication and session management
    path('v1/auth/', include('apps.rbac.urls_auth')),

    # Roles, permissions, user role assignments
    path('v1/', include('apps.rbac.urls')),

    # Audit trail
    path('v1/', include('apps.audit.urls')),
]
