"""
URL mappings for the CareLink API.

Trailing slashes are deliberately omitted; the front-end calls the paths
exactly as listed here.
"""
from django.urls import include, path

from .auth_views import jwt_logout_view, jwt_refresh_view, login_view, me_view, register_view
from .views import admin_users, applications, dashboard, health, notifications, requests

urlpatterns = [
    path('metrics', include('django_prometheus.urls')),
    path('healthz', health.healthz, name='healthz'),

    # Authentication
    path('api/auth/register', register_view, name='register'),
    path('api/auth/login', login_view, name='login'),
    path('api/auth/refresh', jwt_refresh_view, name='jwt-refresh'),
    path('api/auth/logout', jwt_logout_view, name='jwt-logout'),
    path('api/auth/me', me_view, name='me'),

    # Requests
    path('api/requests', requests.requests_collection, name='requests'),
    path('api/requests/<int:pk>', requests.request_detail, name='request-detail'),
    path('api/requests/<int:pk>/status', requests.request_status, name='request-status'),
    path('api/requests/<int:pk>/complete/provider', requests.complete_as_provider, name='request-complete-provider'),
    path('api/requests/<int:pk>/complete/patient', requests.complete_as_patient, name='request-complete-patient'),
    path('api/requests/<int:pk>/applications', requests.request_applications, name='request-applications'),
    path('api/requests/<int:pk>/history', requests.request_history, name='request-history'),

    # Applications (bids)
    path('api/applications', applications.submit_application, name='applications'),
    path('api/applications/mine', applications.my_applications, name='applications-mine'),
    path('api/applications/<int:pk>', applications.application_detail, name='application-detail'),
    path('api/applications/<int:pk>/status', applications.application_status, name='application-status'),

    # Notifications
    path('api/notifications', notifications.notifications_list, name='notifications'),
    path('api/notifications/unread-count', notifications.notifications_unread_count, name='notifications-unread'),
    path('api/notifications/read-all', notifications.notifications_read_all, name='notifications-read-all'),
    path('api/notifications/<int:pk>', notifications.notification_detail, name='notification-detail'),
    path('api/notifications/<int:pk>/read', notifications.notification_read, name='notification-read'),

    # Dashboard & administration
    path('api/dashboard/stats', dashboard.dashboard_stats, name='dashboard-stats'),
    path('api/admin/users', admin_users.users_list, name='admin-users'),
    path('api/admin/users/<int:pk>/verification', admin_users.user_verification, name='admin-user-verification'),
]
