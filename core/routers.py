"""
URL mappings for the migrant health card API.

Trailing slashes are omitted (``APPEND_SLASH = False``); route names are
used by the tests through ``reverse``.
"""
from django.urls import path

from .auth_views import (
    config_check,
    jwt_logout_view,
    jwt_refresh_view,
    profile_view,
    send_otp_login,
    send_otp_registration,
    verify_otp_login,
    verify_otp_registration,
)
from .views import health, identities, qr, records, reports
from .views.dashboard import user_dashboard

urlpatterns = [
    path('healthz', health.healthz, name='healthz'),
    path('api/health-check', health.health_check, name='health-check'),

    # Identity verification gate
    path('api/auth/send-otp-registration', send_otp_registration, name='send-otp-registration'),
    path('api/auth/verify-otp-registration', verify_otp_registration, name='verify-otp-registration'),
    path('api/auth/send-otp-login', send_otp_login, name='send-otp-login'),
    path('api/auth/verify-otp-login', verify_otp_login, name='verify-otp-login'),
    path('api/auth/refresh', jwt_refresh_view, name='token-refresh'),
    path('api/auth/logout', jwt_logout_view, name='logout'),
    path('api/auth/profile', profile_view, name='profile'),
    path('api/auth/config-check', config_check, name='config-check'),

    # Users
    path('api/users/profile', profile_view, name='users-profile'),
    path('api/users/dashboard', user_dashboard, name='dashboard'),

    # Health records
    path('api/health/records', records.records, name='records'),
    path('api/health/records/<int:record_id>', records.record_detail, name='record-detail'),
    path('api/health/summary', records.summary, name='health-summary'),
    path('api/health/timeline', records.timeline, name='health-timeline'),
    path('api/health/search', records.search, name='records-search'),

    # Medical reports
    path('api/reports', reports.reports, name='reports'),
    path('api/reports/search', reports.search, name='reports-search'),
    path('api/reports/access/<str:access_code>', reports.access_by_code, name='report-access'),
    path('api/reports/<int:report_id>', reports.report_detail, name='report-detail'),
    path('api/reports/<int:report_id>/download', reports.download, name='report-download'),

    # QR health card
    path('api/qr', qr.my_card, name='qr'),
    path('api/qr/generate', qr.generate, name='qr-generate'),
    path('api/qr/scan', qr.scan, name='qr-scan'),

    # Administration
    path('api/admin/identities', identities.list_identities, name='admin-identities'),
    path('api/admin/identities/<int:user_id>/status', identities.set_status, name='admin-identity-status'),
    path('api/admin/identities/<int:user_id>/unlock', identities.unlock, name='admin-identity-unlock'),
]
