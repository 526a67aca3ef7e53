"""
Django admin registrations for the core models.

Identity status changes made here go through the same service functions
as the staff API so they are audited in one place.
"""

from django.contrib import admin, messages

from .models import AuditEvent, HealthQRCode, HealthRecord, MedicalReport, User
from .services.identity import set_identity_active, unlock_identity


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    list_display = ('username', 'first_name', 'last_name', 'mobile_number', 'is_verified',
                    'is_active', 'login_failure_count', 'locked_until', 'last_login')
    list_filter = ('is_verified', 'is_active', 'is_staff', 'gender', 'blood_group')
    search_fields = ('username', 'first_name', 'last_name', 'mobile_number', 'national_id')
    readonly_fields = ('otp_code', 'otp_expires_at', 'otp_attempts', 'created_at', 'updated_at')
    actions = ('activate', 'deactivate', 'unlock')

    @admin.action(description='Activate selected identities')
    def activate(self, request, queryset):
        for user in queryset:
            set_identity_active(user, True, actor=request.user)
        self.message_user(request, f'{queryset.count()} identities activated', messages.SUCCESS)

    @admin.action(description='Deactivate selected identities')
    def deactivate(self, request, queryset):
        for user in queryset:
            set_identity_active(user, False, actor=request.user)
        self.message_user(request, f'{queryset.count()} identities deactivated', messages.SUCCESS)

    @admin.action(description='Clear login lock')
    def unlock(self, request, queryset):
        for user in queryset:
            unlock_identity(user, actor=request.user)
        self.message_user(request, f'{queryset.count()} identities unlocked', messages.SUCCESS)


@admin.register(HealthRecord)
class HealthRecordAdmin(admin.ModelAdmin):
    list_display = ('id', 'user', 'checkup_date', 'checkup_type', 'status', 'follow_up_required')
    list_filter = ('checkup_type', 'status', 'follow_up_required')
    search_fields = ('user__mobile_number', 'user__first_name', 'user__last_name', 'notes')


@admin.register(MedicalReport)
class MedicalReportAdmin(admin.ModelAdmin):
    list_display = ('id', 'user', 'report_type', 'report_name', 'report_date', 'status', 'is_public')
    list_filter = ('report_type', 'status', 'is_public', 'is_verified')
    search_fields = ('report_name', 'access_code', 'user__mobile_number')


@admin.register(HealthQRCode)
class HealthQRCodeAdmin(admin.ModelAdmin):
    list_display = ('code', 'user', 'qr_type', 'access_level', 'is_valid', 'expires_at', 'scan_count')
    list_filter = ('qr_type', 'access_level', 'is_valid')
    search_fields = ('code', 'user__mobile_number')
    readonly_fields = ('access_token', 'scan_count', 'last_scanned_at')


@admin.register(AuditEvent)
class AuditEventAdmin(admin.ModelAdmin):
    list_display = ('id', 'user', 'action', 'object_type', 'object_id', 'created_at')
    list_filter = ('action', 'object_type')
    search_fields = ('action', 'object_id', 'user__username')
