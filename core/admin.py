"""
Django admin registrations for the core models.

Requests and bids are shown read-mostly: editing their status here
bypasses the lifecycle services, so status fields are read-only.
"""

from django.contrib import admin

from .models import Application, AuditEvent, Notification, RequestTransition, ServiceRequest, User


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    list_display = ('username', 'role', 'verification_status', 'is_staff', 'is_superuser')
    list_filter = ('role', 'verification_status')
    search_fields = ('username', 'first_name', 'last_name', 'phone')


class ApplicationInline(admin.TabularInline):
    model = Application
    extra = 0
    readonly_fields = ('nurse', 'price', 'estimated_time', 'status', 'created_at')
    can_delete = False


@admin.register(ServiceRequest)
class ServiceRequestAdmin(admin.ModelAdmin):
    list_display = ('id', 'title', 'patient', 'nurse', 'status', 'urgency_level', 'created_at')
    list_filter = ('status', 'service_type', 'urgency_level')
    search_fields = ('id', 'title', 'patient__username', 'nurse__username')
    readonly_fields = (
        'status', 'nurse', 'provider_confirmed_complete', 'provider_confirmed_at',
        'patient_confirmed_complete', 'patient_confirmed_at', 'accepted_at', 'started_at',
        'completed_at', 'cancelled_at',
    )
    inlines = [ApplicationInline]


@admin.register(Application)
class ApplicationAdmin(admin.ModelAdmin):
    list_display = ('id', 'request', 'nurse', 'price', 'estimated_time', 'status', 'created_at')
    list_filter = ('status',)
    search_fields = ('id', 'request__title', 'nurse__username')
    readonly_fields = ('status',)


@admin.register(RequestTransition)
class RequestTransitionAdmin(admin.ModelAdmin):
    list_display = ('request', 'action', 'from_status', 'to_status', 'operator', 'timestamp')
    list_filter = ('action', 'to_status')
    search_fields = ('request__id', 'operator__username')


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ('id', 'user', 'kind', 'request', 'is_read', 'created_at')
    list_filter = ('kind', 'is_read')
    search_fields = ('user__username', 'title')


@admin.register(AuditEvent)
class AuditEventAdmin(admin.ModelAdmin):
    list_display = ('id', 'user', 'action', 'object_type', 'object_id', 'created_at')
    list_filter = ('action', 'object_type')
