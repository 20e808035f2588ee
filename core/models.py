"""
Database models for the CareLink marketplace backend.

These models capture the core concepts of the system: identities with a
role and a verification status, care requests posted by patients, bids
(applications) placed by nurses against those requests, the transition
history of every request and the in-app notifications produced along the
way.  Request and application rows are only ever mutated through the
lifecycle services in :mod:`core.services`.
"""
from __future__ import annotations

from django.contrib.auth.models import AbstractUser
from django.db import models
from django.db.models import Q


class User(AbstractUser):
    """Custom user model carrying the marketplace role.

    Roles mirror the front-end roles: 'patient', 'nurse' (the service
    provider) and 'admin'.  ``verification_status`` is only meaningful for
    nurses: a nurse must be ``verified`` before bidding on or being
    assigned to a request.
    """
    ROLE_PATIENT = 'patient'
    ROLE_NURSE = 'nurse'
    ROLE_ADMIN = 'admin'
    ROLE_CHOICES = [
        (ROLE_PATIENT, 'Patient'),
        (ROLE_NURSE, 'Nurse'),
        (ROLE_ADMIN, 'Administrator'),
    ]

    VERIFICATION_PENDING = 'pending'
    VERIFICATION_VERIFIED = 'verified'
    VERIFICATION_REJECTED = 'rejected'
    VERIFICATION_SUSPENDED = 'suspended'
    VERIFICATION_CHOICES = [
        (VERIFICATION_PENDING, 'Pending'),
        (VERIFICATION_VERIFIED, 'Verified'),
        (VERIFICATION_REJECTED, 'Rejected'),
        (VERIFICATION_SUSPENDED, 'Suspended'),
    ]

    role = models.CharField(max_length=10, choices=ROLE_CHOICES, default=ROLE_PATIENT, db_index=True)
    verification_status = models.CharField(
        max_length=10, choices=VERIFICATION_CHOICES, default=VERIFICATION_PENDING, db_index=True
    )
    phone = models.CharField(max_length=32, blank=True)

    @property
    def is_verified(self) -> bool:
        return self.verification_status == self.VERIFICATION_VERIFIED

    def __str__(self) -> str:
        return f"{self.username} ({self.role})"


class ServiceRequest(models.Model):
    """A patient's posted need for a care engagement.

    ``nurse`` is set once a bid is accepted (or a verified nurse accepts
    the request directly) and is kept after a later cancellation.  The
    two ``*_confirmed_complete`` flags implement the dual-completion
    protocol: the request is ``completed`` only once both are true.
    """
    STATUS_PENDING = 'pending'
    STATUS_ACCEPTED = 'accepted'
    STATUS_IN_PROGRESS = 'in_progress'
    STATUS_COMPLETED = 'completed'
    STATUS_CANCELLED = 'cancelled'
    STATUS_CHOICES = (
        (STATUS_PENDING, 'pending'),
        (STATUS_ACCEPTED, 'accepted'),
        (STATUS_IN_PROGRESS, 'in progress'),
        (STATUS_COMPLETED, 'completed'),
        (STATUS_CANCELLED, 'cancelled'),
    )
    TERMINAL_STATUSES = (STATUS_COMPLETED, STATUS_CANCELLED)

    SERVICE_TYPE_CHOICES = (
        ('home_care', 'Home care'),
        ('wound_care', 'Wound care'),
        ('medication_administration', 'Medication administration'),
        ('post_surgical_care', 'Post-surgical care'),
        ('elderly_care', 'Elderly care'),
        ('pediatric_care', 'Pediatric care'),
        ('other', 'Other'),
    )
    URGENCY_CHOICES = (
        ('low', 'low'),
        ('medium', 'medium'),
        ('high', 'high'),
        ('critical', 'critical'),
    )

    patient = models.ForeignKey(User, on_delete=models.PROTECT, related_name='service_requests')
    nurse = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.PROTECT, related_name='assigned_requests'
    )
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_PENDING)

    title = models.CharField(max_length=100)
    description = models.TextField(max_length=1000)
    service_type = models.CharField(max_length=32, choices=SERVICE_TYPE_CHOICES, default='home_care')
    address = models.CharField(max_length=255)
    scheduled_date = models.DateTimeField(null=True, blank=True)
    estimated_duration = models.PositiveSmallIntegerField(null=True, blank=True, help_text="hours")
    urgency_level = models.CharField(max_length=10, choices=URGENCY_CHOICES, default='medium')
    special_requirements = models.TextField(max_length=500, blank=True)
    budget = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    contact_phone = models.CharField(max_length=32, blank=True)
    notes = models.TextField(blank=True)

    provider_confirmed_complete = models.BooleanField(default=False)
    provider_confirmed_at = models.DateTimeField(null=True, blank=True)
    patient_confirmed_complete = models.BooleanField(default=False)
    patient_confirmed_at = models.DateTimeField(null=True, blank=True)

    cancellation_reason = models.CharField(max_length=255, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    accepted_at = models.DateTimeField(null=True, blank=True)
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        indexes = [
            models.Index(fields=['status', 'created_at'], name='core_req_status_created'),
            models.Index(fields=['patient', 'status'], name='core_req_patient_status'),
            models.Index(fields=['nurse', 'status'], name='core_req_nurse_status'),
        ]

    @property
    def is_terminal(self) -> bool:
        return self.status in self.TERMINAL_STATUSES

    def __str__(self) -> str:
        return f"{self.title} (#{self.id}, {self.status})"


class Application(models.Model):
    """A nurse's bid (price and estimated duration) on a request."""
    STATUS_PENDING = 'pending'
    STATUS_ACCEPTED = 'accepted'
    STATUS_REJECTED = 'rejected'
    STATUS_CHOICES = (
        (STATUS_PENDING, 'pending'),
        (STATUS_ACCEPTED, 'accepted'),
        (STATUS_REJECTED, 'rejected'),
    )

    request = models.ForeignKey(ServiceRequest, on_delete=models.CASCADE, related_name='applications')
    nurse = models.ForeignKey(User, on_delete=models.CASCADE, related_name='applications')
    price = models.DecimalField(max_digits=10, decimal_places=2)
    estimated_time = models.PositiveIntegerField(help_text="hours")
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default=STATUS_PENDING)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            # one live bid per (request, nurse); re-bidding after rejection is allowed
            models.UniqueConstraint(
                fields=['request', 'nurse'],
                condition=Q(status='pending'),
                name='core_one_pending_bid_per_nurse',
            ),
        ]
        indexes = [
            models.Index(fields=['request', 'status'], name='core_app_request_status'),
            models.Index(fields=['nurse', 'status'], name='core_app_nurse_status'),
        ]

    def __str__(self) -> str:
        return f"Bid {self.id} by {self.nurse_id} on {self.request_id} ({self.status})"


class RequestTransition(models.Model):
    """Records a lifecycle action taken on a request."""
    request = models.ForeignKey(ServiceRequest, related_name='transitions', on_delete=models.CASCADE)
    action = models.CharField(max_length=32)
    from_status = models.CharField(max_length=16, null=True, blank=True)
    to_status = models.CharField(max_length=16)
    operator = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='request_transitions'
    )
    reason = models.CharField(max_length=255, blank=True)
    timestamp = models.DateTimeField(auto_now_add=True)

    def __str__(self) -> str:
        return f"{self.request_id}: {self.from_status} → {self.to_status} ({self.action})"


class Notification(models.Model):
    """An in-app notification addressed to a single user."""
    KIND_APPLICATION_RECEIVED = 'application_received'
    KIND_APPLICATION_ACCEPTED = 'application_accepted'
    KIND_APPLICATION_REJECTED = 'application_rejected'
    KIND_REQUEST_ACCEPTED = 'request_accepted'
    KIND_REQUEST_STARTED = 'request_started'
    KIND_REQUEST_COMPLETED = 'request_completed'
    KIND_REQUEST_CANCELLED = 'request_cancelled'
    KIND_NURSE_VERIFIED = 'nurse_verified'
    KIND_NURSE_REJECTED = 'nurse_rejected'
    KIND_CHOICES = (
        (KIND_APPLICATION_RECEIVED, 'application received'),
        (KIND_APPLICATION_ACCEPTED, 'application accepted'),
        (KIND_APPLICATION_REJECTED, 'application rejected'),
        (KIND_REQUEST_ACCEPTED, 'request accepted'),
        (KIND_REQUEST_STARTED, 'request started'),
        (KIND_REQUEST_COMPLETED, 'request completed'),
        (KIND_REQUEST_CANCELLED, 'request cancelled'),
        (KIND_NURSE_VERIFIED, 'nurse verified'),
        (KIND_NURSE_REJECTED, 'nurse rejected'),
    )

    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='notifications')
    request = models.ForeignKey(
        ServiceRequest, null=True, blank=True, on_delete=models.SET_NULL, related_name='notifications'
    )
    kind = models.CharField(max_length=32, choices=KIND_CHOICES)
    title = models.CharField(max_length=255)
    message = models.TextField(blank=True)
    data = models.JSONField(default=dict, blank=True)
    is_read = models.BooleanField(default=False)
    read_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=['user', 'is_read', 'created_at'], name='core_notif_user_read'),
        ]

    def __str__(self) -> str:
        return f"{self.kind} → {self.user_id}"


class AuditEvent(models.Model):
    user = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True)
    action = models.CharField(max_length=64)
    object_type = models.CharField(max_length=64, blank=True, null=True)
    object_id = models.IntegerField(blank=True, null=True)
    detail = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=['action', 'created_at'], name='core_audit_action_created'),
            models.Index(fields=['object_type', 'object_id', 'created_at'], name='core_audit_object'),
        ]
