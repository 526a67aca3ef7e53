"""
Database models for the migrant health card backend.

These models capture the core concepts of the system: verified
identities (citizens who registered through a one-time code), their
health checkup records, uploaded medical reports and the QR health card
that exposes an emergency summary.  JSON columns mirror the nested
documents exchanged with the front-end so that responses can be built
without extra tables.
"""
from __future__ import annotations

import datetime
import os
import uuid

from django.contrib.auth.models import AbstractUser
from django.core.validators import RegexValidator
from django.db import models
from django.utils import timezone

mobile_number_validator = RegexValidator(r'^[6-9]\d{9}$', 'Enter a valid 10-digit mobile number.')
national_id_validator = RegexValidator(r'^\d{12}$', 'Enter a valid 12-digit national ID number.')


def generate_username() -> str:
    return f"hc{uuid.uuid4().hex[:12]}"


class User(AbstractUser):
    """A citizen identity gated behind a one-time code challenge.

    The record is only created once the first registration challenge is
    answered, so ``is_verified`` is true for every self-registered
    identity.  ``is_active`` (from Django) is the administrative on/off
    switch; ``last_login`` is stamped on every successful login.

    The pending login code lives in ``otp_code``/``otp_expires_at``/
    ``otp_attempts``.  A null ``otp_code`` means no challenge is pending.
    """
    GENDER_CHOICES = [
        ('Male', 'Male'),
        ('Female', 'Female'),
        ('Other', 'Other'),
    ]
    BLOOD_GROUP_CHOICES = [(g, g) for g in ('A+', 'A-', 'B+', 'B-', 'AB+', 'AB-', 'O+', 'O-')]

    mobile_number = models.CharField(
        max_length=10, unique=True, null=True, blank=True, validators=[mobile_number_validator],
    )
    national_id = models.CharField(
        max_length=12, unique=True, null=True, blank=True, validators=[national_id_validator],
    )
    date_of_birth = models.DateField(null=True, blank=True)
    gender = models.CharField(max_length=10, choices=GENDER_CHOICES, blank=True)
    address = models.JSONField(default=dict, blank=True)
    emergency_contact = models.JSONField(default=dict, blank=True)
    blood_group = models.CharField(max_length=3, choices=BLOOD_GROUP_CHOICES, blank=True)
    allergies = models.JSONField(default=list, blank=True)
    current_medications = models.JSONField(default=list, blank=True)
    work_details = models.JSONField(default=dict, blank=True)

    is_verified = models.BooleanField(default=False)

    # Lockout bookkeeping
    login_failure_count = models.PositiveIntegerField(default=0)
    locked_until = models.DateTimeField(null=True, blank=True)

    # Pending login challenge
    otp_code = models.CharField(max_length=12, null=True, blank=True)
    otp_expires_at = models.DateTimeField(null=True, blank=True)
    otp_attempts = models.PositiveSmallIntegerField(default=0)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return f"{self.get_full_name() or self.username} ({self.mobile_number or '-'})"

    def is_locked(self, now: datetime.datetime | None = None) -> bool:
        now = now or timezone.now()
        return bool(self.locked_until and self.locked_until > now)

    def has_pending_otp(self) -> bool:
        return self.otp_code is not None

    def clear_pending_otp(self) -> None:
        self.otp_code = None
        self.otp_expires_at = None
        self.otp_attempts = 0

    @property
    def display_name(self) -> str:
        return self.get_full_name() or self.username


class HealthRecord(models.Model):
    """A single health checkup belonging to one identity."""
    CHECKUP_TYPE_CHOICES = [
        ('Routine', 'Routine'),
        ('Emergency', 'Emergency'),
        ('Follow-up', 'Follow-up'),
        ('Pre-employment', 'Pre-employment'),
        ('Annual', 'Annual'),
    ]
    STATUS_CHOICES = [
        ('Active', 'Active'),
        ('Completed', 'Completed'),
        ('Cancelled', 'Cancelled'),
    ]

    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='health_records')
    checkup_date = models.DateTimeField()
    checkup_type = models.CharField(max_length=20, choices=CHECKUP_TYPE_CHOICES, db_index=True)
    # {bloodPressure: {systolic, diastolic, unit}, heartRate: {value, unit}, weight: {value, unit}, ...}
    vitals = models.JSONField(default=dict, blank=True)
    current_symptoms = models.JSONField(default=list, blank=True)
    # [{condition, severity, status, notes}]
    diagnosis = models.JSONField(default=list, blank=True)
    # {prescribedMedicines: [...], procedures: [...], recommendations: [...]}
    treatment = models.JSONField(default=dict, blank=True)
    # {name, specialization, licenseNumber, hospital, contactNumber}
    doctor = models.JSONField(default=dict, blank=True)
    follow_up_required = models.BooleanField(default=False)
    next_appointment = models.DateTimeField(null=True, blank=True)
    follow_up_instructions = models.TextField(blank=True)
    # [{testName, result, normalRange, status, labName, testDate}]
    lab_results = models.JSONField(default=list, blank=True)
    notes = models.TextField(blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='Active')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=['user', 'checkup_date']),
        ]

    def __str__(self) -> str:
        return f"{self.checkup_type} checkup for {self.user_id} on {self.checkup_date:%F}"

    @property
    def bmi(self) -> str | None:
        """Body mass index from the recorded weight (kg) and height (cm)."""
        weight = (self.vitals or {}).get('weight') or {}
        height = (self.vitals or {}).get('height') or {}
        try:
            w = float(weight.get('value'))
            h = float(height.get('value')) / 100
        except (TypeError, ValueError):
            return None
        if h <= 0:
            return None
        return f"{w / (h * h):.2f}"


def _report_upload(instance, filename: str) -> str:
    ext = os.path.splitext(filename)[1].lower()
    return f"reports/{datetime.date.today().strftime('%Y/%m')}/{uuid.uuid4().hex}{ext}"


def generate_access_code() -> str:
    return uuid.uuid4().hex[-8:].upper()


class MedicalReport(models.Model):
    """A lab or imaging report attached to one of the owner's health records."""
    REPORT_TYPE_CHOICES = [(t, t) for t in (
        'Blood Test', 'X-Ray', 'CT Scan', 'MRI', 'ECG', 'Ultrasound', 'Pathology', 'Microbiology', 'Other',
    )]
    STATUS_CHOICES = [
        ('Draft', 'Draft'),
        ('Final', 'Final'),
        ('Archived', 'Archived'),
    ]

    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='medical_reports')
    health_record = models.ForeignKey(HealthRecord, on_delete=models.CASCADE, related_name='reports')
    report_type = models.CharField(max_length=20, choices=REPORT_TYPE_CHOICES, db_index=True)
    report_name = models.CharField(max_length=255)
    report_date = models.DateTimeField()

    file = models.FileField(upload_to=_report_upload, max_length=512, null=True, blank=True)
    original_name = models.CharField(max_length=255, blank=True)
    content_type = models.CharField(max_length=128, blank=True)
    size = models.PositiveIntegerField(default=0)
    uploaded_at = models.DateTimeField(null=True, blank=True)

    # {findings, conclusion, recommendations, normalRange, actualValue, status}
    report_details = models.JSONField(default=dict, blank=True)
    # {name, address, contactNumber, licenseNumber, doctorName}
    lab_info = models.JSONField(default=dict, blank=True)

    is_public = models.BooleanField(default=False)
    access_code = models.CharField(max_length=8, unique=True, default=generate_access_code)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='Draft')
    is_verified = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=['user', 'report_date']),
        ]

    def __str__(self) -> str:
        return f"{self.report_name} ({self.access_code})"


class HealthQRCode(models.Model):
    """The scannable health card of one identity."""
    ACCESS_LEVEL_CHOICES = [
        ('Public', 'Public'),
        ('Restricted', 'Restricted'),
        ('Emergency', 'Emergency'),
    ]
    QR_TYPE_CHOICES = [(t, t) for t in ('Health Card', 'Emergency', 'Medical History', 'Contact')]

    user = models.OneToOneField(User, on_delete=models.CASCADE, related_name='qr_code')
    code = models.CharField(max_length=32, unique=True)
    access_token = models.CharField(max_length=64, unique=True)
    access_level = models.CharField(max_length=12, choices=ACCESS_LEVEL_CHOICES, default='Restricted')
    qr_type = models.CharField(max_length=20, choices=QR_TYPE_CHOICES, default='Health Card')
    is_valid = models.BooleanField(default=True)
    expires_at = models.DateTimeField(null=True, blank=True)
    scan_count = models.PositiveIntegerField(default=0)
    last_scanned_at = models.DateTimeField(null=True, blank=True)
    # {emergencyContact, bloodGroup, allergies, currentMedications}
    additional_data = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return f"{self.code} -> {self.user_id}"


class AuditEvent(models.Model):
    user = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True)
    action = models.CharField(max_length=64)
    object_type = models.CharField(max_length=64, blank=True, null=True)
    object_id = models.IntegerField(blank=True, null=True)
    detail = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=['action', 'created_at']),
            models.Index(fields=['object_type', 'object_id', 'created_at']),
        ]

    def __str__(self):
        return f"{self.action}:{self.user_id}@{self.created_at:%F %T}"
