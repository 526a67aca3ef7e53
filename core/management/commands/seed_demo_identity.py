"""
Management command to create a verified demo identity with sample health records.
"""
from datetime import timedelta

from django.core.management.base import BaseCommand
from django.utils import timezone

from core.models import HealthRecord, User, generate_username

DEMO_MOBILE = "9876543210"
DEMO_NATIONAL_ID = "314619230735"

SAMPLE_RECORDS = [
    {
        "days_ago": 90,
        "checkup_type": "Pre-employment",
        "vitals": {
            "bloodPressure": {"systolic": 118, "diastolic": 76, "unit": "mmHg"},
            "heartRate": {"value": 72, "unit": "bpm"},
            "weight": {"value": 64, "unit": "kg"},
            "height": {"value": 170, "unit": "cm"},
        },
        "diagnosis": [{"condition": "Fit for work", "severity": "Mild", "status": "Resolved"}],
        "doctor": {"name": "Dr. Anitha Menon", "hospital": "General Hospital Ernakulam"},
        "notes": "Pre-employment screening, no findings.",
    },
    {
        "days_ago": 20,
        "checkup_type": "Routine",
        "vitals": {
            "bloodPressure": {"systolic": 142, "diastolic": 92, "unit": "mmHg"},
            "weight": {"value": 66, "unit": "kg"},
            "height": {"value": 170, "unit": "cm"},
        },
        "diagnosis": [{"condition": "Hypertension", "severity": "Moderate", "status": "Active"}],
        "doctor": {"name": "Dr. Rahul Nair", "hospital": "PHC Perumbavoor"},
        "lab_results": [{"testName": "Lipid profile", "result": "LDL 162 mg/dL", "status": "Abnormal"}],
        "follow_up_days": 10,
        "notes": "Start lifestyle changes, recheck blood pressure.",
    },
]


class Command(BaseCommand):
    help = "Ensure the demo identity (mobile %s) exists with sample records (idempotent)." % DEMO_MOBILE

    def handle(self, *args, **opts):
        user, created = User.objects.get_or_create(
            national_id=DEMO_NATIONAL_ID,
            defaults={
                "username": generate_username(),
                "mobile_number": DEMO_MOBILE,
                "first_name": "Ravi",
                "last_name": "Kumar",
                "gender": "Male",
                "blood_group": "B+",
                "allergies": ["Penicillin"],
                "emergency_contact": {"name": "Sita Kumar", "relationship": "Spouse", "mobileNumber": "9123456780"},
                "work_details": {"employer": "Kochi Metro Works", "occupation": "Mason", "workLocation": "Aluva"},
                "is_verified": True,
            },
        )
        if not created:
            user.is_verified = True
            user.is_active = True
            user.locked_until = None
            user.login_failure_count = 0
            user.save(update_fields=["is_verified", "is_active", "locked_until", "login_failure_count", "updated_at"])
        user.set_unusable_password()
        user.save(update_fields=["password"])

        if user.health_records.exists():
            self.stdout.write(self.style.WARNING(f"records already present for {user.display_name}"))
        else:
            now = timezone.now()
            for sample in SAMPLE_RECORDS:
                sample = dict(sample)
                checkup = now - timedelta(days=sample.pop("days_ago"))
                follow_up_days = sample.pop("follow_up_days", None)
                HealthRecord.objects.create(
                    user=user,
                    checkup_date=checkup,
                    follow_up_required=follow_up_days is not None,
                    next_appointment=checkup + timedelta(days=follow_up_days) if follow_up_days else None,
                    **sample,
                )
            self.stdout.write(self.style.SUCCESS(f"created {len(SAMPLE_RECORDS)} health records"))

        self.stdout.write(self.style.SUCCESS(
            f"ok: {user.display_name} mobile={user.mobile_number} national_id={user.national_id}"
        ))
