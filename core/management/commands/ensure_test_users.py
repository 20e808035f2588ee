# core/management/commands/ensure_test_users.py
from django.core.management.base import BaseCommand
from django.contrib.auth.hashers import make_password
from core.models import User

# username, role, verification status
TEST_SET = [
    ("admin1", User.ROLE_ADMIN, User.VERIFICATION_VERIFIED),
    ("patient1", User.ROLE_PATIENT, User.VERIFICATION_VERIFIED),
    ("nurse1", User.ROLE_NURSE, User.VERIFICATION_VERIFIED),
    ("nurse2", User.ROLE_NURSE, User.VERIFICATION_VERIFIED),
    ("nurse3", User.ROLE_NURSE, User.VERIFICATION_PENDING),
]


class Command(BaseCommand):
    help = "Ensure demo users exist with password=123456 (idempotent)."

    def add_arguments(self, parser):
        parser.add_argument("--password", default="123456")

    def handle(self, *args, **opts):
        password = make_password(opts["password"])
        for username, role, verification in TEST_SET:
            u, created = User.objects.get_or_create(
                username=username,
                defaults={
                    "role": role,
                    "verification_status": verification,
                    "password": password,
                    "is_active": True,
                    "is_staff": role == User.ROLE_ADMIN,
                },
            )
            if not created:
                # reset password, role and verification on every run
                u.password = password
                u.role = role
                u.verification_status = verification
                u.is_active = True
                u.save(update_fields=["password", "role", "verification_status", "is_active"])
            self.stdout.write(self.style.SUCCESS(f"ok: {username} ({role}, {verification})"))
        self.stdout.write(self.style.SUCCESS("All test users ensured."))
