# core/management/commands/ensure_admin.py
from django.core.management.base import BaseCommand, CommandError
from django.db import transaction

from core.models import User
from core.services.accounts import normalize_email


class Command(BaseCommand):
    help = "Create or reset a verified platform admin account (idempotent)."

    def add_arguments(self, parser):
        parser.add_argument("email")
        parser.add_argument("--password", required=True)
        parser.add_argument("--name", default="Administrator")
        parser.add_argument("--superuser", action="store_true",
                            help="Also grant Django admin site access.")

    @transaction.atomic
    def handle(self, *args, **opts):
        email = normalize_email(opts["email"])
        if not email or "@" not in email:
            raise CommandError(f"invalid email: {opts['email']!r}")
        if len(opts["password"]) < 6:
            raise CommandError("password must be at least 6 characters")
        u, created = User.objects.get_or_create(
            username=User.username_for(User.ROLE_ADMIN, email),
            defaults={"email": email, "role": User.ROLE_ADMIN, "first_name": opts["name"]},
        )
        u.set_password(opts["password"])
        u.is_verified = True
        u.is_active = True
        u.is_staff = u.is_superuser = bool(opts["superuser"]) or u.is_superuser
        u.save()
        verb = "created" if created else "updated"
        self.stdout.write(self.style.SUCCESS(f"{verb}: {email} (admin)"))
