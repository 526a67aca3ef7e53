from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone

from core.models import User
from core.services.identity import mask_mobile, set_identity_active, unlock_identity


class Command(BaseCommand):
    help = "List identity verification/lock status, or unlock/activate/deactivate one by national ID."

    def add_arguments(self, parser):
        group = parser.add_mutually_exclusive_group()
        group.add_argument("--unlock", metavar="NATIONAL_ID")
        group.add_argument("--activate", metavar="NATIONAL_ID")
        group.add_argument("--deactivate", metavar="NATIONAL_ID")
        parser.add_argument("--locked", action="store_true", help="only list currently locked identities")

    def _get(self, national_id):
        user = User.objects.filter(national_id=national_id).first()
        if user is None:
            raise CommandError(f"no identity with national ID ending {national_id[-4:]}")
        return user

    def handle(self, *args, **opts):
        if opts["unlock"]:
            user = unlock_identity(self._get(opts["unlock"]))
            self.stdout.write(self.style.SUCCESS(f"unlocked: {user.display_name}"))
            return
        if opts["activate"] or opts["deactivate"]:
            active = bool(opts["activate"])
            user = set_identity_active(self._get(opts["activate"] or opts["deactivate"]), active)
            self.stdout.write(self.style.SUCCESS(f"{'activated' if active else 'deactivated'}: {user.display_name}"))
            return

        now = timezone.now()
        qs = User.objects.filter(is_staff=False).order_by("id")
        if opts["locked"]:
            qs = qs.filter(locked_until__gt=now)
        for user in qs:
            state = "locked until %s" % user.locked_until.isoformat() if user.is_locked(now) else "unlocked"
            self.stdout.write(
                f"{user.id:>5}  {mask_mobile(user.mobile_number):<12} {user.display_name:<28} "
                f"verified={int(user.is_verified)} active={int(user.is_active)} "
                f"failures={user.login_failure_count} {state}"
            )
        self.stdout.write(self.style.SUCCESS(f"{qs.count()} identities"))
