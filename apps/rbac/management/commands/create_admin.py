"""
Management command to grant the Super Admin role to a user.

Bootstraps the first administrator of a fresh install, after
`seed_permissions` has created the default roles.
"""
from django.core.management.base import BaseCommand, CommandError

from apps.core.exceptions import AuroraException
from apps.events.context import system_context
from apps.rbac.models import User, Role, SUPER_ADMIN_ROLE
from apps.rbac.services import RBACService, AuthService


class Command(BaseCommand):
    help = 'Assign the Super Admin role to a user'

    def add_arguments(self, parser):
        """Add command arguments."""
        parser.add_argument(
            '--email',
            type=str,
            required=True,
            help='User email address',
        )
        parser.add_argument(
            '--create-user',
            action='store_true',
            help='Create user if they do not exist (requires --password)',
        )
        parser.add_argument(
            '--password',
            type=str,
            help='Password for new user (only used with --create-user)',
        )
        parser.add_argument(
            '--first-name',
            type=str,
            default='',
            help='First name for new user',
        )
        parser.add_argument(
            '--last-name',
            type=str,
            default='',
            help='Last name for new user',
        )

    def handle(self, *args, **options):
        """Assign Super Admin role to user."""
        email = options['email']
        password = options.get('password')
        context = system_context()

        if options['create_user'] and not password:
            raise CommandError('--password is required when using --create-user')

        admin_role = Role.objects.by_name(SUPER_ADMIN_ROLE)
        if not admin_role:
            raise CommandError(
                f'{SUPER_ADMIN_ROLE} role not found\n'
                f'Run: python manage.py seed_permissions'
            )

        user = User.objects.by_email(email)

        if not user:
            if not options['create_user']:
                raise CommandError(
                    f'User not found: {email}\n'
                    f'Use --create-user --password=<password> to create the user'
                )
            try:
                user = AuthService().register_user(
                    email=email,
                    password=password,
                    first_name=options.get('first_name', ''),
                    last_name=options.get('last_name', ''),
                    context=context,
                )
            except AuroraException as e:
                raise CommandError(f'Failed to create user: {e.message}')
            self.stdout.write(self.style.SUCCESS(f'✓ Created user: {user.email}'))
        else:
            self.stdout.write(f'User: {user.email}')

        rbac = RBACService()
        if admin_role.user_roles.filter(user=user).exists():
            self.stdout.write(
                self.style.WARNING(f'\n↻ {SUPER_ADMIN_ROLE} role already assigned to {user.email}')
            )
        else:
            rbac.assign_role(user, admin_role, assigned_by=None, context=context)
            self.stdout.write(
                self.style.SUCCESS(f'\n✓ Assigned {SUPER_ADMIN_ROLE} role to {user.email}')
            )

        permissions = sorted(rbac.get_effective_permissions(user, use_cache=False))
        self.stdout.write(f'\nGranted permissions: {len(permissions)}')
        for permission_id in permissions:
            self.stdout.write(f'  • {permission_id}')
