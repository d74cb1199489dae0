"""
Management command to seed canonical permissions and default roles.

Creates the Permission records in SYSTEM_PERMISSIONS and the roles in
SYSTEM_ROLES with their grants. This command is idempotent and safe to re-run.
"""
from django.core.management.base import BaseCommand
from django.db import transaction

from apps.rbac.models import Permission, Role, RolePermission, SYSTEM_PERMISSIONS, SYSTEM_ROLES
from apps.rbac.services import RBACService


class Command(BaseCommand):
    help = 'Seed canonical permissions and default roles (idempotent)'

    def add_arguments(self, parser):
        parser.add_argument(
            '--skip-roles',
            action='store_true',
            help='Seed permissions only',
        )

    @transaction.atomic
    def handle(self, *args, **options):
        """Create or update all canonical permissions."""
        created_count = 0
        updated_count = 0

        self.stdout.write('Seeding canonical permissions...\n')

        for permission_id, description in SYSTEM_PERMISSIONS.items():
            permission, created = Permission.objects.get_or_create_permission(
                permission_id, description=description
            )

            if created:
                created_count += 1
                self.stdout.write(self.style.SUCCESS(f'✓ Created: {permission.id}'))
            elif permission.description != description:
                permission.description = description
                permission.save()
                updated_count += 1
                self.stdout.write(self.style.WARNING(f'↻ Updated: {permission.id}'))
            else:
                self.stdout.write(self.style.HTTP_INFO(f'  Exists: {permission.id}'))

        self.stdout.write(
            self.style.SUCCESS(
                f'\n✓ Permissions: {created_count} created, {updated_count} updated, '
                f'{len(SYSTEM_PERMISSIONS) - created_count - updated_count} unchanged'
            )
        )

        if not options['skip_roles']:
            self.seed_roles()

        # Display summary by module
        self.stdout.write('\n' + '=' * 70)
        self.stdout.write('Permissions Summary by Module:')
        self.stdout.write('=' * 70)

        modules = Permission.objects.values_list('module', flat=True).distinct().order_by('module')

        for module in modules:
            self.stdout.write(f'\n{module.upper()}:')
            for perm in Permission.objects.by_module(module).order_by('id'):
                self.stdout.write(f'  • {perm.id:<30} {perm.description}')

        self.stdout.write(f'\nTotal permissions: {Permission.objects.count()}')

    def seed_roles(self):
        """Create the default roles and add any missing grants."""
        for name, spec in SYSTEM_ROLES.items():
            role, created = Role.objects.get_or_create(
                name=name,
                defaults={'description': spec['description']}
            )
            permission_ids = spec['permissions'] or list(SYSTEM_PERMISSIONS)

            granted = 0
            for permission_id in permission_ids:
                _, grant_created = RolePermission.objects.get_or_create(
                    role=role, permission_id=permission_id
                )
                granted += int(grant_created)

            if granted:
                RBACService().invalidate_role_holders(role)

            label = 'Created' if created else 'Exists'
            self.stdout.write(self.style.SUCCESS(f'✓ {label} role: {name} (+{granted} permissions)'))
