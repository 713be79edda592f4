# users/services.py
import logging

from django.contrib.auth import get_user_model
from django.db import IntegrityError, transaction
from django.db.models import Q
from django.utils.crypto import get_random_string

from .models import GradeLevel

logger = logging.getLogger(__name__)

User = get_user_model()


def _split_name(row):
    first = (row.get('first_name') or '').strip()
    last = (row.get('last_name') or '').strip()
    if not first and row.get('name'):
        parts = row['name'].strip().split(' ', 1)
        first = parts[0]
        last = parts[1] if len(parts) > 1 else ''
    return first, last


def _resolve_grade_level(value):
    if not value:
        return None
    return GradeLevel.objects.filter(Q(code__iexact=value) | Q(name__iexact=value)).first()


def import_users(rows, role):
    """
    Create accounts for `rows` (pairs of line number and dict).
    Invalid or duplicate rows are skipped and reported; the rest are created.
    Generated passwords are returned so the admin can hand them out.
    """
    created, failed = [], []

    for line, row in rows:
        email = (row.get('email') or '').strip().lower()
        if not email:
            failed.append({'line': line, 'email': email, 'error': 'Email is required'})
            continue
        if User.objects.filter(email__iexact=email).exists():
            failed.append({'line': line, 'email': email, 'error': 'A user with this email already exists'})
            continue

        first_name, last_name = _split_name(row)
        password = (row.get('password') or '').strip()
        generated = not password
        if generated:
            password = get_random_string(10)

        try:
            with transaction.atomic():
                user = User.objects.create_user(
                    username=email,
                    email=email,
                    password=password,
                    first_name=first_name,
                    last_name=last_name,
                    role=role,
                    student_id=(row.get('student_id') or '').strip(),
                    grade_level=_resolve_grade_level((row.get('grade_level') or '').strip()),
                )
        except IntegrityError as e:
            logger.warning("User import failed on line %s (%s): %s", line, email, e)
            failed.append({'line': line, 'email': email, 'error': 'Could not create user'})
            continue

        entry = {'id': user.id, 'email': user.email, 'name': user.display_name}
        if generated:
            entry['password'] = password
        created.append(entry)

    logger.info("Imported %s %s account(s), %s failed", len(created), role, len(failed))
    return {
        'created': created,
        'failed': failed,
        'total': len(rows),
        'success_count': len(created),
        'failed_count': len(failed),
    }
