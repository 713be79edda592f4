import os

from django.conf import settings
from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone

from assessments.exports import results_workbook
from exams.models import Exam


class Command(BaseCommand):
    help = 'Writes the results of an exam to an .xlsx file in CBT_EXPORT_DIR'

    def add_arguments(self, parser):
        parser.add_argument('exam_code', type=str, help='The exam code, e.g. EX-2026-001')
        parser.add_argument('--output-dir', type=str, default=None, help='Overrides CBT_EXPORT_DIR')

    def handle(self, *args, **options):
        exam = Exam.objects.filter(code=options['exam_code']).first()
        if exam is None:
            raise CommandError(f"Exam {options['exam_code']} not found")

        export_dir = options['output_dir'] or str(settings.CBT_EXPORT_DIR)
        if not os.path.exists(export_dir):
            os.makedirs(export_dir)

        timestamp = timezone.now().strftime("%Y-%m-%d_%H%M%S")
        dest_path = os.path.join(export_dir, f"{exam.code}_results_{timestamp}.xlsx")
        results_workbook(exam).save(dest_path)
        self.stdout.write(self.style.SUCCESS(f"Results exported to {dest_path}"))
