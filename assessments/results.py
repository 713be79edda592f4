# assessments/results.py
import logging
from decimal import Decimal

from django.db import transaction
from django.db.models import Avg, Count, Max, Min, Q
from django.utils import timezone

from .models import ExamAttempt, ExamResult

logger = logging.getLogger(__name__)


def exam_results(exam):
    return (
        ExamResult.objects.filter(attempt__exam=exam, attempt__status__in=ExamAttempt.FINISHED_STATUSES)
        .select_related('attempt', 'attempt__user')
        .order_by('rank', '-marks_obtained', 'attempt__submitted_at')
    )


def recompute_ranks(exam):
    """
    Competition ranking (ties share a rank) over graded results of the exam.
    Percentile is the share of participants scoring at or below the candidate.
    """
    results = list(
        ExamResult.objects.filter(attempt__exam=exam, attempt__status__in=ExamAttempt.FINISHED_STATUSES)
        .exclude(pass_status=ExamResult.PassStatus.PENDING)
        .order_by('-marks_obtained')
    )
    total = len(results)
    previous_marks, previous_rank = None, 0
    for position, result in enumerate(results, start=1):
        if result.marks_obtained != previous_marks:
            previous_rank = position
            previous_marks = result.marks_obtained
        at_or_below = total - position + 1 + sum(
            1 for other in results[:position - 1] if other.marks_obtained == result.marks_obtained
        )
        result.rank = previous_rank
        result.total_participants = total
        result.percentile = (Decimal(at_or_below) / Decimal(total) * 100).quantize(Decimal('0.01'))
    ExamResult.objects.bulk_update(results, ['rank', 'total_participants', 'percentile'])
    return total


def publish_results(exam, attempt_ids=None, user=None):
    """Publish all (or the selected) finished results of an exam. Returns the number published."""
    with transaction.atomic():
        queryset = ExamResult.objects.filter(
            attempt__exam=exam, attempt__status__in=ExamAttempt.FINISHED_STATUSES, is_published=False
        )
        if attempt_ids:
            queryset = queryset.filter(attempt_id__in=attempt_ids)
        count = queryset.update(is_published=True, published_at=timezone.now(), published_by=user)
        recompute_ranks(exam)
    logger.info("Published %s result(s) for exam %s", count, exam.code)
    return count


def results_statistics(exam):
    graded = ExamResult.objects.filter(
        attempt__exam=exam, attempt__status__in=ExamAttempt.FINISHED_STATUSES
    ).exclude(pass_status=ExamResult.PassStatus.PENDING)
    agg = graded.aggregate(
        average=Avg('percentage'),
        highest=Max('percentage'),
        lowest=Min('percentage'),
        average_marks=Avg('marks_obtained'),
        passed=Count('id', filter=Q(pass_status=ExamResult.PassStatus.PASS)),
        total=Count('id'),
    )
    attempts = ExamAttempt.objects.filter(exam=exam)
    total = agg['total'] or 0
    return {
        'total_attempts': attempts.count(),
        'completed_attempts': attempts.filter(status__in=ExamAttempt.FINISHED_STATUSES).count(),
        'graded_results': total,
        'pending_results': ExamResult.objects.filter(
            attempt__exam=exam, pass_status=ExamResult.PassStatus.PENDING).count(),
        'published_results': ExamResult.objects.filter(attempt__exam=exam, is_published=True).count(),
        'average_percentage': round(agg['average'] or 0, 2),
        'average_marks': round(agg['average_marks'] or 0, 2),
        'highest_percentage': agg['highest'] or 0,
        'lowest_percentage': agg['lowest'] or 0,
        'passed': agg['passed'],
        'failed': total - agg['passed'],
        'pass_rate': round(agg['passed'] * 100 / total, 2) if total else 0,
        'grade_distribution': dict(
            graded.order_by().values_list('grade').annotate(c=Count('id'))
        ),
    }
