# assessments/exports.py
import io

from cores.spreadsheets import build_workbook

from .results import exam_results

HEADER = [
    'Rank', 'Attempt Code', 'Student', 'Email', 'Student ID', 'Status', 'Submitted At',
    'Marks Obtained', 'Total Marks', 'Negative Marks', 'Percentage', 'Grade', 'Result',
    'Correct', 'Incorrect', 'Unanswered', 'Tab Switches', 'Flagged', 'Published',
]

RESULT_COLORS = {
    'pass': 'C6F6D5',
    'fail': 'FED7D7',
    'pending': 'FEFCBF',
}


def results_workbook(exam):
    """Workbook with one row per finished attempt; the Result column is coloured by outcome."""
    rows, fills = [], {}
    result_col = HEADER.index('Result')
    for index, result in enumerate(exam_results(exam)):
        attempt = result.attempt
        user = attempt.user
        rows.append([
            result.rank or '',
            attempt.attempt_code,
            user.display_name,
            user.email,
            user.student_id,
            attempt.get_status_display(),
            attempt.submitted_at.strftime('%Y-%m-%d %H:%M') if attempt.submitted_at else '',
            float(result.marks_obtained),
            float(result.total_marks),
            float(result.negative_marks_deducted),
            float(result.percentage),
            result.grade,
            result.get_pass_status_display(),
            result.correct_answers,
            result.incorrect_answers,
            result.unanswered,
            attempt.tab_switch_count,
            'Yes' if attempt.is_flagged else 'No',
            'Yes' if result.is_published else 'No',
        ])
        fills[(index, result_col)] = RESULT_COLORS.get(result.pass_status, 'FFFFFF')

    return build_workbook(
        title=f"{exam.code} - {exam.title}: Results",
        header=HEADER,
        rows=rows,
        sheet_title="Results",
        fills=fills,
    )


def results_xlsx_bytes(exam):
    buffer = io.BytesIO()
    results_workbook(exam).save(buffer)
    return buffer.getvalue()
