from django.urls import path
from .views import (
    AttemptEventsView,
    ConnectionLostView,
    ConnectionRestoredView,
    FlagAttemptView,
    HeartbeatView,
    LiveSessionsView,
    LogEventView,
    SessionDetailView,
    TerminateAttemptView,
)

urlpatterns = [
    # Student Exam Client
    path('proctoring/events/', LogEventView.as_view(), name='proctoring-log-event'),
    path('proctoring/attempts/<int:attempt_id>/heartbeat/', HeartbeatView.as_view(), name='proctoring-heartbeat'),
    path('proctoring/attempts/<int:attempt_id>/connection-lost/', ConnectionLostView.as_view(),
         name='proctoring-connection-lost'),
    path('proctoring/attempts/<int:attempt_id>/connection-restored/', ConnectionRestoredView.as_view(),
         name='proctoring-connection-restored'),

    # --- Supervision ---
    path('proctoring/live/', LiveSessionsView.as_view(), name='proctoring-live'),
    path('proctoring/attempts/<int:attempt_id>/', SessionDetailView.as_view(), name='proctoring-session'),
    path('proctoring/attempts/<int:attempt_id>/events/', AttemptEventsView.as_view(), name='proctoring-events'),
    path('proctoring/attempts/<int:attempt_id>/flag/', FlagAttemptView.as_view(), name='proctoring-flag'),
    path('proctoring/attempts/<int:attempt_id>/terminate/', TerminateAttemptView.as_view(),
         name='proctoring-terminate'),
]
