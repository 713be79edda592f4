from django.db import connection
from django.db.utils import DatabaseError
from django.utils import timezone
from rest_framework import generics, permissions, status
from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response
from rest_framework.views import APIView

from users.permissions import IsAdmin

from .analytics import dashboard_overview, recent_activity
from .models import AuditLog, PlatformSetting
from .serializers import AuditLogSerializer, PlatformSettingSerializer


class PlatformSettingView(APIView):
    permission_classes = [IsAdmin]

    def get(self, request):
        settings = PlatformSetting.load()
        serializer = PlatformSettingSerializer(settings)
        return Response(serializer.data)

    def put(self, request):
        settings = PlatformSetting.load()
        serializer = PlatformSettingSerializer(settings, data=request.data, partial=True)
        if serializer.is_valid():
            serializer.save()
            # Auto-Log this action
            changed = ', '.join(sorted(serializer.validated_data)) or 'nothing'
            AuditLog.record(request, 'SETTINGS', 'PlatformSetting',
                            f"Updated platform configuration: {changed}")
            return Response(serializer.data)
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    patch = put


class AuditLogListView(generics.ListAPIView):
    # Select related avoids N+1 queries when fetching users
    queryset = AuditLog.objects.select_related('actor').all().order_by('-timestamp')
    serializer_class = AuditLogSerializer
    permission_classes = [IsAdmin]

    def get_queryset(self):
        queryset = super().get_queryset()
        action = self.request.query_params.get('action')
        if action:
            queryset = queryset.filter(action=action)
        target = self.request.query_params.get('target_model')
        if target:
            queryset = queryset.filter(target_model=target)
        return queryset


class AnalyticsDashboardView(APIView):
    """
    Returns aggregated statistics for the Admin Dashboard.
    """
    permission_classes = [IsAdmin]

    def get(self, request):
        return Response(dashboard_overview())


class RecentActivityView(APIView):
    """Merged feed of attempts, registrations and exams (?search=, ?days=, ?page=)."""
    permission_classes = [IsAdmin]

    def get(self, request):
        try:
            days = max(1, int(request.query_params.get('days', 30)))
        except ValueError:
            return Response({"error": "days must be a number"}, status=status.HTTP_400_BAD_REQUEST)
        items = recent_activity(search=request.query_params.get('search'), days=days)
        paginator = PageNumberPagination()
        page = paginator.paginate_queryset(items, request, view=self)
        return paginator.get_paginated_response(page)


class HealthView(APIView):
    permission_classes = [permissions.AllowAny]
    authentication_classes = []

    def get(self, request):
        try:
            with connection.cursor() as cursor:
                cursor.execute("SELECT 1")
            database = "ok"
        except DatabaseError:
            database = "unavailable"
        healthy = database == "ok"
        return Response(
            {"status": "ok" if healthy else "degraded", "database": database, "time": timezone.now()},
            status=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        )
