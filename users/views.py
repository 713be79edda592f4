from rest_framework import generics, permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.parsers import FormParser, JSONParser, MultiPartParser
from rest_framework.response import Response
from rest_framework.throttling import AnonRateThrottle, ScopedRateThrottle
from rest_framework.views import APIView
from rest_framework_simplejwt.exceptions import TokenError
from rest_framework_simplejwt.tokens import RefreshToken
from rest_framework_simplejwt.views import TokenObtainPairView
from django.contrib.auth import get_user_model

from cores.models import AuditLog
from cores.spreadsheets import SpreadsheetError, read_rows

from .models import GradeLevel, SchoolClass
from .permissions import IsAdmin
from .serializers import (
    ChangePasswordSerializer,
    CustomTokenObtainPairSerializer,
    GradeLevelSerializer,
    ImportUsersSerializer,
    ProfileSerializer,
    RegisterSerializer,
    SchoolClassSerializer,
    UserSerializer,
)
from .services import import_users

User = get_user_model()


# --- 1. User Management (CRUD for Admin) ---
class UserViewSet(viewsets.ModelViewSet):
    """
    Admin-only endpoint to manage all users.
    Every write is recorded in the audit log.
    """
    queryset = User.objects.all().order_by('-date_joined')
    permission_classes = [IsAdmin]

    def get_serializer_class(self):
        if self.action == 'create':
            return RegisterSerializer
        return UserSerializer

    def get_queryset(self):
        queryset = super().get_queryset()
        role = self.request.query_params.get('role')
        if role:
            queryset = queryset.filter(role=role)
        search = self.request.query_params.get('search')
        if search:
            queryset = queryset.filter(email__icontains=search) | queryset.filter(first_name__icontains=search) \
                | queryset.filter(last_name__icontains=search)
        return queryset

    def perform_create(self, serializer):
        user = serializer.save()
        AuditLog.record(self.request, 'CREATE', user, f"Created new user: {user.email} (Role: {user.role})")

    def perform_update(self, serializer):
        user = serializer.save()
        # Handle password update if present
        if self.request.data.get('password'):
            user.set_password(self.request.data['password'])
            user.save()
        AuditLog.record(self.request, 'UPDATE', user, f"Updated profile for: {user.email}")

    def perform_destroy(self, instance):
        AuditLog.record(self.request, 'DELETE', instance, f"Deleted user account: {instance.email}")
        instance.delete()

    @action(detail=False, methods=['get'], url_path='role/(?P<role>[^/.]+)')
    def by_role(self, request, role=None):
        if role not in User.Role.values:
            return Response({"error": f"Unknown role '{role}'"}, status=status.HTTP_400_BAD_REQUEST)
        queryset = User.objects.filter(role=role).order_by('last_name', 'first_name')
        page = self.paginate_queryset(queryset)
        if page is not None:
            return self.get_paginated_response(UserSerializer(page, many=True).data)
        return Response(UserSerializer(queryset, many=True).data)

    @action(detail=True, methods=['patch'], url_path='toggle-status')
    def toggle_status(self, request, pk=None):
        user = self.get_object()
        if user == request.user:
            return Response({"error": "You cannot deactivate your own account"}, status=status.HTTP_400_BAD_REQUEST)
        user.is_active = not user.is_active
        user.save(update_fields=['is_active'])
        AuditLog.record(
            request, 'STATUS', user,
            f"{'Activated' if user.is_active else 'Deactivated'} account: {user.email}",
        )
        return Response(UserSerializer(user).data)


class GradeLevelViewSet(viewsets.ModelViewSet):
    queryset = GradeLevel.objects.all().order_by('name')
    serializer_class = GradeLevelSerializer
    pagination_class = None

    def get_permissions(self):
        if self.action in ['list', 'retrieve']:
            return [permissions.IsAuthenticated()]
        return [IsAdmin()]


class SchoolClassViewSet(GradeLevelViewSet):
    queryset = SchoolClass.objects.select_related('grade_level').order_by('name')
    serializer_class = SchoolClassSerializer


# --- 2. Authentication Views ---
class CustomLoginView(TokenObtainPairView):
    serializer_class = CustomTokenObtainPairSerializer
    throttle_classes = [AnonRateThrottle]


class RegisterAdminView(generics.CreateAPIView):
    """
    Creates an administrator account. Open while the platform has no admin
    yet (first-run bootstrap); afterwards only admins may call it.
    """
    serializer_class = RegisterSerializer
    permission_classes = [permissions.AllowAny]
    throttle_classes = [AnonRateThrottle]

    def create(self, request, *args, **kwargs):
        if User.objects.filter(role=User.Role.ADMIN).exists() and not IsAdmin().has_permission(request, self):
            return Response({"error": "Only administrators can register new administrators"},
                            status=status.HTTP_403_FORBIDDEN)

        data = request.data.copy()
        data['role'] = User.Role.ADMIN
        serializer = self.get_serializer(data=data)
        serializer.is_valid(raise_exception=True)
        user = serializer.save()
        AuditLog.record(request, 'CREATE', user, f"Registered administrator: {user.email}")
        return Response(UserSerializer(user).data, status=status.HTTP_201_CREATED)


class LogoutView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        refresh = request.data.get('refresh')
        if not refresh:
            return Response({"error": "Refresh token is required"}, status=status.HTTP_400_BAD_REQUEST)
        try:
            RefreshToken(refresh).blacklist()
        except TokenError as e:
            return Response({"error": str(e)}, status=status.HTTP_400_BAD_REQUEST)
        return Response({"status": "Logged out"})


class ChangePasswordView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        serializer = ChangePasswordSerializer(data=request.data, context={'request': request})
        serializer.is_valid(raise_exception=True)
        request.user.set_password(serializer.validated_data['new_password'])
        request.user.save(update_fields=['password'])
        return Response({"status": "Password changed successfully"})


class UserProfileView(generics.RetrieveUpdateAPIView):
    serializer_class = ProfileSerializer
    permission_classes = [permissions.IsAuthenticated]

    def get_object(self):
        return self.request.user


# --- 3. Bulk Import ---
class ImportUsersView(APIView):
    """
    Import accounts either from a JSON body { "users": [...] } or from an
    uploaded CSV / Excel file (field name `file`).
    Expected columns: name, email, password, student_id, grade_level
    """
    permission_classes = [IsAdmin]
    parser_classes = (JSONParser, MultiPartParser, FormParser)
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = 'imports'
    role = User.Role.STUDENT

    def post(self, request):
        file_obj = request.FILES.get('file')
        if file_obj:
            try:
                rows = read_rows(file_obj)
            except SpreadsheetError as e:
                return Response({"error": str(e)}, status=status.HTTP_400_BAD_REQUEST)
            if not rows:
                return Response({"error": "The file contains no rows"}, status=status.HTTP_400_BAD_REQUEST)
        else:
            serializer = ImportUsersSerializer(data=request.data)
            serializer.is_valid(raise_exception=True)
            rows = list(enumerate(serializer.validated_data['users'], start=1))

        report = import_users(rows, self.role)
        AuditLog.record(
            request, 'IMPORT', 'User',
            f"Imported {report['success_count']} {self.role}(s), {report['failed_count']} failed",
        )
        code = status.HTTP_201_CREATED if report['success_count'] else status.HTTP_400_BAD_REQUEST
        return Response(report, status=code)


class ImportStudentsView(ImportUsersView):
    role = User.Role.STUDENT


class ImportSupervisorsView(ImportUsersView):
    role = User.Role.SUPERVISOR
