from django.urls import path, include
from rest_framework.routers import DefaultRouter
from .views import (
    ChangePasswordView,
    CustomLoginView,
    GradeLevelViewSet,
    ImportStudentsView,
    ImportSupervisorsView,
    LogoutView,
    RegisterAdminView,
    SchoolClassViewSet,
    UserProfileView,
    UserViewSet,
)

# Create a router for ViewSets
router = DefaultRouter()
router.register(r'users', UserViewSet, basename='users')
router.register(r'grade-levels', GradeLevelViewSet, basename='grade-levels')
router.register(r'classes', SchoolClassViewSet, basename='classes')

urlpatterns = [
    # --- Authentication ---
    path('auth/login/', CustomLoginView.as_view(), name='login'),
    path('auth/register-admin/', RegisterAdminView.as_view(), name='register-admin'),
    path('auth/logout/', LogoutView.as_view(), name='logout'),
    path('auth/change-password/', ChangePasswordView.as_view(), name='change-password'),
    path('auth/me/', UserProfileView.as_view(), name='me'),

    # --- Bulk Import ---
    path('users/import/students/', ImportStudentsView.as_view(), name='import-students'),
    path('users/import/supervisors/', ImportSupervisorsView.as_view(), name='import-supervisors'),

    # --- User Management (CRUD) ---
    path('', include(router.urls)),
]
