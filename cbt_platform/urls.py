from django.conf import settings
from django.conf.urls.static import static
from django.contrib import admin
from django.urls import include, path

urlpatterns = [
    path('admin/', admin.site.urls),

    # --- Accounts, classes & authentication ---
    path('api/', include('users.urls')),

    # --- Platform settings, audit trail & analytics ---
    path('api/', include('cores.urls')),

    # --- Question bank & exam configuration ---
    path('api/', include('exams.urls')),

    # --- Exam taking & results ---
    path('api/', include('assessments.urls')),

    # --- Manual grading ---
    path('api/', include('grading.urls')),

    # --- Live monitoring ---
    path('api/', include('proctoring.urls')),
]

if settings.DEBUG:
    urlpatterns += static(settings.MEDIA_URL, document_root=settings.MEDIA_ROOT)
