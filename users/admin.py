from django.contrib import admin
from django.contrib.auth.admin import UserAdmin

from .models import GradeLevel, SchoolClass, User


@admin.register(User)
class PlatformUserAdmin(UserAdmin):
    list_display = ('email', 'first_name', 'last_name', 'role', 'is_active')
    list_filter = ('role', 'is_active', 'grade_level')
    ordering = ('email',)
    fieldsets = UserAdmin.fieldsets + (
        ('Platform', {'fields': ('role', 'student_id', 'grade_level', 'school_class', 'phone_number', 'bio', 'avatar')}),
    )


admin.site.register(GradeLevel)
admin.site.register(SchoolClass)
