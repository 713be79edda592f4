from rest_framework import serializers
from .models import PlatformSetting, AuditLog


class PlatformSettingSerializer(serializers.ModelSerializer):
    class Meta:
        model = PlatformSetting
        fields = '__all__'
        read_only_fields = ['id']

    def validate_default_pass_percentage(self, value):
        if value > 100:
            raise serializers.ValidationError("Pass percentage cannot exceed 100.")
        return value

    def validate_default_exam_duration(self, value):
        if value < 1:
            raise serializers.ValidationError("Duration must be at least one minute.")
        return value


class AuditLogSerializer(serializers.ModelSerializer):
    # This field fetches the email from the related User model
    actor_email = serializers.CharField(source='actor.email', read_only=True)
    actor_role = serializers.CharField(source='actor.role', read_only=True)

    class Meta:
        model = AuditLog
        fields = ['id', 'actor', 'actor_email', 'actor_role', 'action', 'target_model', 'target_object_id',
                  'ip_address', 'timestamp', 'details']


class ExamFilterSerializer(serializers.Serializer):
    """`?exam=<id>` query filter for staff lists."""
    exam = serializers.IntegerField(required=False, min_value=1)


def exam_filter(request):
    filters = ExamFilterSerializer(data=request.query_params)
    filters.is_valid(raise_exception=True)
    return filters.validated_data.get('exam')
