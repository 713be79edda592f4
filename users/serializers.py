from rest_framework import serializers
from django.contrib.auth import get_user_model
from django.contrib.auth.password_validation import validate_password
from rest_framework_simplejwt.serializers import TokenObtainPairSerializer

from .models import GradeLevel, SchoolClass

User = get_user_model()


class GradeLevelSerializer(serializers.ModelSerializer):
    class Meta:
        model = GradeLevel
        fields = ['id', 'name', 'code', 'description', 'is_active']


class SchoolClassSerializer(serializers.ModelSerializer):
    class Meta:
        model = SchoolClass
        fields = ['id', 'name', 'code', 'grade_level', 'capacity', 'is_active']


class UserSerializer(serializers.ModelSerializer):
    name = serializers.CharField(source='display_name', read_only=True)

    class Meta:
        model = User
        fields = [
            'id', 'email', 'first_name', 'last_name', 'name', 'role', 'is_staff', 'is_active',
            'student_id', 'grade_level', 'school_class', 'phone_number', 'bio', 'avatar', 'date_joined',
        ]
        read_only_fields = ['is_staff', 'date_joined']


class ProfileSerializer(UserSerializer):
    """Users may edit their own profile but never their role or status."""
    class Meta(UserSerializer.Meta):
        read_only_fields = ['is_staff', 'date_joined', 'role', 'is_active', 'email', 'student_id']


class RegisterSerializer(serializers.ModelSerializer):
    password = serializers.CharField(write_only=True)

    class Meta:
        model = User
        fields = ['id', 'email', 'first_name', 'last_name', 'password', 'role', 'student_id', 'grade_level', 'school_class']

    def validate_password(self, value):
        validate_password(value)
        return value

    def create(self, validated_data):
        user = User.objects.create_user(
            username=validated_data['email'],
            email=validated_data['email'],
            password=validated_data['password'],
            first_name=validated_data['first_name'],
            last_name=validated_data['last_name'],
            role=validated_data.get('role', User.Role.STUDENT),
            student_id=validated_data.get('student_id', ''),
            grade_level=validated_data.get('grade_level'),
            school_class=validated_data.get('school_class'),
        )
        return user


class CustomTokenObtainPairSerializer(TokenObtainPairSerializer):
    def validate(self, attrs):
        data = super().validate(attrs)
        data['user'] = UserSerializer(self.user).data
        return data


class ChangePasswordSerializer(serializers.Serializer):
    current_password = serializers.CharField(write_only=True)
    new_password = serializers.CharField(write_only=True)

    def validate_current_password(self, value):
        if not self.context['request'].user.check_password(value):
            raise serializers.ValidationError("Current password is incorrect.")
        return value

    def validate_new_password(self, value):
        validate_password(value, self.context['request'].user)
        return value


class ImportUserRowSerializer(serializers.Serializer):
    name = serializers.CharField(required=False, allow_blank=True)
    first_name = serializers.CharField(required=False, allow_blank=True)
    last_name = serializers.CharField(required=False, allow_blank=True)
    email = serializers.EmailField()
    password = serializers.CharField(required=False, allow_blank=True)
    student_id = serializers.CharField(required=False, allow_blank=True)
    grade_level = serializers.CharField(required=False, allow_blank=True)


class ImportUsersSerializer(serializers.Serializer):
    users = ImportUserRowSerializer(many=True, allow_empty=False)
