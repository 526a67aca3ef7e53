import bleach
from rest_framework import serializers

from core.models import User

MOBILE_PATTERN = r'^[6-9][0-9]{9}$'
NATIONAL_ID_PATTERN = r'^[0-9]{12}$'
OTP_PATTERN = r'^[0-9]{6}$'


def _clean(v):
    return bleach.clean((v or '').strip(), tags=set(), strip=True)


class AddressSerializer(serializers.Serializer):
    street = serializers.CharField(required=False, allow_blank=True, max_length=255)
    city = serializers.CharField(required=False, allow_blank=True, max_length=100)
    district = serializers.CharField(required=False, allow_blank=True, max_length=100)
    state = serializers.CharField(required=False, allow_blank=True, max_length=100)
    pincode = serializers.RegexField(r'^[0-9]{6}$', required=False, allow_blank=True)
    country = serializers.CharField(required=False, allow_blank=True, max_length=100, default='India')


class EmergencyContactSerializer(serializers.Serializer):
    name = serializers.CharField(required=False, allow_blank=True, max_length=128)
    relationship = serializers.CharField(required=False, allow_blank=True, max_length=64)
    mobileNumber = serializers.RegexField(MOBILE_PATTERN, required=False, allow_blank=True)


class WorkDetailsSerializer(serializers.Serializer):
    occupation = serializers.CharField(required=False, allow_blank=True, max_length=128)
    employer = serializers.CharField(required=False, allow_blank=True, max_length=128)
    workLocation = serializers.CharField(required=False, allow_blank=True, max_length=255)
    workId = serializers.CharField(required=False, allow_blank=True, max_length=64)


class ProfileFieldsMixin(serializers.Serializer):
    """Editable profile fields shared by registration and profile updates."""
    email = serializers.EmailField(required=False, allow_blank=True)
    address = AddressSerializer(required=False)
    emergencyContact = EmergencyContactSerializer(required=False)
    bloodGroup = serializers.ChoiceField(choices=[c for c, _ in User.BLOOD_GROUP_CHOICES], required=False, allow_blank=True)
    allergies = serializers.ListField(child=serializers.CharField(max_length=128), required=False)
    currentMedications = serializers.ListField(child=serializers.CharField(max_length=128), required=False)
    workDetails = WorkDetailsSerializer(required=False)

    FIELD_MAP = {
        'firstName': 'first_name',
        'lastName': 'last_name',
        'email': 'email',
        'dateOfBirth': 'date_of_birth',
        'gender': 'gender',
        'address': 'address',
        'emergencyContact': 'emergency_contact',
        'bloodGroup': 'blood_group',
        'allergies': 'allergies',
        'currentMedications': 'current_medications',
        'workDetails': 'work_details',
    }

    def validate_allergies(self, v):
        return [_clean(x) for x in v if _clean(x)]

    def validate_currentMedications(self, v):
        return [_clean(x) for x in v if _clean(x)]

    def profile_fields(self) -> dict:
        """Validated data keyed by model column."""
        return {self.FIELD_MAP[k]: v for k, v in self.validated_data.items() if k in self.FIELD_MAP}


class RegistrationChallengeSerializer(serializers.Serializer):
    mobileNumber = serializers.RegexField(MOBILE_PATTERN, error_messages={'invalid': 'Valid mobile number required'})
    nationalIdNumber = serializers.RegexField(NATIONAL_ID_PATTERN, error_messages={'invalid': 'Valid national ID number required'})


class RegistrationConfirmSerializer(ProfileFieldsMixin):
    mobileNumber = serializers.RegexField(MOBILE_PATTERN, error_messages={'invalid': 'Valid mobile number required'})
    otp = serializers.RegexField(OTP_PATTERN, error_messages={'invalid': 'Valid OTP required'})
    firstName = serializers.CharField(max_length=150)
    lastName = serializers.CharField(max_length=150)
    dateOfBirth = serializers.DateField()
    gender = serializers.ChoiceField(choices=[c for c, _ in User.GENDER_CHOICES])

    def validate_firstName(self, v):
        v = _clean(v)
        if not v:
            raise serializers.ValidationError('First name is required')
        return v

    def validate_lastName(self, v):
        v = _clean(v)
        if not v:
            raise serializers.ValidationError('Last name is required')
        return v


class LoginChallengeSerializer(serializers.Serializer):
    nationalIdNumber = serializers.RegexField(NATIONAL_ID_PATTERN, error_messages={'invalid': 'Valid national ID number required'})


class LoginConfirmSerializer(serializers.Serializer):
    nationalIdNumber = serializers.RegexField(NATIONAL_ID_PATTERN, error_messages={'invalid': 'Valid national ID number required'})
    otp = serializers.RegexField(OTP_PATTERN, error_messages={'invalid': 'Valid OTP required'})


class ProfileUpdateSerializer(ProfileFieldsMixin):
    firstName = serializers.CharField(required=False, max_length=150)
    lastName = serializers.CharField(required=False, max_length=150)

    def validate_firstName(self, v):
        v = _clean(v)
        if not v:
            raise serializers.ValidationError('First name cannot be empty')
        return v

    def validate_lastName(self, v):
        v = _clean(v)
        if not v:
            raise serializers.ValidationError('Last name cannot be empty')
        return v


class LogoutSerializer(serializers.Serializer):
    refresh = serializers.CharField(required=False, allow_blank=True)


class IdentityStatusSerializer(serializers.Serializer):
    active = serializers.BooleanField()


class IdentityListQuerySerializer(serializers.Serializer):
    q = serializers.CharField(max_length=64, required=False, allow_blank=True)
    locked = serializers.BooleanField(required=False, default=False)
    page = serializers.IntegerField(min_value=1, required=False)
    pageSize = serializers.IntegerField(min_value=1, max_value=100, required=False)


def user_payload(user: User, full: bool = False) -> dict:
    data = {
        'id': user.id,
        'firstName': user.first_name,
        'lastName': user.last_name,
        'fullName': user.display_name,
        'mobileNumber': user.mobile_number,
        'isVerified': user.is_verified,
    }
    if full:
        data.update({
            'email': user.email,
            'nationalIdNumber': user.national_id,
            'dateOfBirth': user.date_of_birth.isoformat() if user.date_of_birth else None,
            'gender': user.gender,
            'address': user.address,
            'emergencyContact': user.emergency_contact,
            'bloodGroup': user.blood_group,
            'allergies': user.allergies,
            'currentMedications': user.current_medications,
            'workDetails': user.work_details,
            'isActive': user.is_active,
            'lastLogin': user.last_login.isoformat() if user.last_login else None,
            'createdAt': user.created_at.isoformat() if user.created_at else None,
        })
    return data
