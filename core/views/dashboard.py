from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from core.services.health import dashboard


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def user_dashboard(request):
    """Profile summary, counts, recent activity and upcoming follow-ups for the caller."""
    return Response({'ok': True, **dashboard(request.user)})
