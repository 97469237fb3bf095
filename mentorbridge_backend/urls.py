"""URL configuration for the mentorbridge_backend project."""
from django.contrib import admin
from django.http import JsonResponse
from django.urls import include, path
from rest_framework_simplejwt.views import TokenRefreshView

from mentorship.auth import EmailTokenObtainPairView
from mentorship.schema import MentorBridgeSchemaView


def api_root(_request):
    return JsonResponse({
        'status': 'ok',
        'message': 'MentorBridge backend is running',
        'schema': '/api/schema/',
    })


urlpatterns = [
    path('', api_root, name='api_root'),
    path('admin/', admin.site.urls),
    path('api/login/', EmailTokenObtainPairView.as_view(), name='api_login'),
    path('api/token/refresh/', TokenRefreshView.as_view(), name='token_refresh'),
    path('api/schema/', MentorBridgeSchemaView.as_view(), name='api-schema'),
    path('api/', include('mentorship.urls')),
]
