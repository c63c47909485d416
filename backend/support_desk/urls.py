"""
Root URL configuration for the Support Desk automation service.

The admin UI is a separate client; Django only serves the JSON API and a
health probe for the webhook load balancer.
"""
from django.urls import path, include
from django.http import JsonResponse


def health_check(request):
    return JsonResponse({"status": "healthy"})


urlpatterns = [
    path('api/', include('triage.urls')),
    path('health', health_check),
]
