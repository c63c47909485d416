"""
Observation API: what humans did while they held a thread.
"""
from rest_framework.views import APIView
from rest_framework.response import Response

from triage.models.observation import Observation
from triage.serializers import ObservationSerializer


class ObservationListView(APIView):
    """List observations, newest first. ?active=true|false, ?thread_id=<uuid>."""

    def get(self, request):
        queryset = Observation.objects.all()

        active = request.query_params.get("active")
        if active == "true":
            queryset = queryset.filter(intervention_end__isnull=True)
        elif active == "false":
            queryset = queryset.filter(intervention_end__isnull=False)

        thread_id = request.query_params.get("thread_id")
        if thread_id:
            queryset = queryset.filter(thread_id=thread_id)

        handler = request.query_params.get("handler")
        if handler:
            queryset = queryset.filter(handler=handler)

        limit = min(int(request.query_params.get("limit", 50)), 200)
        offset = int(request.query_params.get("offset", 0))
        queryset = queryset.order_by("-intervention_start")[offset:offset + limit]

        return Response(ObservationSerializer(queryset, many=True).data)
