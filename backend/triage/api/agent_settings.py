"""
Agent settings API: the auto-send toggle and thresholds, editable at runtime.
"""
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework import status

from triage.serializers import AgentSettingsUpdateSerializer
from triage.services.agent_settings import get_agent_settings, update_agent_settings


class AgentSettingsView(APIView):
    def get(self, request):
        return Response(get_agent_settings().to_dict())

    def put(self, request):
        serializer = AgentSettingsUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        values = dict(serializer.validated_data)
        updated_by = values.pop("updated_by", None)
        if not values:
            return Response({"detail": "No settings provided"}, status=status.HTTP_400_BAD_REQUEST)

        try:
            agent_settings = update_agent_settings(values, updated_by=updated_by)
        except ValueError as e:
            return Response({"detail": str(e)}, status=status.HTTP_400_BAD_REQUEST)
        return Response(agent_settings.to_dict())
