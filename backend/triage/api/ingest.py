"""
Ingest API: the primary entrypoint for inbound customer messages.
Every channel adapter (mail sync, web form, chat, voice transcript) posts
here and gets the orchestrator's decision back.
"""
import logging

from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework import status

from triage.serializers import IngestRequestSerializer
from triage.services.ingest_pipeline import IngestRequest, process_ingest_request

logger = logging.getLogger(__name__)

# Blank upstream ids mean "none"; stored as NULL so uniqueness still holds
_OPTIONAL_IDS = ("external_id", "external_message_id", "from_identifier", "to_identifier")


class IngestView(APIView):
    """Store an inbound message and run automated triage on it."""

    def post(self, request):
        serializer = IngestRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = dict(serializer.validated_data)
        for key in _OPTIONAL_IDS:
            data[key] = data.get(key) or None

        try:
            result = process_ingest_request(IngestRequest(**data))
        except Exception as e:
            logger.exception("Ingest failed for external id %s", data.get("external_id"))
            return Response(
                {"detail": f"Processing failed: {str(e)}"},
                status=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )

        if result.retryable:
            # Nothing stored; the adapter redelivers once the running triage finishes
            return Response(result.to_dict(), status=status.HTTP_409_CONFLICT)

        return Response(
            result.to_dict(),
            status=status.HTTP_200_OK if result.duplicate else status.HTTP_201_CREATED,
        )
