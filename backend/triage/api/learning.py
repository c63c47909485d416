"""
Learning API: human review of proposals generated from observations.
Nothing reaches the knowledge base without an approval here.
"""
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework import status

from triage.exceptions import InvalidStateTransition
from triage.models.learning_proposal import LearningProposal
from triage.serializers import (
    LearningProposalSerializer, ProposalApproveSerializer, ProposalRejectSerializer,
)
from triage.services.learning import approve_proposal, get_pending_proposals, reject_proposal

PROPOSAL_STATUSES = ("pending", "approved", "rejected", "published")


def _proposal_not_found(proposal_id):
    return Response({"detail": f"Proposal {proposal_id} not found"}, status=status.HTTP_404_NOT_FOUND)


class ProposalListView(APIView):
    """Pending proposals by default; ?status=all for everything."""

    def get(self, request):
        status_filter = request.query_params.get("status", "pending")
        if status_filter == "pending":
            queryset = get_pending_proposals()
        elif status_filter == "all":
            queryset = LearningProposal.objects.all()
        elif status_filter in PROPOSAL_STATUSES:
            queryset = LearningProposal.objects.filter(status=status_filter)
        else:
            return Response(
                {"detail": f"Unknown status: {status_filter}"},
                status=status.HTTP_400_BAD_REQUEST,
            )

        thread_id = request.query_params.get("thread_id")
        if thread_id:
            queryset = queryset.filter(thread_id=thread_id)

        return Response(LearningProposalSerializer(queryset.order_by("-created_at"), many=True).data)


class ProposalApproveView(APIView):
    def post(self, request, proposal_id):
        serializer = ProposalApproveSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            proposal = approve_proposal(
                proposal_id,
                data["reviewer"],
                notes=data.get("notes"),
                edited_content=data.get("edited_content"),
            )
        except LearningProposal.DoesNotExist:
            return _proposal_not_found(proposal_id)
        except InvalidStateTransition as e:
            return Response({"detail": str(e)}, status=status.HTTP_409_CONFLICT)
        return Response(LearningProposalSerializer(proposal).data)


class ProposalRejectView(APIView):
    def post(self, request, proposal_id):
        serializer = ProposalRejectSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            proposal = reject_proposal(proposal_id, data["reviewer"], data["reason"])
        except LearningProposal.DoesNotExist:
            return _proposal_not_found(proposal_id)
        except InvalidStateTransition as e:
            return Response({"detail": str(e)}, status=status.HTTP_409_CONFLICT)
        return Response(LearningProposalSerializer(proposal).data)
