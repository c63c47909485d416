"""
Triage URL configuration, mounted under /api/.
"""
from django.urls import path
from triage.api import agent_settings, ingest, learning, observations, threads

urlpatterns = [
    # Ingest
    path('ingest/', ingest.IngestView.as_view()),

    # Threads
    path('threads/', threads.ThreadListView.as_view()),
    path('threads/<uuid:thread_id>', threads.ThreadDetailView.as_view()),
    path('threads/<uuid:thread_id>/archive', threads.ThreadArchiveView.as_view()),
    path('threads/<uuid:thread_id>/unarchive', threads.ThreadUnarchiveView.as_view()),
    path('threads/<uuid:thread_id>/pending-action', threads.PendingActionView.as_view()),
    path('threads/<uuid:thread_id>/draft', threads.DraftView.as_view()),
    path('threads/<uuid:thread_id>/send-draft', threads.SendDraftView.as_view()),
    path('threads/<uuid:thread_id>/approve-commitment', threads.ApproveCommitmentView.as_view()),

    # Human takeover
    path('threads/<uuid:thread_id>/takeover', threads.TakeoverView.as_view()),
    path('threads/<uuid:thread_id>/return', threads.ReturnView.as_view()),
    path('threads/<uuid:thread_id>/outbound', threads.OutboundMessageView.as_view()),
    path('observations/', observations.ObservationListView.as_view()),

    # Learning
    path('learning/proposals', learning.ProposalListView.as_view()),
    path('learning/proposals/<uuid:proposal_id>/approve', learning.ProposalApproveView.as_view()),
    path('learning/proposals/<uuid:proposal_id>/reject', learning.ProposalRejectView.as_view()),

    # Settings
    path('settings/agent', agent_settings.AgentSettingsView.as_view()),
]
