from triage.models.thread import Thread, ThreadState
from triage.models.message import Message
from triage.models.event import Event, ImmutableEventError
from triage.models.observation import Observation
from triage.models.learning_proposal import LearningProposal
from triage.models.knowledge import KBArticle, AgentInstruction
from triage.models.agent_setting import AgentSetting

__all__ = [
    "Thread", "ThreadState", "Message", "Event", "ImmutableEventError",
    "Observation", "LearningProposal",
    "KBArticle", "AgentInstruction", "AgentSetting",
]
