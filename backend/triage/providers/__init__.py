"""
External collaborators, passed explicitly into the pipeline.

build_collaborators() picks implementations from settings.LLM_PROVIDER:
"mock" wires the offline stand-ins, "openai" swaps in the LLM-backed
classifier, drafter and summarizer. Tests build Collaborators directly with
fakes.
"""
from dataclasses import dataclass

from django.conf import settings

from triage.providers.classifier import KeywordClassifier, OpenAIClassifier
from triage.providers.drafter import TemplateDraftGenerator, OpenAIDraftGenerator
from triage.providers.knowledge_search import KeywordKnowledgeSearch
from triage.providers.messaging import LocalMessagingProvider
from triage.providers.summarizer import HeuristicSummarizer, OpenAISummarizer
from triage.providers.verifier import OrderReferenceVerifier


@dataclass
class Collaborators:
    classifier: object
    drafter: object
    knowledge_search: object
    messaging: object
    verifier: object
    summarizer: object


def build_collaborators() -> Collaborators:
    if settings.LLM_PROVIDER == "openai":
        classifier = OpenAIClassifier()
        drafter = OpenAIDraftGenerator()
        summarizer = OpenAISummarizer()
    else:
        classifier = KeywordClassifier()
        drafter = TemplateDraftGenerator()
        summarizer = HeuristicSummarizer()

    return Collaborators(
        classifier=classifier,
        drafter=drafter,
        knowledge_search=KeywordKnowledgeSearch(),
        messaging=LocalMessagingProvider(),
        verifier=OrderReferenceVerifier(),
        summarizer=summarizer,
    )
